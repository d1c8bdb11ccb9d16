"""
Health check endpoints for Kubernetes/Docker probes.

- /healthz - Liveness (is process running?)
- /readyz - Readiness (can we serve traffic?)
"""
import logging
from datetime import datetime, timezone

import httpx
from django.conf import settings
from django.db import DatabaseError, connection
from django.http import JsonResponse
from django.views.decorators.http import require_GET
from django.views.decorators.csrf import csrf_exempt

from .errors import StorageError

logger = logging.getLogger(__name__)

STORAGE_PROBE_KEY = 'healthcheck/probe'


def get_timestamp() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


@csrf_exempt
@require_GET
def healthz(request):
    """
    Liveness probe endpoint.

    Returns 200 if the Django process is running.
    """
    return JsonResponse({
        'status': 'healthy',
        'timestamp': get_timestamp()
    })


def check_postgres() -> tuple[str, bool]:
    """Check database connectivity."""
    try:
        with connection.cursor() as cursor:
            cursor.execute('SELECT 1')
            cursor.fetchone()
        return 'ok', True
    except DatabaseError as e:
        logger.error(f"Database health check failed: {e}")
        return f'error: {str(e)[:50]}', False


def check_storage(storage) -> tuple[str, bool]:
    """
    Check that the document store answers.

    A missing probe object is fine; only transport and permission
    failures count.
    """
    try:
        storage.exists(STORAGE_PROBE_KEY)
        return 'ok', True
    except StorageError as e:
        logger.error(f"Storage health check failed: {e}")
        return f'error: {str(e)[:50]}', False


def check_llm() -> tuple[str, bool]:
    """
    Check the Ollama endpoint (optional, degrades gracefully).

    Analysis falls back to a degraded result, so this never blocks readiness.
    """
    if getattr(settings, 'LLM_PROVIDER', 'ollama') != 'ollama':
        return 'skipped', True
    try:
        ollama_url = getattr(settings, 'OLLAMA_BASE_URL', 'http://ollama:11434')
        with httpx.Client(timeout=5.0) as client:
            response = client.get(f'{ollama_url}/api/version')
        if response.status_code == 200:
            return 'ok', True
        return f'status: {response.status_code}', True
    except httpx.HTTPError as e:
        logger.warning(f"Ollama health check failed: {e}")
        return f'degraded: {str(e)[:30]}', True


@csrf_exempt
@require_GET
def readyz(request):
    """
    Readiness probe endpoint.

    Returns 200 only if the database and the document store are reachable.
    """
    from .services import get_services

    checks = {}
    all_ok = True

    status, ok = check_postgres()
    checks['postgres'] = status
    all_ok = all_ok and ok

    status, ok = check_storage(get_services().storage)
    checks['storage'] = status
    all_ok = all_ok and ok

    status, _ = check_llm()
    checks['llm'] = status

    return JsonResponse({
        'status': 'ready' if all_ok else 'not_ready',
        'timestamp': get_timestamp(),
        'checks': checks
    }, status=200 if all_ok else 503)
