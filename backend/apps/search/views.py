"""
Semantic search API views.
"""
import json
import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from apps.authn.audit import audit_semantic_search
from apps.authn.middleware import auth_required
from apps.docs.errors import ValidationError
from apps.docs.services import get_services

logger = logging.getLogger(__name__)


@csrf_exempt
@require_http_methods(["POST"])
@auth_required
def semantic_search(request):
    """
    POST /api/search/semantic

    Request body:
        {
            "query": "quarterly revenue forecast",
            "documentType": "REPORT",   // optional
            "minSimilarity": 0.7,       // optional
            "limit": 10                 // optional
        }

    Response:
        {
            "documents": [{..., "similarity": 0.91, "matchedChunk": {...}}],
            "total": 1,
            "query": "quarterly revenue forecast",
            "minSimilarity": 0.7
        }
    """
    try:
        body = json.loads(request.body or b'{}')
    except json.JSONDecodeError:
        return JsonResponse({'error': 'Invalid JSON', 'code': 'VALIDATION_ERROR'}, status=400)

    if not isinstance(body, dict):
        return JsonResponse({'error': 'Request body must be an object', 'code': 'VALIDATION_ERROR'}, status=400)

    query = body.get('query', '')
    if not isinstance(query, str):
        return JsonResponse({'error': 'query must be a string', 'code': 'VALIDATION_ERROR'}, status=400)

    try:
        response = get_services().search.search(
            request.access_context,
            query,
            document_type=body.get('documentType') or None,
            min_similarity=body.get('minSimilarity'),
            limit=body.get('limit'),
        )
    except ValidationError as e:
        return JsonResponse({'error': str(e), 'code': e.code}, status=400)

    audit_semantic_search(
        request,
        query_length=len(response.query),
        result_count=response.total,
        min_similarity=response.min_similarity,
    )
    return JsonResponse(response.to_dict())
