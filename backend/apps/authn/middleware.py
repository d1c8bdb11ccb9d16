"""
Authentication decorators for JWT-protected endpoints.
"""
import logging
from typing import Callable, Optional
from functools import wraps

from django.http import JsonResponse, HttpRequest

from .audit import audit_auth_rejected
from .jwt_validator import validate_token, JWTValidationError

logger = logging.getLogger(__name__)


def get_token_from_request(request: HttpRequest) -> Optional[str]:
    """
    Extract Bearer token from Authorization header.

    Returns:
        The token string if found, None otherwise
    """
    parts = request.META.get('HTTP_AUTHORIZATION', '').split()

    if len(parts) != 2 or parts[0].lower() != 'bearer':
        return None

    return parts[1]


def auth_required(view_func: Callable) -> Callable:
    """
    Decorator that requires a valid JWT carrying a tenant.

    Attaches request.user_claims and request.access_context.

    Usage:
        @auth_required
        def my_view(request):
            access = request.access_context
            ...
    """
    @wraps(view_func)
    def wrapper(request: HttpRequest, *args, **kwargs):
        token = get_token_from_request(request)

        if not token:
            return JsonResponse(
                {'error': 'Authorization header missing or invalid', 'code': 'UNAUTHENTICATED'},
                status=401
            )

        try:
            claims = validate_token(token)
        except JWTValidationError as e:
            logger.warning(f"JWT validation failed: {e}")
            audit_auth_rejected(request, str(e))
            return JsonResponse({'error': str(e), 'code': 'UNAUTHENTICATED'}, status=401)

        if not claims.tenant_id:
            logger.warning(f"Token for {claims.sub} carries no tenant")
            audit_auth_rejected(request, 'missing tenant claim')
            return JsonResponse(
                {'error': 'Token is not associated with a tenant', 'code': 'NO_TENANT'},
                status=403
            )

        request.user_claims = claims
        request.access_context = claims.to_access_context()
        logger.debug(
            f"Authenticated user: {claims.preferred_username} "
            f"(sub={claims.sub}, tenant={claims.tenant_id}, roles={claims.roles})"
        )
        return view_func(request, *args, **kwargs)

    return wrapper
