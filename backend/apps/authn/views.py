"""
Authentication views.
"""
import logging

from django.http import JsonResponse, HttpRequest
from django.views.decorators.http import require_http_methods

from .middleware import auth_required

logger = logging.getLogger(__name__)


@require_http_methods(["GET"])
@auth_required
def me(request: HttpRequest) -> JsonResponse:
    """
    GET /api/me

    Returns the caller's identity as the document portal sees it.

    Response:
        {
            "id": "<sub>",
            "username": "<preferred_username>",
            "tenantId": "<tenant>",
            "role": "admin",
            "isAdmin": true,
            "confidentialDocumentIds": ["..."]
        }
    """
    claims = request.user_claims
    access = request.access_context

    return JsonResponse({
        'id': access.user_id,
        'username': claims.preferred_username,
        'tenantId': access.tenant_id,
        'role': access.role,
        'isAdmin': access.is_admin,
        'confidentialDocumentIds': sorted(access.accessible_confidential_document_ids),
    })
