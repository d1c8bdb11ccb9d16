"""
Document management views.

Provides endpoints for:
- POST   /api/documents/upload              - Upload a new document
- GET    /api/documents                     - List visible documents
- GET    /api/documents/<id>                - Document details
- PATCH  /api/documents/<id>                - Update metadata
- DELETE /api/documents/<id>                - Soft delete
- GET    /api/documents/<id>/download       - Raw file
- GET    /api/documents/<id>/analysis       - Processing status and AI analysis
- GET    /api/documents/<id>/versions       - Analysis history
- POST   /api/documents/<id>/process        - Manual reprocess
- POST   /api/documents/process-pending     - Process a batch now (admin)
- GET    /api/storage/info                  - Storage diagnostics (admin)
"""
import json
import logging
from pathlib import Path

from django.http import HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from apps.authn.audit import (
    audit_document_deleted,
    audit_document_downloaded,
    audit_document_uploaded,
    audit_forbidden,
    audit_reprocess_requested,
)
from apps.authn.middleware import auth_required
from .errors import (
    NotFoundError,
    PermissionDeniedError,
    PortalError,
    RepositoryError,
    StorageError,
    ValidationError,
)
from .ingestion import UploadMetadata, UploadPayload
from .repository import DEFAULT_PAGE_SIZE, DocumentFilters
from .services import get_services

logger = logging.getLogger(__name__)

# Browsers often send a generic type; map common extensions instead
EXTENSION_MIME_TYPES = {
    '.pdf': 'application/pdf',
    '.doc': 'application/msword',
    '.docx': 'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
    '.xls': 'application/vnd.ms-excel',
    '.xlsx': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
    '.ppt': 'application/vnd.ms-powerpoint',
    '.pptx': 'application/vnd.openxmlformats-officedocument.presentationml.presentation',
    '.txt': 'text/plain',
    '.csv': 'text/csv',
    '.json': 'application/json',
    '.xml': 'application/xml',
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
}


def normalize_content_type(content_type: str, filename: str) -> str:
    """Use the file extension when the client sent a generic content type."""
    if content_type in ('application/octet-stream', 'binary/octet-stream', '', None):
        return EXTENSION_MIME_TYPES.get(Path(filename).suffix.lower(), content_type or '')
    return content_type


def error_response(error: Exception) -> JsonResponse:
    """Translate a portal error into a JSON response without internal detail."""
    if isinstance(error, ValidationError):
        return JsonResponse({'error': str(error), 'code': error.code}, status=400)
    if isinstance(error, NotFoundError):
        return JsonResponse({'error': 'Document not found', 'code': 'NOT_FOUND'}, status=404)
    if isinstance(error, PermissionDeniedError):
        return JsonResponse({'error': 'Access denied', 'code': 'PERMISSION_DENIED'}, status=403)
    if isinstance(error, StorageError):
        return JsonResponse({'error': 'Storage unavailable', 'code': 'STORAGE_ERROR'}, status=503)
    if isinstance(error, RepositoryError):
        return JsonResponse({'error': 'Database error', 'code': 'REPOSITORY_ERROR'}, status=500)
    return JsonResponse({'error': 'Internal server error', 'code': 'INTERNAL_ERROR'}, status=500)


def _parse_bool(value) -> bool:
    return str(value).strip().lower() in ('true', '1', 'yes', 'on')


def _parse_tags(raw) -> list:
    if not raw:
        return []
    raw = raw.strip()
    if raw.startswith('['):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            raise ValidationError("tags must be a JSON list or a comma-separated string")
        return [str(t) for t in parsed] if isinstance(parsed, list) else []
    return [t.strip() for t in raw.split(',') if t.strip()]


def _parse_custom_metadata(raw) -> dict:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        raise ValidationError("customMetadata must be a JSON object")
    if not isinstance(parsed, dict):
        raise ValidationError("customMetadata must be a JSON object")
    return {str(k): str(v) for k, v in parsed.items()}


def _parse_int(value, name: str, default: int) -> int:
    if value in (None, ''):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


# JSON body keys accepted by PATCH, mapped to repository field names
UPDATE_BODY_FIELDS = {
    'title': 'title',
    'description': 'description',
    'documentType': 'document_type',
    'tags': 'tags',
    'isConfidential': 'is_confidential',
    'customMetadata': 'custom_metadata',
}


def _parse_update_body(raw: bytes) -> dict:
    try:
        body = json.loads(raw or b'{}')
    except json.JSONDecodeError:
        raise ValidationError("Invalid JSON")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")

    unknown = sorted(set(body) - set(UPDATE_BODY_FIELDS))
    if unknown:
        raise ValidationError(f"Fields cannot be updated: {', '.join(unknown)}")
    if not body:
        raise ValidationError("No fields to update")
    return {UPDATE_BODY_FIELDS[key]: value for key, value in body.items()}


@csrf_exempt
@require_http_methods(["POST"])
@auth_required
def upload_document(request):
    """
    Upload a new document.

    POST /api/documents/upload

    Accepts multipart/form-data with a 'file' field and optional fields:
    title, description, documentType, tags, isConfidential, customMetadata.

    Returns the created document (processingStatus PENDING) with 201.
    """
    access = request.access_context

    if 'file' not in request.FILES:
        return JsonResponse({'error': 'No file provided', 'code': 'MISSING_FILE'}, status=400)

    uploaded_file = request.FILES['file']
    logger.info(
        f"Upload request: {uploaded_file.name}, {uploaded_file.content_type}, "
        f"{uploaded_file.size} bytes from user {access.user_id} (tenant {access.tenant_id})"
    )

    try:
        metadata = UploadMetadata(
            title=request.POST.get('title'),
            description=request.POST.get('description', ''),
            document_type=request.POST.get('documentType') or None,
            tags=_parse_tags(request.POST.get('tags')),
            is_confidential=_parse_bool(request.POST.get('isConfidential', 'false')),
            custom_metadata=_parse_custom_metadata(request.POST.get('customMetadata')),
        )
        upload = UploadPayload(
            content=uploaded_file.read(),
            original_filename=uploaded_file.name,
            mime_type=normalize_content_type(uploaded_file.content_type, uploaded_file.name),
        )
        document = get_services().documents.upload(access, upload, metadata)
    except PortalError as e:
        logger.warning(f"Upload rejected for {uploaded_file.name}: {e}")
        return error_response(e)

    audit_document_uploaded(
        request,
        document_id=str(document.id),
        filename=document.filename,
        size_bytes=document.file_size,
        checksum=document.checksum,
    )
    return JsonResponse(document.to_dict(), status=201)


@csrf_exempt
@require_http_methods(["GET"])
@auth_required
def list_documents(request):
    """
    List the caller's visible documents.

    GET /api/documents?documentType=&search=&tags=a,b&isConfidential=&limit=&offset=&sortBy=&sortOrder=

    Returns:
        {"documents": [...], "total": 12, "limit": 50, "offset": 0}
    """
    params = request.GET
    try:
        is_confidential = params.get('isConfidential')
        filters = DocumentFilters(
            document_type=params.get('documentType') or None,
            search=params.get('search') or None,
            tags=_parse_tags(params.get('tags')),
            is_confidential=_parse_bool(is_confidential) if is_confidential not in (None, '') else None,
            limit=_parse_int(params.get('limit'), 'limit', DEFAULT_PAGE_SIZE),
            offset=_parse_int(params.get('offset'), 'offset', 0),
            sort_by=params.get('sortBy', 'created_at'),
            sort_order=params.get('sortOrder', 'desc'),
        )
        page = get_services().documents.list_documents(request.access_context, filters)
    except PortalError as e:
        return error_response(e)

    return JsonResponse({
        'documents': [doc.to_dict() for doc in page.documents],
        'total': page.total,
        'limit': filters.limit,
        'offset': filters.offset,
    })


@csrf_exempt
@require_http_methods(["GET", "PATCH", "DELETE"])
@auth_required
def document_detail(request, document_id):
    """
    GET    /api/documents/<id> - Document details
    PATCH  /api/documents/<id> - Update metadata (title, description,
                                 documentType, tags, isConfidential, customMetadata)
    DELETE /api/documents/<id> - Soft delete the document
    """
    documents = get_services().documents
    try:
        if request.method == 'PATCH':
            document = documents.update_document(
                request.access_context, document_id, _parse_update_body(request.body)
            )
            return JsonResponse(document.to_dict())

        if request.method == 'DELETE':
            documents.delete(request.access_context, document_id)
            audit_document_deleted(request, str(document_id))
            return JsonResponse({'id': str(document_id), 'deleted': True})

        document = documents.get_document(request.access_context, document_id)
    except PermissionDeniedError as e:
        audit_forbidden(request, str(document_id))
        return error_response(e)
    except PortalError as e:
        return error_response(e)

    return JsonResponse(document.to_dict())


@csrf_exempt
@require_http_methods(["GET"])
@auth_required
def download_document(request, document_id):
    """
    GET /api/documents/<id>/download

    Streams the stored bytes back with the original filename.
    """
    try:
        downloaded = get_services().documents.download(request.access_context, document_id)
    except PermissionDeniedError as e:
        audit_forbidden(request, str(document_id))
        return error_response(e)
    except PortalError as e:
        return error_response(e)

    audit_document_downloaded(request, str(document_id))

    response = HttpResponse(downloaded.content, content_type=downloaded.mime_type)
    safe_name = downloaded.filename.replace('"', '')
    response['Content-Disposition'] = f'attachment; filename="{safe_name}"'
    response['Content-Length'] = str(len(downloaded.content))
    return response


@csrf_exempt
@require_http_methods(["GET"])
@auth_required
def document_analysis(request, document_id):
    """
    GET /api/documents/<id>/analysis

    Returns:
        {"processingStatus": "COMPLETED", "aiProcessed": true, "aiMetadata": {...}, ...}
    """
    try:
        analysis = get_services().documents.get_analysis(request.access_context, document_id)
    except PortalError as e:
        return error_response(e)
    return JsonResponse(analysis)


@csrf_exempt
@require_http_methods(["GET"])
@auth_required
def document_versions(request, document_id):
    """GET /api/documents/<id>/versions - analysis history, newest first."""
    try:
        versions = get_services().documents.get_versions(request.access_context, document_id)
    except PortalError as e:
        return error_response(e)
    return JsonResponse({'versions': [v.to_dict() for v in versions]})


@csrf_exempt
@require_http_methods(["POST"])
@auth_required
def reprocess_document(request, document_id):
    """
    POST /api/documents/<id>/process

    Schedules a processing run. Returns 202 when accepted, 503 when the
    processing backlog is full.
    """
    try:
        accepted = get_services().documents.reprocess(request.access_context, document_id)
    except PortalError as e:
        return error_response(e)

    audit_reprocess_requested(request, str(document_id), accepted)
    if not accepted:
        return JsonResponse(
            {'error': 'Processing queue is full, try again later', 'code': 'PROCESSING_BUSY'},
            status=503
        )
    return JsonResponse({'id': str(document_id), 'scheduled': True}, status=202)


@csrf_exempt
@require_http_methods(["POST"])
@auth_required
def process_pending(request):
    """
    POST /api/documents/process-pending

    Request body (optional): {"limit": 5}
    Returns: {"processed": 3}
    """
    try:
        body = json.loads(request.body or b'{}')
    except json.JSONDecodeError:
        return JsonResponse({'error': 'Invalid JSON', 'code': 'VALIDATION_ERROR'}, status=400)
    if not isinstance(body, dict):
        return JsonResponse(
            {'error': 'Request body must be a JSON object', 'code': 'VALIDATION_ERROR'},
            status=400
        )

    try:
        limit = _parse_int(body.get('limit'), 'limit', 5)
        processed = get_services().documents.process_pending(request.access_context, limit)
    except PortalError as e:
        return error_response(e)

    return JsonResponse({'processed': processed})


@csrf_exempt
@require_http_methods(["GET"])
@auth_required
def storage_info(request):
    """GET /api/storage/info - storage mode, bucket/region, environment."""
    try:
        info = get_services().documents.storage_info(request.access_context)
    except PortalError as e:
        return error_response(e)
    return JsonResponse(info)
