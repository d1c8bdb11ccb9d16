"""
Audit logging for security and compliance.

Structured JSON events on the dedicated 'audit' logger. Events carry
identifiers and outcomes only: no document content, no query text.
"""
import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

audit_logger = logging.getLogger('audit')


class AuditEvent:
    """Audit event types emitted by the portal."""
    AUTH_TOKEN_REJECTED = 'auth.token_rejected'
    AUTH_FORBIDDEN = 'auth.forbidden'

    DOCUMENT_UPLOADED = 'document.uploaded'
    DOCUMENT_DOWNLOADED = 'document.downloaded'
    DOCUMENT_DELETED = 'document.deleted'
    DOCUMENT_REPROCESS_REQUESTED = 'document.reprocess_requested'

    PROCESSING_COMPLETED = 'processing.completed'
    PROCESSING_FAILED = 'processing.failed'

    SEARCH_SEMANTIC = 'search.semantic'


@dataclass
class AuditRecord:
    """
    One audit line.

    user_id is None for system events (pipeline, worker); tenant_id is set
    whenever the event belongs to a tenant.
    """
    event_type: str
    outcome: str = 'success'
    user_id: Optional[str] = None
    tenant_id: Optional[str] = None
    request_id: Optional[str] = None
    client_ip: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @classmethod
    def for_request(cls, request, event_type: str, **kwargs) -> 'AuditRecord':
        """Build a record with caller identity and request correlation filled in."""
        access = getattr(request, 'access_context', None)
        forwarded = request.META.get('HTTP_X_FORWARDED_FOR')

        return cls(
            event_type=event_type,
            user_id=access.user_id if access else None,
            tenant_id=access.tenant_id if access else None,
            request_id=(
                getattr(request, 'request_id', None)
                or request.META.get('HTTP_X_REQUEST_ID')
                or uuid.uuid4().hex[:8]
            ),
            # First address in the proxy chain is the client
            client_ip=forwarded.split(',')[0].strip() if forwarded else request.META.get('REMOTE_ADDR', 'unknown'),
            **kwargs
        )

    def emit(self):
        audit_logger.info(json.dumps(asdict(self), default=str))


def log_audit(event_type: str, tenant_id: Optional[str] = None, outcome: str = 'success',
              metadata: Optional[Dict[str, Any]] = None):
    """Log a system event that has no HTTP request behind it."""
    AuditRecord(event_type, outcome=outcome, tenant_id=tenant_id, metadata=metadata or {}).emit()


def log_audit_from_request(request, event_type: str, outcome: str = 'success',
                           metadata: Optional[Dict[str, Any]] = None):
    AuditRecord.for_request(request, event_type, outcome=outcome, metadata=metadata or {}).emit()



# Convenience functions for common events

def audit_document_uploaded(request, document_id: str, filename: str, size_bytes: int, checksum: str):
    """Log successful document upload."""
    log_audit_from_request(
        request,
        AuditEvent.DOCUMENT_UPLOADED,
        metadata={
            'document_id': document_id,
            'filename': filename,
            'size_bytes': size_bytes,
            'checksum': checksum[:16] + '...',  # Truncate for brevity
        }
    )


def audit_document_downloaded(request, document_id: str):
    log_audit_from_request(request, AuditEvent.DOCUMENT_DOWNLOADED, metadata={'document_id': document_id})


def audit_document_deleted(request, document_id: str):
    log_audit_from_request(request, AuditEvent.DOCUMENT_DELETED, metadata={'document_id': document_id})


def audit_reprocess_requested(request, document_id: str, accepted: bool):
    log_audit_from_request(
        request,
        AuditEvent.DOCUMENT_REPROCESS_REQUESTED,
        outcome='success' if accepted else 'failure',
        metadata={'document_id': document_id},
    )


def audit_semantic_search(request, query_length: int, result_count: int, min_similarity: float):
    """Log a semantic search (without the query text)."""
    log_audit_from_request(
        request,
        AuditEvent.SEARCH_SEMANTIC,
        metadata={
            'query_length': query_length,
            'result_count': result_count,
            'min_similarity': min_similarity,
        }
    )


def audit_processing_completed(document_id: str, tenant_id: str, degraded: bool):
    """Log a document reaching COMPLETED."""
    log_audit(
        AuditEvent.PROCESSING_COMPLETED,
        tenant_id=tenant_id,
        metadata={
            'document_id': document_id,
            'degraded': degraded,
        }
    )


def audit_processing_failed(document_id: str, tenant_id: str, error: str):
    """Log a document reaching ERROR."""
    log_audit(
        AuditEvent.PROCESSING_FAILED,
        tenant_id=tenant_id,
        outcome='failure',
        metadata={
            'document_id': document_id,
            'error': error[:200],  # Truncate error message
        }
    )


def audit_auth_rejected(request, reason: str):
    """Log failed token validation."""
    log_audit_from_request(
        request,
        AuditEvent.AUTH_TOKEN_REJECTED,
        outcome='failure',
        metadata={'reason': reason}
    )


def audit_forbidden(request, document_id: str):
    """Log a denied confidential document access."""
    log_audit_from_request(
        request,
        AuditEvent.AUTH_FORBIDDEN,
        outcome='failure',
        metadata={'document_id': document_id}
    )
