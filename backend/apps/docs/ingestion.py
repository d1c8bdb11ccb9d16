"""
Document ingestion: validate, store the file, record metadata, schedule processing.

The upload request blocks until both the storage write and the metadata
insert have committed. If the insert fails after the file was stored,
the stored object is deleted once so no orphaned file remains, and the
original error is raised.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .errors import ValidationError
from .keys import generate_storage_key, sanitize_filename
from .models import Document, DocumentType

logger = logging.getLogger(__name__)


@dataclass
class UploadPayload:
    """Raw file received from a client."""
    content: bytes
    original_filename: str
    mime_type: str


@dataclass
class UploadMetadata:
    """Caller-supplied document metadata."""
    title: Optional[str] = None
    description: str = ''
    document_type: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    is_confidential: bool = False
    custom_metadata: Dict[str, str] = field(default_factory=dict)


class IngestionCoordinator:
    """Coordinates storage and repository for a new upload."""

    def __init__(
        self,
        storage,
        repository,
        dispatcher,
        max_upload_size: int,
        allowed_mime_types: Iterable[str],
    ):
        self.storage = storage
        self.repository = repository
        self.dispatcher = dispatcher
        self.max_upload_size = max_upload_size
        self.allowed_mime_types = {m.lower() for m in allowed_mime_types}

    def validate(self, tenant_id: str, uploader_id: str, upload: UploadPayload, metadata: UploadMetadata) -> None:
        """
        Reject uploads that must never reach storage.

        Raises:
            ValidationError: On missing tenant/uploader, empty or oversized
                content, disallowed MIME type or unknown document type
        """
        if not tenant_id:
            raise ValidationError("Tenant is required")
        if not uploader_id:
            raise ValidationError("Uploader is required")
        if not upload.content:
            raise ValidationError("File is empty")
        if len(upload.content) > self.max_upload_size:
            max_mb = self.max_upload_size // (1024 * 1024)
            raise ValidationError(f"File too large. Maximum size is {max_mb}MB")

        mime_type = (upload.mime_type or '').split(';')[0].strip().lower()
        if mime_type not in self.allowed_mime_types:
            raise ValidationError(f"File type not allowed: {upload.mime_type or 'unknown'}")

        if metadata.document_type and metadata.document_type not in DocumentType.values:
            raise ValidationError(f"Unknown document type: {metadata.document_type}")

        if metadata.title is not None and len(metadata.title) > 500:
            raise ValidationError("Title must be at most 500 characters")

    def ingest(
        self,
        tenant_id: str,
        uploader_id: str,
        upload: UploadPayload,
        metadata: Optional[UploadMetadata] = None,
    ) -> Document:
        """
        Ingest an upload and schedule its processing.

        Args:
            tenant_id: Owning tenant
            uploader_id: User performing the upload
            upload: File content, filename and MIME type
            metadata: Title, description, tags, confidentiality, custom metadata

        Returns:
            The created Document in PENDING state

        Raises:
            ValidationError: If the upload is rejected
            StorageError: If the file could not be stored (nothing is created)
            RepositoryError: If the metadata insert failed (the file is removed)
        """
        metadata = metadata or UploadMetadata()
        self.validate(tenant_id, uploader_id, upload, metadata)

        document_type = metadata.document_type or DocumentType.OTHER
        filename = sanitize_filename(upload.original_filename)
        mime_type = upload.mime_type.split(';')[0].strip().lower()
        storage_key = generate_storage_key(tenant_id, document_type, filename)

        stored = self.storage.upload(upload.content, storage_key, mime_type)

        title = (metadata.title or '').strip() or filename
        fields = {
            'tenant_id': tenant_id,
            'filename': filename,
            'original_filename': upload.original_filename or filename,
            'mime_type': mime_type,
            'file_size': stored.size,
            'storage_key': stored.storage_key,
            'checksum': stored.checksum,
            'document_type': document_type,
            'title': title,
            'description': metadata.description or '',
            'tags': metadata.tags,
            'is_confidential': metadata.is_confidential,
            'custom_metadata': {str(k): str(v) for k, v in (metadata.custom_metadata or {}).items()},
            'uploaded_by': uploader_id,
        }

        try:
            document = self.repository.create(fields)
        except Exception:
            logger.error(f"Metadata insert failed, removing stored object {stored.storage_key}")
            self._rollback_storage(stored.storage_key)
            raise

        logger.info(f"Document ingested: {document.id} ({filename}, {stored.size} bytes) for tenant {tenant_id}")

        self.dispatcher.submit(document.id, tenant_id)
        return document

    def _rollback_storage(self, storage_key: str) -> None:
        """Single compensating delete; its own failure must not mask the original error."""
        try:
            self.storage.delete(storage_key)
        except Exception:
            logger.exception(f"Compensating delete failed, orphaned object left at {storage_key}")
