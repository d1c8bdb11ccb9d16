"""
Document, tag and analysis history models.

Documents are tenant-scoped: tenant_id is written once at creation and
every read path filters on it. Rows are soft-deleted so that analysis
history and audit trails stay intact.
"""
import uuid
from django.db import models


class ProcessingStatus(models.TextChoices):
    """Status of a document in the AI processing pipeline."""
    PENDING = 'PENDING', 'Pending'
    PROCESSING = 'PROCESSING', 'Processing'
    COMPLETED = 'COMPLETED', 'Completed'
    ERROR = 'ERROR', 'Error'


class DocumentType(models.TextChoices):
    """Business category of a document."""
    CONTRACT = 'CONTRACT', 'Contract'
    AGREEMENT = 'AGREEMENT', 'Agreement'
    POLICY = 'POLICY', 'Policy'
    REPORT = 'REPORT', 'Report'
    PRESENTATION = 'PRESENTATION', 'Presentation'
    CORRESPONDENCE = 'CORRESPONDENCE', 'Correspondence'
    INVOICE = 'INVOICE', 'Invoice'
    OTHER = 'OTHER', 'Other'


class Document(models.Model):
    """
    An uploaded document and its processing state.

    The file itself lives in the storage backend under storage_key;
    this row tracks metadata, processing status and the AI analysis.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    tenant_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Owning tenant, immutable after creation"
    )

    # File metadata
    filename = models.CharField(
        max_length=255,
        help_text="Sanitized filename used in the storage key"
    )
    original_filename = models.CharField(
        max_length=255,
        help_text="Filename as uploaded by the client"
    )
    mime_type = models.CharField(max_length=150)
    file_size = models.PositiveBigIntegerField(help_text="File size in bytes")

    # Storage location
    storage_key = models.CharField(
        max_length=700,
        unique=True,
        help_text="Key in the storage backend"
    )
    checksum = models.CharField(
        max_length=64,
        help_text="SHA-256 hex digest computed at write time"
    )

    # Business metadata
    document_type = models.CharField(
        max_length=20,
        choices=DocumentType.choices,
        default=DocumentType.OTHER,
        db_index=True,
    )
    title = models.CharField(max_length=500)
    description = models.TextField(blank=True, default='')
    is_confidential = models.BooleanField(default=False, db_index=True)
    custom_metadata = models.JSONField(default=dict, blank=True)
    uploaded_by = models.CharField(
        max_length=255,
        help_text="User ID of the uploader (sub claim)"
    )

    # Processing state
    processing_status = models.CharField(
        max_length=20,
        choices=ProcessingStatus.choices,
        default=ProcessingStatus.PENDING,
        db_index=True,
    )
    processing_error = models.TextField(null=True, blank=True)
    ai_processed = models.BooleanField(default=False)
    ai_metadata = models.JSONField(null=True, blank=True)

    deleted = models.BooleanField(default=False, db_index=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'documents'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['tenant_id', 'created_at'], name='documents_tenant__0c4d2e_idx'),
            models.Index(fields=['tenant_id', 'processing_status', 'created_at'], name='documents_tenant__7a91b3_idx'),
        ]

    def __str__(self):
        return f"{self.title} ({self.processing_status})"

    @property
    def tag_names(self):
        return sorted(tag.name for tag in self.tags.all())

    def to_dict(self) -> dict:
        """Serialize for API responses (camelCase keys)."""
        return {
            'id': str(self.id),
            'tenantId': self.tenant_id,
            'filename': self.filename,
            'originalFilename': self.original_filename,
            'mimeType': self.mime_type,
            'fileSize': self.file_size,
            'checksum': self.checksum,
            'documentType': self.document_type,
            'title': self.title,
            'description': self.description,
            'tags': self.tag_names,
            'isConfidential': self.is_confidential,
            'customMetadata': self.custom_metadata,
            'uploadedBy': self.uploaded_by,
            'processingStatus': self.processing_status,
            'processingError': self.processing_error,
            'aiProcessed': self.ai_processed,
            'aiMetadata': self.ai_metadata,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }


class DocumentTag(models.Model):
    """A free-form tag attached to a document."""
    document = models.ForeignKey(
        Document,
        on_delete=models.CASCADE,
        related_name='tags',
    )
    name = models.CharField(max_length=100, db_index=True)

    class Meta:
        db_table = 'document_tags'
        constraints = [
            models.UniqueConstraint(
                fields=['document', 'name'],
                name='unique_document_tag'
            )
        ]

    def __str__(self):
        return self.name


class AnalysisVersion(models.Model):
    """
    One processing attempt for a document.

    Append-only: a row is written for every terminal outcome and is
    never updated or deleted afterwards.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    document = models.ForeignKey(
        Document,
        on_delete=models.CASCADE,
        related_name='analysis_versions',
    )
    tenant_id = models.CharField(max_length=255, db_index=True)
    analysis_type = models.CharField(max_length=50, default='document_analysis')
    status = models.CharField(max_length=20, choices=ProcessingStatus.choices)
    payload = models.JSONField(null=True, blank=True)
    error_message = models.TextField(null=True, blank=True)
    ai_model = models.CharField(max_length=100, blank=True, default='')

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'analysis_versions'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['document', 'created_at'], name='analysis_ve_documen_5e2f8a_idx'),
        ]

    def __str__(self):
        return f"Analysis {self.id} of {self.document_id} ({self.status})"

    def to_dict(self) -> dict:
        return {
            'id': str(self.id),
            'documentId': str(self.document_id),
            'analysisType': self.analysis_type,
            'status': self.status,
            'payload': self.payload,
            'errorMessage': self.error_message,
            'aiModel': self.ai_model,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }
