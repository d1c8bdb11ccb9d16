"""
Document service layer and component wiring.

Builds the component graph once (storage from an immutable StorageConfig,
repository, pipeline, dispatcher, ingestion, search) and exposes the
operations the views call. Views never touch storage or the ORM directly.
"""
import logging
import threading
from dataclasses import dataclass
from typing import List, Optional

from django.conf import settings

from apps.authn.access import AccessContext
from .errors import PermissionDeniedError, ValidationError
from .ingestion import IngestionCoordinator, UploadMetadata, UploadPayload
from .models import AnalysisVersion, Document, ProcessingStatus
from .repository import DocumentFilters, DocumentPage, DocumentRepository
from .storage import StorageBackend, StorageConfig, build_storage, get_storage_info

logger = logging.getLogger(__name__)


@dataclass
class DownloadedFile:
    content: bytes
    mime_type: str
    filename: str


class DocumentService:
    """Access-checked document operations."""

    def __init__(self, repository: DocumentRepository, storage: StorageBackend,
                 ingestion: IngestionCoordinator, dispatcher, pipeline, storage_config: StorageConfig):
        self.repository = repository
        self.storage = storage
        self.ingestion = ingestion
        self.dispatcher = dispatcher
        self.pipeline = pipeline
        self.storage_config = storage_config

    def upload(self, access: AccessContext, upload: UploadPayload, metadata: UploadMetadata) -> Document:
        return self.ingestion.ingest(access.tenant_id, access.user_id, upload, metadata)

    def list_documents(self, access: AccessContext, filters: DocumentFilters) -> DocumentPage:
        return self.repository.get_all(access, filters)

    def get_document(self, access: AccessContext, document_id) -> Document:
        return self.repository.get_by_id(document_id, access)

    def update_document(self, access: AccessContext, document_id, fields: dict) -> Document:
        return self.repository.update(document_id, access, fields)

    def download(self, access: AccessContext, document_id) -> DownloadedFile:
        """
        Raw bytes of a document, subject to the same checks as get_document.

        Raises:
            NotFoundError: If the document or its stored object is missing
            PermissionDeniedError: If the document is confidential and not granted
        """
        document = self.repository.get_by_id(document_id, access)
        content = self.storage.download(document.storage_key)
        return DownloadedFile(
            content=content,
            mime_type=document.mime_type,
            filename=document.original_filename,
        )

    def get_analysis(self, access: AccessContext, document_id) -> dict:
        document = self.repository.get_by_id(document_id, access)
        return {
            'documentId': str(document.id),
            'processingStatus': document.processing_status,
            'aiProcessed': document.ai_processed,
            'aiMetadata': document.ai_metadata,
            'processingError': document.processing_error,
        }

    def get_versions(self, access: AccessContext, document_id) -> List[AnalysisVersion]:
        return self.repository.get_analysis_versions(document_id, access)

    def delete(self, access: AccessContext, document_id) -> bool:
        document = self.repository.get_by_id(document_id, access)
        return self.repository.soft_delete(document.id, access.tenant_id)

    def reprocess(self, access: AccessContext, document_id) -> bool:
        """
        Manually re-run processing for a document.

        Returns:
            True if the run was scheduled

        Raises:
            ValidationError: If the document is currently being processed
        """
        document = self.repository.get_by_id(document_id, access)
        if document.processing_status == ProcessingStatus.PROCESSING:
            raise ValidationError("Document is already being processed")
        retry = document.processing_status != ProcessingStatus.PENDING
        return self.dispatcher.submit(document.id, access.tenant_id, retry=retry)

    def process_pending(self, access: AccessContext, limit: int) -> int:
        """Synchronously process a batch of the caller's tenant (admins only)."""
        if not access.is_admin:
            raise PermissionDeniedError("Administrator role required")
        if limit < 1 or limit > 50:
            raise ValidationError("limit must be between 1 and 50")
        return self.pipeline.process_pending(access.tenant_id, limit)

    def storage_info(self, access: AccessContext) -> dict:
        if not access.is_admin:
            raise PermissionDeniedError("Administrator role required")
        return get_storage_info(self.storage_config)


# =============================================================================
# Component wiring
# =============================================================================

@dataclass
class Services:
    storage_config: StorageConfig
    storage: StorageBackend
    repository: DocumentRepository
    pipeline: object
    dispatcher: object
    ingestion: IngestionCoordinator
    documents: DocumentService
    search: object


def build_services(
    storage_config: Optional[StorageConfig] = None,
    storage: Optional[StorageBackend] = None,
    llm_client=None,
    embedding_client=None,
) -> Services:
    """Assemble every component from settings, with optional overrides."""
    from apps.indexing.analyzer import DocumentAnalyzer
    from apps.indexing.dispatcher import ProcessingDispatcher
    from apps.indexing.embedder import EmbeddingGenerator, build_embedding_client
    from apps.indexing.llm_client import build_llm_client
    from apps.indexing.pipeline import ProcessingPipeline
    from apps.search.engine import SemanticSearchEngine

    storage_config = storage_config or StorageConfig.from_settings()
    storage = storage or build_storage(storage_config)
    repository = DocumentRepository()
    embedding_client = embedding_client or build_embedding_client()

    pipeline = ProcessingPipeline(
        repository=repository,
        storage=storage,
        analyzer=DocumentAnalyzer(llm_client or build_llm_client()),
        embedding_generator=EmbeddingGenerator(embedding_client, repository),
    )
    dispatcher = ProcessingDispatcher(
        pipeline_factory=lambda: pipeline,
        max_workers=getattr(settings, 'PROCESSING_MAX_WORKERS', 2),
        queue_size=getattr(settings, 'PROCESSING_QUEUE_SIZE', 50),
    )
    ingestion = IngestionCoordinator(
        storage=storage,
        repository=repository,
        dispatcher=dispatcher,
        max_upload_size=settings.MAX_UPLOAD_SIZE,
        allowed_mime_types=settings.ALLOWED_CONTENT_TYPES,
    )
    search = SemanticSearchEngine(
        client=embedding_client,
        repository=repository,
        default_min_similarity=getattr(settings, 'SEARCH_MIN_SIMILARITY', 0.7),
        default_limit=getattr(settings, 'SEARCH_DEFAULT_LIMIT', 10),
    )
    documents = DocumentService(repository, storage, ingestion, dispatcher, pipeline, storage_config)

    return Services(
        storage_config=storage_config,
        storage=storage,
        repository=repository,
        pipeline=pipeline,
        dispatcher=dispatcher,
        ingestion=ingestion,
        documents=documents,
        search=search,
    )


# Singleton instance
_services: Optional[Services] = None
_services_lock = threading.Lock()


def get_services() -> Services:
    """Get the process-wide component graph (lazy initialization)."""
    global _services
    if _services is None:
        with _services_lock:
            if _services is None:
                _services = build_services()
    return _services


def set_services(services: Optional[Services]) -> None:
    """Replace the component graph. Useful for testing."""
    global _services
    with _services_lock:
        if _services is not None and _services is not services:
            _services.dispatcher.shutdown(wait=False)
        _services = services
