"""
Document processing pipeline.

For one document:
1. Claim it (PENDING -> PROCESSING, or ERROR/COMPLETED -> PROCESSING on retry)
2. Load the file from storage
3. Extract text
4. Run AI analysis (a failure degrades to a fallback result)
5. Record COMPLETED with the analysis in a single update, then append
   the analysis version (best effort)
6. Best effort: chunk the text and store embeddings

Every claimed document ends in COMPLETED or ERROR. Nothing raised inside
the pipeline may leave a document in PROCESSING, so the outer boundary
catches everything and records ERROR.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from django.conf import settings

from apps.authn.audit import audit_processing_completed, audit_processing_failed
from apps.docs.errors import StorageError
from apps.docs.models import Document, ProcessingStatus
from apps.docs.repository import DocumentRepository, ProcessingOutcome
from .analyzer import DocumentAnalyzer, fallback_analysis
from .chunker import chunk_text
from .embedder import EmbeddingCoverage, EmbeddingGenerator
from .extractor import ExtractionError, extract_text

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5


class ProcessingPipeline:
    """Drives a document from PENDING to a terminal status."""

    def __init__(
        self,
        repository: DocumentRepository,
        storage,
        analyzer: DocumentAnalyzer,
        embedding_generator: EmbeddingGenerator,
        extractor: Callable[[bytes, str], str] = extract_text,
        chunk_max_tokens: Optional[int] = None,
        chunk_overlap_tokens: Optional[int] = None,
    ):
        self.repository = repository
        self.storage = storage
        self.analyzer = analyzer
        self.embedding_generator = embedding_generator
        self.extractor = extractor
        self.chunk_max_tokens = chunk_max_tokens or getattr(settings, 'CHUNK_MAX_TOKENS', 1000)
        self.chunk_overlap_tokens = (
            chunk_overlap_tokens if chunk_overlap_tokens is not None
            else getattr(settings, 'CHUNK_OVERLAP_TOKENS', 100)
        )

    def process_document(self, document_id, tenant_id: str, retry: bool = False) -> bool:
        """
        Process one document.

        Args:
            document_id: Document to process
            tenant_id: Owning tenant
            retry: Allow re-processing a document in ERROR or COMPLETED

        Returns:
            True if the document reached COMPLETED
        """
        document = self.repository.claim_for_processing(document_id, tenant_id, allow_retry=retry)
        if document is None:
            existing = self.repository.get_for_processing(document_id, tenant_id)
            if existing is None:
                logger.warning(f"Document {document_id} not found for tenant {tenant_id}, skipping")
            else:
                logger.info(
                    f"Document {document_id} not claimable "
                    f"(status={existing.processing_status}), skipping"
                )
            return False

        logger.info(f"Processing document {document.id} ({document.original_filename})")

        try:
            return self._run(document)
        except Exception as e:
            logger.exception(f"Unexpected error processing document {document.id}")
            self._fail(document, f"Unexpected processing error: {e}")
            return False

    def _run(self, document: Document) -> bool:
        try:
            content = self.storage.download(document.storage_key)
        except StorageError as e:
            self._fail(document, f"File load failed: {e}")
            return False

        try:
            text = self.extractor(content, document.mime_type)
        except ExtractionError as e:
            self._fail(document, f"Text extraction failed: {e}")
            return False

        if not text or not text.strip():
            self._fail(document, "Text extraction returned empty result")
            return False

        logger.info(f"Extracted {len(text)} characters from {document.original_filename}")

        degraded_error = None
        try:
            analysis = self.analyzer.analyze(text, document.title, document.document_type)
        except Exception as e:
            # Analysis is optional for a usable document: keep it, record why
            logger.error(f"AI analysis failed for {document.id}: {e}")
            analysis = fallback_analysis()
            degraded_error = f"AI analysis failed: {e}"

        metadata = analysis.to_dict()
        metadata['model'] = analysis.model or self.analyzer.model_name
        metadata['textLength'] = len(text)
        metadata['processedAt'] = datetime.now(timezone.utc).isoformat()

        recorded = self.repository.update_after_processing(
            document.id,
            document.tenant_id,
            ProcessingOutcome(
                status=ProcessingStatus.COMPLETED,
                ai_processed=True,
                ai_metadata=metadata,
                error=degraded_error,
            ),
        )
        if not recorded:
            return False

        # COMPLETED is committed; history and indexing are best effort
        try:
            self.repository.create_analysis_version(
                document.id,
                document.tenant_id,
                status=ProcessingStatus.COMPLETED,
                payload=metadata,
                error_message=degraded_error,
                ai_model=metadata['model'],
            )
            audit_processing_completed(str(document.id), document.tenant_id, degraded=degraded_error is not None)
        except Exception:
            logger.exception(f"Could not record analysis version for {document.id}")
        logger.info(f"Document {document.id} processed successfully")

        self._index(document, text)
        return True

    def _index(self, document: Document, text: str) -> Optional[EmbeddingCoverage]:
        """Chunk and embed. Failures only reduce search recall."""
        try:
            removed = self.repository.delete_embeddings(document.id)
            if removed:
                logger.info(f"Removed {removed} previous embeddings for {document.id}")

            chunks = chunk_text(
                text,
                max_tokens=self.chunk_max_tokens,
                overlap_tokens=self.chunk_overlap_tokens,
            )
            return self.embedding_generator.generate(document.id, chunks)
        except Exception as e:
            logger.exception(f"Embedding generation failed for {document.id}: {e}")
            return None

    def _fail(self, document: Document, message: str) -> None:
        """Record ERROR. A failure here is logged; there is nothing left to fall back to."""
        logger.error(f"Processing failed for {document.id}: {message}")
        try:
            recorded = self.repository.update_after_processing(
                document.id,
                document.tenant_id,
                ProcessingOutcome(status=ProcessingStatus.ERROR, error=message),
            )
            if not recorded:
                return
            self.repository.create_analysis_version(
                document.id,
                document.tenant_id,
                status=ProcessingStatus.ERROR,
                error_message=message,
                ai_model=self.analyzer.model_name,
            )
        except Exception:
            logger.exception(f"Could not record ERROR status for {document.id}")
        audit_processing_failed(str(document.id), document.tenant_id, message)

    def process_pending(self, tenant_id: str, limit: int = DEFAULT_BATCH_SIZE) -> int:
        """
        Process the oldest PENDING documents of a tenant.

        One document's failure never aborts the batch.

        Returns:
            Number of documents that reached COMPLETED
        """
        pending = self.repository.get_pending(tenant_id, limit)
        logger.info(f"Processing {len(pending)} pending documents for tenant {tenant_id}")

        succeeded = 0
        for document in pending:
            try:
                if self.process_document(document.id, tenant_id):
                    succeeded += 1
            except Exception:
                # claim_for_processing itself can fail (database down)
                logger.exception(f"Batch processing failed for document {document.id}")

        logger.info(f"Processed {succeeded}/{len(pending)} pending documents for tenant {tenant_id}")
        return succeeded
