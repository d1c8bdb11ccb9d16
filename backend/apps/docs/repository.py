"""
Document repository - tenant-scoped persistence for documents,
embeddings and analysis history.

All user-facing reads take an AccessContext and apply two rules:
- tenant isolation: only rows with the caller's tenant_id are visible
- confidentiality: confidential documents are visible only to
  admin-equivalent roles or when the id is in the caller's grants

Soft-deleted documents are excluded from every read path. Status
changes go through conditional UPDATEs so that concurrent writers
cannot move a document backwards along the state machine.
"""
import logging
import re
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from django.db import DatabaseError, transaction
from django.db.models import Q
from django.utils import timezone

from apps.authn.access import AccessContext
from .errors import NotFoundError, PermissionDeniedError, RepositoryError, ValidationError
from .models import AnalysisVersion, Document, DocumentTag, DocumentType, ProcessingStatus

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200
SEARCH_OVERSAMPLE = 3

REQUIRED_FIELDS = (
    'tenant_id',
    'filename',
    'original_filename',
    'mime_type',
    'storage_key',
    'checksum',
    'uploaded_by',
    'title',
)

UPDATABLE_FIELDS = {
    'title',
    'description',
    'document_type',
    'tags',
    'is_confidential',
    'custom_metadata',
}

SORTABLE_FIELDS = {
    'created_at',
    'updated_at',
    'title',
    'filename',
    'file_size',
    'document_type',
    'processing_status',
}

# Allowed processing status moves; ERROR/COMPLETED -> PROCESSING is manual retry
STATUS_TRANSITIONS = {
    ProcessingStatus.PENDING: {ProcessingStatus.PROCESSING},
    ProcessingStatus.PROCESSING: {ProcessingStatus.COMPLETED, ProcessingStatus.ERROR},
    ProcessingStatus.ERROR: {ProcessingStatus.PROCESSING},
    ProcessingStatus.COMPLETED: {ProcessingStatus.PROCESSING},
}

RETRYABLE_STATUSES = (ProcessingStatus.ERROR, ProcessingStatus.COMPLETED)

_CAMEL_BOUNDARY = re.compile(r'(?<!^)(?=[A-Z])')


@dataclass
class DocumentFilters:
    """Filters for listing documents."""
    document_type: Optional[str] = None
    search: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    is_confidential: Optional[bool] = None
    limit: int = DEFAULT_PAGE_SIZE
    offset: int = 0
    sort_by: str = 'created_at'
    sort_order: str = 'desc'


@dataclass
class DocumentPage:
    """A page of documents plus the unpaginated total."""
    documents: List[Document]
    total: int


@dataclass
class ProcessingOutcome:
    """Terminal result of one processing attempt."""
    status: str
    ai_processed: bool = False
    ai_metadata: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


@dataclass
class ChunkHit:
    """One embedding row that matched a semantic query."""
    document: Document
    chunk_index: int
    text_chunk: str
    similarity: float


@dataclass
class SearchHit:
    """Best matching chunk for a document."""
    document: Document
    similarity: float
    chunk_index: int
    text_chunk: str

    def to_dict(self) -> dict:
        data = self.document.to_dict()
        data['similarity'] = round(self.similarity, 4)
        data['matchedChunk'] = {
            'chunkIndex': self.chunk_index,
            'text': self.text_chunk,
        }
        return data


def rank_chunk_hits(hits: Iterable[ChunkHit], min_similarity: float, limit: int) -> List[SearchHit]:
    """
    Collapse chunk-level matches to one result per document.

    Drops chunks below min_similarity, keeps the best chunk for each
    document, sorts by similarity descending and truncates to limit.
    """
    best: Dict[Any, ChunkHit] = {}
    for hit in hits:
        if hit.similarity < min_similarity:
            continue
        current = best.get(hit.document.id)
        if current is None or hit.similarity > current.similarity:
            best[hit.document.id] = hit

    ranked = sorted(best.values(), key=lambda h: h.similarity, reverse=True)
    return [
        SearchHit(
            document=h.document,
            similarity=h.similarity,
            chunk_index=h.chunk_index,
            text_chunk=h.text_chunk,
        )
        for h in ranked[:limit]
    ]


def normalize_sort_field(sort_by: Optional[str]) -> str:
    """Accept snake_case or camelCase names; unknown fields fall back to created_at."""
    if not sort_by:
        return 'created_at'
    name = _CAMEL_BOUNDARY.sub('_', sort_by.strip()).lower()
    return name if name in SORTABLE_FIELDS else 'created_at'


def _as_uuid(value) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def _clean_tags(tags: Optional[Iterable[str]]) -> List[str]:
    cleaned = []
    for tag in tags or []:
        name = str(tag).strip()[:100]
        if name and name not in cleaned:
            cleaned.append(name)
    return cleaned


@contextmanager
def _db_errors(operation: str, **context):
    """Wrap database failures with the operation and identifiers."""
    try:
        yield
    except DatabaseError as e:
        logger.error(f"Repository {operation} failed ({context}): {e}")
        raise RepositoryError(operation, str(e), context) from e


def _visibility_filter(access: AccessContext, prefix: str = '') -> Q:
    """Q object restricting confidential rows to admins and explicit grants."""
    if access.is_admin:
        return Q()
    granted = [
        doc_id for doc_id in (_as_uuid(v) for v in access.accessible_confidential_document_ids)
        if doc_id is not None
    ]
    return Q(**{f'{prefix}is_confidential': False}) | Q(**{f'{prefix}id__in': granted})


class DocumentRepository:
    """Persistence operations for documents and their derived data."""

    # =========================================================================
    # Documents
    # =========================================================================

    def create(self, fields: Dict[str, Any]) -> Document:
        """
        Insert a new document in PENDING state.

        Args:
            fields: Document attributes (snake_case); 'tags' may be a list

        Returns:
            The created Document

        Raises:
            ValidationError: If tenant_id or a required field is missing
            RepositoryError: If the insert fails
        """
        missing = [name for name in REQUIRED_FIELDS if not fields.get(name)]
        if missing:
            raise ValidationError(f"Missing required document fields: {', '.join(missing)}")

        try:
            file_size = int(fields['file_size'])
        except (KeyError, TypeError, ValueError):
            file_size = -1
        if file_size < 0:
            raise ValidationError("file_size must be a non-negative integer")

        document_type = fields.get('document_type') or DocumentType.OTHER
        if document_type not in DocumentType.values:
            raise ValidationError(f"Unknown document type: {document_type}")

        tags = _clean_tags(fields.get('tags'))

        with _db_errors('create', tenant_id=fields['tenant_id'], storage_key=fields['storage_key']):
            with transaction.atomic():
                document = Document.objects.create(
                    tenant_id=fields['tenant_id'],
                    filename=fields['filename'],
                    original_filename=fields['original_filename'],
                    mime_type=fields['mime_type'],
                    file_size=file_size,
                    storage_key=fields['storage_key'],
                    checksum=fields['checksum'],
                    document_type=document_type,
                    title=fields['title'],
                    description=fields.get('description') or '',
                    is_confidential=bool(fields.get('is_confidential', False)),
                    custom_metadata=fields.get('custom_metadata') or {},
                    uploaded_by=fields['uploaded_by'],
                    processing_status=ProcessingStatus.PENDING,
                )
                DocumentTag.objects.bulk_create(
                    [DocumentTag(document=document, name=name) for name in tags]
                )

        logger.info(f"Document created: {document.id} (tenant={document.tenant_id}, key={document.storage_key})")
        return document

    def get_by_id(self, document_id, access: AccessContext) -> Document:
        """
        Fetch a document the caller is allowed to see.

        Raises:
            NotFoundError: If the document is absent, deleted or in another tenant
            PermissionDeniedError: If it is confidential and not granted
        """
        doc_uuid = _as_uuid(document_id)
        if doc_uuid is None:
            raise NotFoundError(f"Document not found: {document_id}")

        with _db_errors('get_by_id', document_id=document_id, tenant_id=access.tenant_id):
            document = (
                Document.objects.prefetch_related('tags')
                .filter(id=doc_uuid, tenant_id=access.tenant_id, deleted=False)
                .first()
            )

        if document is None:
            raise NotFoundError(f"Document not found: {document_id}")

        if not access.can_view(document):
            logger.warning(
                f"User {access.user_id} denied access to confidential document {document_id}"
            )
            raise PermissionDeniedError("You do not have access to this document")

        return document

    def get_all(self, access: AccessContext, filters: Optional[DocumentFilters] = None) -> DocumentPage:
        """List the caller's visible documents with filtering, sorting and paging."""
        filters = filters or DocumentFilters()

        qs = Document.objects.filter(tenant_id=access.tenant_id, deleted=False)
        qs = qs.filter(_visibility_filter(access))

        if filters.document_type:
            qs = qs.filter(document_type=filters.document_type)

        if filters.search and filters.search.strip():
            term = filters.search.strip()
            qs = qs.filter(
                Q(title__icontains=term)
                | Q(filename__icontains=term)
                | Q(description__icontains=term)
            )

        # One join per tag: a document must carry all of them
        for tag in _clean_tags(filters.tags):
            qs = qs.filter(tags__name=tag)

        if filters.is_confidential is not None:
            qs = qs.filter(is_confidential=filters.is_confidential)

        sort_field = normalize_sort_field(filters.sort_by)
        prefix = '' if (filters.sort_order or '').lower() == 'asc' else '-'
        qs = qs.order_by(f'{prefix}{sort_field}', f'{prefix}id')

        limit = max(1, min(int(filters.limit or DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE))
        offset = max(0, int(filters.offset or 0))

        with _db_errors('get_all', tenant_id=access.tenant_id):
            total = qs.count()
            documents = list(qs.prefetch_related('tags')[offset:offset + limit])

        return DocumentPage(documents=documents, total=total)

    def get_for_processing(self, document_id, tenant_id: str) -> Optional[Document]:
        """System read for the pipeline: tenant-scoped, no confidentiality filter."""
        doc_uuid = _as_uuid(document_id)
        if doc_uuid is None:
            return None
        with _db_errors('get_for_processing', document_id=document_id, tenant_id=tenant_id):
            return Document.objects.filter(id=doc_uuid, tenant_id=tenant_id, deleted=False).first()

    def get_pending(self, tenant_id: str, limit: int = 5) -> List[Document]:
        """Oldest PENDING documents for a tenant."""
        with _db_errors('get_pending', tenant_id=tenant_id):
            return list(
                Document.objects.filter(
                    tenant_id=tenant_id,
                    deleted=False,
                    processing_status=ProcessingStatus.PENDING,
                ).order_by('created_at', 'id')[:limit]
            )

    def pending_tenant_ids(self) -> List[str]:
        """Tenants that currently have PENDING documents."""
        with _db_errors('pending_tenant_ids'):
            return list(
                Document.objects.filter(deleted=False, processing_status=ProcessingStatus.PENDING)
                .order_by('tenant_id')
                .values_list('tenant_id', flat=True)
                .distinct()
            )

    # =========================================================================
    # Processing state
    # =========================================================================

    def claim_for_processing(self, document_id, tenant_id: str, allow_retry: bool = False) -> Optional[Document]:
        """
        Atomically move a document into PROCESSING.

        The UPDATE only matches rows still in a claimable status, so two
        concurrent triggers cannot both win.

        Returns:
            The claimed Document, or None if it is absent or already claimed
        """
        doc_uuid = _as_uuid(document_id)
        if doc_uuid is None:
            return None

        claimable = [ProcessingStatus.PENDING]
        if allow_retry:
            claimable.extend(RETRYABLE_STATUSES)

        with _db_errors('claim_for_processing', document_id=document_id, tenant_id=tenant_id):
            updated = Document.objects.filter(
                id=doc_uuid,
                tenant_id=tenant_id,
                deleted=False,
                processing_status__in=claimable,
            ).update(
                processing_status=ProcessingStatus.PROCESSING,
                processing_error=None,
                updated_at=timezone.now(),
            )
            if not updated:
                return None
            return Document.objects.get(id=doc_uuid)

    def update_processing_status(self, document_id, tenant_id: str, status: str) -> Document:
        """
        Move a document to a new status along the allowed transitions.

        Raises:
            NotFoundError: If the document does not exist
            ValidationError: If the transition is not allowed
        """
        document = self.get_for_processing(document_id, tenant_id)
        if document is None:
            raise NotFoundError(f"Document not found: {document_id}")

        current = document.processing_status
        if status not in STATUS_TRANSITIONS.get(current, set()):
            raise ValidationError(f"Illegal status transition {current} -> {status}")

        with _db_errors('update_processing_status', document_id=document_id, tenant_id=tenant_id):
            updated = Document.objects.filter(
                id=document.id,
                tenant_id=tenant_id,
                processing_status=current,
            ).update(processing_status=status, updated_at=timezone.now())

        if not updated:
            raise ValidationError(f"Document {document_id} changed status concurrently")

        document.refresh_from_db()
        return document

    def update_after_processing(self, document_id, tenant_id: str, outcome: ProcessingOutcome) -> bool:
        """
        Record the terminal outcome of a processing attempt in one UPDATE.

        Only applies while the document is PROCESSING.

        Returns:
            True if the row was updated
        """
        if outcome.status not in (ProcessingStatus.COMPLETED, ProcessingStatus.ERROR):
            raise ValidationError(f"Not a terminal status: {outcome.status}")

        with _db_errors('update_after_processing', document_id=document_id, tenant_id=tenant_id):
            updated = Document.objects.filter(
                id=document_id,
                tenant_id=tenant_id,
                processing_status=ProcessingStatus.PROCESSING,
            ).update(
                processing_status=outcome.status,
                processing_error=outcome.error,
                ai_processed=outcome.ai_processed,
                ai_metadata=outcome.ai_metadata,
                updated_at=timezone.now(),
            )

        if not updated:
            logger.warning(f"Document {document_id} was not PROCESSING; outcome {outcome.status} not recorded")
        return bool(updated)

    def update_ai_metadata(self, document_id, tenant_id: str, metadata: Dict[str, Any]) -> bool:
        """Store an analysis result and mark the document COMPLETED."""
        with _db_errors('update_ai_metadata', document_id=document_id, tenant_id=tenant_id):
            updated = Document.objects.filter(
                id=document_id,
                tenant_id=tenant_id,
                deleted=False,
                processing_status__in=[ProcessingStatus.PROCESSING, ProcessingStatus.COMPLETED],
            ).update(
                ai_processed=True,
                ai_metadata=metadata,
                processing_status=ProcessingStatus.COMPLETED,
                updated_at=timezone.now(),
            )
        return bool(updated)

    def soft_delete(self, document_id, tenant_id: str) -> bool:
        """Hide a document from every read path. Returns False if nothing matched."""
        with _db_errors('soft_delete', document_id=document_id, tenant_id=tenant_id):
            updated = Document.objects.filter(
                id=document_id, tenant_id=tenant_id, deleted=False
            ).update(deleted=True, updated_at=timezone.now())
        if updated:
            logger.info(f"Document soft-deleted: {document_id}")
        return bool(updated)

    def update(self, document_id, access: AccessContext, fields: Dict[str, Any]) -> Document:
        """
        Change a visible document's descriptive metadata.

        Only UPDATABLE_FIELDS may be set; tenant, storage and processing
        columns are never written here. Tags, when given, replace the
        existing set in the same transaction.

        Raises:
            ValidationError: If a field is not updatable or has a bad value
            NotFoundError / PermissionDeniedError: As for get_by_id
        """
        unknown = sorted(set(fields) - UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(unknown)}")

        document = self.get_by_id(document_id, access)

        changes: Dict[str, Any] = {}
        if 'title' in fields:
            title = str(fields['title'] or '').strip()
            if not title or len(title) > 500:
                raise ValidationError("title must be between 1 and 500 characters")
            changes['title'] = title
        if 'description' in fields:
            changes['description'] = str(fields['description'] or '')
        if 'document_type' in fields:
            if fields['document_type'] not in DocumentType.values:
                raise ValidationError(f"Unknown document type: {fields['document_type']}")
            changes['document_type'] = fields['document_type']
        if 'is_confidential' in fields:
            if not isinstance(fields['is_confidential'], bool):
                raise ValidationError("is_confidential must be a boolean")
            changes['is_confidential'] = fields['is_confidential']
        if 'custom_metadata' in fields:
            if not isinstance(fields['custom_metadata'], dict):
                raise ValidationError("custom_metadata must be an object")
            changes['custom_metadata'] = {str(k): str(v) for k, v in fields['custom_metadata'].items()}

        tags = None
        if 'tags' in fields:
            if not isinstance(fields['tags'], (list, tuple)):
                raise ValidationError("tags must be a list")
            tags = _clean_tags(fields['tags'])

        with _db_errors('update', document_id=document_id, tenant_id=access.tenant_id):
            with transaction.atomic():
                if changes:
                    Document.objects.filter(
                        id=document.id, tenant_id=access.tenant_id, deleted=False
                    ).update(updated_at=timezone.now(), **changes)
                if tags is not None:
                    DocumentTag.objects.filter(document=document).delete()
                    DocumentTag.objects.bulk_create(
                        [DocumentTag(document=document, name=name) for name in tags]
                    )

        logger.info(f"Document updated: {document.id} ({', '.join(sorted(fields))})")
        return self.get_by_id(document.id, access)

    # =========================================================================
    # Embeddings
    # =========================================================================

    def store_embedding(
        self,
        document_id,
        chunk_index: int,
        text_chunk: str,
        embedding: List[float],
        embedding_model: str,
    ):
        """Append one embedding row. No de-duplication happens here."""
        from apps.indexing.models import DocumentEmbedding

        with _db_errors('store_embedding', document_id=document_id, chunk_index=chunk_index):
            return DocumentEmbedding.objects.create(
                document_id=document_id,
                chunk_index=chunk_index,
                text_chunk=text_chunk,
                embedding=embedding,
                embedding_model=embedding_model,
            )

    def delete_embeddings(self, document_id) -> int:
        """Remove all embedding rows of a document. Returns the count removed."""
        from apps.indexing.models import DocumentEmbedding

        with _db_errors('delete_embeddings', document_id=document_id):
            deleted, _ = DocumentEmbedding.objects.filter(document_id=document_id).delete()
        return deleted

    def count_embeddings(self, document_id) -> int:
        from apps.indexing.models import DocumentEmbedding

        with _db_errors('count_embeddings', document_id=document_id):
            return DocumentEmbedding.objects.filter(document_id=document_id).count()

    def _search_candidates(self, access: AccessContext, document_type: Optional[str] = None):
        """Embedding rows of the caller's live, visible documents."""
        from apps.indexing.models import DocumentEmbedding

        qs = DocumentEmbedding.objects.filter(
            document__tenant_id=access.tenant_id,
            document__deleted=False,
        ).filter(_visibility_filter(access, prefix='document__'))

        if document_type:
            qs = qs.filter(document__document_type=document_type)
        return qs

    def semantic_search(
        self,
        access: AccessContext,
        query_embedding: List[float],
        min_similarity: float,
        limit: int,
        document_type: Optional[str] = None,
    ) -> List[SearchHit]:
        """
        Rank the caller's visible documents by cosine similarity.

        Fetches up to SEARCH_OVERSAMPLE * limit chunks above the threshold
        (nearest first), then collapses them to one hit per document.
        """
        from pgvector.django import CosineDistance

        qs = self._search_candidates(access, document_type)

        # cosine distance = 1 - cosine similarity
        qs = (
            qs.annotate(distance=CosineDistance('embedding', query_embedding))
            .filter(distance__lte=1 - min_similarity)
            .select_related('document')
            .prefetch_related('document__tags')
            .order_by('distance')[:limit * SEARCH_OVERSAMPLE]
        )

        with _db_errors('semantic_search', tenant_id=access.tenant_id):
            hits = [
                ChunkHit(
                    document=row.document,
                    chunk_index=row.chunk_index,
                    text_chunk=row.text_chunk,
                    similarity=1 - float(row.distance),
                )
                for row in qs
            ]

        return rank_chunk_hits(hits, min_similarity, limit)

    # =========================================================================
    # Analysis history
    # =========================================================================

    def create_analysis_version(
        self,
        document_id,
        tenant_id: str,
        status: str,
        payload: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
        ai_model: str = '',
        analysis_type: str = 'document_analysis',
    ) -> AnalysisVersion:
        """Append one entry to a document's analysis history."""
        with _db_errors('create_analysis_version', document_id=document_id, tenant_id=tenant_id):
            return AnalysisVersion.objects.create(
                document_id=document_id,
                tenant_id=tenant_id,
                analysis_type=analysis_type,
                status=status,
                payload=payload,
                error_message=error_message,
                ai_model=ai_model or '',
            )

    def get_analysis_versions(self, document_id, access: AccessContext) -> List[AnalysisVersion]:
        """Analysis history of a visible document, newest first."""
        document = self.get_by_id(document_id, access)
        with _db_errors('get_analysis_versions', document_id=document_id, tenant_id=access.tenant_id):
            return list(
                AnalysisVersion.objects.filter(
                    document=document, tenant_id=access.tenant_id
                ).order_by('-created_at')
            )
