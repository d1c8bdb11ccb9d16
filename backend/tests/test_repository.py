"""
Tests for the document repository.

Covers tenant isolation, confidentiality filtering, listing filters,
the processing state machine, analysis history and the rows semantic
search may rank. Cosine ranking itself is tested through rank_chunk_hits,
since the similarity query needs PostgreSQL with pgvector.
"""
import uuid
from types import SimpleNamespace

import pytest

from apps.authn.access import AccessContext
from apps.docs.errors import NotFoundError, PermissionDeniedError, ValidationError
from apps.docs.models import AnalysisVersion, DocumentType, ProcessingStatus
from apps.docs.repository import (
    ChunkHit,
    DocumentFilters,
    ProcessingOutcome,
    normalize_sort_field,
    rank_chunk_hits,
)

TENANT = 'acme'
OTHER_TENANT = 'globex'


# ============================================================================
# Create Tests
# ============================================================================

@pytest.mark.django_db
class TestCreate:
    """Tests for DocumentRepository.create."""

    def test_creates_pending_document_with_tags(self, make_document):
        """New documents start PENDING with their tags attached."""
        document = make_document(tags=['finance', ' q1 ', 'finance'])

        assert document.processing_status == ProcessingStatus.PENDING
        assert document.ai_processed is False
        assert document.tag_names == ['finance', 'q1']

    def test_requires_tenant(self, repository):
        """A document without a tenant must be rejected."""
        with pytest.raises(ValidationError, match='tenant_id'):
            repository.create({'title': 'x'})

    def test_rejects_non_numeric_file_size(self, make_document):
        with pytest.raises(ValidationError, match='file_size'):
            make_document(file_size='large')

    def test_rejects_unknown_document_type(self, make_document):
        with pytest.raises(ValidationError):
            make_document(document_type='MEMO')

    def test_to_dict_uses_camel_case(self, make_document):
        data = make_document(title='Lease').to_dict()

        assert data['title'] == 'Lease'
        assert data['tenantId'] == TENANT
        assert data['processingStatus'] == 'PENDING'
        assert data['isConfidential'] is False


# ============================================================================
# Access Control Tests
# ============================================================================

@pytest.mark.django_db
class TestAccessControl:
    """Tests for tenant isolation and confidentiality."""

    def test_other_tenant_gets_not_found(self, repository, make_document, other_tenant_access):
        """Cross-tenant reads look exactly like missing documents."""
        document = make_document()

        with pytest.raises(NotFoundError):
            repository.get_by_id(document.id, other_tenant_access)

    def test_confidential_denied_without_grant(self, repository, make_document, access):
        """Regular users cannot read confidential documents by default."""
        document = make_document(is_confidential=True)

        with pytest.raises(PermissionDeniedError):
            repository.get_by_id(document.id, access)

    def test_confidential_allowed_with_grant(self, repository, make_document):
        document = make_document(is_confidential=True)
        granted = AccessContext.build('user-1', TENANT, 'user', [str(document.id)])

        assert repository.get_by_id(document.id, granted).id == document.id

    @pytest.mark.parametrize('role', ['admin', 'SuperAdmin', 'super_admin'])
    def test_admin_roles_see_confidential(self, repository, make_document, role):
        """Admin-equivalent roles match case-insensitively."""
        document = make_document(is_confidential=True)
        admin = AccessContext.build('boss', TENANT, role)

        assert repository.get_by_id(document.id, admin).id == document.id

    def test_invalid_id_is_not_found(self, repository, access):
        with pytest.raises(NotFoundError):
            repository.get_by_id('not-a-uuid', access)

    def test_soft_deleted_is_hidden(self, repository, make_document, access):
        """Soft-deleted documents disappear from every read path."""
        document = make_document()

        assert repository.soft_delete(document.id, TENANT) is True

        with pytest.raises(NotFoundError):
            repository.get_by_id(document.id, access)
        assert repository.get_all(access).total == 0
        assert repository.soft_delete(document.id, TENANT) is False

    def test_list_excludes_other_tenants_and_hidden_confidential(self, repository, make_document, access, admin_access):
        make_document(title='visible')
        make_document(title='secret', is_confidential=True)
        make_document(title='foreign', tenant_id=OTHER_TENANT)

        user_titles = {d.title for d in repository.get_all(access).documents}
        admin_titles = {d.title for d in repository.get_all(admin_access).documents}

        assert user_titles == {'visible'}
        assert admin_titles == {'visible', 'secret'}


# ============================================================================
# Listing Tests
# ============================================================================

@pytest.mark.django_db
class TestGetAll:
    """Tests for filtering, sorting and pagination."""

    def test_filter_by_type(self, repository, make_document, access):
        make_document(title='c', document_type=DocumentType.CONTRACT)
        make_document(title='r', document_type=DocumentType.REPORT)

        page = repository.get_all(access, DocumentFilters(document_type=DocumentType.CONTRACT))

        assert [d.title for d in page.documents] == ['c']

    def test_search_matches_title_and_description(self, repository, make_document, access):
        make_document(title='Office lease', description='')
        make_document(title='Other', description='The LEASE renewal')
        make_document(title='Unrelated')

        page = repository.get_all(access, DocumentFilters(search='lease'))

        assert page.total == 2

    def test_tags_must_all_match(self, repository, make_document, access):
        make_document(title='both', tags=['finance', 'q1'])
        make_document(title='one', tags=['finance'])

        page = repository.get_all(access, DocumentFilters(tags=['finance', 'q1']))

        assert [d.title for d in page.documents] == ['both']

    def test_confidential_filter(self, repository, make_document, admin_access):
        make_document(title='open')
        make_document(title='closed', is_confidential=True)

        page = repository.get_all(admin_access, DocumentFilters(is_confidential=True))

        assert [d.title for d in page.documents] == ['closed']

    def test_sort_and_paginate(self, repository, make_document, access):
        """Total counts every match while the page is limited."""
        for title in ['b', 'c', 'a']:
            make_document(title=title)

        page = repository.get_all(access, DocumentFilters(sort_by='title', sort_order='asc', limit=2, offset=1))

        assert page.total == 3
        assert [d.title for d in page.documents] == ['b', 'c']

    def test_normalize_sort_field(self):
        """Accepts camelCase; unknown fields fall back to created_at."""
        assert normalize_sort_field('fileSize') == 'file_size'
        assert normalize_sort_field('title') == 'title'
        assert normalize_sort_field('password; DROP') == 'created_at'
        assert normalize_sort_field(None) == 'created_at'


# ============================================================================
# Processing State Tests
# ============================================================================

@pytest.mark.django_db
class TestProcessingState:
    """Tests for claims and status transitions."""

    def test_claim_moves_to_processing_once(self, repository, make_document):
        """Only the first claim of a PENDING document wins."""
        document = make_document()

        claimed = repository.claim_for_processing(document.id, TENANT)

        assert claimed.processing_status == ProcessingStatus.PROCESSING
        assert repository.claim_for_processing(document.id, TENANT) is None

    def test_claim_respects_tenant(self, repository, make_document):
        document = make_document()

        assert repository.claim_for_processing(document.id, OTHER_TENANT) is None

    def test_retry_claim_from_error(self, repository, make_document):
        """ERROR documents can only be claimed as an explicit retry."""
        document = make_document()
        repository.claim_for_processing(document.id, TENANT)
        repository.update_after_processing(
            document.id, TENANT, ProcessingOutcome(status=ProcessingStatus.ERROR, error='boom')
        )

        assert repository.claim_for_processing(document.id, TENANT) is None

        retried = repository.claim_for_processing(document.id, TENANT, allow_retry=True)
        assert retried.processing_status == ProcessingStatus.PROCESSING
        assert retried.processing_error is None

    def test_update_after_processing_requires_processing(self, repository, make_document):
        """Outcomes are ignored unless the document is PROCESSING."""
        document = make_document()

        recorded = repository.update_after_processing(
            document.id, TENANT, ProcessingOutcome(status=ProcessingStatus.COMPLETED, ai_processed=True)
        )

        assert recorded is False
        document.refresh_from_db()
        assert document.processing_status == ProcessingStatus.PENDING

    def test_update_after_processing_records_outcome(self, repository, make_document):
        document = make_document()
        repository.claim_for_processing(document.id, TENANT)

        recorded = repository.update_after_processing(
            document.id, TENANT,
            ProcessingOutcome(status=ProcessingStatus.COMPLETED, ai_processed=True, ai_metadata={'summary': 's'}),
        )

        document.refresh_from_db()
        assert recorded is True
        assert document.processing_status == ProcessingStatus.COMPLETED
        assert document.ai_processed is True
        assert document.ai_metadata == {'summary': 's'}

    def test_illegal_transition_rejected(self, repository, make_document):
        """PENDING cannot jump straight to COMPLETED."""
        document = make_document()

        with pytest.raises(ValidationError):
            repository.update_processing_status(document.id, TENANT, ProcessingStatus.COMPLETED)

    def test_legal_transition(self, repository, make_document):
        document = make_document()

        updated = repository.update_processing_status(document.id, TENANT, ProcessingStatus.PROCESSING)

        assert updated.processing_status == ProcessingStatus.PROCESSING

    def test_get_pending_oldest_first(self, repository, make_document):
        first = make_document(title='first')
        second = make_document(title='second')
        make_document(title='foreign', tenant_id=OTHER_TENANT)
        repository.claim_for_processing(second.id, TENANT)
        third = make_document(title='third')

        pending = repository.get_pending(TENANT, limit=5)

        assert [d.id for d in pending] == [first.id, third.id]
        assert repository.pending_tenant_ids() == [TENANT, OTHER_TENANT]


# ============================================================================
# Embeddings and History Tests
# ============================================================================

@pytest.mark.django_db
class TestEmbeddingsAndHistory:
    """Tests for embedding rows and analysis versions."""

    def test_store_count_and_delete_embeddings(self, repository, make_document):
        document = make_document()
        vector = [0.0] * 768

        repository.store_embedding(document.id, 0, 'first', vector, 'nomic-embed-text')
        repository.store_embedding(document.id, 1, 'second', vector, 'nomic-embed-text')

        assert repository.count_embeddings(document.id) == 2
        assert repository.delete_embeddings(document.id) == 2
        assert repository.count_embeddings(document.id) == 0

    def test_analysis_versions_append_only(self, repository, make_document, access):
        """Every attempt adds a row; nothing is overwritten."""
        document = make_document()

        repository.create_analysis_version(document.id, TENANT, ProcessingStatus.ERROR, error_message='boom')
        repository.create_analysis_version(
            document.id, TENANT, ProcessingStatus.COMPLETED, payload={'summary': 'ok'}, ai_model='llama3.2'
        )

        versions = repository.get_analysis_versions(document.id, access)

        assert len(versions) == 2
        assert {v.status for v in versions} == {ProcessingStatus.ERROR, ProcessingStatus.COMPLETED}
        assert AnalysisVersion.objects.filter(document=document).count() == 2

    def test_analysis_versions_respect_access(self, repository, make_document, other_tenant_access):
        document = make_document()

        with pytest.raises(NotFoundError):
            repository.get_analysis_versions(document.id, other_tenant_access)


# ============================================================================
# rank_chunk_hits Tests
# ============================================================================

def fake_document():
    return SimpleNamespace(id=uuid.uuid4())


class TestRankChunkHits:
    """Tests for collapsing chunk matches to document results."""

    def test_threshold_and_order(self):
        """0.9 and 0.75 clear a 0.7 threshold; 0.6 does not."""
        doc_a, doc_b, doc_c = fake_document(), fake_document(), fake_document()
        hits = [
            ChunkHit(doc_b, 0, 'b', 0.75),
            ChunkHit(doc_c, 0, 'c', 0.6),
            ChunkHit(doc_a, 0, 'a', 0.9),
        ]

        ranked = rank_chunk_hits(hits, min_similarity=0.7, limit=10)

        assert [h.document for h in ranked] == [doc_a, doc_b]
        assert [h.similarity for h in ranked] == [0.9, 0.75]

    def test_best_chunk_per_document(self):
        """A document appears once, with its best chunk."""
        doc = fake_document()
        hits = [
            ChunkHit(doc, 0, 'weak', 0.72),
            ChunkHit(doc, 3, 'strong', 0.88),
        ]

        ranked = rank_chunk_hits(hits, min_similarity=0.7, limit=10)

        assert len(ranked) == 1
        assert ranked[0].chunk_index == 3
        assert ranked[0].text_chunk == 'strong'

    def test_limit(self):
        hits = [ChunkHit(fake_document(), 0, 't', 0.8 + i / 100) for i in range(5)]

        assert len(rank_chunk_hits(hits, min_similarity=0.0, limit=2)) == 2

    def test_nothing_above_threshold(self):
        hits = [ChunkHit(fake_document(), 0, 't', 0.5)]

        assert rank_chunk_hits(hits, min_similarity=0.7, limit=10) == []


# ============================================================================
# Metadata Update Tests
# ============================================================================

@pytest.mark.django_db
class TestUpdate:
    """Tests for DocumentRepository.update."""

    def test_updates_metadata_and_replaces_tags(self, repository, make_document, access):
        document = make_document(tags=['draft', 'q1'])

        updated = repository.update(document.id, access, {
            'title': 'Signed lease',
            'description': 'Final version',
            'document_type': DocumentType.CONTRACT,
            'tags': ['signed', 'q1'],
            'custom_metadata': {'counterparty': 'Globex', 'year': 2024},
        })

        assert updated.title == 'Signed lease'
        assert updated.description == 'Final version'
        assert updated.document_type == DocumentType.CONTRACT
        assert sorted(updated.tag_names) == ['q1', 'signed']
        assert updated.custom_metadata == {'counterparty': 'Globex', 'year': '2024'}

    def test_tenant_cannot_change(self, repository, make_document, access):
        """tenant_id is not an updatable field; the row keeps its tenant."""
        document = make_document()

        with pytest.raises(ValidationError, match='tenant_id'):
            repository.update(document.id, access, {'tenant_id': OTHER_TENANT, 'title': 'moved'})

        document.refresh_from_db()
        assert document.tenant_id == TENANT
        assert document.title == 'Quarterly report'

    def test_processing_columns_not_updatable(self, repository, make_document, access):
        document = make_document()

        with pytest.raises(ValidationError):
            repository.update(document.id, access, {'processing_status': ProcessingStatus.COMPLETED})

    def test_other_tenant_gets_not_found(self, repository, make_document, other_tenant_access):
        document = make_document()

        with pytest.raises(NotFoundError):
            repository.update(document.id, other_tenant_access, {'title': 'hijacked'})

        document.refresh_from_db()
        assert document.title == 'Quarterly report'

    def test_confidential_requires_grant(self, repository, make_document, access):
        document = make_document(is_confidential=True)

        with pytest.raises(PermissionDeniedError):
            repository.update(document.id, access, {'title': 'peek'})

        granted = AccessContext.build('user-1', TENANT, 'user', [str(document.id)])
        assert repository.update(document.id, granted, {'title': 'allowed'}).title == 'allowed'

    def test_rejects_bad_values(self, repository, make_document, access):
        document = make_document()

        with pytest.raises(ValidationError):
            repository.update(document.id, access, {'title': '   '})
        with pytest.raises(ValidationError):
            repository.update(document.id, access, {'document_type': 'MEMO'})
        with pytest.raises(ValidationError):
            repository.update(document.id, access, {'is_confidential': 'yes'})


# ============================================================================
# update_ai_metadata Tests
# ============================================================================

@pytest.mark.django_db
class TestUpdateAiMetadata:
    """Tests for storing an analysis result directly."""

    def test_processing_to_completed(self, repository, make_document):
        document = make_document()
        repository.claim_for_processing(document.id, TENANT)

        assert repository.update_ai_metadata(document.id, TENANT, {'summary': 'ok'}) is True

        document.refresh_from_db()
        assert document.processing_status == ProcessingStatus.COMPLETED
        assert document.ai_processed is True
        assert document.ai_metadata == {'summary': 'ok'}

    def test_error_document_untouched(self, repository, make_document):
        document = make_document()
        repository.claim_for_processing(document.id, TENANT)
        repository.update_after_processing(
            document.id, TENANT, ProcessingOutcome(status=ProcessingStatus.ERROR, error='boom')
        )

        assert repository.update_ai_metadata(document.id, TENANT, {'summary': 'late'}) is False

        document.refresh_from_db()
        assert document.processing_status == ProcessingStatus.ERROR
        assert document.ai_metadata is None


# ============================================================================
# Search Candidate Tests
# ============================================================================

@pytest.mark.django_db
class TestSearchCandidates:
    """The embedding rows semantic_search is allowed to rank."""

    @pytest.fixture
    def embedded(self, repository, make_document):
        def _make(**kwargs):
            document = make_document(**kwargs)
            repository.store_embedding(document.id, 0, 'chunk', [0.1] * 768, 'nomic-embed-text')
            return document
        return _make

    def candidate_ids(self, repository, access, document_type=None):
        return {row.document_id for row in repository._search_candidates(access, document_type)}

    def test_other_tenant_excluded(self, repository, embedded, access):
        own = embedded()
        embedded(tenant_id=OTHER_TENANT)

        assert self.candidate_ids(repository, access) == {own.id}

    def test_soft_deleted_excluded(self, repository, embedded, access):
        kept = embedded()
        removed = embedded()
        repository.soft_delete(removed.id, TENANT)

        assert self.candidate_ids(repository, access) == {kept.id}

    def test_confidential_needs_grant_or_admin(self, repository, embedded, access, admin_access):
        public = embedded()
        secret = embedded(is_confidential=True)
        granted = AccessContext.build('user-1', TENANT, 'user', [str(secret.id)])

        assert self.candidate_ids(repository, access) == {public.id}
        assert self.candidate_ids(repository, granted) == {public.id, secret.id}
        assert self.candidate_ids(repository, admin_access) == {public.id, secret.id}

    def test_document_type_filter(self, repository, embedded, access):
        contract = embedded(document_type=DocumentType.CONTRACT)
        embedded(document_type=DocumentType.REPORT)

        assert self.candidate_ids(repository, access, DocumentType.CONTRACT) == {contract.id}
