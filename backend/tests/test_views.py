"""
HTTP tests for the document, search and health endpoints.

Token validation is patched to return fixed claims; the component graph
uses the test database, a temporary local storage and a mocked
dispatcher so no background threads run.
"""
import json
from pathlib import Path
from types import SimpleNamespace

import pytest
from django.core.files.uploadedfile import SimpleUploadedFile
from unittest.mock import MagicMock, patch

from apps.authn.jwt_validator import JWTValidationError, TokenClaims
from apps.docs.ingestion import IngestionCoordinator
from apps.docs.services import DocumentService
from apps.docs.storage import StorageConfig
from apps.search.engine import SearchResponse

AUTH = {'HTTP_AUTHORIZATION': 'Bearer test-token'}


def claims_for(tenant_id='acme', roles=None, sub='user-1', grants=None):
    return TokenClaims(
        sub=sub,
        preferred_username=sub,
        tenant_id=tenant_id,
        roles=roles or ['user'],
        confidential_document_ids=grants or [],
    )


@pytest.fixture
def login():
    """Patch token validation; call with claims to switch identity."""
    patcher = patch('apps.authn.middleware.validate_token', return_value=claims_for())
    mock_validate = patcher.start()

    def _login(claims):
        mock_validate.return_value = claims
        mock_validate.side_effect = None
        return mock_validate

    _login.mock = mock_validate
    yield _login
    patcher.stop()


@pytest.fixture
def services(tmp_path, local_storage, repository):
    dispatcher = MagicMock()
    dispatcher.submit.return_value = True
    pipeline = MagicMock()
    pipeline.process_pending.return_value = 3
    ingestion = IngestionCoordinator(
        storage=local_storage,
        repository=repository,
        dispatcher=dispatcher,
        max_upload_size=1024 * 1024,
        allowed_mime_types=['text/plain', 'application/pdf'],
    )
    config = StorageConfig(mode='local', is_production=False, local_root=Path(tmp_path / 'uploads'))
    search = MagicMock()
    graph = SimpleNamespace(
        documents=DocumentService(repository, local_storage, ingestion, dispatcher, pipeline, config),
        search=search,
        storage=local_storage,
        dispatcher=dispatcher,
        pipeline=pipeline,
    )
    with patch('apps.docs.views.get_services', return_value=graph), \
            patch('apps.search.views.get_services', return_value=graph), \
            patch('apps.docs.services.get_services', return_value=graph):
        yield graph


def upload(client, content=b'Lease terms and rent schedule', name='lease.txt', **fields):
    data = {'file': SimpleUploadedFile(name, content, content_type='text/plain')}
    data.update(fields)
    return client.post('/api/documents/upload', data, **AUTH)


# ============================================================================
# Authentication Tests
# ============================================================================

@pytest.mark.django_db
class TestAuthentication:
    """Tests for the auth_required decorator."""

    def test_missing_token(self, client):
        response = client.get('/api/documents')

        assert response.status_code == 401
        assert response.json()['code'] == 'UNAUTHENTICATED'

    def test_invalid_token(self, client, login):
        login.mock.side_effect = JWTValidationError('Token has expired')

        response = client.get('/api/documents', **AUTH)

        assert response.status_code == 401

    def test_token_without_tenant(self, client, login):
        login(claims_for(tenant_id=None))

        response = client.get('/api/documents', **AUTH)

        assert response.status_code == 403
        assert response.json()['code'] == 'NO_TENANT'

    def test_me(self, client, login):
        login(claims_for(roles=['admin'], grants=['doc-9']))

        data = client.get('/api/me', **AUTH).json()

        assert data['tenantId'] == 'acme'
        assert data['isAdmin'] is True
        assert data['confidentialDocumentIds'] == ['doc-9']


# ============================================================================
# Document Endpoint Tests
# ============================================================================

@pytest.mark.django_db
class TestDocumentEndpoints:
    """Tests for the document endpoints."""

    def test_upload_returns_pending_document(self, client, login, services):
        """Upload responds 201 with the PENDING document and schedules processing."""
        response = upload(
            client,
            title='Office lease',
            documentType='CONTRACT',
            tags='legal, facilities',
            isConfidential='false',
            customMetadata=json.dumps({'department': 'facilities'}),
        )

        assert response.status_code == 201
        data = response.json()
        assert data['processingStatus'] == 'PENDING'
        assert data['title'] == 'Office lease'
        assert data['documentType'] == 'CONTRACT'
        assert data['tags'] == ['facilities', 'legal']
        assert data['customMetadata'] == {'department': 'facilities'}
        services.dispatcher.submit.assert_called_once()

    def test_upload_without_file(self, client, login, services):
        response = client.post('/api/documents/upload', {}, **AUTH)

        assert response.status_code == 400
        assert response.json()['code'] == 'MISSING_FILE'

    def test_upload_disallowed_type(self, client, login, services):
        data = {'file': SimpleUploadedFile('run.exe', b'MZ', content_type='application/x-msdownload')}

        response = client.post('/api/documents/upload', data, **AUTH)

        assert response.status_code == 400
        assert response.json()['code'] == 'VALIDATION_ERROR'

    def test_upload_bad_custom_metadata(self, client, login, services):
        response = upload(client, customMetadata='[1, 2]')

        assert response.status_code == 400

    def test_list_and_get(self, client, login, services):
        document_id = upload(client, title='Lease').json()['id']

        listing = client.get('/api/documents?search=lease&limit=10', **AUTH).json()
        detail = client.get(f'/api/documents/{document_id}', **AUTH)

        assert listing['total'] == 1
        assert listing['limit'] == 10
        assert listing['documents'][0]['id'] == document_id
        assert detail.status_code == 200
        assert detail.json()['title'] == 'Lease'

    def test_other_tenant_gets_404(self, client, login, services):
        """Cross-tenant access is indistinguishable from a missing document."""
        document_id = upload(client).json()['id']
        login(claims_for(tenant_id='globex', roles=['admin']))

        response = client.get(f'/api/documents/{document_id}', **AUTH)

        assert response.status_code == 404

    def test_confidential_needs_grant(self, client, login, services):
        document_id = upload(client, isConfidential='true').json()['id']
        login(claims_for(sub='user-2'))

        assert client.get(f'/api/documents/{document_id}', **AUTH).status_code == 403

        login(claims_for(sub='user-2', grants=[document_id]))
        assert client.get(f'/api/documents/{document_id}', **AUTH).status_code == 200

    def test_update_metadata(self, client, login, services):
        document_id = upload(client, title='Lease').json()['id']

        response = client.patch(
            f'/api/documents/{document_id}',
            json.dumps({'title': 'Signed lease', 'documentType': 'CONTRACT', 'tags': ['signed']}),
            content_type='application/json', **AUTH,
        )

        assert response.status_code == 200
        data = response.json()
        assert data['title'] == 'Signed lease'
        assert data['documentType'] == 'CONTRACT'
        assert data['tenantId'] == 'acme'

    def test_update_rejects_tenant_change(self, client, login, services):
        """tenantId is immutable: the request is rejected and nothing changes."""
        document_id = upload(client, title='Lease').json()['id']

        response = client.patch(
            f'/api/documents/{document_id}',
            json.dumps({'tenantId': 'globex', 'title': 'Moved'}),
            content_type='application/json', **AUTH,
        )

        assert response.status_code == 400
        detail = client.get(f'/api/documents/{document_id}', **AUTH).json()
        assert detail['tenantId'] == 'acme'
        assert detail['title'] == 'Lease'

    def test_update_confidential_without_grant(self, client, login, services):
        document_id = upload(client, isConfidential='true').json()['id']
        login(claims_for(sub='user-2'))

        response = client.patch(
            f'/api/documents/{document_id}', json.dumps({'title': 'peek'}),
            content_type='application/json', **AUTH,
        )

        assert response.status_code == 403

    def test_download(self, client, login, services):
        content = b'Lease terms and rent schedule'
        document_id = upload(client, content=content, name='Lease Terms.txt').json()['id']

        response = client.get(f'/api/documents/{document_id}/download', **AUTH)

        assert response.status_code == 200
        assert response.content == content
        assert response['Content-Disposition'] == 'attachment; filename="Lease Terms.txt"'

    def test_download_missing_object(self, client, login, services):
        document_id = upload(client).json()['id']
        key = services.documents.repository.get_for_processing(document_id, 'acme').storage_key
        services.storage.delete(key)

        assert client.get(f'/api/documents/{document_id}/download', **AUTH).status_code == 404

    def test_analysis_and_versions(self, client, login, services):
        document_id = upload(client).json()['id']

        analysis = client.get(f'/api/documents/{document_id}/analysis', **AUTH).json()
        versions = client.get(f'/api/documents/{document_id}/versions', **AUTH).json()

        assert analysis['processingStatus'] == 'PENDING'
        assert analysis['aiProcessed'] is False
        assert versions == {'versions': []}

    def test_delete_hides_document(self, client, login, services):
        document_id = upload(client).json()['id']

        response = client.delete(f'/api/documents/{document_id}', **AUTH)

        assert response.status_code == 200
        assert client.get(f'/api/documents/{document_id}', **AUTH).status_code == 404
        assert client.get('/api/documents', **AUTH).json()['total'] == 0

    def test_reprocess(self, client, login, services):
        document_id = upload(client).json()['id']
        services.dispatcher.submit.reset_mock()

        response = client.post(f'/api/documents/{document_id}/process', **AUTH)

        assert response.status_code == 202
        args, kwargs = services.dispatcher.submit.call_args
        assert str(args[0]) == document_id
        assert kwargs == {'retry': False}

    def test_reprocess_busy_queue(self, client, login, services):
        document_id = upload(client).json()['id']
        services.dispatcher.submit.return_value = False

        response = client.post(f'/api/documents/{document_id}/process', **AUTH)

        assert response.status_code == 503

    def test_reprocess_while_processing(self, client, login, services):
        document_id = upload(client).json()['id']
        services.documents.repository.claim_for_processing(document_id, 'acme')

        response = client.post(f'/api/documents/{document_id}/process', **AUTH)

        assert response.status_code == 400

    def test_process_pending_requires_admin(self, client, login, services):
        assert client.post('/api/documents/process-pending', **AUTH).status_code == 403

        login(claims_for(roles=['admin']))
        response = client.post(
            '/api/documents/process-pending', json.dumps({'limit': 3}),
            content_type='application/json', **AUTH,
        )

        assert response.status_code == 200
        assert response.json() == {'processed': 3}
        services.pipeline.process_pending.assert_called_once_with('acme', 3)

    def test_process_pending_rejects_non_object_body(self, client, login, services):
        login(claims_for(roles=['admin']))

        response = client.post(
            '/api/documents/process-pending', json.dumps([1, 2]),
            content_type='application/json', **AUTH,
        )

        assert response.status_code == 400
        services.pipeline.process_pending.assert_not_called()

    def test_storage_info(self, client, login, services):
        assert client.get('/api/storage/info', **AUTH).status_code == 403

        login(claims_for(roles=['admin']))
        data = client.get('/api/storage/info', **AUTH).json()

        assert data['mode'] == 'local'
        assert data['isDevEnvironment'] is True


# ============================================================================
# Search Endpoint Tests
# ============================================================================

@pytest.mark.django_db
class TestSearchEndpoint:
    """Tests for POST /api/search/semantic."""

    def test_search(self, client, login, services):
        services.search.search.return_value = SearchResponse(query='rent', min_similarity=0.7)

        response = client.post(
            '/api/search/semantic',
            json.dumps({'query': 'rent', 'documentType': 'CONTRACT', 'limit': 5}),
            content_type='application/json',
            **AUTH,
        )

        assert response.status_code == 200
        assert response.json() == {'documents': [], 'total': 0, 'query': 'rent', 'minSimilarity': 0.7}
        access = services.search.search.call_args.args[0]
        assert access.tenant_id == 'acme'
        assert services.search.search.call_args.kwargs == {
            'document_type': 'CONTRACT',
            'min_similarity': None,
            'limit': 5,
        }

    def test_invalid_json(self, client, login, services):
        response = client.post('/api/search/semantic', 'nope', content_type='application/json', **AUTH)

        assert response.status_code == 400


# ============================================================================
# Health Tests
# ============================================================================

@pytest.mark.django_db
class TestHealth:
    def test_healthz(self, client):
        assert client.get('/healthz').json()['status'] == 'healthy'

    @patch('apps.docs.health.check_llm', return_value=('skipped', True))
    def test_readyz(self, mock_llm, client, services):
        response = client.get('/readyz')

        assert response.status_code == 200
        assert response.json()['checks']['storage'] == 'ok'
