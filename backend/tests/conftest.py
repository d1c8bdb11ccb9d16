"""
Shared fixtures for the document portal tests.
"""
import uuid

import pytest

from apps.authn.access import AccessContext
from apps.docs.models import DocumentType
from apps.docs.repository import DocumentRepository
from apps.docs.storage import LocalFileStorage

TENANT = 'acme'
OTHER_TENANT = 'globex'


@pytest.fixture
def access():
    """A regular user in the default tenant."""
    return AccessContext.build(user_id='user-1', tenant_id=TENANT, role='user')


@pytest.fixture
def admin_access():
    return AccessContext.build(user_id='admin-1', tenant_id=TENANT, role='admin')


@pytest.fixture
def other_tenant_access():
    return AccessContext.build(user_id='user-2', tenant_id=OTHER_TENANT, role='admin')


@pytest.fixture
def local_storage(tmp_path):
    return LocalFileStorage(tmp_path / 'uploads')


@pytest.fixture
def repository():
    return DocumentRepository()


@pytest.fixture
def make_document(repository):
    """Factory creating PENDING documents through the repository."""
    def _make(tenant_id=TENANT, title='Quarterly report', is_confidential=False,
              document_type=DocumentType.REPORT, tags=None, mime_type='text/plain', **extra):
        fields = {
            'tenant_id': tenant_id,
            'filename': 'report.txt',
            'original_filename': 'Report.txt',
            'mime_type': mime_type,
            'file_size': 42,
            'storage_key': f"tenant/{tenant_id}/{document_type}/2024-01-01/{uuid.uuid4()}/report.txt",
            'checksum': 'a' * 64,
            'uploaded_by': 'user-1',
            'title': title,
            'document_type': document_type,
            'is_confidential': is_confidential,
            'tags': tags or [],
        }
        fields.update(extra)
        return repository.create(fields)

    return _make
