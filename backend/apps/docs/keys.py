"""
Storage key generation.

Keys are hierarchical so that tenants, document types and upload days
never collide and lifecycle rules can be scoped by prefix:

    tenant/{tenant_id}/{document_type}/{YYYY-MM-DD}/{uuid}/{filename}

The per-upload uuid keeps repeated filenames apart and makes keys
unguessable.
"""
import re
import uuid
from datetime import date, datetime, timezone
from pathlib import PurePosixPath
from typing import Callable, Optional

from .errors import ValidationError

MAX_FILENAME_LENGTH = 200
DEFAULT_FILENAME = 'document'

_UNSAFE_CHARS = re.compile(r'[^a-zA-Z0-9._-]')
_REPEATED_UNDERSCORES = re.compile(r'_{2,}')
_CONTROL_CHARS = re.compile(r'[\x00-\x1f\x7f]')
_SEGMENT = re.compile(r'^[A-Za-z0-9._-]+$')


def sanitize_filename(filename: str) -> str:
    """
    Make a client-supplied filename safe to embed in a storage key.

    Strips any directory components (both separators), replaces unsafe
    characters with underscores, lower-cases the base name and keeps the
    extension.

    Args:
        filename: Original filename as uploaded

    Returns:
        Sanitized filename, never empty
    """
    name = _CONTROL_CHARS.sub('', filename or '')
    # Drop anything that looks like a path, whichever separator was used
    name = name.replace('\\', '/').split('/')[-1].strip()
    name = name.lstrip('.')

    if not name:
        return DEFAULT_FILENAME

    path = PurePosixPath(name)
    suffix = path.suffix if path.stem else ''
    stem = path.stem if suffix else name

    stem = _UNSAFE_CHARS.sub('_', stem)
    stem = _REPEATED_UNDERSCORES.sub('_', stem).strip('_').lower()
    suffix = _UNSAFE_CHARS.sub('', suffix).lower()

    if not stem:
        stem = DEFAULT_FILENAME

    max_stem = MAX_FILENAME_LENGTH - len(suffix)
    return f"{stem[:max_stem]}{suffix}"


def _validate_segment(value: str, label: str) -> str:
    value = str(value or '').strip()
    if not value:
        raise ValidationError(f"{label} is required to build a storage key")
    if not _SEGMENT.match(value) or value in ('.', '..'):
        raise ValidationError(f"{label} contains invalid characters: {value!r}")
    return value


def generate_storage_key(
    tenant_id: str,
    document_type: str,
    filename: str,
    today: Optional[date] = None,
    uuid_factory: Callable[[], uuid.UUID] = uuid.uuid4,
) -> str:
    """
    Build the storage key for a new upload.

    Args:
        tenant_id: Owning tenant
        document_type: Document type value (e.g. 'CONTRACT')
        filename: Original filename; sanitized here
        today: Date segment override (defaults to current UTC date)
        uuid_factory: Source of the per-upload unique segment

    Returns:
        Storage key string

    Raises:
        ValidationError: If tenant or type segments are unusable
    """
    tenant_segment = _validate_segment(tenant_id, 'tenant_id')
    type_segment = _validate_segment(document_type, 'document_type')
    day = today or datetime.now(timezone.utc).date()

    return '/'.join([
        'tenant',
        tenant_segment,
        type_segment,
        day.isoformat(),
        str(uuid_factory()),
        sanitize_filename(filename),
    ])
