"""
Error taxonomy for the document portal core.

Every layer raises one of these so views can map failures to HTTP
responses without inspecting messages:

- ValidationError: bad input, never retried
- NotFoundError: missing document or storage object
- PermissionDeniedError: tenant or confidentiality violation
- StorageError: storage backend failure, carries operation and key
- RepositoryError: database failure, carries operation and identifiers
- ProcessingError: extraction/analysis failure recorded on the document
"""
from typing import Any, Dict, Optional


class PortalError(Exception):
    """Base exception for document portal errors."""
    code = 'INTERNAL_ERROR'


class ValidationError(PortalError):
    """Raised when input fails validation."""
    code = 'VALIDATION_ERROR'


class NotFoundError(PortalError):
    """Raised when a document or stored object does not exist."""
    code = 'NOT_FOUND'


class PermissionDeniedError(PortalError):
    """Raised when the caller may not access a document."""
    code = 'PERMISSION_DENIED'


class ProcessingError(PortalError):
    """Raised when document processing fails."""
    code = 'PROCESSING_ERROR'


class RepositoryError(PortalError):
    """Raised when a database operation fails."""
    code = 'REPOSITORY_ERROR'

    def __init__(self, operation: str, message: str, context: Optional[Dict[str, Any]] = None):
        self.operation = operation
        self.context = context or {}
        detail = ', '.join(f"{k}={v}" for k, v in self.context.items())
        super().__init__(f"{operation} failed: {message}" + (f" ({detail})" if detail else ''))


class StorageError(PortalError):
    """Base exception for storage operations."""
    code = 'STORAGE_ERROR'

    def __init__(self, operation: str, key: str, message: str):
        self.operation = operation
        self.key = key
        super().__init__(f"Storage {operation} failed for '{key}': {message}")


class StorageNotFoundError(StorageError, NotFoundError):
    """Raised when a storage key does not exist."""
    code = 'NOT_FOUND'


class StoragePermissionError(StorageError, PermissionDeniedError):
    """Raised when the storage backend denies access."""
    code = 'STORAGE_PERMISSION_DENIED'


class StorageIOError(StorageError):
    """Raised for transient or permanent I/O failures."""
    pass
