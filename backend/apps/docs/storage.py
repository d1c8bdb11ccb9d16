"""
File storage backends for document uploads.

Two interchangeable backends:
- LocalFileStorage: files under UPLOAD_ROOT, used in development
- S3Storage: AWS S3 with server-side encryption, used in production

The backend is chosen once at startup from StorageConfig and injected
into every component that needs it. Callers only see StorageBackend.
"""
import base64
import hashlib
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from .errors import StorageIOError, StorageNotFoundError, StoragePermissionError

logger = logging.getLogger(__name__)

STORAGE_LOCAL = 'local'
STORAGE_S3 = 's3'

_S3_NOT_FOUND_CODES = {'404', 'NoSuchKey', 'NotFound'}
_S3_DENIED_CODES = {'403', 'AccessDenied', 'AllAccessDisabled', 'InvalidAccessKeyId', 'SignatureDoesNotMatch'}


def compute_checksum(content: bytes) -> str:
    """Return the SHA-256 hex digest of the content."""
    return hashlib.sha256(content).hexdigest()


@dataclass(frozen=True)
class StoredObject:
    """Result of a successful upload."""
    storage_key: str
    checksum: str
    size: int
    storage_type: str

    def to_dict(self) -> dict:
        return {
            'storageKey': self.storage_key,
            'checksum': self.checksum,
            'size': self.size,
            'storageType': self.storage_type,
        }


class StorageBackend(ABC):
    """Abstract storage backend."""

    storage_type: str = ''

    @abstractmethod
    def upload(self, content: bytes, key: str, content_type: str) -> StoredObject:
        """
        Store content under key.

        Raises:
            StoragePermissionError: If the backend denies the write
            StorageIOError: For any other failure
        """

    @abstractmethod
    def download(self, key: str) -> bytes:
        """
        Read the content stored under key.

        Raises:
            StorageNotFoundError: If nothing is stored under key
        """

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove key. Returns True even if the key was already absent."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check whether key is present."""


class LocalFileStorage(StorageBackend):
    """
    Filesystem storage rooted at a single directory.

    Files are stored at: {root}/{storage_key}
    """

    storage_type = STORAGE_LOCAL

    def __init__(self, root: Path):
        self.root = Path(root).resolve()
        self._ensure_root_exists()

    def _ensure_root_exists(self) -> None:
        """Create the upload root directory if it doesn't exist."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            logger.info(f"Upload root ensured at: {self.root}")
        except OSError as e:
            logger.error(f"Failed to create upload root {self.root}: {e}")
            raise StorageIOError('init', str(self.root), f"Cannot create upload directory: {e}")

    def _resolve(self, key: str, operation: str) -> Path:
        """Map a key to a path, refusing anything outside the root."""
        path = (self.root / key).resolve()
        if path == self.root or self.root not in path.parents:
            raise StoragePermissionError(operation, key, 'key resolves outside the storage root')
        return path

    def upload(self, content: bytes, key: str, content_type: str) -> StoredObject:
        path = self._resolve(key, 'upload')
        checksum = compute_checksum(content)

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Write to a temp file first so readers never see a partial file
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix='.upload-')
            try:
                with os.fdopen(fd, 'wb') as dest:
                    dest.write(content)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except PermissionError as e:
            raise StoragePermissionError('upload', key, str(e))
        except OSError as e:
            logger.error(f"Failed to save file {key}: {e}")
            raise StorageIOError('upload', key, str(e))

        logger.info(f"Saved file: {key} ({len(content)} bytes, {content_type})")
        return StoredObject(
            storage_key=key,
            checksum=checksum,
            size=len(content),
            storage_type=self.storage_type,
        )

    def download(self, key: str) -> bytes:
        path = self._resolve(key, 'download')
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise StorageNotFoundError('download', key, 'file not found')
        except PermissionError as e:
            raise StoragePermissionError('download', key, str(e))
        except OSError as e:
            raise StorageIOError('download', key, str(e))

    def delete(self, key: str) -> bool:
        path = self._resolve(key, 'delete')
        try:
            path.unlink()
            logger.info(f"Deleted file: {key}")
        except FileNotFoundError:
            logger.debug(f"Delete of missing file ignored: {key}")
            return True
        except PermissionError as e:
            raise StoragePermissionError('delete', key, str(e))
        except OSError as e:
            logger.error(f"Failed to delete file {key}: {e}")
            raise StorageIOError('delete', key, str(e))

        self._prune_empty_parents(path.parent)
        return True

    def _prune_empty_parents(self, directory: Path) -> None:
        while directory != self.root and self.root in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                # Not empty or already gone
                return
            directory = directory.parent

    def exists(self, key: str) -> bool:
        return self._resolve(key, 'exists').is_file()


class S3Storage(StorageBackend):
    """
    AWS S3 storage.

    The SHA-256 checksum is computed before transmission and sent as
    ChecksumSHA256 so S3 rejects corrupted uploads. Objects are encrypted
    at rest with AES256, or with the configured KMS key.
    """

    storage_type = STORAGE_S3

    def __init__(self, bucket: str, region: str, kms_key_id: Optional[str] = None, client=None,
                 access_key_id: Optional[str] = None, secret_access_key: Optional[str] = None):
        self.bucket = bucket
        self.region = region
        self.kms_key_id = kms_key_id
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._client = client

    def _get_client(self):
        if self._client is None:
            import boto3

            kwargs = {'region_name': self.region}
            if self._access_key_id:
                kwargs['aws_access_key_id'] = self._access_key_id
                kwargs['aws_secret_access_key'] = self._secret_access_key
            self._client = boto3.client('s3', **kwargs)
        return self._client

    def _translate(self, error: Exception, operation: str, key: str) -> Exception:
        """Map a botocore error to the storage error taxonomy."""
        from botocore.exceptions import BotoCoreError, ClientError

        if isinstance(error, ClientError):
            code = str(error.response.get('Error', {}).get('Code', ''))
            if code in _S3_NOT_FOUND_CODES:
                return StorageNotFoundError(operation, key, 'object not found')
            if code in _S3_DENIED_CODES:
                return StoragePermissionError(operation, key, f"access denied ({code})")
            return StorageIOError(operation, key, f"S3 error {code}")
        if isinstance(error, BotoCoreError):
            return StorageIOError(operation, key, str(error))
        return error

    def upload(self, content: bytes, key: str, content_type: str) -> StoredObject:
        from botocore.exceptions import BotoCoreError, ClientError

        digest = hashlib.sha256(content)
        checksum = digest.hexdigest()

        params: Dict[str, Any] = {
            'Bucket': self.bucket,
            'Key': key,
            'Body': content,
            'ContentType': content_type,
            'ChecksumSHA256': base64.b64encode(digest.digest()).decode('ascii'),
            'Metadata': {'original-checksum': checksum},
        }
        if self.kms_key_id:
            params['ServerSideEncryption'] = 'aws:kms'
            params['SSEKMSKeyId'] = self.kms_key_id
        else:
            params['ServerSideEncryption'] = 'AES256'

        try:
            self._get_client().put_object(**params)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 upload failed for {key}: {e}")
            raise self._translate(e, 'upload', key)

        logger.info(f"Uploaded to S3: s3://{self.bucket}/{key} ({len(content)} bytes)")
        return StoredObject(
            storage_key=key,
            checksum=checksum,
            size=len(content),
            storage_type=self.storage_type,
        )

    def download(self, key: str) -> bytes:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            response = self._get_client().get_object(Bucket=self.bucket, Key=key)
            return response['Body'].read()
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 download failed for {key}: {e}")
            raise self._translate(e, 'download', key)

    def delete(self, key: str) -> bool:
        from botocore.exceptions import BotoCoreError, ClientError

        # S3 delete_object already succeeds for absent keys
        try:
            self._get_client().delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            translated = self._translate(e, 'delete', key)
            if isinstance(translated, StorageNotFoundError):
                return True
            logger.error(f"S3 delete failed for {key}: {e}")
            raise translated

        logger.info(f"Deleted from S3: {key}")
        return True

    def exists(self, key: str) -> bool:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            self._get_client().head_object(Bucket=self.bucket, Key=key)
            return True
        except (ClientError, BotoCoreError) as e:
            translated = self._translate(e, 'exists', key)
            if isinstance(translated, StorageNotFoundError):
                return False
            raise translated


# =============================================================================
# Configuration
# =============================================================================

@dataclass(frozen=True)
class StorageConfig:
    """Storage settings resolved once at startup."""
    mode: str
    is_production: bool
    local_root: Path
    bucket: str = ''
    region: str = ''
    kms_key_id: Optional[str] = None
    access_key_id: Optional[str] = field(default=None, repr=False)
    secret_access_key: Optional[str] = field(default=None, repr=False)
    allowed_regions: Tuple[str, ...] = ('eu-central-1',)

    @property
    def is_dev_environment(self) -> bool:
        return not self.is_production

    @property
    def data_residency_compliant(self) -> bool:
        if self.mode != STORAGE_S3:
            return True
        return self.region in self.allowed_regions

    @classmethod
    def from_settings(cls) -> 'StorageConfig':
        """
        Resolve the backend choice from Django settings.

        STORAGE_MODE ('local' or 's3') wins when set. Otherwise S3 is used
        when credentials and a bucket are present, and either the app runs
        in production or USE_AWS_IN_DEV is enabled.
        """
        is_production = getattr(settings, 'APP_ENV', 'development') == 'production'
        bucket = getattr(settings, 'S3_BUCKET_NAME', '') or ''
        access_key = getattr(settings, 'AWS_ACCESS_KEY_ID', '') or ''
        secret_key = getattr(settings, 'AWS_SECRET_ACCESS_KEY', '') or ''

        mode = (getattr(settings, 'STORAGE_MODE', '') or '').lower()
        if mode not in ('', STORAGE_LOCAL, STORAGE_S3):
            raise ImproperlyConfigured(f"STORAGE_MODE must be 'local' or 's3', got {mode!r}")

        if not mode:
            has_credentials = bool(access_key and secret_key and bucket)
            use_aws_in_dev = getattr(settings, 'USE_AWS_IN_DEV', False)
            mode = STORAGE_S3 if has_credentials and (is_production or use_aws_in_dev) else STORAGE_LOCAL

        return cls(
            mode=mode,
            is_production=is_production,
            local_root=Path(getattr(settings, 'UPLOAD_ROOT', '/data/uploads')),
            bucket=bucket,
            region=getattr(settings, 'AWS_REGION', 'eu-central-1'),
            kms_key_id=getattr(settings, 'KMS_KEY_ID', None) or None,
            access_key_id=access_key or None,
            secret_access_key=secret_key or None,
            allowed_regions=tuple(getattr(settings, 'ALLOWED_STORAGE_REGIONS', ['eu-central-1'])),
        )


def validate_storage_config(config: StorageConfig) -> None:
    """
    Enforce the production data-residency rules.

    Raises:
        ImproperlyConfigured: If production S3 storage is missing a bucket
            or points at a region outside the allow-list
    """
    if config.mode != STORAGE_S3:
        if config.is_production:
            logger.warning("Production is running with local file storage")
        return

    if not config.bucket:
        raise ImproperlyConfigured("S3 storage selected but S3_BUCKET_NAME is not set")

    if config.is_production and not config.data_residency_compliant:
        raise ImproperlyConfigured(
            f"Data residency violation: S3 region {config.region!r} is not in "
            f"the allowed regions {list(config.allowed_regions)}"
        )


def build_storage(config: StorageConfig) -> StorageBackend:
    """Create the backend described by config."""
    validate_storage_config(config)

    if config.mode == STORAGE_S3:
        logger.info(f"Using S3 storage: bucket={config.bucket}, region={config.region}")
        return S3Storage(
            bucket=config.bucket,
            region=config.region,
            kms_key_id=config.kms_key_id,
            access_key_id=config.access_key_id,
            secret_access_key=config.secret_access_key,
        )

    logger.info(f"Using local file storage at {config.local_root}")
    return LocalFileStorage(config.local_root)


def get_storage_info(config: StorageConfig) -> dict:
    """Read-only view of the storage configuration for diagnostics."""
    info = {
        'mode': config.mode,
        'isDevEnvironment': config.is_dev_environment,
        'dataResidencyCompliant': config.data_residency_compliant,
    }
    if config.mode == STORAGE_S3:
        info['bucket'] = config.bucket
        info['region'] = config.region
        info['encryption'] = 'aws:kms' if config.kms_key_id else 'AES256'
    else:
        info['localPath'] = str(config.local_root)
    return info
