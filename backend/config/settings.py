"""
Django settings for the document portal backend.
"""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv('SECRET_KEY', 'django-insecure-dev-key-change-in-production')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.getenv('DEBUG', 'False').lower() in ('true', '1', 'yes')

ALLOWED_HOSTS = [
    h.strip() for h in os.getenv('ALLOWED_HOSTS', 'localhost,127.0.0.1,testserver').split(',')
]

# 'development' or 'production'; production enforces data residency
APP_ENV = os.getenv('APP_ENV', 'development').lower()

# Application definition
INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'apps.authn',
    'apps.docs',
    'apps.indexing',
    'apps.search',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'config.urls'

TEMPLATES = []

WSGI_APPLICATION = 'config.wsgi.application'
ASGI_APPLICATION = 'config.asgi.application'

# Database
# Using environment variable for database URL
DATABASE_URL = os.getenv('DATABASE_URL', '')
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'db.sqlite3',
    }
}
if DATABASE_URL:
    import re
    match = re.match(
        r'postgres(?:ql)?://(?P<user>[^:]+):(?P<password>[^@]+)@(?P<host>[^:]+):(?P<port>\d+)/(?P<name>.+)',
        DATABASE_URL
    )
    if match:
        DATABASES = {
            'default': {
                'ENGINE': 'django.db.backends.postgresql',
                'NAME': match.group('name'),
                'USER': match.group('user'),
                'PASSWORD': match.group('password'),
                'HOST': match.group('host'),
                'PORT': match.group('port'),
            }
        }

# Password validation (minimal for API-only backend)
AUTH_PASSWORD_VALIDATORS = []

# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

# Default primary key field type
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# =============================================================================
# Keycloak / JWT Configuration
# =============================================================================
KC_BASE_URL = os.getenv('KC_BASE_URL', 'http://keycloak:8080')
KC_REALM = os.getenv('KC_REALM', 'docportal')
KC_AUDIENCE = os.getenv('KC_AUDIENCE', 'docportal-frontend')
KC_ISSUER = os.getenv('KC_ISSUER', f'{KC_BASE_URL}/realms/{KC_REALM}')
KC_JWKS_URL = f'{KC_BASE_URL}/realms/{KC_REALM}/protocol/openid-connect/certs'

# External issuer for tokens issued via browser (through nginx proxy)
KC_EXTERNAL_ISSUER = os.getenv('KC_EXTERNAL_ISSUER', f'http://localhost/realms/{KC_REALM}')

# List of valid issuers (internal + external)
KC_VALID_ISSUERS = [KC_ISSUER, KC_EXTERNAL_ISSUER]

# JWKS cache TTL in seconds (10 minutes default)
KC_JWKS_CACHE_TTL = int(os.getenv('KC_JWKS_CACHE_TTL', '600'))

# Token claims carrying the tenant and the confidential-document grants
KC_TENANT_CLAIM = os.getenv('KC_TENANT_CLAIM', 'tenant_id')
KC_CONFIDENTIAL_CLAIM = os.getenv('KC_CONFIDENTIAL_CLAIM', 'confidential_documents')

# Roles that see every confidential document of their tenant
ADMIN_ROLES = [
    r.strip() for r in os.getenv('ADMIN_ROLES', 'admin,superadmin,super_admin').split(',') if r.strip()
]

# =============================================================================
# Document Storage
# =============================================================================
# 'local' or 's3'; when unset, production uses S3 and development uses the
# local filesystem unless USE_AWS_IN_DEV is set
STORAGE_MODE = os.getenv('STORAGE_MODE', '').lower()
USE_AWS_IN_DEV = os.getenv('USE_AWS_IN_DEV', 'False').lower() in ('true', '1', 'yes')

# Root directory for uploaded files (local mode)
UPLOAD_ROOT = Path(os.getenv('UPLOAD_ROOT', '/data/uploads'))

AWS_REGION = os.getenv('AWS_REGION', 'eu-central-1')
AWS_ACCESS_KEY_ID = os.getenv('AWS_ACCESS_KEY_ID', '')
AWS_SECRET_ACCESS_KEY = os.getenv('AWS_SECRET_ACCESS_KEY', '')
S3_BUCKET_NAME = os.getenv('S3_BUCKET_NAME', '')

# Server-side encryption uses aws:kms when set, AES256 otherwise
KMS_KEY_ID = os.getenv('KMS_KEY_ID', '')

# Production refuses to start when AWS_REGION is not listed here
ALLOWED_STORAGE_REGIONS = [
    r.strip() for r in os.getenv('ALLOWED_STORAGE_REGIONS', 'eu-central-1').split(',') if r.strip()
]

# =============================================================================
# File Upload Configuration
# =============================================================================
# Maximum file size in bytes (20MB default)
MAX_UPLOAD_SIZE = int(os.getenv('MAX_UPLOAD_SIZE', 20 * 1024 * 1024))

# Allowed MIME types for upload
ALLOWED_CONTENT_TYPES = [
    'application/pdf',
    'application/msword',
    'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
    'application/vnd.ms-excel',
    'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
    'application/vnd.ms-powerpoint',
    'application/vnd.openxmlformats-officedocument.presentationml.presentation',
    'text/plain',
    'text/csv',
    'application/json',
    'application/xml',
    'image/jpeg',
    'image/png',
]

# =============================================================================
# LLM analysis
# =============================================================================
# 'ollama' or 'openai' (any OpenAI-compatible endpoint)
LLM_PROVIDER = os.getenv('LLM_PROVIDER', 'ollama').lower()

OLLAMA_BASE_URL = os.getenv('OLLAMA_BASE_URL', 'http://ollama:11434')
OLLAMA_CHAT_MODEL = os.getenv('OLLAMA_CHAT_MODEL', 'llama3.2')

# LLM Timeout settings (in seconds) - increase for slower hardware
OLLAMA_CHAT_TIMEOUT = int(os.getenv('OLLAMA_CHAT_TIMEOUT', '600'))  # 10 min
OLLAMA_EMBED_TIMEOUT = int(os.getenv('OLLAMA_EMBED_TIMEOUT', '120'))  # 2 min

OPENAI_API_KEY = os.getenv('OPENAI_API_KEY', '')
OPENAI_BASE_URL = os.getenv('OPENAI_BASE_URL', 'https://api.openai.com/v1')
OPENAI_MODEL = os.getenv('OPENAI_MODEL', 'gpt-4o-mini')
OPENAI_TIMEOUT = int(os.getenv('OPENAI_TIMEOUT', '120'))

# =============================================================================
# Embeddings and chunking
# =============================================================================
EMBEDDING_PROVIDER = os.getenv('EMBEDDING_PROVIDER', 'ollama').lower()
EMBEDDING_MODEL = os.getenv('EMBEDDING_MODEL', 'nomic-embed-text')

# Must match the vector column (see apps.indexing.models)
EMBEDDING_DIMENSIONS = int(os.getenv('EMBEDDING_DIMENSIONS', '768'))

CHUNK_MAX_TOKENS = int(os.getenv('CHUNK_MAX_TOKENS', '1000'))
CHUNK_OVERLAP_TOKENS = int(os.getenv('CHUNK_OVERLAP_TOKENS', '100'))

# =============================================================================
# Processing
# =============================================================================
# In-process dispatcher: concurrent runs and backlog before uploads are
# left PENDING for the worker sweep
PROCESSING_MAX_WORKERS = int(os.getenv('PROCESSING_MAX_WORKERS', '2'))
PROCESSING_QUEUE_SIZE = int(os.getenv('PROCESSING_QUEUE_SIZE', '50'))

# Worker sweep (manage.py run_worker)
WORKER_BATCH_SIZE = int(os.getenv('WORKER_BATCH_SIZE', '5'))
WORKER_POLL_INTERVAL = int(os.getenv('WORKER_POLL_INTERVAL', '10'))

# =============================================================================
# Semantic search
# =============================================================================
SEARCH_MIN_SIMILARITY = float(os.getenv('SEARCH_MIN_SIMILARITY', '0.7'))
SEARCH_DEFAULT_LIMIT = int(os.getenv('SEARCH_DEFAULT_LIMIT', '10'))

# =============================================================================
# Logging
# =============================================================================
LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{levelname} {asctime} {module} {message}',
            'style': '{',
        },
        'json': {
            'format': '%(message)s',  # Audit logs are already JSON
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
        'audit': {
            'class': 'logging.StreamHandler',
            'formatter': 'json',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'INFO',
    },
    'loggers': {
        'apps.authn': {
            'handlers': ['console'],
            'level': 'DEBUG',
            'propagate': False,
        },
        'apps.docs': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'apps.indexing': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'apps.search': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'audit': {
            'handlers': ['audit'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}
