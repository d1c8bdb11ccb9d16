from django.apps import AppConfig


class DocsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.docs'
    verbose_name = 'Document Portal'

    def ready(self):
        # Refuse to start with a non-compliant storage setup
        from .storage import StorageConfig, validate_storage_config

        validate_storage_config(StorageConfig.from_settings())
