"""
Print the resolved storage configuration and probe the backend.

Usage:
    python manage.py check_storage
"""
import json

from django.core.management.base import BaseCommand, CommandError

from apps.docs.errors import StorageError
from apps.docs.health import STORAGE_PROBE_KEY
from apps.docs.storage import StorageConfig, build_storage, get_storage_info


class Command(BaseCommand):
    help = 'Show the storage configuration and check that the backend answers'

    def handle(self, *args, **options):
        config = StorageConfig.from_settings()
        self.stdout.write(json.dumps(get_storage_info(config), indent=2))

        try:
            build_storage(config).exists(STORAGE_PROBE_KEY)
        except StorageError as e:
            raise CommandError(f"Storage backend unreachable: {e}")

        self.stdout.write(self.style.SUCCESS(f"Storage backend '{config.mode}' is reachable"))
