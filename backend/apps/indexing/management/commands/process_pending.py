"""
Process one batch of PENDING documents for a tenant.

Usage:
    python manage.py process_pending --tenant acme --limit 5
"""
from django.core.management.base import BaseCommand

from apps.docs.services import get_services


class Command(BaseCommand):
    help = 'Process the oldest PENDING documents of a tenant'

    def add_arguments(self, parser):
        parser.add_argument('--tenant', required=True, help='Tenant ID')
        parser.add_argument('--limit', type=int, default=5, help='Maximum documents to process')

    def handle(self, *args, **options):
        pipeline = get_services().pipeline
        processed = pipeline.process_pending(options['tenant'], options['limit'])
        self.stdout.write(self.style.SUCCESS(
            f"Processed {processed} documents for tenant {options['tenant']}"
        ))
