"""
Django management command to run the processing sweep worker.

Usage:
    python manage.py run_worker
    python manage.py run_worker --once --limit 10
"""
from django.core.management.base import BaseCommand

from apps.indexing.worker import IndexingWorker


class Command(BaseCommand):
    help = 'Run the document processing sweep worker'

    def add_arguments(self, parser):
        parser.add_argument(
            '--once',
            action='store_true',
            help='Sweep all tenants once and exit',
        )
        parser.add_argument(
            '--limit',
            type=int,
            default=None,
            help='Documents per tenant per sweep',
        )

    def handle(self, *args, **options):
        worker = IndexingWorker(batch_size=options['limit'])

        if options['once']:
            self.stdout.write('Running one sweep...')
            processed = worker.run_once()
            self.stdout.write(self.style.SUCCESS(f'Completed {processed} documents'))
        else:
            self.stdout.write('Starting worker loop...')
            worker.run()
