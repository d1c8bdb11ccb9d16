"""
Processing sweep worker.

Uploads are processed in the background by the web process, but a
document can stay PENDING (backlog full, process restarted, dispatch
failed). This worker periodically sweeps every tenant with PENDING
documents and processes them oldest first.

Claims are atomic conditional updates, so the worker can run next to
the web process, or as several replicas, without double-processing.

Run as: python manage.py run_worker
"""
import time
import signal
import logging
from pathlib import Path

from django.conf import settings

from apps.docs.services import get_services

logger = logging.getLogger(__name__)

# Configuration
MAX_CONSECUTIVE_ERRORS = 5  # Stop if too many errors in a row
HEARTBEAT_FILE = '/tmp/worker_heartbeat'


def touch_heartbeat():
    """Touch heartbeat file for health checks."""
    try:
        Path(HEARTBEAT_FILE).touch()
    except OSError as e:
        logger.warning(f"Failed to update heartbeat: {e}")


class IndexingWorker:
    """Sweeps PENDING documents across tenants."""

    def __init__(self, pipeline=None, repository=None, batch_size=None, poll_interval=None):
        services = None
        if pipeline is None or repository is None:
            services = get_services()
        self.pipeline = pipeline or services.pipeline
        self.repository = repository or services.repository
        self.batch_size = batch_size or getattr(settings, 'WORKER_BATCH_SIZE', 5)
        self.poll_interval = poll_interval or getattr(settings, 'WORKER_POLL_INTERVAL', 10)
        self.running = False
        self.consecutive_errors = 0

    def run_once(self) -> int:
        """
        Sweep every tenant once.

        Returns:
            Number of documents that reached COMPLETED
        """
        processed = 0
        for tenant_id in self.repository.pending_tenant_ids():
            processed += self.pipeline.process_pending(tenant_id, self.batch_size)
        touch_heartbeat()
        return processed

    def run(self):
        """
        Main worker loop.

        Keeps sweeping while documents are completing, and sleeps for
        poll_interval when a sweep finds nothing to do.
        """
        logger.info("Starting processing worker...")

        self.running = True

        # Set up signal handlers for graceful shutdown
        def handle_signal(signum, frame):
            logger.info(f"Received signal {signum}, shutting down...")
            self.running = False

        signal.signal(signal.SIGTERM, handle_signal)
        signal.signal(signal.SIGINT, handle_signal)

        while self.running:
            try:
                processed = self.run_once()
                self.consecutive_errors = 0
                if processed:
                    continue
                time.sleep(self.poll_interval)

            except Exception as e:
                logger.exception(f"Error in worker loop: {e}")
                self.consecutive_errors += 1

                if self.consecutive_errors >= MAX_CONSECUTIVE_ERRORS:
                    logger.error("Too many consecutive errors, stopping worker")
                    break

                # Back off on errors
                time.sleep(self.poll_interval * 2)

        logger.info("Worker stopped")
