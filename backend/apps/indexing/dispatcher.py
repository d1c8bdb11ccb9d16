"""
Bounded background dispatch of document processing.

Uploads hand their document to the dispatcher and return immediately.
Work runs on a small thread pool; the number of queued plus running
tasks is capped. When the cap is reached the document simply stays
PENDING and the sweep worker (run_worker) picks it up later.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from django.db import close_old_connections

logger = logging.getLogger(__name__)


class ProcessingDispatcher:
    """Submits pipeline runs to a bounded executor with its own error boundary."""

    def __init__(self, pipeline_factory: Callable, max_workers: int = 2, queue_size: int = 50):
        """
        Args:
            pipeline_factory: Returns the ProcessingPipeline to run tasks with
            max_workers: Concurrent processing threads
            queue_size: Extra tasks allowed to wait for a free thread
        """
        self._pipeline_factory = pipeline_factory
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix='doc-processing',
        )
        self._slots = threading.BoundedSemaphore(max_workers + queue_size)
        self._closed = False

    def submit(self, document_id, tenant_id: str, retry: bool = False) -> bool:
        """
        Schedule processing of a document. Never raises.

        Returns:
            True if the task was accepted, False if the document was left
            for the sweep (backlog full or dispatcher shut down)
        """
        if self._closed:
            logger.warning(f"Dispatcher closed, document {document_id} left for the sweep")
            return False

        if not self._slots.acquire(blocking=False):
            logger.warning(f"Processing backlog full, document {document_id} left for the sweep")
            return False

        try:
            self._executor.submit(self._run, document_id, tenant_id, retry)
        except RuntimeError as e:
            # Executor already shut down
            self._slots.release()
            logger.error(f"Could not schedule document {document_id}: {e}")
            return False

        logger.debug(f"Scheduled processing for document {document_id}")
        return True

    def _run(self, document_id, tenant_id: str, retry: bool) -> None:
        try:
            self._pipeline_factory().process_document(document_id, tenant_id, retry=retry)
        except Exception:
            logger.exception(f"Background processing crashed for document {document_id}")
        finally:
            # Worker threads keep their own DB connections
            close_old_connections()
            self._slots.release()

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; optionally wait for running tasks."""
        self._closed = True
        self._executor.shutdown(wait=wait)
