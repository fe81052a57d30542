"""Celery tasks for casesync.

Tasks are explicitly imported here to register them with Celery.
No autodiscovery - all tasks must be imported in this module.

Usage in worker:
    from casesync.tasks import process_document_queue
"""

from casesync.tasks.process_document_queue import process_document_queue
from casesync.tasks.queue_maintenance import cleanup_processing_queue, sweep_stale_queue_items

__all__ = ["process_document_queue", "sweep_stale_queue_items", "cleanup_processing_queue"]
