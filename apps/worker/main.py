"""Celery worker entrypoint.

Run with: celery -A apps.worker.main:celery_app worker -Q processing,default --loglevel=info
Beat:     celery -A apps.worker.main:celery_app beat --loglevel=info

This module imports the Celery app and explicitly registers all tasks.
Task definitions are in casesync.tasks package - no autodiscovery.

Logging Convention:
- All task log entries include request_id, task_name, task_id when available
- Tasks accept `request_id: str | None = None` parameter for correlation
- Use configure_task_logging() at the start of each task to set up context

Queue Configuration:
- processing: Document classification queue drain (calls the classifier)
- default: Queue maintenance (stale sweep, retention cleanup)

Concurrency Notes:
- Queue claims use FOR UPDATE SKIP LOCKED, so several workers may drain at once
- Each drain is bounded by QUEUE_BATCH_SIZE and QUEUE_BATCH_TIME_BUDGET_S
"""

from celery.signals import worker_process_init

from casesync.celery import celery_app
from casesync.logging import configure_logging, get_logger

# =============================================================================
# Task Registration (explicit imports - no autodiscovery)
# =============================================================================

# Each import registers the task with the celery_app
from casesync.tasks import (  # noqa: F401
    cleanup_processing_queue,
    process_document_queue,
    sweep_stale_queue_items,
)

# =============================================================================
# Worker Lifecycle
# =============================================================================


@worker_process_init.connect
def setup_worker_logging(**kwargs):
    """Configure structlog when worker process starts."""
    configure_logging()
    logger = get_logger(__name__)
    logger.info("celery_worker_started", queues=["processing", "default"])


# Export celery_app for Celery to find
# Command: celery -A apps.worker.main:celery_app worker ...
__all__ = ["celery_app"]
