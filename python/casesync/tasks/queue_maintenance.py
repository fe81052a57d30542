"""Processing queue maintenance tasks.

sweep_stale_queue_items:
- Items stuck in 'processing' longer than QUEUE_STALE_PROCESSING_S lost their
  worker; each is treated as a failed attempt (retried or failed terminally)

cleanup_processing_queue:
- Deletes completed and exhausted items older than QUEUE_RETENTION_DAYS
"""

from casesync.celery import celery_app
from casesync.db.session import get_session_factory
from casesync.logging import clear_task_context, configure_task_logging, get_logger
from casesync.services.processing_queue import cleanup_old_items, sweep_stale_processing

logger = get_logger(__name__)


@celery_app.task(bind=True, max_retries=0, name="sweep_stale_queue_items")
def sweep_stale_queue_items(self) -> int:
    """Fail attempts abandoned in 'processing'.

    Returns:
        Number of items swept.
    """
    configure_task_logging(task_name="sweep_stale_queue_items", task_id=self.request.id)
    db = get_session_factory()()
    try:
        return sweep_stale_processing(db)
    except Exception as e:
        logger.error("sweep_stale_queue_items_error", error=str(e))
        db.rollback()
        raise
    finally:
        db.close()
        clear_task_context()


@celery_app.task(bind=True, max_retries=0, name="cleanup_processing_queue")
def cleanup_processing_queue(self) -> int:
    """Delete finished queue items past retention.

    Returns:
        Number of items deleted.
    """
    configure_task_logging(task_name="cleanup_processing_queue", task_id=self.request.id)
    db = get_session_factory()()
    try:
        return cleanup_old_items(db)
    except Exception as e:
        logger.error("cleanup_processing_queue_error", error=str(e))
        db.rollback()
        raise
    finally:
        db.close()
        clear_task_context()
