"""Celery task draining the document processing queue.

Runs every minute from beat. Each run:
- Claims up to QUEUE_BATCH_SIZE ready items (priority DESC, created_at ASC)
- Sends each to the classification service
- Stops early once QUEUE_BATCH_TIME_BUDGET_S is spent so runs never overlap
  the next tick by much

Failures are recorded on the queue items (retry scheduling lives in
casesync.services.processing_queue); the task itself only fails on
infrastructure errors.
"""

import asyncio

import httpx

from casesync.celery import celery_app
from casesync.config import get_settings
from casesync.db.session import get_session_factory
from casesync.logging import clear_task_context, configure_task_logging, get_logger
from casesync.services.classifier import create_classifier
from casesync.services.processing_queue import ProcessingResult, run_queue_batch

logger = get_logger(__name__)


async def _drain_queue() -> list[ProcessingResult] | None:
    settings = get_settings()
    async with httpx.AsyncClient() as client:
        classifier = create_classifier(client, settings)
        if classifier is None:
            return None

        db = get_session_factory()()
        try:
            return await run_queue_batch(db, classifier)
        finally:
            db.close()


@celery_app.task(bind=True, max_retries=0, name="process_document_queue")
def process_document_queue(self, request_id: str | None = None) -> dict:
    """Process one batch of queued documents.

    Returns:
        Dict with processed/succeeded/failed counts, or skipped=True when no
        classifier is configured.
    """
    configure_task_logging(
        request_id=request_id, task_name="process_document_queue", task_id=self.request.id
    )
    try:
        results = asyncio.run(_drain_queue())
        if results is None:
            return {"skipped": True, "processed": 0}

        summary = {
            "processed": len(results),
            "succeeded": sum(1 for r in results if r.success),
            "failed": sum(1 for r in results if not r.success),
        }
        logger.info("process_document_queue_finished", **summary)
        return summary
    finally:
        clear_task_context()
