"""Document processing queue.

Each ingested document gets one queue item that a worker claims, hands to
the classification collaborator, and finalizes.

Lifecycle:
- enqueue → pending (attempts 0). A document with a pending or processing
  item is not enqueued twice (partial unique index backs this).
- claim_next → processing: highest priority first, then oldest; only items
  whose next_retry_at has elapsed and whose attempts are not spent. The
  claim increments attempts and stamps started_at.
- success → completed (processing time, tokens, model recorded).
- failure with attempts left → pending again, next_retry_at pushed out by
  min(QUEUE_RETRY_CAP_S, QUEUE_RETRY_BASE_S * 2**(attempts-1)).
- failure on the last attempt → failed (terminal, never claimed again).

Claims use SELECT ... FOR UPDATE SKIP LOCKED so concurrent workers never take
the same item. Every transition is a single-row transaction.
"""

import time
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from casesync.config import get_settings
from casesync.db.models import Document, ProcessingQueueItem, QueueStatus
from casesync.db.session import transaction
from casesync.logging import get_logger
from casesync.providers.errors import CloudStorageError, CloudStorageErrorKind
from casesync.services.classifier import (
    ClassificationError,
    ClassificationRequest,
    DocumentClassifier,
)

logger = get_logger(__name__)

ACTIVE_STATUSES = (QueueStatus.pending.value, QueueStatus.processing.value)
MAX_ERROR_MESSAGE_LENGTH = 2000


@dataclass(frozen=True)
class ProcessingResult:
    """Outcome of one claim-and-classify cycle."""

    item_id: UUID
    document_id: UUID
    success: bool
    processing_time_ms: int
    tokens_used: int | None = None
    error: str | None = None


@dataclass(frozen=True)
class QueueStats:
    """Item counts by status."""

    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "pending": self.pending,
            "processing": self.processing,
            "completed": self.completed,
            "failed": self.failed,
        }


def _now() -> datetime:
    return datetime.now(UTC)


def compute_backoff(attempts: int, base_s: int | None = None, cap_s: int | None = None) -> int:
    """Seconds to wait before retrying an item that has failed `attempts` times.

    Examples (base 60, cap 900):
        >>> [compute_backoff(n, 60, 900) for n in (1, 2, 3, 4, 5, 6)]
        [60, 120, 240, 480, 900, 900]
    """
    settings = get_settings()
    if base_s is None:
        base_s = settings.queue_retry_base_s
    if cap_s is None:
        cap_s = settings.queue_retry_cap_s
    exponent = max(attempts - 1, 0)
    return min(cap_s, base_s * (2**exponent))


# =============================================================================
# Enqueue
# =============================================================================


def _active_item_for_document(db: Session, document_id: UUID) -> ProcessingQueueItem | None:
    return db.execute(
        select(ProcessingQueueItem).where(
            ProcessingQueueItem.document_id == document_id,
            ProcessingQueueItem.status.in_(ACTIVE_STATUSES),
        )
    ).scalar_one_or_none()


def enqueue(
    db: Session,
    document_id: UUID,
    case_id: UUID,
    user_id: UUID,
    priority: int = 0,
    max_attempts: int | None = None,
) -> ProcessingQueueItem:
    """Add a document to the queue, or return its already-active item."""
    existing = _active_item_for_document(db, document_id)
    if existing is not None:
        return existing

    item = ProcessingQueueItem(
        document_id=document_id,
        case_id=case_id,
        user_id=user_id,
        status=QueueStatus.pending.value,
        priority=priority,
        attempts=0,
        max_attempts=max_attempts or get_settings().queue_max_attempts,
    )
    try:
        with transaction(db):
            db.add(item)
    except IntegrityError:
        # Another writer enqueued the same document first
        existing = _active_item_for_document(db, document_id)
        if existing is None:
            raise
        return existing

    logger.info(
        "queue.item.enqueued",
        item_id=str(item.id),
        document_id=str(document_id),
        priority=priority,
    )
    return item


def enqueue_batch(
    db: Session,
    case_id: UUID,
    user_id: UUID,
    document_ids: Iterable[UUID],
    priority: int = 0,
) -> list[ProcessingQueueItem]:
    """Enqueue several documents of one case, in the given order."""
    return [enqueue(db, document_id, case_id, user_id, priority) for document_id in document_ids]


# =============================================================================
# Transitions
# =============================================================================


def mark_processing(db: Session, item: ProcessingQueueItem, now: datetime | None = None) -> None:
    """Move a claimed item to processing and count the attempt.

    Raises:
        CloudStorageError(QUEUE_ITEM_EXHAUSTED): The item has no attempts left.
    """
    if item.attempts >= item.max_attempts:
        raise CloudStorageError(
            CloudStorageErrorKind.QUEUE_ITEM_EXHAUSTED,
            f"Queue item {item.id} exhausted {item.max_attempts} attempts",
        )
    item.status = QueueStatus.processing.value
    item.started_at = now or _now()
    item.attempts += 1
    item.next_retry_at = None


def claim_next(db: Session, now: datetime | None = None) -> ProcessingQueueItem | None:
    """Claim the next ready item, or return None when nothing is ready."""
    now = now or _now()
    with transaction(db):
        item = db.execute(
            select(ProcessingQueueItem)
            .where(
                ProcessingQueueItem.status == QueueStatus.pending.value,
                ProcessingQueueItem.attempts < ProcessingQueueItem.max_attempts,
                or_(
                    ProcessingQueueItem.next_retry_at.is_(None),
                    ProcessingQueueItem.next_retry_at <= now,
                ),
            )
            .order_by(
                ProcessingQueueItem.priority.desc(),
                ProcessingQueueItem.created_at.asc(),
                ProcessingQueueItem.id.asc(),
            )
            .limit(1)
            .with_for_update(skip_locked=True)
        ).scalar_one_or_none()

        if item is None:
            return None
        mark_processing(db, item, now)

    logger.info(
        "queue.item.claimed",
        item_id=str(item.id),
        document_id=str(item.document_id),
        attempt=item.attempts,
        priority=item.priority,
    )
    return item


def mark_completed(
    db: Session,
    item: ProcessingQueueItem,
    processing_time_ms: int,
    tokens_used: int | None = None,
    model_used: str | None = None,
    now: datetime | None = None,
) -> None:
    with transaction(db):
        item.status = QueueStatus.completed.value
        item.completed_at = now or _now()
        item.processing_time_ms = processing_time_ms
        item.tokens_used = tokens_used
        item.model_used = model_used
        item.error_message = None
        item.next_retry_at = None

    logger.info(
        "queue.item.completed",
        item_id=str(item.id),
        document_id=str(item.document_id),
        processing_time_ms=processing_time_ms,
        tokens_used=tokens_used,
    )


def _lock_if_processing(db: Session, item: ProcessingQueueItem) -> bool:
    """Lock the row and reload item; False if it left processing or another worker holds it."""
    current = db.execute(
        select(ProcessingQueueItem)
        .where(
            ProcessingQueueItem.id == item.id,
            ProcessingQueueItem.status == QueueStatus.processing.value,
        )
        .with_for_update(skip_locked=True)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    return current is not None


def mark_failed(
    db: Session, item: ProcessingQueueItem, error: str, now: datetime | None = None
) -> bool:
    """Record a failed attempt: schedule a retry, or fail terminally on the last attempt.

    Only an item still in processing is touched, so an attempt that finished
    concurrently keeps its outcome.

    Returns:
        Whether the failure was recorded.
    """
    now = now or _now()
    error = error[:MAX_ERROR_MESSAGE_LENGTH]

    with transaction(db):
        if not _lock_if_processing(db, item):
            logger.info("queue.item.fail_skipped", item_id=str(item.id))
            return False
        item.error_message = error
        if item.attempts < item.max_attempts:
            item.status = QueueStatus.pending.value
            item.next_retry_at = now + timedelta(seconds=compute_backoff(item.attempts))
        else:
            item.status = QueueStatus.failed.value
            item.next_retry_at = None
            item.completed_at = now

    logger.warning(
        "queue.item.failed",
        item_id=str(item.id),
        document_id=str(item.document_id),
        attempt=item.attempts,
        max_attempts=item.max_attempts,
        terminal=item.status == QueueStatus.failed.value,
        next_retry_at=item.next_retry_at.isoformat() if item.next_retry_at else None,
    )
    return True


# =============================================================================
# Processing
# =============================================================================


def _build_request(db: Session, item: ProcessingQueueItem) -> ClassificationRequest:
    document = db.get(Document, item.document_id)
    if document is None:
        raise ClassificationError(f"Document {item.document_id} no longer exists")
    return ClassificationRequest(
        document_id=document.id,
        case_id=document.case_id,
        user_id=item.user_id,
        storage_url=document.storage_url,
        file_name=document.file_name,
        file_type=document.file_type,
    )


async def process_next(
    db: Session, classifier: DocumentClassifier, now: datetime | None = None
) -> ProcessingResult | None:
    """Claim one ready item and classify its document.

    Returns:
        The outcome, or None if no item was ready.
    """
    item = await run_in_threadpool(claim_next, db, now)
    if item is None:
        return None

    started = time.monotonic()
    try:
        request = await run_in_threadpool(_build_request, db, item)
        classification = await classifier.classify(request)
    except Exception as e:
        # Every failure counts as an attempt; the item carries the error
        elapsed_ms = int((time.monotonic() - started) * 1000)
        message = str(e) or type(e).__name__
        if not isinstance(e, ClassificationError):
            logger.exception("queue.item.unexpected_error", item_id=str(item.id))
        await run_in_threadpool(mark_failed, db, item, message)
        return ProcessingResult(
            item_id=item.id,
            document_id=item.document_id,
            success=False,
            processing_time_ms=elapsed_ms,
            error=message,
        )

    elapsed_ms = int((time.monotonic() - started) * 1000)
    await run_in_threadpool(
        mark_completed,
        db,
        item,
        elapsed_ms,
        classification.tokens_used,
        classification.model_used,
    )
    return ProcessingResult(
        item_id=item.id,
        document_id=item.document_id,
        success=True,
        processing_time_ms=elapsed_ms,
        tokens_used=classification.tokens_used,
    )


async def run_queue_batch(
    db: Session,
    classifier: DocumentClassifier,
    batch_size: int | None = None,
    time_budget_s: float | None = None,
) -> list[ProcessingResult]:
    """Process up to batch_size items, stopping early when the time budget is spent."""
    settings = get_settings()
    batch_size = batch_size or settings.queue_batch_size
    if time_budget_s is None:
        time_budget_s = settings.queue_batch_time_budget_s

    deadline = time.monotonic() + time_budget_s
    results: list[ProcessingResult] = []

    while len(results) < batch_size and time.monotonic() < deadline:
        result = await process_next(db, classifier)
        if result is None:
            break
        results.append(result)

    if results:
        logger.info(
            "queue.batch.finished",
            processed=len(results),
            succeeded=sum(1 for r in results if r.success),
            failed=sum(1 for r in results if not r.success),
        )
    return results


# =============================================================================
# Read side
# =============================================================================


def get_queue_item(db: Session, item_id: UUID) -> ProcessingQueueItem | None:
    return db.get(ProcessingQueueItem, item_id)


def get_latest_item_for_document(db: Session, document_id: UUID) -> ProcessingQueueItem | None:
    return db.execute(
        select(ProcessingQueueItem)
        .where(ProcessingQueueItem.document_id == document_id)
        .order_by(ProcessingQueueItem.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()


def list_case_queue(db: Session, case_id: UUID) -> list[ProcessingQueueItem]:
    """Items for a case in claim order."""
    return list(
        db.execute(
            select(ProcessingQueueItem)
            .where(ProcessingQueueItem.case_id == case_id)
            .order_by(
                ProcessingQueueItem.priority.desc(),
                ProcessingQueueItem.created_at.asc(),
            )
        ).scalars()
    )


def _count_by_status(db: Session, case_id: UUID | None = None) -> QueueStats:
    query = select(ProcessingQueueItem.status, func.count()).group_by(ProcessingQueueItem.status)
    if case_id is not None:
        query = query.where(ProcessingQueueItem.case_id == case_id)

    counts = {status: count for status, count in db.execute(query).all()}
    return QueueStats(
        total=sum(counts.values()),
        pending=counts.get(QueueStatus.pending.value, 0),
        processing=counts.get(QueueStatus.processing.value, 0),
        completed=counts.get(QueueStatus.completed.value, 0),
        failed=counts.get(QueueStatus.failed.value, 0),
    )


def get_case_processing_status(db: Session, case_id: UUID) -> QueueStats:
    return _count_by_status(db, case_id)


def get_global_queue_stats(db: Session) -> QueueStats:
    return _count_by_status(db)


def list_exhausted_items(db: Session, limit: int = 100) -> list[ProcessingQueueItem]:
    """Terminally failed items, most recent first."""
    return list(
        db.execute(
            select(ProcessingQueueItem)
            .where(ProcessingQueueItem.status == QueueStatus.failed.value)
            .order_by(ProcessingQueueItem.completed_at.desc())
            .limit(limit)
        ).scalars()
    )


# =============================================================================
# Maintenance
# =============================================================================


def cleanup_old_items(
    db: Session, older_than_days: int | None = None, now: datetime | None = None
) -> int:
    """Delete completed and exhausted items finished before the cutoff."""
    if older_than_days is None:
        older_than_days = get_settings().queue_retention_days
    cutoff = (now or _now()) - timedelta(days=older_than_days)

    with transaction(db):
        result = db.execute(
            delete(ProcessingQueueItem)
            .where(
                ProcessingQueueItem.completed_at < cutoff,
                or_(
                    ProcessingQueueItem.status == QueueStatus.completed.value,
                    and_(
                        ProcessingQueueItem.status == QueueStatus.failed.value,
                        ProcessingQueueItem.attempts >= ProcessingQueueItem.max_attempts,
                    ),
                ),
            )
            .execution_options(synchronize_session=False)
        )

    deleted = result.rowcount or 0
    if deleted:
        logger.info("queue.cleanup.finished", deleted=deleted, older_than_days=older_than_days)
    return deleted


def cancel_case_processing(db: Session, case_id: UUID) -> int:
    """Drop a case's pending and failed items. Items being processed are left alone."""
    with transaction(db):
        result = db.execute(
            delete(ProcessingQueueItem)
            .where(
                ProcessingQueueItem.case_id == case_id,
                ProcessingQueueItem.status.in_(
                    (QueueStatus.pending.value, QueueStatus.failed.value)
                ),
            )
            .execution_options(synchronize_session=False)
        )
    deleted = result.rowcount or 0
    logger.info("queue.case_cancelled", case_id=str(case_id), deleted=deleted)
    return deleted


def sweep_stale_processing(
    db: Session, older_than: timedelta | None = None, now: datetime | None = None
) -> int:
    """Fail attempts whose worker vanished while the item was processing.

    Returns:
        Number of items swept.
    """
    now = now or _now()
    if older_than is None:
        older_than = timedelta(seconds=get_settings().queue_stale_processing_s)
    threshold = now - older_than

    stale = list(
        db.execute(
            select(ProcessingQueueItem)
            .where(
                ProcessingQueueItem.status == QueueStatus.processing.value,
                ProcessingQueueItem.started_at < threshold,
            )
            .order_by(ProcessingQueueItem.started_at.asc())
        ).scalars()
    )

    swept = sum(1 for item in stale if mark_failed(db, item, "Processing timed out", now=now))

    if swept:
        logger.info("queue.sweep.finished", swept=swept)
    return swept
