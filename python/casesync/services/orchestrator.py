"""Sync orchestrator: the per-case sync state machine.

States: idle → in_progress → completed | error | cancelled

start():
1. Atomic check-and-set on the in-process active-sync guard (409 if taken)
2. Owner-scoped case lookup and folder mapping (legacy Dropbox fallback)
3. Insert the SyncRun row; the partial unique index on
   sync_runs(case_id) WHERE status='in_progress' backs the guard across
   processes
Any failure in 2-3 releases the guard before the error propagates.

run():
token (refreshed if needed) → depth-first enumeration → bulk dedup plan →
ingest each file in enumeration order → enqueue new documents → finalize.

Rules:
- Progress is min(99, processed * 100 // total) while running and reaches
  100 only once the run row is finalized, so pollers never see it decrease
- Per-file failures (download, blob write) are appended to the run's error
  list and counted; they never fail the run
- Listing failures below the root are recorded under the folder path and
  are not file errors
- Token and root-listing failures are fatal: the run is finalized as error
  with a top-level entry and the exception propagates
- Already-ingested files stay ingested on any outcome
- The guard is released in every outcome

DB work is synchronous SQLAlchemy executed through run_in_threadpool; no
lock is held across a remote call except the guard itself.
"""

import asyncio
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from casesync.config import Settings, get_settings
from casesync.db.models import Case, SyncRun, SyncStatus
from casesync.db.session import transaction
from casesync.errors import ApiErrorCode, NotFoundError
from casesync.logging import bind_sync_context, get_logger
from casesync.providers.errors import CloudStorageError, CloudStorageErrorKind
from casesync.providers.registry import ProviderRegistry
from casesync.providers.types import CloudProvider
from casesync.schemas.sync import SyncErrorOut, SyncProgressOut, SyncRunOut
from casesync.services import credentials, processing_queue
from casesync.services.dedup import Decision, plan_ingestion
from casesync.services.enumerator import FolderEnumerator
from casesync.services.folders import get_owned_case, resolve_folder_mapping
from casesync.services.ingestion import IngestionWriter
from casesync.storage.client import BlobStore, StorageError

logger = get_logger(__name__)

CANCELLED_MESSAGE = "Cancelled by user"
INTERRUPTED_MESSAGE = "Interrupted by restart"
SHUTDOWN_MESSAGE = "Interrupted by shutdown"
DEFAULT_HISTORY_LIMIT = 20

# Priority for documents from a case's first sync; later syncs use 0
FIRST_SYNC_PRIORITY = 1


def _now() -> datetime:
    return datetime.now(UTC)


def _error_entry(file: str, message: str) -> dict[str, str]:
    return {"file": file, "error": message, "timestamp": _now().isoformat()}


# =============================================================================
# Active-sync guard
# =============================================================================


@dataclass
class SyncProgress:
    """Live progress of one active run."""

    case_id: UUID
    sync_id: UUID | None = None
    status: SyncStatus = SyncStatus.in_progress
    progress: int = 0
    current_file: str | None = None
    files_processed: int = 0
    total_files: int = 0
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)


class ActiveSyncRegistry:
    """In-process map of case id → live progress.

    try_acquire is the atomic check-and-set guarding one run per case.
    All reads and writes go through the lock; readers get copies.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: dict[UUID, SyncProgress] = {}

    def try_acquire(self, case_id: UUID) -> SyncProgress | None:
        """Register a run for the case, or return None if one is active."""
        with self._lock:
            if case_id in self._active:
                return None
            progress = SyncProgress(case_id=case_id)
            self._active[case_id] = progress
            return progress

    def release(self, case_id: UUID, progress: SyncProgress) -> None:
        """Drop the guard, but only if it still belongs to this run."""
        with self._lock:
            if self._active.get(case_id) is progress:
                del self._active[case_id]

    def update(self, progress: SyncProgress, /, **changes: Any) -> None:
        with self._lock:
            for name, value in changes.items():
                setattr(progress, name, value)

    def get(self, case_id: UUID) -> SyncProgress | None:
        """Return the live record (not a copy) for signalling."""
        with self._lock:
            return self._active.get(case_id)

    def snapshot(self, case_id: UUID) -> SyncProgressOut | None:
        with self._lock:
            progress = self._active.get(case_id)
            if progress is None or progress.sync_id is None:
                return None
            return SyncProgressOut(
                sync_id=progress.sync_id,
                status=progress.status.value,
                progress=progress.progress,
                current_file=progress.current_file,
                files_processed=progress.files_processed,
                total_files=progress.total_files,
            )

    def is_active(self, case_id: UUID) -> bool:
        with self._lock:
            return case_id in self._active

    def __len__(self) -> int:
        with self._lock:
            return len(self._active)


# =============================================================================
# Run bookkeeping
# =============================================================================


@dataclass(frozen=True)
class SyncHandle:
    """Everything run() needs, resolved by start()."""

    sync_id: UUID
    case_id: UUID
    user_id: UUID
    provider: CloudProvider
    folder_path: str
    is_first_sync: bool


@dataclass
class RunCounts:
    found: int = 0
    new: int = 0
    updated: int = 0
    skipped: int = 0
    error: int = 0
    queued: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)


def _finalize_run(
    db: Session,
    sync_id: UUID,
    status: SyncStatus,
    counts: RunCounts,
    duration_ms: int,
    mark_case_synced: bool,
) -> SyncRun:
    """Write final counts and status exactly once (only from in_progress)."""
    run = db.get(SyncRun, sync_id)
    with transaction(db):
        if run.status == SyncStatus.in_progress.value:
            run.status = status.value
            run.files_found = counts.found
            run.files_new = counts.new
            run.files_updated = counts.updated
            run.files_skipped = counts.skipped
            run.files_error = counts.error
            run.files_queued = counts.queued
            run.errors = list(counts.errors)
            run.completed_at = _now()
            run.duration_ms = duration_ms
            if mark_case_synced:
                db.execute(
                    update(Case).where(Case.id == run.case_id).values(last_synced_at=run.completed_at)
                )
        else:
            logger.warning("sync.run.already_finalized", status=run.status)
    return run


def _record_files_found(db: Session, sync_id: UUID, files_found: int) -> None:
    with transaction(db):
        db.execute(update(SyncRun).where(SyncRun.id == sync_id).values(files_found=files_found))


def _touch_run(db: Session, sync_id: UUID) -> None:
    with transaction(db):
        db.execute(
            update(SyncRun)
            .where(SyncRun.id == sync_id, SyncRun.status == SyncStatus.in_progress.value)
            .values(heartbeat_at=_now())
        )


def _finalize_stale_runs(
    db: Session,
    now: datetime,
    stale_after: timedelta,
    skip: Callable[[UUID], bool],
    case_id: UUID | None = None,
) -> int:
    """Finalize in_progress runs whose owner stopped heartbeating as error.

    A run is stale when its heartbeat (or start time, before the first
    heartbeat) is older than stale_after. Runs for which skip(case_id) is true
    are left alone.
    """
    threshold = now - stale_after
    query = select(SyncRun).where(
        SyncRun.status == SyncStatus.in_progress.value,
        func.coalesce(SyncRun.heartbeat_at, SyncRun.started_at) < threshold,
    )
    if case_id is not None:
        query = query.where(SyncRun.case_id == case_id)

    recovered = 0
    with transaction(db):
        for run in db.execute(query).scalars().all():
            if skip(run.case_id):
                continue
            run.status = SyncStatus.error.value
            run.errors = [*(run.errors or []), _error_entry("", INTERRUPTED_MESSAGE)]
            run.completed_at = now
            run.duration_ms = int((now - run.started_at).total_seconds() * 1000)
            recovered += 1
    return recovered


class RunHeartbeat:
    """Throttled liveness stamp on the run row, read by stale-run recovery."""

    def __init__(self, db: Session, sync_id: UUID, interval_s: float):
        self._db = db
        self._sync_id = sync_id
        self._interval_s = interval_s
        self._last = time.monotonic()

    async def beat(self) -> None:
        now = time.monotonic()
        if now - self._last < self._interval_s:
            return
        self._last = now
        await run_in_threadpool(_touch_run, self._db, self._sync_id)


# =============================================================================
# Orchestrator
# =============================================================================


class SyncOrchestrator:
    """Drives sync runs for all cases in this process."""

    def __init__(
        self,
        providers: ProviderRegistry,
        blob_store: BlobStore,
        db_factory: Callable[[], Session],
        settings: Settings | None = None,
        active: ActiveSyncRegistry | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._providers = providers
        self._writer = IngestionWriter(blob_store)
        self._db_factory = db_factory
        self._settings = settings or get_settings()
        self.active = active or ActiveSyncRegistry()
        self._sleep = sleep
        self._tasks: dict[UUID, asyncio.Task] = {}
        self._stale_after = timedelta(seconds=self._settings.sync_stale_run_s)

    # -------------------------------------------------------------------------
    # Start
    # -------------------------------------------------------------------------

    async def start(self, case_id: UUID, user_id: UUID) -> SyncHandle:
        """Register a new run for the case.

        Raises:
            CloudStorageError(SYNC_ALREADY_IN_PROGRESS): A run is active.
            CloudStorageError(NO_FOLDER_MAPPED): The case has no mapping.
            NotFoundError(E_CASE_NOT_FOUND): Unknown case or not the owner.
        """
        progress = self.active.try_acquire(case_id)
        if progress is None:
            raise CloudStorageError(
                CloudStorageErrorKind.SYNC_ALREADY_IN_PROGRESS, "Sync already in progress"
            )

        try:
            handle = await run_in_threadpool(self._create_run, case_id, user_id)
        except BaseException:
            self.active.release(case_id, progress)
            raise

        self.active.update(progress, sync_id=handle.sync_id)
        return handle

    def _create_run(self, case_id: UUID, user_id: UUID) -> SyncHandle:
        with self._db_factory() as db:
            case = get_owned_case(db, case_id, user_id)
            mapping = resolve_folder_mapping(case)
            if mapping is None:
                raise CloudStorageError(
                    CloudStorageErrorKind.NO_FOLDER_MAPPED,
                    "No cloud storage folder is mapped to this case",
                )
            self._providers.get(mapping.provider)

            # A run orphaned by a dead process would otherwise hold the index
            now = _now()
            _finalize_stale_runs(db, now, self._stale_after, lambda _: False, case_id)

            run = SyncRun(
                case_id=case_id,
                user_id=user_id,
                provider=mapping.provider.value,
                status=SyncStatus.in_progress.value,
                errors=[],
                started_at=now,
                heartbeat_at=now,
            )
            try:
                with transaction(db):
                    db.add(run)
            except IntegrityError as e:
                raise CloudStorageError(
                    CloudStorageErrorKind.SYNC_ALREADY_IN_PROGRESS,
                    "Sync already in progress",
                    provider=mapping.provider.value,
                ) from e

            return SyncHandle(
                sync_id=run.id,
                case_id=case_id,
                user_id=user_id,
                provider=mapping.provider,
                folder_path=mapping.folder_path,
                is_first_sync=case.last_synced_at is None,
            )

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    async def sync(self, case_id: UUID, user_id: UUID) -> SyncRunOut:
        """Start and run to completion in the caller's task."""
        handle = await self.start(case_id, user_id)
        return await self.run(handle)

    async def start_background(self, case_id: UUID, user_id: UUID) -> SyncHandle:
        """Start a run and drive it in a separate asyncio task."""
        handle = await self.start(case_id, user_id)
        task = asyncio.create_task(self.run(handle), name=f"sync-{handle.sync_id}")
        self._tasks[handle.sync_id] = task
        task.add_done_callback(lambda t: self._on_task_done(handle.sync_id, t))
        return handle

    def _on_task_done(self, sync_id: UUID, task: asyncio.Task) -> None:
        self._tasks.pop(sync_id, None)
        if task.cancelled():
            return
        # Failures are already logged and recorded on the run row
        task.exception()

    async def run(self, handle: SyncHandle) -> SyncRunOut:
        """Execute a started run and finalize it.

        Raises:
            CloudStorageError: Fatal token or root-listing failure (run is finalized as error).
        """
        bind_sync_context(str(handle.case_id), str(handle.sync_id), str(handle.user_id))
        progress = self.active.get(handle.case_id)
        if progress is None or progress.sync_id != handle.sync_id:
            raise RuntimeError(f"Sync {handle.sync_id} is not registered as active")

        started = time.monotonic()
        counts = RunCounts()
        adapter = self._providers.get(handle.provider)
        db = self._db_factory()
        heartbeat = RunHeartbeat(db, handle.sync_id, self._settings.sync_heartbeat_interval_s)
        # Ingested but not yet enqueued; flushed on every exit path
        new_document_ids: list[UUID] = []

        logger.info(
            "sync.run.started",
            provider=handle.provider.value,
            folder=handle.folder_path,
            first_sync=handle.is_first_sync,
        )

        try:
            access_token = await credentials.get_valid_token(db, adapter, handle.user_id)

            enumerator = FolderEnumerator(
                adapter,
                retry_attempts=self._settings.listing_retry_attempts,
                retry_base_s=self._settings.listing_retry_base_s,
                sleep=self._sleep,
            )
            enumeration = await enumerator.list_all_files(
                access_token,
                handle.folder_path,
                progress.cancel_event,
                on_folder_listed=heartbeat.beat,
            )
            for listing_error in enumeration.errors:
                counts.errors.append(_error_entry(listing_error.path, listing_error.message))

            files = enumeration.files
            counts.found = len(files)
            self.active.update(progress, total_files=counts.found)
            await run_in_threadpool(_record_files_found, db, handle.sync_id, counts.found)

            decisions = await run_in_threadpool(plan_ingestion, db, handle.case_id, files)
            cancelled = enumeration.cancelled

            for index, decision in enumerate(decisions, start=1):
                if progress.cancel_event.is_set():
                    cancelled = True
                    break

                file = decision.file
                self.active.update(progress, current_file=file.name)

                if not decision.decision.ingests:
                    counts.skipped += 1
                else:
                    try:
                        result = await self._writer.ingest(
                            db, adapter, access_token, handle.user_id, handle.case_id, file
                        )
                    except (CloudStorageError, StorageError) as e:
                        counts.error += 1
                        counts.errors.append(_error_entry(file.name, e.message))
                        logger.warning(
                            "sync.file.failed",
                            file_name=file.name,
                            error_kind=e.kind.value if isinstance(e, CloudStorageError) else e.code,
                            error=e.message,
                        )
                    else:
                        if not result.created:
                            counts.skipped += 1
                        else:
                            new_document_ids.append(result.document_id)
                            if decision.decision == Decision.updated:
                                counts.updated += 1
                            else:
                                counts.new += 1

                self.active.update(
                    progress,
                    files_processed=index,
                    progress=min(99, index * 100 // len(decisions)),
                )
                await heartbeat.beat()

            counts.queued = await self._flush_enqueue(db, handle, new_document_ids)

            if cancelled:
                counts.errors.append(_error_entry("", CANCELLED_MESSAGE))
                status = SyncStatus.cancelled
            else:
                status = SyncStatus.completed

            run = await self._finish(db, handle, progress, status, counts, started)
            if status == SyncStatus.cancelled:
                logger.info("sync.run.cancelled", files_new=counts.new, files_queued=counts.queued)
            else:
                logger.info(
                    "sync.run.completed",
                    files_found=counts.found,
                    files_new=counts.new,
                    files_updated=counts.updated,
                    files_skipped=counts.skipped,
                    files_error=counts.error,
                    files_queued=counts.queued,
                    duration_ms=run.duration_ms,
                )
            return SyncRunOut.model_validate(run)

        except asyncio.CancelledError:
            counts.queued += await self._flush_enqueue(db, handle, new_document_ids)
            counts.errors.append(_error_entry("", SHUTDOWN_MESSAGE))
            await self._finish(db, handle, progress, SyncStatus.error, counts, started)
            logger.warning("sync.run.interrupted")
            raise

        except Exception as e:
            message = e.message if isinstance(e, CloudStorageError) else str(e) or type(e).__name__
            counts.queued += await self._flush_enqueue(db, handle, new_document_ids)
            counts.errors.append(_error_entry("", message))
            await self._finish(db, handle, progress, SyncStatus.error, counts, started)
            logger.error(
                "sync.run.failed",
                error_kind=e.kind.value if isinstance(e, CloudStorageError) else type(e).__name__,
                error=message,
            )
            raise

        finally:
            db.close()
            self.active.release(handle.case_id, progress)

    def _enqueue_documents(
        self, db: Session, handle: SyncHandle, document_ids: list[UUID]
    ) -> int:
        priority = FIRST_SYNC_PRIORITY if handle.is_first_sync else 0
        queued = 0
        for document_id in document_ids:
            try:
                processing_queue.enqueue(
                    db, document_id, handle.case_id, handle.user_id, priority=priority
                )
            except SQLAlchemyError as e:
                logger.error(
                    "sync.enqueue.failed", document_id=str(document_id), error=type(e).__name__
                )
                continue
            queued += 1
        return queued

    async def _flush_enqueue(
        self, db: Session, handle: SyncHandle, document_ids: list[UUID]
    ) -> int:
        """Enqueue and drain document_ids so a later exit path does not repeat them."""
        pending = list(document_ids)
        document_ids.clear()
        if not pending:
            return 0
        return await run_in_threadpool(self._enqueue_documents, db, handle, pending)

    async def _finish(
        self,
        db: Session,
        handle: SyncHandle,
        progress: SyncProgress,
        status: SyncStatus,
        counts: RunCounts,
        started: float,
    ) -> SyncRun:
        duration_ms = int((time.monotonic() - started) * 1000)
        try:
            run = await run_in_threadpool(
                _finalize_run,
                db,
                handle.sync_id,
                status,
                counts,
                duration_ms,
                status == SyncStatus.completed,
            )
        except SQLAlchemyError:
            logger.exception("sync.run.finalize_failed", status=status.value)
            raise
        self.active.update(progress, status=status, progress=100, current_file=None)
        return run

    # -------------------------------------------------------------------------
    # Queries and control
    # -------------------------------------------------------------------------

    def get_sync_status(
        self, db: Session, case_id: UUID, user_id: UUID, sync_id: UUID
    ) -> SyncProgressOut:
        """Live progress while the run is active, else the finalized row.

        Raises:
            NotFoundError: Unknown case (or not the owner) or unknown run.
        """
        get_owned_case(db, case_id, user_id)

        live = self.active.snapshot(case_id)
        if live is not None and live.sync_id == sync_id:
            return live

        run = db.execute(
            select(SyncRun).where(SyncRun.id == sync_id, SyncRun.case_id == case_id)
        ).scalar_one_or_none()
        if run is None:
            raise NotFoundError(ApiErrorCode.E_SYNC_NOT_FOUND, "Sync not found")

        finished = run.status != SyncStatus.in_progress.value
        return SyncProgressOut(
            sync_id=run.id,
            status=run.status,
            progress=100 if finished else 0,
            files_processed=run.files_found if finished else 0,
            total_files=run.files_found,
            files_new=run.files_new,
            files_updated=run.files_updated,
            files_skipped=run.files_skipped,
            files_error=run.files_error,
            files_queued=run.files_queued,
            errors=[SyncErrorOut.model_validate(e) for e in run.errors or []],
            started_at=run.started_at,
            completed_at=run.completed_at,
        )

    def get_sync_history(
        self, db: Session, case_id: UUID, user_id: UUID, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> list[SyncRunOut]:
        """Runs for the case, most recent first."""
        get_owned_case(db, case_id, user_id)
        runs = db.execute(
            select(SyncRun)
            .where(SyncRun.case_id == case_id)
            .order_by(SyncRun.started_at.desc())
            .limit(limit)
        ).scalars()
        return [SyncRunOut.model_validate(run) for run in runs]

    def cancel_sync(self, case_id: UUID) -> UUID:
        """Signal the active run for the case to stop.

        Must be called on the event loop running the sync.

        Returns:
            The cancelled run's id.

        Raises:
            NotFoundError(E_SYNC_NOT_FOUND): Nothing is running for the case.
        """
        progress = self.active.get(case_id)
        if progress is None or progress.sync_id is None:
            raise NotFoundError(ApiErrorCode.E_SYNC_NOT_FOUND, "No sync in progress")
        progress.cancel_event.set()
        logger.info("sync.run.cancel_requested", case_id=str(case_id), sync_id=str(progress.sync_id))
        return progress.sync_id

    def recover_interrupted_runs(self, db: Session, now: datetime | None = None) -> int:
        """Finalize runs whose owning process stopped heartbeating as error.

        Runs that are active here, or whose heartbeat is newer than
        SYNC_STALE_RUN_S, belong to a live process and are left alone.
        """
        recovered = _finalize_stale_runs(
            db, now or _now(), self._stale_after, self.active.is_active
        )
        if recovered:
            logger.warning("sync.runs_recovered", count=recovered)
        return recovered

    async def shutdown(self) -> None:
        """Cancel in-flight runs; each finalizes itself as error."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
