"""Sync run Pydantic schemas.

Contains response models for the sync control and history endpoints.
"""

from datetime import datetime
from uuid import UUID

from casesync.schemas.base import CamelModel


class SyncStartOut(CamelModel):
    """Response schema for POST /cases/{id}/sync."""

    sync_id: UUID
    status: str


class SyncErrorOut(CamelModel):
    """One entry of a run's error list.

    file is the file name, or the folder path for a listing failure, or ""
    for a run-level error.
    """

    file: str
    error: str
    timestamp: str


class SyncProgressOut(CamelModel):
    """Response schema for GET /cases/{id}/sync/{sync_id}.

    While the run is active, the counts come from the live progress record.
    Once finalized, progress is 100 and the final counts and errors are included.
    """

    sync_id: UUID
    status: str
    progress: int
    current_file: str | None = None
    files_processed: int
    total_files: int
    files_new: int | None = None
    files_updated: int | None = None
    files_skipped: int | None = None
    files_error: int | None = None
    files_queued: int | None = None
    errors: list[SyncErrorOut] = []
    started_at: datetime | None = None
    completed_at: datetime | None = None


class SyncRunOut(CamelModel):
    """Response schema for one SyncRun history entry."""

    id: UUID
    case_id: UUID
    provider: str
    status: str
    files_found: int
    files_new: int
    files_updated: int
    files_skipped: int
    files_error: int
    files_queued: int
    errors: list[SyncErrorOut]
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int | None = None
