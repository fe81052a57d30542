"""Processing queue Pydantic schemas."""

from datetime import datetime
from uuid import UUID

from casesync.schemas.base import CamelModel


class QueueItemOut(CamelModel):
    id: UUID
    document_id: UUID
    status: str
    priority: int
    attempts: int
    max_attempts: int
    error_message: str | None = None
    next_retry_at: datetime | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    processing_time_ms: int | None = None
    tokens_used: int | None = None
    model_used: str | None = None


class QueueStatsOut(CamelModel):
    total: int
    pending: int
    processing: int
    completed: int
    failed: int


class CaseProcessingOut(CamelModel):
    """Response schema for GET /cases/{id}/processing."""

    case_id: UUID
    stats: QueueStatsOut
    items: list[QueueItemOut]
