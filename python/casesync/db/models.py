"""SQLAlchemy ORM models for casesync.

Defines all database tables using SQLAlchemy 2.x declarative patterns.

Status columns are Text with CHECK constraints; the Python enums below are
the source of truth for their values. Column types are portable (Uuid,
TZDateTime, JSON with a JSONB variant) so the same metadata runs on SQLite
in tests. Defaults are applied on the Python side for the same reason.
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(UTC)


class TZDateTime(TypeDecorator):
    """Timezone-aware datetime that always round-trips as UTC.

    PostgreSQL stores timestamptz natively; SQLite drops the offset, so
    values read back without tzinfo are tagged as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Enums
# =============================================================================


class SyncStatus(str, PyEnum):
    """Sync run lifecycle states.

    States:
        in_progress: Registered in the active-run guard, files being processed
        completed: Enumeration succeeded (per-file errors may still be recorded)
        error: Fatal failure (token, root listing) or interrupted by restart
        cancelled: Stopped by the user
    """

    in_progress = "in_progress"
    completed = "completed"
    error = "error"
    cancelled = "cancelled"


class QueueStatus(str, PyEnum):
    """Processing queue item states.

    pending and processing cycle while attempts remain; completed and
    failed are terminal.
    """

    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class DocumentSource(str, PyEnum):
    """How a document entered the case."""

    cloud_sync = "cloud_sync"
    manual_upload = "manual_upload"


# =============================================================================
# Models
# =============================================================================


class Case(Base):
    """Case record owning documents and, optionally, one folder mapping.

    The provider-neutral mapping lives in cloud_storage_provider /
    cloud_folder_path / cloud_folder_id. The dropbox_* columns predate it;
    they are read as a fallback Dropbox mapping and never written.
    """

    __tablename__ = "cases"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)

    # Folder mapping
    cloud_storage_provider: Mapped[str | None] = mapped_column(Text, nullable=True)
    cloud_folder_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    cloud_folder_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(TZDateTime, nullable=True)

    # Legacy single-provider mapping (read-only)
    dropbox_folder_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    dropbox_folder_id: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(TZDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        TZDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "cloud_storage_provider IS NULL OR cloud_storage_provider IN ('dropbox', 'onedrive')",
            name="ck_cases_cloud_storage_provider",
        ),
    )

    documents: Mapped[list["Document"]] = relationship(
        "Document", back_populates="case", cascade="all, delete-orphan", passive_deletes=True
    )
    sync_runs: Mapped[list["SyncRun"]] = relationship(
        "SyncRun", back_populates="case", cascade="all, delete-orphan", passive_deletes=True
    )


class CloudConnection(Base):
    """OAuth credential set linking one user to one provider.

    Tokens are stored sealed (see casesync.services.crypto); the columns
    never hold plaintext.
    """

    __tablename__ = "cloud_connections"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    provider: Mapped[str] = mapped_column(Text, nullable=False)

    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(TZDateTime, nullable=True)

    account_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    account_email: Mapped[str | None] = mapped_column(Text, nullable=True)
    account_name: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_verified_at: Mapped[datetime | None] = mapped_column(TZDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(TZDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        TZDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_cloud_connections_user_provider"),
        CheckConstraint(
            "provider IN ('dropbox', 'onedrive')", name="ck_cloud_connections_provider"
        ),
    )


class Document(Base):
    """Persisted ingestion result.

    Uniqueness per case: by content hash when the backend supplied one,
    otherwise by remote file id. Both are enforced with partial indexes.
    """

    __tablename__ = "documents"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    case_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("cases.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    source: Mapped[str] = mapped_column(
        Text, default=DocumentSource.cloud_sync.value, nullable=False
    )

    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    file_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    storage_path: Mapped[str] = mapped_column(Text, nullable=False)
    storage_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Remote origin (null for manual uploads)
    remote_provider: Mapped[str | None] = mapped_column(Text, nullable=True)
    remote_file_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    remote_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    remote_content_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    synced_at: Mapped[datetime | None] = mapped_column(TZDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(TZDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_documents_case_id", "case_id"),
        Index("ix_documents_case_remote_file", "case_id", "remote_file_id"),
        Index(
            "uix_documents_case_content_hash",
            "case_id",
            "remote_content_hash",
            unique=True,
            postgresql_where=text("remote_content_hash IS NOT NULL"),
            sqlite_where=text("remote_content_hash IS NOT NULL"),
        ),
        Index(
            "uix_documents_case_remote_file_unhashed",
            "case_id",
            "remote_file_id",
            unique=True,
            postgresql_where=text("remote_content_hash IS NULL AND remote_file_id IS NOT NULL"),
            sqlite_where=text("remote_content_hash IS NULL AND remote_file_id IS NOT NULL"),
        ),
    )

    case: Mapped["Case"] = relationship("Case", back_populates="documents")


class SyncRun(Base):
    """One sync attempt for a case, with counts and an ordered error log.

    errors holds [{"file": name, "error": message, "timestamp": iso8601}, ...].
    At most one in_progress row per case (partial unique index).
    """

    __tablename__ = "sync_runs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    case_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("cases.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    provider: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        Text, default=SyncStatus.in_progress.value, nullable=False
    )

    files_found: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    files_new: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    files_updated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    files_skipped: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    files_error: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    files_queued: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    errors: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list, nullable=False)

    started_at: Mapped[datetime] = mapped_column(TZDateTime, default=utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(TZDateTime, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Refreshed by the owning process while the run works
    heartbeat_at: Mapped[datetime | None] = mapped_column(TZDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('in_progress', 'completed', 'error', 'cancelled')",
            name="ck_sync_runs_status",
        ),
        CheckConstraint("provider IN ('dropbox', 'onedrive')", name="ck_sync_runs_provider"),
        Index("ix_sync_runs_case_started", "case_id", "started_at"),
        Index(
            "uix_sync_runs_case_in_progress",
            "case_id",
            unique=True,
            postgresql_where=text("status = 'in_progress'"),
            sqlite_where=text("status = 'in_progress'"),
        ),
    )

    case: Mapped["Case"] = relationship("Case", back_populates="sync_runs")


class ProcessingQueueItem(Base):
    """One document's classification job.

    Transitions: pending → processing → completed, or
    processing → pending (attempts left, next_retry_at set) → ... → failed.
    """

    __tablename__ = "processing_queue"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    document_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False
    )
    case_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("cases.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)

    status: Mapped[str] = mapped_column(Text, default=QueueStatus.pending.value, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_retry_at: Mapped[datetime | None] = mapped_column(TZDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(TZDateTime, default=utcnow, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(TZDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(TZDateTime, nullable=True)

    processing_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tokens_used: Mapped[int | None] = mapped_column(Integer, nullable=True)
    model_used: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_processing_queue_status",
        ),
        CheckConstraint("attempts >= 0", name="ck_processing_queue_attempts_nonneg"),
        CheckConstraint("max_attempts >= 1", name="ck_processing_queue_max_attempts_positive"),
        Index("ix_processing_queue_claim", "status", "priority", "created_at"),
        Index("ix_processing_queue_case_id", "case_id"),
        Index("ix_processing_queue_next_retry", "next_retry_at"),
        Index(
            "uix_processing_queue_document_active",
            "document_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'processing')"),
            sqlite_where=text("status IN ('pending', 'processing')"),
        ),
    )
