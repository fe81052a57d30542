"""Cloud sync schema - cases, cloud_connections, documents, sync_runs, processing_queue

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Creates the tables behind folder mapping, OAuth connections, document
ingestion, sync history and the classification queue.

Partial unique indexes carry the concurrency invariants:
- uix_sync_runs_case_in_progress: one in_progress run per case
- uix_documents_case_content_hash: one document per (case, content hash)
- uix_documents_case_remote_file_unhashed: one unhashed document per (case, remote file)
- uix_processing_queue_document_active: one pending/processing item per document
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps(*, updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        )
    ]
    if updated:
        columns.append(
            sa.Column(
                "updated_at",
                sa.TIMESTAMP(timezone=True),
                server_default=sa.text("now()"),
                nullable=False,
            )
        )
    return columns


def upgrade() -> None:
    # Enable pgcrypto extension for gen_random_uuid()
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    # ==========================================================================
    # cases table
    # ==========================================================================
    op.create_table(
        "cases",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("cloud_storage_provider", sa.Text(), nullable=True),
        sa.Column("cloud_folder_path", sa.Text(), nullable=True),
        sa.Column("cloud_folder_id", sa.Text(), nullable=True),
        sa.Column("last_synced_at", sa.TIMESTAMP(timezone=True), nullable=True),
        # Legacy Dropbox-only mapping, read as a fallback
        sa.Column("dropbox_folder_path", sa.Text(), nullable=True),
        sa.Column("dropbox_folder_id", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "cloud_storage_provider IS NULL OR cloud_storage_provider IN ('dropbox', 'onedrive')",
            name="ck_cases_cloud_storage_provider",
        ),
    )
    op.create_index("ix_cases_user_id", "cases", ["user_id"])

    # ==========================================================================
    # cloud_connections table
    # ==========================================================================
    op.create_table(
        "cloud_connections",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("provider", sa.Text(), nullable=False),
        # Sealed (XChaCha20-Poly1305), never plaintext
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("token_expires_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("account_id", sa.Text(), nullable=True),
        sa.Column("account_email", sa.Text(), nullable=True),
        sa.Column("account_name", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("last_verified_at", sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "provider", name="uq_cloud_connections_user_provider"),
        sa.CheckConstraint(
            "provider IN ('dropbox', 'onedrive')", name="ck_cloud_connections_provider"
        ),
    )

    # ==========================================================================
    # documents table
    # ==========================================================================
    op.create_table(
        "documents",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("case_id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("source", sa.Text(), server_default="cloud_sync", nullable=False),
        sa.Column("file_name", sa.Text(), nullable=False),
        sa.Column("file_type", sa.Text(), nullable=True),
        sa.Column("file_size", sa.BigInteger(), nullable=True),
        sa.Column("storage_path", sa.Text(), nullable=False),
        sa.Column("storage_url", sa.Text(), nullable=True),
        sa.Column("remote_provider", sa.Text(), nullable=True),
        sa.Column("remote_file_id", sa.Text(), nullable=True),
        sa.Column("remote_path", sa.Text(), nullable=True),
        sa.Column("remote_content_hash", sa.Text(), nullable=True),
        sa.Column("synced_at", sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["case_id"], ["cases.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_documents_case_id", "documents", ["case_id"])
    op.create_index("ix_documents_case_remote_file", "documents", ["case_id", "remote_file_id"])
    op.create_index(
        "uix_documents_case_content_hash",
        "documents",
        ["case_id", "remote_content_hash"],
        unique=True,
        postgresql_where=sa.text("remote_content_hash IS NOT NULL"),
    )
    op.create_index(
        "uix_documents_case_remote_file_unhashed",
        "documents",
        ["case_id", "remote_file_id"],
        unique=True,
        postgresql_where=sa.text("remote_content_hash IS NULL AND remote_file_id IS NOT NULL"),
    )

    # ==========================================================================
    # sync_runs table
    # ==========================================================================
    op.create_table(
        "sync_runs",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("case_id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("provider", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), server_default="in_progress", nullable=False),
        sa.Column("files_found", sa.Integer(), server_default="0", nullable=False),
        sa.Column("files_new", sa.Integer(), server_default="0", nullable=False),
        sa.Column("files_updated", sa.Integer(), server_default="0", nullable=False),
        sa.Column("files_skipped", sa.Integer(), server_default="0", nullable=False),
        sa.Column("files_error", sa.Integer(), server_default="0", nullable=False),
        sa.Column("files_queued", sa.Integer(), server_default="0", nullable=False),
        sa.Column(
            "errors",
            postgresql.JSONB(astext_type=sa.Text()),
            server_default=sa.text("'[]'::jsonb"),
            nullable=False,
        ),
        sa.Column(
            "started_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["case_id"], ["cases.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "status IN ('in_progress', 'completed', 'error', 'cancelled')",
            name="ck_sync_runs_status",
        ),
        sa.CheckConstraint("provider IN ('dropbox', 'onedrive')", name="ck_sync_runs_provider"),
    )
    op.create_index("ix_sync_runs_case_started", "sync_runs", ["case_id", "started_at"])
    op.create_index(
        "uix_sync_runs_case_in_progress",
        "sync_runs",
        ["case_id"],
        unique=True,
        postgresql_where=sa.text("status = 'in_progress'"),
    )

    # ==========================================================================
    # processing_queue table
    # ==========================================================================
    op.create_table(
        "processing_queue",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("document_id", sa.UUID(), nullable=False),
        sa.Column("case_id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("status", sa.Text(), server_default="pending", nullable=False),
        sa.Column("priority", sa.Integer(), server_default="0", nullable=False),
        sa.Column("attempts", sa.Integer(), server_default="0", nullable=False),
        sa.Column("max_attempts", sa.Integer(), server_default="3", nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("next_retry_at", sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(updated=False),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("processing_time_ms", sa.Integer(), nullable=True),
        sa.Column("tokens_used", sa.Integer(), nullable=True),
        sa.Column("model_used", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["case_id"], ["cases.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_processing_queue_status",
        ),
        sa.CheckConstraint("attempts >= 0", name="ck_processing_queue_attempts_nonneg"),
        sa.CheckConstraint("max_attempts >= 1", name="ck_processing_queue_max_attempts_positive"),
    )
    op.create_index(
        "ix_processing_queue_claim", "processing_queue", ["status", "priority", "created_at"]
    )
    op.create_index("ix_processing_queue_case_id", "processing_queue", ["case_id"])
    op.create_index("ix_processing_queue_next_retry", "processing_queue", ["next_retry_at"])
    op.create_index(
        "uix_processing_queue_document_active",
        "processing_queue",
        ["document_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'processing')"),
    )


def downgrade() -> None:
    # Drop tables in reverse order (respecting foreign key dependencies)
    op.drop_table("processing_queue")
    op.drop_table("sync_runs")
    op.drop_table("documents")
    op.drop_table("cloud_connections")
    op.drop_index("ix_cases_user_id", table_name="cases")
    op.drop_table("cases")

    # Note: We don't drop pgcrypto extension as it may be used by other things
