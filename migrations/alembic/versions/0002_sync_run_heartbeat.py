"""Add heartbeat_at to sync_runs

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-19

- Stamped when the run is created and refreshed while it works
- Restart recovery only finalizes in_progress runs whose heartbeat
  (or start time, when NULL) is older than SYNC_STALE_RUN_S, so runs owned
  by other live processes are left alone
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic
revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "sync_runs",
        sa.Column("heartbeat_at", sa.TIMESTAMP(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_column("sync_runs", "heartbeat_at")
