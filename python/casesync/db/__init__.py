"""Database module for casesync.

Provides engine creation, session management, transaction helpers, and ORM models.
"""

from casesync.db.engine import create_db_engine, get_engine
from casesync.db.models import (
    Base,
    Case,
    CloudConnection,
    Document,
    DocumentSource,
    ProcessingQueueItem,
    QueueStatus,
    SyncRun,
    SyncStatus,
)
from casesync.db.session import get_db, get_session_factory, transaction

__all__ = [
    # Engine and session
    "create_db_engine",
    "get_engine",
    "get_db",
    "get_session_factory",
    "transaction",
    # Base
    "Base",
    # Enums
    "SyncStatus",
    "QueueStatus",
    "DocumentSource",
    # Models
    "Case",
    "CloudConnection",
    "Document",
    "SyncRun",
    "ProcessingQueueItem",
]
