"""Business logic services.

This module contains service-layer functions that implement business logic.
Services are called by route handlers, the sync orchestrator and Celery tasks.
"""

from casesync.services.credentials import get_connection_status, get_valid_token
from casesync.services.dedup import find_duplicates, plan_ingestion

__all__ = [
    "get_connection_status",
    "get_valid_token",
    "find_duplicates",
    "plan_ingestion",
]
