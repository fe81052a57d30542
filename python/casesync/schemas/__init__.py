"""Pydantic schemas for request/response models.

All schemas are re-exported here for convenient imports.
"""

from casesync.schemas.base import CamelModel
from casesync.schemas.connections import AuthorizationUrlOut, ConnectionStatusOut
from casesync.schemas.folders import (
    FolderContentsOut,
    FolderMappingOut,
    FolderMappingRequest,
    FolderSearchOut,
    RemoteFileOut,
    RemoteFolderOut,
)
from casesync.schemas.queue import CaseProcessingOut, QueueItemOut, QueueStatsOut
from casesync.schemas.sync import SyncErrorOut, SyncProgressOut, SyncRunOut, SyncStartOut

__all__ = [
    "CamelModel",
    "AuthorizationUrlOut",
    "ConnectionStatusOut",
    "FolderContentsOut",
    "FolderMappingOut",
    "FolderMappingRequest",
    "FolderSearchOut",
    "RemoteFileOut",
    "RemoteFolderOut",
    "CaseProcessingOut",
    "QueueItemOut",
    "QueueStatsOut",
    "SyncErrorOut",
    "SyncProgressOut",
    "SyncRunOut",
    "SyncStartOut",
]
