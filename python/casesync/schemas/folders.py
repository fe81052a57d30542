"""Folder browsing and folder mapping Pydantic schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import Field, field_validator

from casesync.providers.types import CloudProvider
from casesync.schemas.base import CamelModel


class RemoteFolderOut(CamelModel):
    id: str
    name: str
    path: str
    path_display: str


class RemoteFileOut(CamelModel):
    id: str
    name: str
    path: str
    path_display: str
    size: int
    mime_type: str
    modified_at: datetime | None = None
    downloadable: bool = True
    content_hash: str | None = None


class FolderContentsOut(CamelModel):
    """One page of a folder listing."""

    folders: list[RemoteFolderOut]
    files: list[RemoteFileOut]
    has_more: bool
    cursor: str | None = None


class FolderSearchOut(CamelModel):
    folders: list[RemoteFolderOut]


class FolderMappingRequest(CamelModel):
    """Request schema for PUT /cases/{id}/folder."""

    provider: CloudProvider
    folder_path: str = Field(min_length=1, max_length=2048)
    folder_id: str | None = Field(default=None, max_length=512)

    @field_validator("folder_path")
    @classmethod
    def strip_path(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("folderPath must not be blank")
        return v


class FolderMappingOut(CamelModel):
    """A case's folder mapping.

    legacy is True when the mapping comes from the old Dropbox-only columns.
    """

    case_id: UUID
    provider: CloudProvider
    folder_path: str
    folder_id: str | None = None
    last_synced_at: datetime | None = None
    legacy: bool = False
