"""Shared type definitions for the provider adapter layer.

Both adapters normalize their native metadata into these shapes; nothing
outside casesync.providers ever sees a Dropbox or Graph payload.

Path conventions:
- path: lowercase/canonical path used for API calls ("" is the root)
- path_display: human-readable path as shown by the provider
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class CloudProvider(str, Enum):
    """Supported cloud-storage backends."""

    dropbox = "dropbox"
    onedrive = "onedrive"


@dataclass(frozen=True)
class RemoteFile:
    """Normalized file metadata.

    Attributes:
        id: Provider's stable file identifier
        name: File name including extension
        path: Canonical path used for API calls
        path_display: Path as displayed to the user
        size: Size in bytes
        mime_type: Provider-reported type, else derived from the extension
        modified_at: Last server-side modification time
        provider: The backend this file lives in
        downloadable: False for provider-native documents that cannot be exported as bytes
        content_hash: Content fingerprint (None when the backend does not supply one)
    """

    id: str
    name: str
    path: str
    path_display: str
    size: int
    mime_type: str
    modified_at: datetime | None
    provider: CloudProvider
    downloadable: bool = True
    content_hash: str | None = None


@dataclass(frozen=True)
class RemoteFolder:
    """Normalized folder metadata."""

    id: str
    name: str
    path: str
    path_display: str
    provider: CloudProvider


@dataclass(frozen=True)
class FolderContents:
    """One page of a folder listing.

    Attributes:
        folders: Subfolders on this page
        files: Files on this page
        has_more: Whether another page exists
        cursor: Opaque continuation token (set when has_more is True)
    """

    folders: list[RemoteFolder] = field(default_factory=list)
    files: list[RemoteFile] = field(default_factory=list)
    has_more: bool = False
    cursor: str | None = None


@dataclass(frozen=True)
class Tokens:
    """Result of a code exchange or token refresh.

    Attributes:
        access_token: Bearer token for API calls
        refresh_token: Long-lived token (None when the provider did not rotate it)
        expires_in: Access token lifetime in seconds
        token_type: Usually "bearer"
        account_id: Provider account the tokens belong to (may be empty on refresh)
    """

    access_token: str
    refresh_token: str | None
    expires_in: int
    token_type: str = "bearer"
    account_id: str = ""

    def __repr__(self) -> str:
        return f"Tokens(expires_in={self.expires_in}, account_id={self.account_id!r})"


@dataclass(frozen=True)
class AccountInfo:
    """Remote account identity shown on the connection status."""

    account_id: str
    email: str
    display_name: str


@dataclass(frozen=True)
class OAuthState:
    """Decoded, validated OAuth state blob."""

    user_id: str
    provider: CloudProvider
    issued_at: int
