"""Cloud-storage provider layer.

This package normalizes the Dropbox and OneDrive APIs behind one async
contract (CloudStorageAdapter). It includes:

- Shared metadata types (RemoteFile, RemoteFolder, FolderContents, Tokens)
- The CloudStorageError taxonomy and HTTP status classification
- One adapter per backend plus a ProviderRegistry built at startup

Usage:
    from casesync.providers.registry import ProviderRegistry

    registry = ProviderRegistry.from_settings(httpx_client, settings)
    adapter = registry.get(CloudProvider.dropbox)
    page = await adapter.list_folder(access_token, "/Clients/Smith")

Only types and errors are re-exported here; adapters and the registry import
configuration and must be imported from their own modules.
"""

from casesync.providers.errors import (
    CloudStorageError,
    CloudStorageErrorKind,
    classify_status,
)
from casesync.providers.types import (
    AccountInfo,
    CloudProvider,
    FolderContents,
    OAuthState,
    RemoteFile,
    RemoteFolder,
    Tokens,
)

__all__ = [
    # Types
    "CloudProvider",
    "RemoteFile",
    "RemoteFolder",
    "FolderContents",
    "Tokens",
    "AccountInfo",
    "OAuthState",
    # Errors
    "CloudStorageError",
    "CloudStorageErrorKind",
    "classify_status",
]
