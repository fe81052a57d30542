"""Blob storage for ingested documents.

Provides:
- BlobStore interface with the Supabase Storage client and an in-memory fake
- Path building with test isolation via STORAGE_TEST_PREFIX
"""

from casesync.storage.client import (
    BlobStore,
    FakeBlobStore,
    StorageClient,
    StorageError,
    StoredObject,
    create_blob_store,
)
from casesync.storage.paths import build_document_path, sanitize_file_name

__all__ = [
    "BlobStore",
    "StorageClient",
    "FakeBlobStore",
    "StorageError",
    "StoredObject",
    "create_blob_store",
    "build_document_path",
    "sanitize_file_name",
]
