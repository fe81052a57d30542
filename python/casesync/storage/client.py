"""Blob storage client abstraction (Supabase Storage API).

The ingestion writer only needs two operations:
- put_object: upload bytes under a case-scoped path and return its URL
- delete_object: best-effort removal (used to clean up after a lost insert race)

The production client shares the application's httpx.AsyncClient. All
methods receive the full storage path; prefixes are applied only by
casesync.storage.paths.build_document_path.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from casesync.config import Settings
from casesync.logging import get_logger

logger = get_logger(__name__)


class StorageError(Exception):
    """Storage operation error."""

    def __init__(self, message: str, code: str = "E_STORAGE_ERROR"):
        super().__init__(message)
        self.message = message
        self.code = code


@dataclass(frozen=True)
class StoredObject:
    """Location of an uploaded blob."""

    path: str
    url: str


class BlobStore(ABC):
    """Abstract base class for blob store implementations."""

    @abstractmethod
    async def put_object(self, path: str, data: bytes, content_type: str) -> StoredObject:
        """Upload bytes.

        Raises:
            StorageError: If the upload fails.
        """
        ...

    @abstractmethod
    async def delete_object(self, path: str) -> None:
        """Delete an object. Best-effort: logs errors but doesn't raise."""
        ...


class StorageClient(BlobStore):
    """Production Supabase Storage client."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        storage_url: str,
        write_token: str,
        bucket: str = "case-documents",
        timeout_s: float = 60.0,
    ):
        """Initialize the storage client.

        Args:
            client: Shared httpx.AsyncClient.
            storage_url: Supabase project URL (e.g., https://xxx.supabase.co).
            write_token: Service token with write access to the bucket.
            bucket: Storage bucket name.
            timeout_s: Per-request timeout.
        """
        self._client = client
        self._base_url = storage_url.rstrip("/")
        self._storage_url = f"{self._base_url}/storage/v1"
        self._bucket = bucket
        self._timeout = timeout_s
        self._headers = {
            "Authorization": f"Bearer {write_token}",
            "apikey": write_token,
        }

    def _object_url(self, path: str) -> str:
        return f"{self._storage_url}/object/{self._bucket}/{path}"

    async def put_object(self, path: str, data: bytes, content_type: str) -> StoredObject:
        """Upload via POST /object/{bucket}/{path} (no upsert)."""
        try:
            response = await self._client.post(
                self._object_url(path),
                headers={**self._headers, "Content-Type": content_type, "x-upsert": "false"},
                content=data,
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            raise StorageError(f"Upload failed: {type(e).__name__}") from e

        if response.status_code not in (200, 201):
            raise StorageError(
                f"Upload failed with HTTP {response.status_code}",
                code="E_STORAGE_UPLOAD_FAILED",
            )

        return StoredObject(path=path, url=self._object_url(path))

    async def delete_object(self, path: str) -> None:
        """Delete object from storage (best-effort)."""
        try:
            response = await self._client.delete(
                self._object_url(path), headers=self._headers, timeout=self._timeout
            )
        except httpx.HTTPError as e:
            logger.warning("storage_delete_error", path=path, error=type(e).__name__)
            return
        if response.status_code not in (200, 204, 404):
            logger.warning("storage_delete_failed", path=path, status_code=response.status_code)


class FakeBlobStore(BlobStore):
    """In-memory blob store for tests and local runs without storage configured."""

    def __init__(self):
        self._objects: dict[str, tuple[bytes, str]] = {}  # path -> (content, content_type)
        self.fail_paths: set[str] = set()

    async def put_object(self, path: str, data: bytes, content_type: str) -> StoredObject:
        if any(fragment in path for fragment in self.fail_paths):
            raise StorageError(f"Simulated upload failure: {path}")
        self._objects[path] = (data, content_type)
        return StoredObject(path=path, url=f"https://fake-storage.test/{path}")

    async def delete_object(self, path: str) -> None:
        self._objects.pop(path, None)

    # Test helper methods

    def get_object(self, path: str) -> bytes | None:
        if path not in self._objects:
            return None
        return self._objects[path][0]

    @property
    def paths(self) -> list[str]:
        return list(self._objects)

    def clear(self) -> None:
        self._objects.clear()
        self.fail_paths.clear()


def create_blob_store(client: httpx.AsyncClient, settings: Settings) -> BlobStore:
    """Build the configured blob store.

    Returns:
        StorageClient if STORAGE_URL and STORAGE_WRITE_TOKEN are set,
        FakeBlobStore otherwise (local/test only).

    Raises:
        StorageError: Storage is unconfigured outside local/test.
    """
    if settings.storage_url and settings.storage_write_token:
        return StorageClient(
            client,
            storage_url=settings.storage_url,
            write_token=settings.storage_write_token,
            bucket=settings.storage_bucket,
        )

    if settings.casesync_env.value in ("staging", "prod"):
        raise StorageError("STORAGE_URL and STORAGE_WRITE_TOKEN are required")

    logger.warning("storage_not_configured", fallback="in_memory")
    return FakeBlobStore()
