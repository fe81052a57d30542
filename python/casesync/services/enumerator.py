"""Folder enumerator: depth-first walk of a mapped folder tree.

Each folder is listed page by page (following the cursor until has_more is
False); its files are collected, then each subfolder is walked in the order
the provider returned it. For a fixed remote tree the resulting file order is
deterministic.

Failure policy:
- RATE_LIMITED on a listing page is retried with exponential backoff
  (LISTING_RETRY_ATTEMPTS retries, LISTING_RETRY_BASE_S * 2**n seconds)
- Any failure listing the root folder propagates (the sync fails)
- Below the root, a page that still fails is recorded as a ListingError and
  the walk continues with the next folder
- Connection-level kinds (token expired, not connected) always propagate
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from casesync.logging import get_logger
from casesync.providers.adapter import CloudStorageAdapter
from casesync.providers.common import normalize_path
from casesync.providers.errors import CloudStorageError, CloudStorageErrorKind
from casesync.providers.types import FolderContents, RemoteFile

logger = get_logger(__name__)

# Errors that mean the credentials are unusable; never downgraded to a page error
FATAL_LISTING_KINDS = frozenset(
    {
        CloudStorageErrorKind.NOT_CONNECTED,
        CloudStorageErrorKind.TOKEN_EXPIRED,
        CloudStorageErrorKind.TOKEN_REFRESH_FAILED,
    }
)


@dataclass(frozen=True)
class ListingError:
    """A folder page that could not be listed."""

    path: str
    kind: CloudStorageErrorKind
    message: str


@dataclass
class EnumerationResult:
    """Files discovered by a walk plus any per-page listing failures."""

    files: list[RemoteFile] = field(default_factory=list)
    errors: list[ListingError] = field(default_factory=list)
    folders_listed: int = 0
    cancelled: bool = False


class FolderEnumerator:
    """Walks a folder tree through one provider adapter."""

    def __init__(
        self,
        adapter: CloudStorageAdapter,
        *,
        retry_attempts: int = 3,
        retry_base_s: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._adapter = adapter
        self._retry_attempts = retry_attempts
        self._retry_base_s = retry_base_s
        self._sleep = sleep

    async def list_all_files(
        self,
        access_token: str,
        root_path: str,
        cancel_event: asyncio.Event | None = None,
        on_folder_listed: Callable[[], Awaitable[None]] | None = None,
    ) -> EnumerationResult:
        """Collect every file below root_path, depth-first.

        Args:
            access_token: Valid provider access token.
            root_path: Mapped folder path ("" or "/" for the drive root).
            cancel_event: When set, the walk stops before the next page.
            on_folder_listed: Awaited after each folder is fully listed.

        Raises:
            CloudStorageError: Root listing failed, or a connection-level failure anywhere.
        """
        result = EnumerationResult()
        await self._walk(
            access_token, normalize_path(root_path), result, cancel_event, True, on_folder_listed
        )
        logger.info(
            "sync.enumeration.finished",
            files=len(result.files),
            folders=result.folders_listed,
            listing_errors=len(result.errors),
            cancelled=result.cancelled,
        )
        return result

    async def _walk(
        self,
        access_token: str,
        path: str,
        result: EnumerationResult,
        cancel_event: asyncio.Event | None,
        is_root: bool,
        on_folder_listed: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        subfolders = []
        cursor: str | None = None

        while True:
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                return
            try:
                page = await self._list_page(access_token, path, cursor)
            except CloudStorageError as e:
                if is_root or e.kind in FATAL_LISTING_KINDS:
                    raise
                logger.warning(
                    "sync.listing.failed", folder=path or "/", error_kind=e.kind.value
                )
                result.errors.append(ListingError(path=path or "/", kind=e.kind, message=e.message))
                break

            result.files.extend(page.files)
            subfolders.extend(page.folders)
            if not page.has_more or not page.cursor:
                break
            cursor = page.cursor

        result.folders_listed += 1
        if on_folder_listed is not None:
            await on_folder_listed()

        for folder in subfolders:
            if result.cancelled:
                return
            await self._walk(
                access_token, folder.path, result, cancel_event, False, on_folder_listed
            )

    async def _list_page(self, access_token: str, path: str, cursor: str | None) -> FolderContents:
        """List one page, retrying RATE_LIMITED with exponential backoff."""
        attempt = 0
        while True:
            try:
                return await self._adapter.list_folder(access_token, path, cursor)
            except CloudStorageError as e:
                if e.kind != CloudStorageErrorKind.RATE_LIMITED or attempt >= self._retry_attempts:
                    raise
                delay = self._retry_base_s * (2**attempt)
                attempt += 1
                logger.info(
                    "sync.listing.rate_limited",
                    folder=path or "/",
                    attempt=attempt,
                    delay_s=delay,
                )
                await self._sleep(delay)
