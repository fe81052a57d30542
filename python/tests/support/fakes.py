"""In-memory collaborators for service and route tests.

FakeAdapter serves a folder tree held in memory through the
CloudStorageAdapter interface, with switches for the failure modes the
sync path must tolerate. FakeClassifier records what the queue hands it.
"""

import hashlib
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from casesync.auth.oauth_state import encode_state
from casesync.providers.adapter import DEFAULT_SEARCH_RESULTS, CloudStorageAdapter
from casesync.providers.common import mime_type_for, normalize_path
from casesync.providers.errors import CloudStorageError, CloudStorageErrorKind
from casesync.providers.types import (
    AccountInfo,
    CloudProvider,
    FolderContents,
    RemoteFile,
    RemoteFolder,
    Tokens,
)
from casesync.services.classifier import (
    ClassificationError,
    ClassificationRequest,
    ClassificationResult,
    DocumentClassifier,
)

MODIFIED_AT = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def content_hash_for(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FakeAdapter(CloudStorageAdapter):
    """Provider adapter over an in-memory tree.

    Folders are keyed by normalized path ("" is the root). Entries keep
    insertion order; listings return subfolders first, then files, split into
    pages of page_size.
    """

    def __init__(self, provider: CloudProvider = CloudProvider.dropbox, page_size: int = 100):
        self.provider = provider
        self.page_size = page_size
        self._folders: dict[str, list[RemoteFolder]] = {"": []}
        self._files: dict[str, list[RemoteFile]] = {"": []}
        self._contents: dict[str, bytes] = {}
        self._next_id = 0

        self.access_token = "fake-access-token"
        self.refreshed_access_token = "fake-refreshed-token"
        self.account = AccountInfo(
            account_id="acct-1", email="owner@example.com", display_name="Case Owner"
        )
        self.valid_tokens: set[str] = {self.access_token, self.refreshed_access_token}

        # Failure switches
        self.download_failures: dict[str, CloudStorageError] = {}
        self.listing_failures: dict[str, list[CloudStorageError]] = {}
        self.refresh_error: CloudStorageError | None = None
        self.exchange_error: CloudStorageError | None = None
        self.on_download: Callable[[RemoteFile], Awaitable[None]] | None = None

        # Call log
        self.list_calls: list[tuple[str, str | None]] = []
        self.download_calls: list[str] = []
        self.refresh_calls: list[str | None] = []
        self.revoked: list[str] = []

    # -------------------------------------------------------------------------
    # Tree building
    # -------------------------------------------------------------------------

    def _new_id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}:{self._next_id:04d}"

    def add_folder(self, path: str) -> RemoteFolder:
        """Create a folder (and any missing parents)."""
        path = normalize_path(path)
        if path in self._folders:
            return self._folder_meta(path)
        parent, _, name = path.rpartition("/")
        if parent not in self._folders:
            self.add_folder(parent)
        folder = RemoteFolder(
            id=self._new_id("fld"),
            name=name,
            path=path,
            path_display=path,
            provider=self.provider,
        )
        self._folders[parent].append(folder)
        self._folders[path] = []
        self._files[path] = []
        return folder

    def add_file(
        self,
        folder: str,
        name: str,
        data: bytes | None = None,
        *,
        file_id: str | None = None,
        content_hash: str | None = "auto",
        downloadable: bool = True,
    ) -> RemoteFile:
        """Add a file. content_hash="auto" hashes the bytes; None omits the hash."""
        folder = normalize_path(folder)
        if folder not in self._folders:
            self.add_folder(folder)
        data = data if data is not None else f"contents of {folder}/{name}".encode()
        file = RemoteFile(
            id=file_id or self._new_id("id"),
            name=name,
            path=f"{folder}/{name}",
            path_display=f"{folder}/{name}",
            size=len(data),
            mime_type=mime_type_for(name),
            modified_at=MODIFIED_AT,
            provider=self.provider,
            downloadable=downloadable,
            content_hash=content_hash_for(data) if content_hash == "auto" else content_hash,
        )
        self._files[folder].append(file)
        self._contents[file.id] = data
        return file

    def replace_file(self, file: RemoteFile, data: bytes) -> RemoteFile:
        """Change a file's bytes in place, keeping its id (a remote edit)."""
        folder = file.path.rpartition("/")[0]
        updated = RemoteFile(
            id=file.id,
            name=file.name,
            path=file.path,
            path_display=file.path_display,
            size=len(data),
            mime_type=file.mime_type,
            modified_at=file.modified_at,
            provider=self.provider,
            downloadable=file.downloadable,
            content_hash=content_hash_for(data) if file.content_hash else None,
        )
        files = self._files[folder]
        files[files.index(file)] = updated
        self._contents[file.id] = data
        return updated

    def _folder_meta(self, path: str) -> RemoteFolder:
        parent = path.rpartition("/")[0]
        return next(f for f in self._folders[parent] if f.path == path)

    def _check_token(self, access_token: str) -> None:
        if access_token not in self.valid_tokens:
            raise CloudStorageError(
                CloudStorageErrorKind.TOKEN_EXPIRED,
                f"{self.provider.value} list folder failed with HTTP 401",
                provider=self.provider.value,
                status_code=401,
            )

    # -------------------------------------------------------------------------
    # CloudStorageAdapter
    # -------------------------------------------------------------------------

    def authorization_url(self, user_id: str, redirect_uri: str) -> str:
        state = encode_state(user_id, self.provider)
        return f"https://consent.example.test/{self.provider.value}?state={state}"

    async def exchange_code(self, code: str, redirect_uri: str) -> Tokens:
        if self.exchange_error is not None:
            raise self.exchange_error
        return Tokens(
            access_token=self.access_token,
            refresh_token="fake-refresh-token",
            expires_in=14400,
            account_id=self.account.account_id,
        )

    async def refresh(self, refresh_token: str | None) -> Tokens:
        self.refresh_calls.append(refresh_token)
        if self.refresh_error is not None:
            raise self.refresh_error
        return Tokens(
            access_token=self.refreshed_access_token,
            refresh_token=refresh_token,
            expires_in=14400,
        )

    async def revoke(self, access_token: str) -> bool:
        self.revoked.append(access_token)
        return True

    async def verify(self, access_token: str) -> bool:
        return access_token in self.valid_tokens

    async def get_account_info(self, access_token: str) -> AccountInfo:
        self._check_token(access_token)
        return self.account

    async def list_folder(
        self, access_token: str, path: str = "", cursor: str | None = None
    ) -> FolderContents:
        self._check_token(access_token)
        if cursor:
            path, _, offset_text = cursor.rpartition("|")
            offset = int(offset_text)
        else:
            path = normalize_path(path)
            offset = 0
        self.list_calls.append((path, cursor))

        failures = self.listing_failures.get(path)
        if failures:
            raise failures.pop(0)

        if path not in self._folders:
            raise CloudStorageError(
                CloudStorageErrorKind.FOLDER_NOT_FOUND,
                "Folder not found",
                provider=self.provider.value,
            )

        entries: list[RemoteFolder | RemoteFile] = [*self._folders[path], *self._files[path]]
        page = entries[offset : offset + self.page_size]
        next_offset = offset + self.page_size
        has_more = next_offset < len(entries)
        return FolderContents(
            folders=[e for e in page if isinstance(e, RemoteFolder)],
            files=[e for e in page if isinstance(e, RemoteFile)],
            has_more=has_more,
            cursor=f"{path}|{next_offset}" if has_more else None,
        )

    async def search_folders(
        self, access_token: str, query: str, max_results: int = DEFAULT_SEARCH_RESULTS
    ) -> list[RemoteFolder]:
        self._check_token(access_token)
        matches = [
            folder
            for folders in self._folders.values()
            for folder in folders
            if query.lower() in folder.name.lower()
        ]
        return matches[:max_results]

    async def get_folder_metadata(self, access_token: str, path_or_id: str) -> RemoteFolder:
        self._check_token(access_token)
        path = normalize_path(path_or_id)
        if path not in self._folders or not path:
            raise CloudStorageError(
                CloudStorageErrorKind.FOLDER_NOT_FOUND, "Folder not found", provider=self.provider.value
            )
        return self._folder_meta(path)

    async def get_file_metadata(self, access_token: str, path_or_id: str) -> RemoteFile:
        self._check_token(access_token)
        for files in self._files.values():
            for file in files:
                if path_or_id in (file.id, file.path):
                    return file
        raise CloudStorageError(
            CloudStorageErrorKind.FILE_NOT_FOUND, "File not found", provider=self.provider.value
        )

    async def download_file(self, access_token: str, file_id: str) -> bytes:
        self._check_token(access_token)
        self.download_calls.append(file_id)
        if self.on_download is not None:
            await self.on_download(await self.get_file_metadata(access_token, file_id))
        if file_id in self.download_failures:
            raise self.download_failures[file_id]
        if file_id not in self._contents:
            raise CloudStorageError(
                CloudStorageErrorKind.FILE_NOT_FOUND, "File not found", provider=self.provider.value
            )
        return self._contents[file_id]

    async def get_download_url(self, access_token: str, file_id: str) -> str:
        self._check_token(access_token)
        return f"https://download.example.test/{file_id}"


class FakeClassifier(DocumentClassifier):
    """Classifier that succeeds unless told to fail for a document."""

    def __init__(self, tokens_used: int = 1200, model_used: str = "fake-model"):
        self.tokens_used = tokens_used
        self.model_used = model_used
        self.fail_document_ids: set = set()
        self.crash_document_ids: set = set()
        self.requests: list[ClassificationRequest] = []

    async def classify(self, request: ClassificationRequest) -> ClassificationResult:
        self.requests.append(request)
        if request.document_id in self.crash_document_ids:
            raise RuntimeError("classifier exploded")
        if request.document_id in self.fail_document_ids:
            raise ClassificationError("Classifier failed with HTTP 503")
        return ClassificationResult(tokens_used=self.tokens_used, model_used=self.model_used)


async def no_sleep(delay: float) -> None:
    """Drop-in for asyncio.sleep that returns immediately."""
    return None
