"""Dropbox adapter implementation.

Endpoints (API v2, all RPC calls are POST with a JSON body):
- Consent:   https://www.dropbox.com/oauth2/authorize
             (response_type=code, token_access_type=offline for a refresh token)
- Token:     https://api.dropboxapi.com/oauth2/token (form-encoded)
- Revoke:    /2/auth/token/revoke
- Account:   /2/users/get_current_account (body: null)
- Listing:   /2/files/list_folder, /2/files/list_folder/continue
- Search:    /2/files/search_v2
- Metadata:  /2/files/get_metadata
- Download:  https://content.dropboxapi.com/2/files/download (Dropbox-API-Arg header)
- Temp link: /2/files/get_temporary_link

Listing entry (abridged):
{
  ".tag": "file",
  "id": "id:a4ayc_80_OEAAAAAAAAAXw",
  "name": "intake.pdf",
  "path_lower": "/clients/smith/intake.pdf",
  "path_display": "/Clients/Smith/intake.pdf",
  "server_modified": "2024-05-01T12:00:00Z",
  "size": 7212,
  "is_downloadable": true,
  "content_hash": "e3b0c442..."
}

Path errors come back as HTTP 409 with an error summary; they are reported
as FOLDER_NOT_FOUND / FILE_NOT_FOUND depending on the call. Dropbox always
supplies content_hash for files, so dedup is hash-based for this backend.
"""

import json
from urllib.parse import urlencode

import httpx

from casesync.auth.oauth_state import encode_state
from casesync.logging import get_logger
from casesync.providers.adapter import (
    DEFAULT_SEARCH_RESULTS,
    CloudStorageAdapter,
    require_json,
    send_provider_request,
)
from casesync.providers.common import mime_type_for, normalize_path, parse_timestamp
from casesync.providers.errors import CloudStorageError, CloudStorageErrorKind
from casesync.providers.types import (
    AccountInfo,
    CloudProvider,
    FolderContents,
    RemoteFile,
    RemoteFolder,
    Tokens,
)

logger = get_logger(__name__)

DROPBOX_AUTHORIZE_URL = "https://www.dropbox.com/oauth2/authorize"
DROPBOX_TOKEN_URL = "https://api.dropboxapi.com/oauth2/token"
DROPBOX_API_URL = "https://api.dropboxapi.com/2"
DROPBOX_CONTENT_URL = "https://content.dropboxapi.com/2"

# Dropbox short-lived tokens last four hours when expires_in is omitted
DEFAULT_EXPIRES_IN = 14400

# Dropbox reports path errors (not_found, not_folder, ...) as 409
PATH_ERROR_STATUS = 409

_NOT_FOUND_MESSAGES = {
    CloudStorageErrorKind.FOLDER_NOT_FOUND: "Folder not found",
    CloudStorageErrorKind.FILE_NOT_FOUND: "File not found",
}


class DropboxAdapter(CloudStorageAdapter):
    """Dropbox API v2 adapter."""

    provider = CloudProvider.dropbox

    def authorization_url(self, user_id: str, redirect_uri: str) -> str:
        """Build the Dropbox consent URL requesting offline access."""
        params = {
            "client_id": self._client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "token_access_type": "offline",
            "state": encode_state(user_id, self.provider),
        }
        return f"{DROPBOX_AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str, redirect_uri: str) -> Tokens:
        """Exchange an authorization code (400 → PROVIDER_ERROR, 429 → RATE_LIMITED)."""
        response = await send_provider_request(
            self._client,
            self.provider,
            "POST",
            DROPBOX_TOKEN_URL,
            action="token exchange",
            data={
                "code": code,
                "grant_type": "authorization_code",
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "redirect_uri": redirect_uri,
            },
            timeout=self._timeout,
        )
        data = require_json(response, self.provider, "token exchange")
        return Tokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in=int(data.get("expires_in") or DEFAULT_EXPIRES_IN),
            token_type=data.get("token_type", "bearer"),
            account_id=data.get("account_id", ""),
        )

    async def refresh(self, refresh_token: str | None) -> Tokens:
        """Refresh an access token. Dropbox never rotates the refresh token."""
        if not refresh_token:
            raise CloudStorageError(
                CloudStorageErrorKind.TOKEN_REFRESH_FAILED,
                "No refresh token available",
                provider=self.provider.value,
            )

        try:
            response = await send_provider_request(
                self._client,
                self.provider,
                "POST",
                DROPBOX_TOKEN_URL,
                action="token refresh",
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                },
                timeout=self._timeout,
            )
        except CloudStorageError as e:
            if e.status_code is None:
                raise
            raise CloudStorageError(
                CloudStorageErrorKind.TOKEN_REFRESH_FAILED,
                "Dropbox rejected the refresh token",
                provider=self.provider.value,
                status_code=e.status_code,
            ) from e

        data = require_json(response, self.provider, "token refresh")
        return Tokens(
            access_token=data["access_token"],
            refresh_token=refresh_token,
            expires_in=int(data.get("expires_in") or DEFAULT_EXPIRES_IN),
            token_type=data.get("token_type", "bearer"),
        )

    async def revoke(self, access_token: str) -> bool:
        """Revoke the token; 401 (already invalid) and transport errors count as done."""
        try:
            response = await self._client.post(
                f"{DROPBOX_API_URL}/auth/token/revoke",
                headers=self._auth_headers(access_token),
                timeout=self._timeout,
            )
        except httpx.HTTPError:
            return True
        return response.is_success or response.status_code == 401

    async def verify(self, access_token: str) -> bool:
        """Check the token against get_current_account."""
        try:
            response = await self._client.post(
                f"{DROPBOX_API_URL}/users/get_current_account",
                headers={**self._auth_headers(access_token), "Content-Type": "application/json"},
                content=b"null",
                timeout=self._timeout,
            )
        except httpx.HTTPError:
            return False
        return response.is_success

    async def get_account_info(self, access_token: str) -> AccountInfo:
        response = await send_provider_request(
            self._client,
            self.provider,
            "POST",
            f"{DROPBOX_API_URL}/users/get_current_account",
            action="account info",
            headers={**self._auth_headers(access_token), "Content-Type": "application/json"},
            content=b"null",
            timeout=self._timeout,
        )
        data = require_json(response, self.provider, "account info")
        return AccountInfo(
            account_id=data.get("account_id", ""),
            email=data.get("email", ""),
            display_name=(data.get("name") or {}).get("display_name", ""),
        )

    async def list_folder(
        self,
        access_token: str,
        path: str = "",
        cursor: str | None = None,
    ) -> FolderContents:
        """List one page; continuation pages are fetched by cursor alone."""
        if cursor:
            data = await self._rpc(
                access_token,
                "/files/list_folder/continue",
                {"cursor": cursor},
                action="list folder",
                not_found=CloudStorageErrorKind.FOLDER_NOT_FOUND,
            )
        else:
            data = await self._rpc(
                access_token,
                "/files/list_folder",
                {
                    "path": normalize_path(path),
                    "recursive": False,
                    "include_mounted_folders": True,
                    "include_non_downloadable_files": False,
                },
                action="list folder",
                not_found=CloudStorageErrorKind.FOLDER_NOT_FOUND,
            )

        folders: list[RemoteFolder] = []
        files: list[RemoteFile] = []
        for entry in data.get("entries", []):
            tag = entry.get(".tag")
            if tag == "folder":
                folders.append(self._to_folder(entry))
            elif tag == "file":
                files.append(self._to_file(entry))

        has_more = bool(data.get("has_more"))
        return FolderContents(
            folders=folders,
            files=files,
            has_more=has_more,
            cursor=data.get("cursor") if has_more else None,
        )

    async def search_folders(
        self,
        access_token: str,
        query: str,
        max_results: int = DEFAULT_SEARCH_RESULTS,
    ) -> list[RemoteFolder]:
        data = await self._rpc(
            access_token,
            "/files/search_v2",
            {
                "query": query,
                "options": {
                    "path": "",
                    "max_results": max_results,
                    "file_status": "active",
                    "filename_only": False,
                },
            },
            action="search folders",
        )

        folders: list[RemoteFolder] = []
        for match in data.get("matches", []):
            wrapper = match.get("metadata") or {}
            if wrapper.get(".tag") != "metadata":
                continue
            metadata = wrapper.get("metadata") or {}
            if metadata.get(".tag") == "folder":
                folders.append(self._to_folder(metadata))
        return folders[:max_results]

    async def get_folder_metadata(self, access_token: str, path_or_id: str) -> RemoteFolder:
        entry = await self._rpc(
            access_token,
            "/files/get_metadata",
            {"path": path_or_id},
            action="folder metadata",
            not_found=CloudStorageErrorKind.FOLDER_NOT_FOUND,
        )
        if entry.get(".tag") != "folder":
            raise CloudStorageError(
                CloudStorageErrorKind.INVALID_PATH,
                "Path is not a folder",
                provider=self.provider.value,
            )
        return self._to_folder(entry)

    async def get_file_metadata(self, access_token: str, path_or_id: str) -> RemoteFile:
        entry = await self._rpc(
            access_token,
            "/files/get_metadata",
            {"path": path_or_id},
            action="file metadata",
            not_found=CloudStorageErrorKind.FILE_NOT_FOUND,
        )
        if entry.get(".tag") != "file":
            raise CloudStorageError(
                CloudStorageErrorKind.INVALID_PATH,
                "Path is not a file",
                provider=self.provider.value,
            )
        return self._to_file(entry)

    async def download_file(self, access_token: str, file_id: str) -> bytes:
        response = await send_provider_request(
            self._client,
            self.provider,
            "POST",
            f"{DROPBOX_CONTENT_URL}/files/download",
            action="download",
            not_found=CloudStorageErrorKind.FILE_NOT_FOUND,
            ok_statuses=(PATH_ERROR_STATUS,),
            headers={
                **self._auth_headers(access_token),
                "Dropbox-API-Arg": json.dumps({"path": file_id}),
            },
            timeout=self._timeout,
        )
        if response.status_code == PATH_ERROR_STATUS:
            raise CloudStorageError(
                CloudStorageErrorKind.FILE_NOT_FOUND,
                "File not found",
                provider=self.provider.value,
                status_code=PATH_ERROR_STATUS,
            )
        return response.content

    async def get_download_url(self, access_token: str, file_id: str) -> str:
        data = await self._rpc(
            access_token,
            "/files/get_temporary_link",
            {"path": file_id},
            action="temporary link",
            not_found=CloudStorageErrorKind.FILE_NOT_FOUND,
        )
        link = data.get("link")
        if not link:
            raise CloudStorageError(
                CloudStorageErrorKind.PROVIDER_ERROR,
                "Dropbox returned no temporary link",
                provider=self.provider.value,
            )
        return link

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _auth_headers(access_token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    async def _rpc(
        self,
        access_token: str,
        endpoint: str,
        body: dict,
        *,
        action: str,
        not_found: CloudStorageErrorKind = CloudStorageErrorKind.PROVIDER_ERROR,
    ) -> dict:
        """POST a JSON RPC call, mapping the 409 path error to not_found."""
        response = await send_provider_request(
            self._client,
            self.provider,
            "POST",
            f"{DROPBOX_API_URL}{endpoint}",
            action=action,
            not_found=not_found,
            ok_statuses=(PATH_ERROR_STATUS,),
            headers=self._auth_headers(access_token),
            json=body,
            timeout=self._timeout,
        )
        if response.status_code == PATH_ERROR_STATUS:
            raise CloudStorageError(
                not_found,
                _NOT_FOUND_MESSAGES.get(not_found, "Path not found"),
                provider=self.provider.value,
                status_code=PATH_ERROR_STATUS,
            )
        return require_json(response, self.provider, action)

    def _to_folder(self, entry: dict) -> RemoteFolder:
        name = entry.get("name", "")
        return RemoteFolder(
            id=entry.get("id", ""),
            name=name,
            path=entry.get("path_lower", ""),
            path_display=entry.get("path_display") or name,
            provider=self.provider,
        )

    def _to_file(self, entry: dict) -> RemoteFile:
        name = entry.get("name", "")
        return RemoteFile(
            id=entry.get("id", ""),
            name=name,
            path=entry.get("path_lower", ""),
            path_display=entry.get("path_display") or name,
            size=int(entry.get("size") or 0),
            mime_type=mime_type_for(name),
            modified_at=parse_timestamp(entry.get("server_modified")),
            provider=self.provider,
            downloadable=entry.get("is_downloadable") is not False,
            content_hash=entry.get("content_hash"),
        )
