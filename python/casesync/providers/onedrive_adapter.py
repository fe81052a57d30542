"""OneDrive adapter implementation (Microsoft Graph v1.0).

Endpoints:
- Consent:  https://login.microsoftonline.com/{tenant}/oauth2/v2.0/authorize
            (response_mode=query, scope includes offline_access)
- Token:    https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token (form-encoded)
- Account:  GET /me
- Listing:  GET /me/drive/root/children, GET /me/drive/root:{path}:/children
- Search:   GET /me/drive/root/search(q='...')?$top=N
- Item:     GET /me/drive/items/{id}, GET /me/drive/root:{path}
- Download: GET /me/drive/items/{id}/content (302 to a pre-authenticated URL)

Listing item (abridged):
{
  "id": "01BYE5RZ6QN3ZWBTUFOFD3GSPGOHDJD36K",
  "name": "intake.pdf",
  "size": 7212,
  "lastModifiedDateTime": "2024-05-01T12:00:00Z",
  "parentReference": {"path": "/drive/root:/Clients/Smith"},
  "file": {"mimeType": "application/pdf", "hashes": {"sha256Hash": "..."}}
}

Graph has no revocation endpoint; disconnect relies on marking the
connection inactive. Personal accounts often omit sha256Hash, so dedup for
this backend may fall back to the remote file id.
"""

from urllib.parse import quote, unquote, urlencode

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

GRAPH_API_URL = "https://graph.microsoft.com/v1.0"
LOGIN_URL = "https://login.microsoftonline.com"
SCOPES = ("Files.Read", "Files.Read.All", "User.Read", "offline_access")

# Graph access tokens default to one hour
DEFAULT_EXPIRES_IN = 3600

_DRIVE_ROOT_PREFIX = "/drive/root:"


class OneDriveAdapter(CloudStorageAdapter):
    """Microsoft Graph adapter for OneDrive."""

    provider = CloudProvider.onedrive

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        client_id: str | None,
        client_secret: str | None,
        tenant_id: str = "common",
        timeout_s: float = 30.0,
    ):
        super().__init__(
            client, client_id=client_id, client_secret=client_secret, timeout_s=timeout_s
        )
        self._tenant_id = tenant_id or "common"

    @property
    def _oauth_base(self) -> str:
        return f"{LOGIN_URL}/{self._tenant_id}/oauth2/v2.0"

    def authorization_url(self, user_id: str, redirect_uri: str) -> str:
        params = {
            "client_id": self._client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(SCOPES),
            "state": encode_state(user_id, self.provider),
            "response_mode": "query",
        }
        return f"{self._oauth_base}/authorize?{urlencode(params)}"

    async def exchange_code(self, code: str, redirect_uri: str) -> Tokens:
        """Exchange an authorization code, then resolve the account id via /me."""
        response = await send_provider_request(
            self._client,
            self.provider,
            "POST",
            f"{self._oauth_base}/token",
            action="token exchange",
            data={
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
                "scope": " ".join(SCOPES),
            },
            timeout=self._timeout,
        )
        data = require_json(response, self.provider, "token exchange")
        account = await self.get_account_info(data["access_token"])
        return Tokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in=int(data.get("expires_in") or DEFAULT_EXPIRES_IN),
            token_type=data.get("token_type", "bearer"),
            account_id=account.account_id,
        )

    async def refresh(self, refresh_token: str | None) -> Tokens:
        """Refresh an access token. Microsoft may rotate the refresh token."""
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
                f"{self._oauth_base}/token",
                action="token refresh",
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                    "scope": " ".join(SCOPES),
                },
                timeout=self._timeout,
            )
        except CloudStorageError as e:
            if e.status_code is None:
                raise
            raise CloudStorageError(
                CloudStorageErrorKind.TOKEN_REFRESH_FAILED,
                "Microsoft rejected the refresh token",
                provider=self.provider.value,
                status_code=e.status_code,
            ) from e

        data = require_json(response, self.provider, "token refresh")
        return Tokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or refresh_token,
            expires_in=int(data.get("expires_in") or DEFAULT_EXPIRES_IN),
            token_type=data.get("token_type", "bearer"),
        )

    async def revoke(self, access_token: str) -> bool:
        # No Graph revocation endpoint; the token expires on its own
        return True

    async def verify(self, access_token: str) -> bool:
        try:
            response = await self._client.get(
                f"{GRAPH_API_URL}/me",
                headers=self._auth_headers(access_token),
                timeout=self._timeout,
            )
        except httpx.HTTPError:
            return False
        return response.is_success

    async def get_account_info(self, access_token: str) -> AccountInfo:
        data = await self._get_json(access_token, f"{GRAPH_API_URL}/me", action="account info")
        return AccountInfo(
            account_id=data.get("id", ""),
            email=data.get("mail") or data.get("userPrincipalName") or "",
            display_name=data.get("displayName") or "",
        )

    async def list_folder(
        self,
        access_token: str,
        path: str = "",
        cursor: str | None = None,
    ) -> FolderContents:
        """List one page; the cursor is the full @odata.nextLink URL."""
        if cursor:
            url = cursor
        else:
            normalized = normalize_path(path)
            if normalized:
                url = f"{GRAPH_API_URL}/me/drive/root:{quote(normalized)}:/children"
            else:
                url = f"{GRAPH_API_URL}/me/drive/root/children"

        data = await self._get_json(
            access_token,
            url,
            action="list folder",
            not_found=CloudStorageErrorKind.FOLDER_NOT_FOUND,
        )

        folders: list[RemoteFolder] = []
        files: list[RemoteFile] = []
        for item in data.get("value", []):
            if "folder" in item:
                folders.append(self._to_folder(item))
            elif "file" in item:
                files.append(self._to_file(item))

        next_link = data.get("@odata.nextLink")
        return FolderContents(
            folders=folders,
            files=files,
            has_more=bool(next_link),
            cursor=next_link,
        )

    async def search_folders(
        self,
        access_token: str,
        query: str,
        max_results: int = DEFAULT_SEARCH_RESULTS,
    ) -> list[RemoteFolder]:
        escaped = quote(query.replace("'", "''"), safe="")
        data = await self._get_json(
            access_token,
            f"{GRAPH_API_URL}/me/drive/root/search(q='{escaped}')",
            action="search folders",
            params={"$top": max_results},
        )
        folders = [self._to_folder(item) for item in data.get("value", []) if "folder" in item]
        return folders[:max_results]

    async def get_folder_metadata(self, access_token: str, path_or_id: str) -> RemoteFolder:
        item = await self._get_json(
            access_token,
            self._item_url(path_or_id),
            action="folder metadata",
            not_found=CloudStorageErrorKind.FOLDER_NOT_FOUND,
        )
        if "folder" not in item:
            raise CloudStorageError(
                CloudStorageErrorKind.INVALID_PATH,
                "Path is not a folder",
                provider=self.provider.value,
            )
        return self._to_folder(item)

    async def get_file_metadata(self, access_token: str, path_or_id: str) -> RemoteFile:
        item = await self._get_json(
            access_token,
            self._item_url(path_or_id),
            action="file metadata",
            not_found=CloudStorageErrorKind.FILE_NOT_FOUND,
        )
        if "file" not in item:
            raise CloudStorageError(
                CloudStorageErrorKind.INVALID_PATH,
                "Path is not a file",
                provider=self.provider.value,
            )
        return self._to_file(item)

    async def download_file(self, access_token: str, file_id: str) -> bytes:
        response = await send_provider_request(
            self._client,
            self.provider,
            "GET",
            self._content_url(file_id),
            action="download",
            not_found=CloudStorageErrorKind.FILE_NOT_FOUND,
            headers=self._auth_headers(access_token),
            follow_redirects=True,
            timeout=self._timeout,
        )
        return response.content

    async def get_download_url(self, access_token: str, file_id: str) -> str:
        """Return the pre-authenticated download URL, else the content endpoint."""
        item = await self._get_json(
            access_token,
            self._item_url(file_id),
            action="download url",
            not_found=CloudStorageErrorKind.FILE_NOT_FOUND,
        )
        return item.get("@microsoft.graph.downloadUrl") or self._content_url(file_id)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _auth_headers(access_token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    @staticmethod
    def _is_path(path_or_id: str) -> bool:
        # Graph item ids never contain a slash
        return "/" in path_or_id

    def _item_url(self, path_or_id: str) -> str:
        if self._is_path(path_or_id):
            return f"{GRAPH_API_URL}/me/drive/root:{quote(normalize_path(path_or_id))}"
        return f"{GRAPH_API_URL}/me/drive/items/{path_or_id}"

    def _content_url(self, path_or_id: str) -> str:
        if self._is_path(path_or_id):
            return f"{GRAPH_API_URL}/me/drive/root:{quote(normalize_path(path_or_id))}:/content"
        return f"{GRAPH_API_URL}/me/drive/items/{path_or_id}/content"

    async def _get_json(
        self,
        access_token: str,
        url: str,
        *,
        action: str,
        not_found: CloudStorageErrorKind = CloudStorageErrorKind.PROVIDER_ERROR,
        params: dict | None = None,
    ) -> dict:
        response = await send_provider_request(
            self._client,
            self.provider,
            "GET",
            url,
            action=action,
            not_found=not_found,
            headers=self._auth_headers(access_token),
            params=params,
            timeout=self._timeout,
        )
        return require_json(response, self.provider, action)

    @staticmethod
    def _item_path(item: dict) -> str:
        """Rebuild the drive-relative path from parentReference.path + name.

        Graph percent-encodes parentReference.path; names arrive decoded.
        """
        name = item.get("name", "")
        parent = (item.get("parentReference") or {}).get("path")
        if not parent:
            return f"/{name}"
        if parent.startswith(_DRIVE_ROOT_PREFIX):
            parent = parent[len(_DRIVE_ROOT_PREFIX) :]
        return f"{unquote(parent).rstrip('/')}/{name}"

    def _to_folder(self, item: dict) -> RemoteFolder:
        path = self._item_path(item)
        return RemoteFolder(
            id=item.get("id", ""),
            name=item.get("name", ""),
            path=path,
            path_display=path,
            provider=self.provider,
        )

    def _to_file(self, item: dict) -> RemoteFile:
        name = item.get("name", "")
        path = self._item_path(item)
        file_facet = item.get("file") or {}
        hashes = file_facet.get("hashes") or {}
        return RemoteFile(
            id=item.get("id", ""),
            name=name,
            path=path,
            path_display=path,
            size=int(item.get("size") or 0),
            mime_type=file_facet.get("mimeType") or mime_type_for(name),
            modified_at=parse_timestamp(item.get("lastModifiedDateTime")),
            provider=self.provider,
            downloadable=True,
            content_hash=hashes.get("sha256Hash"),
        )
