"""Tests for the OneDrive (Microsoft Graph) adapter.

Pure unit tests: respx mocks Graph and the Microsoft identity endpoints.
"""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest
import respx

from casesync.auth.oauth_state import decode_state
from casesync.providers.errors import CloudStorageError, CloudStorageErrorKind
from casesync.providers.onedrive_adapter import GRAPH_API_URL, OneDriveAdapter
from casesync.providers.types import CloudProvider

TOKEN_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/token"
SMITH_CHILDREN = r".*/me/drive/root:/Clients/Smith:/children$"


def graph_file(name: str, parent: str = "/Clients/Smith", sha256: str | None = "abc123") -> dict:
    file_facet: dict = {"mimeType": "application/pdf"}
    if sha256:
        file_facet["hashes"] = {"sha256Hash": sha256}
    return {
        "id": f"ITEM-{name}",
        "name": name,
        "size": 2048,
        "lastModifiedDateTime": "2024-05-01T12:00:00Z",
        "parentReference": {"path": f"/drive/root:{parent}"},
        "file": file_facet,
    }


def graph_folder(name: str, parent: str = "/Clients/Smith") -> dict:
    return {
        "id": f"ITEM-{name}",
        "name": name,
        "parentReference": {"path": f"/drive/root:{parent}"},
        "folder": {"childCount": 3},
    }


@pytest.fixture
def httpx_client():
    return httpx.AsyncClient()


@pytest.fixture
def adapter(httpx_client):
    return OneDriveAdapter(httpx_client, client_id="client-id", client_secret="client-secret")


class TestOAuth:
    def test_authorization_url(self, adapter):
        url = adapter.authorization_url("user-1", "http://localhost:8000/auth/onedrive/callback")

        parsed = urlparse(url)
        params = parse_qs(parsed.query)
        assert parsed.netloc == "login.microsoftonline.com"
        assert parsed.path == "/common/oauth2/v2.0/authorize"
        assert "offline_access" in params["scope"][0].split()
        assert params["response_mode"] == ["query"]
        assert decode_state(params["state"][0], CloudProvider.onedrive).user_id == "user-1"

    def test_tenant_in_urls(self, httpx_client):
        adapter = OneDriveAdapter(
            httpx_client, client_id="id", client_secret="secret", tenant_id="contoso"
        )

        url = adapter.authorization_url("user-1", "http://cb")

        assert urlparse(url).path.startswith("/contoso/")

    @pytest.mark.asyncio
    @respx.mock
    async def test_exchange_code_resolves_account(self, adapter):
        respx.post(TOKEN_URL).respond(
            200,
            json={
                "access_token": "eyJ.access",
                "refresh_token": "M.refresh",
                "expires_in": 3600,
                "token_type": "Bearer",
            },
        )
        respx.get(f"{GRAPH_API_URL}/me").respond(
            200,
            json={"id": "graph-user", "mail": None, "userPrincipalName": "owner@contoso.com"},
        )

        tokens = await adapter.exchange_code("code-1", "http://cb")

        assert tokens.access_token == "eyJ.access"
        assert tokens.refresh_token == "M.refresh"
        assert tokens.account_id == "graph-user"

    @pytest.mark.asyncio
    @respx.mock
    async def test_refresh_rotates_token(self, adapter):
        respx.post(TOKEN_URL).respond(
            200, json={"access_token": "new", "refresh_token": "rotated", "expires_in": 3600}
        )

        tokens = await adapter.refresh("old-refresh")

        assert tokens.refresh_token == "rotated"

    @pytest.mark.asyncio
    @respx.mock
    async def test_refresh_keeps_token_when_not_rotated(self, adapter):
        respx.post(TOKEN_URL).respond(200, json={"access_token": "new", "expires_in": 3600})

        tokens = await adapter.refresh("old-refresh")

        assert tokens.refresh_token == "old-refresh"

    @pytest.mark.asyncio
    @respx.mock
    async def test_refresh_rejected(self, adapter):
        respx.post(TOKEN_URL).respond(400, json={"error": "invalid_grant"})

        with pytest.raises(CloudStorageError) as exc_info:
            await adapter.refresh("revoked")

        assert exc_info.value.kind == CloudStorageErrorKind.TOKEN_REFRESH_FAILED
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_revoke_is_noop(self, adapter):
        assert await adapter.revoke("token") is True

    @pytest.mark.asyncio
    @respx.mock
    async def test_account_info_prefers_mail(self, adapter):
        respx.get(f"{GRAPH_API_URL}/me").respond(
            200,
            json={
                "id": "graph-user",
                "mail": "owner@example.com",
                "userPrincipalName": "upn@example.com",
                "displayName": "Case Owner",
            },
        )

        account = await adapter.get_account_info("token")

        assert account.email == "owner@example.com"
        assert account.display_name == "Case Owner"


class TestListFolder:
    @pytest.mark.asyncio
    @respx.mock
    async def test_normalizes_items(self, adapter):
        respx.get(url__regex=SMITH_CHILDREN).respond(
            200,
            json={"value": [graph_folder("Medical"), graph_file("intake.pdf", sha256=None)]},
        )

        page = await adapter.list_folder("token", "/Clients/Smith")

        assert [f.path for f in page.folders] == ["/Clients/Smith/Medical"]
        remote = page.files[0]
        assert remote.id == "ITEM-intake.pdf"
        assert remote.path_display == "/Clients/Smith/intake.pdf"
        assert remote.mime_type == "application/pdf"
        assert remote.content_hash is None
        assert remote.size == 2048
        assert page.has_more is False
        assert page.cursor is None

    @pytest.mark.asyncio
    @respx.mock
    async def test_sha256_hash_exposed(self, adapter):
        respx.get(url__regex=SMITH_CHILDREN).respond(
            200, json={"value": [graph_file("a.pdf", sha256="ABCDEF")]}
        )

        page = await adapter.list_folder("token", "/Clients/Smith")

        assert page.files[0].content_hash == "ABCDEF"

    @pytest.mark.asyncio
    @respx.mock
    async def test_encoded_parent_path_decoded_once(self, adapter):
        respx.get(url__regex=r".*/me/drive/root:/Clients/Smith%20Jones:/children$").respond(
            200,
            json={"value": [graph_folder("Medical", parent="/Clients/Smith%20Jones")]},
        )
        nested = respx.get(
            url__regex=r".*/me/drive/root:/Clients/Smith%20Jones/Medical:/children$"
        ).respond(
            200,
            json={"value": [graph_file("er visit.pdf", parent="/Clients/Smith%20Jones/Medical")]},
        )

        page = await adapter.list_folder("token", "/Clients/Smith Jones")
        folder = page.folders[0]
        nested_page = await adapter.list_folder("token", folder.path)

        assert folder.path == "/Clients/Smith Jones/Medical"
        assert nested.called
        assert nested_page.files[0].path_display == "/Clients/Smith Jones/Medical/er visit.pdf"

    @pytest.mark.asyncio
    @respx.mock
    async def test_root_listing(self, adapter):
        route = respx.get(f"{GRAPH_API_URL}/me/drive/root/children").respond(
            200, json={"value": [graph_folder("Clients", parent="")]}
        )

        page = await adapter.list_folder("token", "")

        assert route.called
        assert page.folders[0].path == "/Clients"

    @pytest.mark.asyncio
    @respx.mock
    async def test_next_link_is_cursor(self, adapter):
        next_link = f"{GRAPH_API_URL}/me/drive/root:/Clients/Smith:/children?$skiptoken=abc"
        respx.get(url__regex=SMITH_CHILDREN).respond(
            200, json={"value": [graph_file("a.pdf")], "@odata.nextLink": next_link}
        )
        respx.get(url__regex=r".*skiptoken=abc.*").respond(
            200, json={"value": [graph_file("b.pdf")]}
        )

        first = await adapter.list_folder("token", "/Clients/Smith")
        second = await adapter.list_folder("token", cursor=first.cursor)

        assert first.has_more is True
        assert first.cursor == next_link
        assert [f.name for f in second.files] == ["b.pdf"]
        assert second.has_more is False

    @pytest.mark.asyncio
    @respx.mock
    async def test_missing_folder(self, adapter):
        respx.get(url__regex=r".*/me/drive/root:/Missing:/children$").respond(
            404, json={"error": {"code": "itemNotFound"}}
        )

        with pytest.raises(CloudStorageError) as exc_info:
            await adapter.list_folder("token", "/Missing")

        assert exc_info.value.kind == CloudStorageErrorKind.FOLDER_NOT_FOUND

    @pytest.mark.asyncio
    @respx.mock
    async def test_throttled(self, adapter):
        respx.get(url__regex=SMITH_CHILDREN).respond(429, headers={"Retry-After": "5"})

        with pytest.raises(CloudStorageError) as exc_info:
            await adapter.list_folder("token", "/Clients/Smith")

        assert exc_info.value.kind == CloudStorageErrorKind.RATE_LIMITED

    @pytest.mark.asyncio
    @respx.mock
    async def test_expired_token(self, adapter):
        respx.get(url__regex=SMITH_CHILDREN).respond(401)

        with pytest.raises(CloudStorageError) as exc_info:
            await adapter.list_folder("token", "/Clients/Smith")

        assert exc_info.value.kind == CloudStorageErrorKind.TOKEN_EXPIRED


class TestSearchAndMetadata:
    @pytest.mark.asyncio
    @respx.mock
    async def test_search_filters_files(self, adapter):
        respx.get(url__regex=r".*/me/drive/root/search.*").respond(
            200, json={"value": [graph_folder("Smith", "/Clients"), graph_file("smith.pdf")]}
        )

        folders = await adapter.search_folders("token", "smith")

        assert [f.name for f in folders] == ["Smith"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_item_by_id(self, adapter):
        respx.get(f"{GRAPH_API_URL}/me/drive/items/ITEM-a.pdf").respond(
            200, json=graph_file("a.pdf")
        )

        remote = await adapter.get_file_metadata("token", "ITEM-a.pdf")

        assert remote.name == "a.pdf"

    @pytest.mark.asyncio
    @respx.mock
    async def test_folder_metadata_rejects_file(self, adapter):
        respx.get(f"{GRAPH_API_URL}/me/drive/items/ITEM-a.pdf").respond(
            200, json=graph_file("a.pdf")
        )

        with pytest.raises(CloudStorageError) as exc_info:
            await adapter.get_folder_metadata("token", "ITEM-a.pdf")

        assert exc_info.value.kind == CloudStorageErrorKind.INVALID_PATH


class TestDownload:
    @pytest.mark.asyncio
    @respx.mock
    async def test_download_follows_redirect(self, adapter):
        respx.get(f"{GRAPH_API_URL}/me/drive/items/ITEM-a.pdf/content").respond(
            302, headers={"Location": "https://download.example.test/a.pdf"}
        )
        respx.get("https://download.example.test/a.pdf").respond(200, content=b"pdf bytes")

        assert await adapter.download_file("token", "ITEM-a.pdf") == b"pdf bytes"

    @pytest.mark.asyncio
    @respx.mock
    async def test_download_missing(self, adapter):
        respx.get(f"{GRAPH_API_URL}/me/drive/items/ITEM-gone/content").respond(404)

        with pytest.raises(CloudStorageError) as exc_info:
            await adapter.download_file("token", "ITEM-gone")

        assert exc_info.value.kind == CloudStorageErrorKind.FILE_NOT_FOUND

    @pytest.mark.asyncio
    @respx.mock
    async def test_download_url_prefers_preauthenticated(self, adapter):
        respx.get(f"{GRAPH_API_URL}/me/drive/items/ITEM-a.pdf").respond(
            200,
            json={**graph_file("a.pdf"), "@microsoft.graph.downloadUrl": "https://dl.test/a"},
        )

        assert await adapter.get_download_url("token", "ITEM-a.pdf") == "https://dl.test/a"
