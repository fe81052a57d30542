"""Abstract base class for cloud-storage provider adapters.

Rules:
- Async adapters sharing one httpx.AsyncClient (connection pooling)
- No retries inside adapters; callers own retry policy
- No DB access
- No logging of tokens, codes or response bodies
- Every failure leaves the adapter as a CloudStorageError with a normalized kind
- Native payloads are converted to RemoteFile / RemoteFolder before returning

A missing client id or secret fails construction with PROVIDER_ERROR so a
misconfigured deployment refuses to start instead of degrading silently.
"""

import time
from abc import ABC, abstractmethod
from typing import Any, ClassVar

import httpx

from casesync.auth.oauth_state import decode_state
from casesync.logging import get_logger
from casesync.providers.errors import (
    CloudStorageError,
    CloudStorageErrorKind,
    classify_provider_response,
    classify_transport_error,
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

logger = get_logger(__name__)

DEFAULT_SEARCH_RESULTS = 20


async def send_provider_request(
    client: httpx.AsyncClient,
    provider: CloudProvider,
    method: str,
    url: str,
    *,
    action: str,
    not_found: CloudStorageErrorKind = CloudStorageErrorKind.PROVIDER_ERROR,
    ok_statuses: tuple[int, ...] = (),
    **kwargs: Any,
) -> httpx.Response:
    """Send one provider HTTP request and normalize failures.

    Args:
        client: Shared HTTP client.
        provider: Provider tag for error attribution.
        method: HTTP method.
        url: Absolute URL.
        action: Short operation name used in messages and log events.
        not_found: Kind reported for "entry does not exist" responses.
        ok_statuses: Non-2xx statuses the caller wants returned instead of raised.
        **kwargs: Passed through to httpx.

    Returns:
        The response (2xx, or a status listed in ok_statuses).

    Raises:
        CloudStorageError: NETWORK_ERROR on transport failure, or the kind
            classified from the response status.
    """
    start = time.monotonic()
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.HTTPError as e:
        latency_ms = int((time.monotonic() - start) * 1000)
        error = classify_transport_error(provider.value, e, action)
        logger.warning(
            "provider.request.failed",
            provider=provider.value,
            action=action,
            error_kind=error.kind.value,
            latency_ms=latency_ms,
        )
        raise error from e

    if response.is_success or response.status_code in ok_statuses:
        return response

    latency_ms = int((time.monotonic() - start) * 1000)
    error = classify_provider_response(
        provider.value, response, not_found=not_found, action=action
    )
    logger.warning(
        "provider.request.failed",
        provider=provider.value,
        action=action,
        status_code=response.status_code,
        error_kind=error.kind.value,
        latency_ms=latency_ms,
    )
    raise error


def require_json(response: httpx.Response, provider: CloudProvider, action: str) -> dict:
    """Parse a JSON object body or fail with PROVIDER_ERROR."""
    try:
        data = response.json()
    except ValueError as e:
        raise CloudStorageError(
            CloudStorageErrorKind.PROVIDER_ERROR,
            f"{provider.value} {action} returned invalid JSON",
            provider=provider.value,
        ) from e
    if not isinstance(data, dict):
        raise CloudStorageError(
            CloudStorageErrorKind.PROVIDER_ERROR,
            f"{provider.value} {action} returned an unexpected payload",
            provider=provider.value,
        )
    return data


class CloudStorageAdapter(ABC):
    """Abstract base class for cloud-storage provider adapters.

    Each adapter implements provider-specific OAuth, listing and download
    calls and converts native metadata into the shared types.
    """

    provider: ClassVar[CloudProvider]

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        client_id: str | None,
        client_secret: str | None,
        timeout_s: float = 30.0,
    ):
        """Initialize adapter with shared HTTP client and app credentials.

        Args:
            client: Shared httpx.AsyncClient for connection pooling.
            client_id: OAuth application id.
            client_secret: OAuth application secret.
            timeout_s: Per-request timeout.

        Raises:
            CloudStorageError(PROVIDER_ERROR): If credentials are missing.
        """
        if not client_id or not client_secret:
            raise CloudStorageError(
                CloudStorageErrorKind.PROVIDER_ERROR,
                f"{self.provider.value} client id and secret must be configured",
                provider=self.provider.value,
            )
        self._client = client
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout = httpx.Timeout(timeout_s, connect=10.0)

    def validate_state(self, state: str) -> OAuthState:
        """Verify a callback state blob belongs to this provider and is fresh."""
        return decode_state(state, self.provider)

    @abstractmethod
    def authorization_url(self, user_id: str, redirect_uri: str) -> str:
        """Build the consent URL with an embedded signed state blob."""
        ...

    @abstractmethod
    async def exchange_code(self, code: str, redirect_uri: str) -> Tokens:
        """Exchange a one-time authorization code.

        Raises:
            CloudStorageError: PROVIDER_ERROR on a bad code, RATE_LIMITED on throttling.
        """
        ...

    @abstractmethod
    async def refresh(self, refresh_token: str | None) -> Tokens:
        """Obtain a new access token.

        Raises:
            CloudStorageError(TOKEN_REFRESH_FAILED): No refresh token, or the provider rejected it.
        """
        ...

    @abstractmethod
    async def revoke(self, access_token: str) -> bool:
        """Best-effort revocation. An already-invalid token counts as revoked."""
        ...

    @abstractmethod
    async def verify(self, access_token: str) -> bool:
        """Lightweight liveness check of an access token."""
        ...

    @abstractmethod
    async def get_account_info(self, access_token: str) -> AccountInfo:
        """Fetch the connected account's identity."""
        ...

    @abstractmethod
    async def list_folder(
        self,
        access_token: str,
        path: str = "",
        cursor: str | None = None,
    ) -> FolderContents:
        """List one page of a folder.

        The first call supplies path; continuation calls supply cursor only.

        Raises:
            CloudStorageError: FOLDER_NOT_FOUND, TOKEN_EXPIRED, RATE_LIMITED, ...
        """
        ...

    @abstractmethod
    async def search_folders(
        self,
        access_token: str,
        query: str,
        max_results: int = DEFAULT_SEARCH_RESULTS,
    ) -> list[RemoteFolder]:
        """Search folders by name."""
        ...

    @abstractmethod
    async def get_folder_metadata(self, access_token: str, path_or_id: str) -> RemoteFolder:
        """Fetch metadata for one folder (INVALID_PATH if it is a file)."""
        ...

    @abstractmethod
    async def get_file_metadata(self, access_token: str, path_or_id: str) -> RemoteFile:
        """Fetch metadata for one file (INVALID_PATH if it is a folder)."""
        ...

    @abstractmethod
    async def download_file(self, access_token: str, file_id: str) -> bytes:
        """Download a file body.

        Raises:
            CloudStorageError: FILE_NOT_FOUND, TOKEN_EXPIRED, RATE_LIMITED, NETWORK_ERROR.
        """
        ...

    @abstractmethod
    async def get_download_url(self, access_token: str, file_id: str) -> str:
        """Return a temporary direct download link."""
        ...
