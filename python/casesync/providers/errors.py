"""Cloud-storage error taxonomy and classification.

Every failure raised by the provider layer, the credential store, the sync
orchestrator and the processing queue is a CloudStorageError carrying one
CloudStorageErrorKind. Callers branch on the kind, never on the message.

Provider HTTP failures are classified in one place (classify_provider_response /
classify_transport_error) so both adapters report identical kinds:
- 401 → TOKEN_EXPIRED
- 403 → PERMISSION_DENIED
- 429 → RATE_LIMITED
- 404 (and Dropbox path/not_found 409) → the caller's not-found kind
- 5xx → PROVIDER_ERROR
- timeouts / transport errors → NETWORK_ERROR
"""

from enum import Enum

import httpx


class CloudStorageErrorKind(str, Enum):
    """Normalized error kinds for the sync subsystem."""

    NOT_CONNECTED = "NOT_CONNECTED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_REFRESH_FAILED = "TOKEN_REFRESH_FAILED"
    FOLDER_NOT_FOUND = "FOLDER_NOT_FOUND"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    INVALID_PATH = "INVALID_PATH"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    RATE_LIMITED = "RATE_LIMITED"
    NETWORK_ERROR = "NETWORK_ERROR"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    SYNC_ALREADY_IN_PROGRESS = "SYNC_ALREADY_IN_PROGRESS"
    NO_FOLDER_MAPPED = "NO_FOLDER_MAPPED"
    QUEUE_ITEM_EXHAUSTED = "QUEUE_ITEM_EXHAUSTED"


class CloudStorageError(Exception):
    """Exception for cloud-storage sync errors.

    Attributes:
        kind: The normalized error kind
        message: Human-readable error message
        provider: The provider involved (if known)
        status_code: Upstream HTTP status (if the error came from a provider response)
    """

    def __init__(
        self,
        kind: CloudStorageErrorKind,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
    ):
        self.kind = kind
        self.message = message
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)

    def __repr__(self) -> str:
        return f"CloudStorageError({self.kind.value}, {self.message!r}, provider={self.provider!r})"


def classify_status(
    status_code: int,
    *,
    not_found: CloudStorageErrorKind = CloudStorageErrorKind.PROVIDER_ERROR,
) -> CloudStorageErrorKind:
    """Map an upstream HTTP status to an error kind.

    Args:
        status_code: The provider response status.
        not_found: Kind reported for "entry does not exist" responses
            (FOLDER_NOT_FOUND for listings, FILE_NOT_FOUND for downloads).
    """
    if status_code == 401:
        return CloudStorageErrorKind.TOKEN_EXPIRED
    if status_code == 403:
        return CloudStorageErrorKind.PERMISSION_DENIED
    if status_code == 404:
        return not_found
    if status_code == 429:
        return CloudStorageErrorKind.RATE_LIMITED
    return CloudStorageErrorKind.PROVIDER_ERROR


def classify_provider_response(
    provider: str,
    response: httpx.Response,
    *,
    not_found: CloudStorageErrorKind = CloudStorageErrorKind.PROVIDER_ERROR,
    action: str = "request",
) -> CloudStorageError:
    """Build a CloudStorageError for a non-2xx provider response.

    The response body is never copied into the message; it can echo tokens.
    """
    kind = classify_status(response.status_code, not_found=not_found)
    return CloudStorageError(
        kind,
        f"{provider} {action} failed with HTTP {response.status_code}",
        provider=provider,
        status_code=response.status_code,
    )


def classify_transport_error(provider: str, exc: Exception, action: str = "request") -> CloudStorageError:
    """Build a CloudStorageError for a timeout or transport failure."""
    if isinstance(exc, httpx.TimeoutException):
        message = f"{provider} {action} timed out"
    else:
        message = f"{provider} {action} failed: {type(exc).__name__}"
    return CloudStorageError(CloudStorageErrorKind.NETWORK_ERROR, message, provider=provider)
