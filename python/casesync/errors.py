"""API error definitions.

All API errors are defined here with their corresponding HTTP status codes.
Cloud-storage domain errors (casesync.providers.errors) are translated into
these codes at the HTTP boundary.
"""

from enum import Enum


class ApiErrorCode(str, Enum):
    """Standardized error codes for the API.

    Format: E_CATEGORY_NAME
    """

    # Authentication errors (401)
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"
    E_TOKEN_EXPIRED = "E_TOKEN_EXPIRED"
    E_TOKEN_REFRESH_FAILED = "E_TOKEN_REFRESH_FAILED"

    # Authorization errors (403)
    E_FORBIDDEN = "E_FORBIDDEN"
    E_NOT_CONNECTED = "E_NOT_CONNECTED"
    E_PERMISSION_DENIED = "E_PERMISSION_DENIED"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"
    E_CASE_NOT_FOUND = "E_CASE_NOT_FOUND"
    E_SYNC_NOT_FOUND = "E_SYNC_NOT_FOUND"
    E_FOLDER_NOT_FOUND = "E_FOLDER_NOT_FOUND"
    E_FILE_NOT_FOUND = "E_FILE_NOT_FOUND"

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_INVALID_PROVIDER = "E_INVALID_PROVIDER"
    E_INVALID_PATH = "E_INVALID_PATH"
    E_INVALID_STATE = "E_INVALID_STATE"
    E_NO_FOLDER_MAPPED = "E_NO_FOLDER_MAPPED"

    # Conflict errors (409)
    E_SYNC_ALREADY_IN_PROGRESS = "E_SYNC_ALREADY_IN_PROGRESS"
    E_QUEUE_ITEM_EXHAUSTED = "E_QUEUE_ITEM_EXHAUSTED"

    # Throttling (429)
    E_RATE_LIMITED = "E_RATE_LIMITED"

    # Server errors
    E_INTERNAL = "E_INTERNAL"  # 500
    E_STORAGE_ERROR = "E_STORAGE_ERROR"  # 500
    E_NETWORK_ERROR = "E_NETWORK_ERROR"  # 502
    E_PROVIDER_ERROR = "E_PROVIDER_ERROR"  # 502
    E_AUTH_UNAVAILABLE = "E_AUTH_UNAVAILABLE"  # 503


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_TOKEN_EXPIRED: 401,
    ApiErrorCode.E_TOKEN_REFRESH_FAILED: 401,
    ApiErrorCode.E_FORBIDDEN: 403,
    ApiErrorCode.E_NOT_CONNECTED: 403,
    ApiErrorCode.E_PERMISSION_DENIED: 403,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_CASE_NOT_FOUND: 404,
    ApiErrorCode.E_SYNC_NOT_FOUND: 404,
    ApiErrorCode.E_FOLDER_NOT_FOUND: 404,
    ApiErrorCode.E_FILE_NOT_FOUND: 404,
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_INVALID_PROVIDER: 400,
    ApiErrorCode.E_INVALID_PATH: 400,
    ApiErrorCode.E_INVALID_STATE: 400,
    ApiErrorCode.E_NO_FOLDER_MAPPED: 400,
    ApiErrorCode.E_SYNC_ALREADY_IN_PROGRESS: 409,
    ApiErrorCode.E_QUEUE_ITEM_EXHAUSTED: 409,
    ApiErrorCode.E_RATE_LIMITED: 429,
    ApiErrorCode.E_INTERNAL: 500,
    ApiErrorCode.E_STORAGE_ERROR: 500,
    ApiErrorCode.E_NETWORK_ERROR: 502,
    ApiErrorCode.E_PROVIDER_ERROR: 502,
    ApiErrorCode.E_AUTH_UNAVAILABLE: 503,
}


class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code (derived from code)
    """

    def __init__(self, code: ApiErrorCode, message: str):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        super().__init__(message)


class NotFoundError(ApiError):
    """Resource not found error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class ForbiddenError(ApiError):
    """Authorization failure error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_FORBIDDEN, message: str = "Forbidden"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    """Invalid request error."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)
