"""API response envelope helpers and exception handlers.

All API responses use a consistent envelope:
- Success: { "data": ... }
- Error: { "error": { "code": "E_...", "message": "...", "request_id": "..." } }

CloudStorageError (provider/sync/queue domain failures) is translated to an
ApiErrorCode here so services never have to know about HTTP.
"""

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from casesync.errors import ERROR_CODE_TO_STATUS, ApiError, ApiErrorCode
from casesync.logging import get_logger, get_request_id
from casesync.providers.errors import CloudStorageError, CloudStorageErrorKind

logger = get_logger(__name__)

CLOUD_ERROR_TO_API_CODE: dict[CloudStorageErrorKind, ApiErrorCode] = {
    CloudStorageErrorKind.NOT_CONNECTED: ApiErrorCode.E_NOT_CONNECTED,
    CloudStorageErrorKind.TOKEN_EXPIRED: ApiErrorCode.E_TOKEN_EXPIRED,
    CloudStorageErrorKind.TOKEN_REFRESH_FAILED: ApiErrorCode.E_TOKEN_REFRESH_FAILED,
    CloudStorageErrorKind.FOLDER_NOT_FOUND: ApiErrorCode.E_FOLDER_NOT_FOUND,
    CloudStorageErrorKind.FILE_NOT_FOUND: ApiErrorCode.E_FILE_NOT_FOUND,
    CloudStorageErrorKind.INVALID_PATH: ApiErrorCode.E_INVALID_PATH,
    CloudStorageErrorKind.PERMISSION_DENIED: ApiErrorCode.E_PERMISSION_DENIED,
    CloudStorageErrorKind.RATE_LIMITED: ApiErrorCode.E_RATE_LIMITED,
    CloudStorageErrorKind.NETWORK_ERROR: ApiErrorCode.E_NETWORK_ERROR,
    CloudStorageErrorKind.PROVIDER_ERROR: ApiErrorCode.E_PROVIDER_ERROR,
    CloudStorageErrorKind.SYNC_ALREADY_IN_PROGRESS: ApiErrorCode.E_SYNC_ALREADY_IN_PROGRESS,
    CloudStorageErrorKind.NO_FOLDER_MAPPED: ApiErrorCode.E_NO_FOLDER_MAPPED,
    CloudStorageErrorKind.QUEUE_ITEM_EXHAUSTED: ApiErrorCode.E_QUEUE_ITEM_EXHAUSTED,
}

# Connection-level failures the user fixes by reconnecting the account
RECONNECT_REQUIRED_KINDS = frozenset(
    {CloudStorageErrorKind.TOKEN_EXPIRED, CloudStorageErrorKind.TOKEN_REFRESH_FAILED}
)


def success_response(data: Any) -> dict[str, Any]:
    """Create a success response envelope.

    Args:
        data: The response data to wrap.

    Returns:
        Dict with "data" key containing the response.
    """
    return {"data": data}


def error_response(
    code: ApiErrorCode, message: str, request_id: str | None = None
) -> dict[str, Any]:
    """Create an error response envelope.

    Args:
        code: The error code enum value.
        message: Human-readable error message.
        request_id: Optional request ID for correlation (auto-populated from context if None).

    Returns:
        Dict with "error" key containing code, message, and request_id.
    """
    if request_id is None:
        request_id = get_request_id()

    error = {"code": code.value, "message": message}
    if request_id:
        error["request_id"] = request_id

    return {"error": error}


def api_error_from_cloud_error(exc: CloudStorageError) -> ApiError:
    """Translate a domain error into the API error it is reported as."""
    code = CLOUD_ERROR_TO_API_CODE.get(exc.kind, ApiErrorCode.E_PROVIDER_ERROR)
    message = exc.message
    if exc.kind in RECONNECT_REQUIRED_KINDS:
        message = f"Reconnect required: {exc.message}"
    return ApiError(code, message)


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    """Handle ApiError exceptions and return proper JSON response."""
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.code, exc.message),
    )


async def cloud_storage_error_handler(request: Request, exc: CloudStorageError) -> JSONResponse:
    """Handle CloudStorageError raised out of a service call."""
    api_error = api_error_from_cloud_error(exc)
    logger.info(
        "cloud_storage_error",
        kind=exc.kind.value,
        provider=exc.provider,
        status_code=api_error.status_code,
    )
    return JSONResponse(
        status_code=ERROR_CODE_TO_STATUS.get(api_error.code, 500),
        content=error_response(api_error.code, api_error.message),
    )


async def http_exception_handler(request: Request, exc: Any) -> JSONResponse:
    """Handle FastAPI HTTPException and return proper JSON response."""
    status_to_code = {
        400: ApiErrorCode.E_INVALID_REQUEST,
        401: ApiErrorCode.E_UNAUTHENTICATED,
        403: ApiErrorCode.E_FORBIDDEN,
        404: ApiErrorCode.E_NOT_FOUND,
        422: ApiErrorCode.E_INVALID_REQUEST,
    }
    code = status_to_code.get(exc.status_code, ApiErrorCode.E_INTERNAL)
    message = str(exc.detail) if exc.detail else "An error occurred"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(code, message),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions and return 500 with E_INTERNAL.

    Logs the exception server-side but never leaks details to client.
    """
    logger.exception("unhandled_exception", error_type=type(exc).__name__)

    return JSONResponse(
        status_code=500,
        content=error_response(ApiErrorCode.E_INTERNAL, "Internal server error"),
    )
