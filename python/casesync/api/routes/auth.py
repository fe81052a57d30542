"""OAuth connection routes.

GET    /auth/{provider}           → 307 to the provider consent URL
                                    (or {"data": {"url"}} with ?redirect=false)
GET    /auth/{provider}/callback  → exchange code, save connection, 307 back to the app
DELETE /auth/{provider}           → revoke (best effort) and deactivate
GET    /auth/{provider}/status    → {connected, accountEmail, accountName, lastVerifiedAt, needsReauth}
POST   /auth/{provider}/verify    → check the stored token (one refresh on rejection)

The callback is a browser redirect from the provider and carries no bearer
token; the signed state blob identifies the user. Callback failures never
render an error page: the browser is sent to APP_REDIRECT_URL with
?{provider}=error&message=....
"""

from typing import Annotated
from urllib.parse import urlencode
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from casesync.api.deps import get_adapter, get_db
from casesync.auth.middleware import Viewer, get_viewer
from casesync.config import get_settings
from casesync.errors import ApiError
from casesync.logging import get_logger
from casesync.providers.adapter import CloudStorageAdapter
from casesync.providers.errors import CloudStorageError
from casesync.responses import success_response
from casesync.schemas.connections import AuthorizationUrlOut
from casesync.services import credentials

logger = get_logger(__name__)

router = APIRouter()


def _app_redirect(provider: str, outcome: str, message: str | None = None) -> RedirectResponse:
    base = get_settings().app_redirect_url
    params = {provider: outcome}
    if message:
        params["message"] = message
    separator = "&" if "?" in base else "?"
    return RedirectResponse(f"{base}{separator}{urlencode(params)}", status_code=307)


@router.get("/auth/{provider}")
def start_authorization(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    adapter: Annotated[CloudStorageAdapter, Depends(get_adapter)],
    redirect: bool = True,
):
    """Begin the OAuth flow for the viewer."""
    provider = adapter.provider.value
    url = adapter.authorization_url(
        str(viewer.user_id), get_settings().oauth_callback_url(provider)
    )
    logger.info("oauth_authorization_started", provider=provider)
    if not redirect:
        return success_response(AuthorizationUrlOut(url=url).model_dump(mode="json", by_alias=True))
    return RedirectResponse(url, status_code=307)


@router.get("/auth/{provider}/callback")
async def oauth_callback(
    adapter: Annotated[CloudStorageAdapter, Depends(get_adapter)],
    db: Annotated[Session, Depends(get_db)],
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: Annotated[str | None, Query()] = None,
) -> RedirectResponse:
    """Complete the OAuth flow and send the browser back to the app."""
    provider = adapter.provider

    if error:
        logger.warning("oauth_callback_denied", provider=provider.value, error=error)
        return _app_redirect(provider.value, "error", error_description or error)

    if not code or not state:
        return _app_redirect(provider.value, "error", "Invalid callback parameters")

    try:
        oauth_state = adapter.validate_state(state)
        redirect_uri = get_settings().oauth_callback_url(provider.value)
        tokens = await adapter.exchange_code(code, redirect_uri)
        account = await adapter.get_account_info(tokens.access_token)
        await run_in_threadpool(
            credentials.save_connection,
            db,
            UUID(oauth_state.user_id),
            provider,
            tokens,
            account,
        )
    except (ApiError, CloudStorageError) as e:
        logger.warning(
            "oauth_callback_failed",
            provider=provider.value,
            error_kind=e.kind.value if isinstance(e, CloudStorageError) else e.code.value,
        )
        return _app_redirect(provider.value, "error", e.message)

    logger.info("oauth_callback_connected", provider=provider.value, user_id=oauth_state.user_id)
    return _app_redirect(provider.value, "connected")


@router.delete("/auth/{provider}")
async def disconnect(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    adapter: Annotated[CloudStorageAdapter, Depends(get_adapter)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Revoke and deactivate the viewer's connection. Idempotent."""
    disconnected = await credentials.disconnect(db, adapter, viewer.user_id)
    return success_response({"disconnected": disconnected})


@router.get("/auth/{provider}/status")
def connection_status(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    adapter: Annotated[CloudStorageAdapter, Depends(get_adapter)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Connection summary for the viewer (never includes tokens)."""
    status = credentials.get_connection_status(db, viewer.user_id, adapter.provider)
    return success_response(status.model_dump(mode="json", by_alias=True))


@router.post("/auth/{provider}/verify")
async def verify_connection(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    adapter: Annotated[CloudStorageAdapter, Depends(get_adapter)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Check the stored token against the provider.

    Returns 403 E_NOT_CONNECTED when there is no active connection.
    """
    valid = await credentials.verify_connection(db, adapter, viewer.user_id)
    return success_response({"valid": valid})
