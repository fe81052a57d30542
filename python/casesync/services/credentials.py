"""Credential store: persist and refresh OAuth tokens per (user, provider).

Rules:
- One cloud_connections row per (user, provider); reconnecting reactivates it
- Tokens are sealed at rest (casesync.services.crypto) and never logged
- A token counts as expired TOKEN_REFRESH_BUFFER_S (5 min) before its expiry;
  a missing expiry counts as expired
- get_valid_token refreshes at most once per call; there is no retry loop
- Any refresh failure surfaces as TOKEN_REFRESH_FAILED ("reconnect required")

Sync DB helpers are plain functions over a Session; the async entry points
wrap them in run_in_threadpool so the event loop is not blocked.
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from casesync.config import get_settings
from casesync.db.models import CloudConnection
from casesync.db.session import transaction
from casesync.logging import get_logger
from casesync.providers.adapter import CloudStorageAdapter
from casesync.providers.errors import CloudStorageError, CloudStorageErrorKind
from casesync.providers.types import AccountInfo, CloudProvider, Tokens
from casesync.schemas.connections import ConnectionStatusOut
from casesync.services.crypto import open_optional, open_token, seal_optional, seal_token

logger = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(UTC)


def is_token_expired(
    connection: CloudConnection, now: datetime | None = None, buffer_s: int | None = None
) -> bool:
    """True when the access token expires within the refresh buffer."""
    if connection.token_expires_at is None:
        return True
    if buffer_s is None:
        buffer_s = get_settings().token_refresh_buffer_s
    now = now or _now()
    return connection.token_expires_at - timedelta(seconds=buffer_s) <= now


def get_connection(db: Session, user_id: UUID, provider: CloudProvider) -> CloudConnection | None:
    return db.execute(
        select(CloudConnection).where(
            CloudConnection.user_id == user_id,
            CloudConnection.provider == provider.value,
        )
    ).scalar_one_or_none()


def save_connection(
    db: Session,
    user_id: UUID,
    provider: CloudProvider,
    tokens: Tokens,
    account: AccountInfo | None = None,
    now: datetime | None = None,
) -> CloudConnection:
    """Upsert the (user, provider) connection after a successful code exchange.

    Reactivates an existing row. A missing refresh token keeps the stored one.
    """
    now = now or _now()
    connection = get_connection(db, user_id, provider)

    with transaction(db):
        if connection is None:
            connection = CloudConnection(user_id=user_id, provider=provider.value)
            db.add(connection)

        connection.access_token = seal_token(tokens.access_token)
        if tokens.refresh_token:
            connection.refresh_token = seal_optional(tokens.refresh_token)
        connection.token_expires_at = now + timedelta(seconds=tokens.expires_in)
        connection.is_active = True
        connection.last_verified_at = now

        if account is not None:
            connection.account_id = account.account_id or tokens.account_id or None
            connection.account_email = account.email or None
            connection.account_name = account.display_name or None
        elif tokens.account_id:
            connection.account_id = tokens.account_id

    logger.info("credentials.connection_saved", provider=provider.value, user_id=str(user_id))
    return connection


def _store_refreshed_tokens(
    db: Session, connection: CloudConnection, tokens: Tokens, now: datetime
) -> None:
    with transaction(db):
        connection.access_token = seal_token(tokens.access_token)
        if tokens.refresh_token:
            connection.refresh_token = seal_token(tokens.refresh_token)
        connection.token_expires_at = now + timedelta(seconds=tokens.expires_in)


def _mark_verified(db: Session, connection: CloudConnection, now: datetime) -> None:
    with transaction(db):
        connection.last_verified_at = now


def _deactivate(db: Session, connection: CloudConnection) -> None:
    with transaction(db):
        connection.is_active = False


def _require_active(
    db: Session, user_id: UUID, provider: CloudProvider
) -> CloudConnection:
    connection = get_connection(db, user_id, provider)
    if connection is None or not connection.is_active:
        raise CloudStorageError(
            CloudStorageErrorKind.NOT_CONNECTED,
            f"{provider.value} is not connected",
            provider=provider.value,
        )
    return connection


async def _refresh(
    db: Session,
    adapter: CloudStorageAdapter,
    connection: CloudConnection,
    now: datetime,
) -> str:
    """Run exactly one refresh and persist the result."""
    provider = adapter.provider
    refresh_token = open_optional(connection.refresh_token)
    if not refresh_token:
        raise CloudStorageError(
            CloudStorageErrorKind.TOKEN_REFRESH_FAILED,
            "No refresh token available",
            provider=provider.value,
        )

    try:
        tokens = await adapter.refresh(refresh_token)
    except CloudStorageError as e:
        logger.warning(
            "credentials.token_refresh_failed",
            provider=provider.value,
            error_kind=e.kind.value,
        )
        if e.kind == CloudStorageErrorKind.TOKEN_REFRESH_FAILED:
            raise
        raise CloudStorageError(
            CloudStorageErrorKind.TOKEN_REFRESH_FAILED,
            f"Token refresh failed: {e.message}",
            provider=provider.value,
            status_code=e.status_code,
        ) from e

    await run_in_threadpool(_store_refreshed_tokens, db, connection, tokens, now)
    logger.info(
        "credentials.token_refreshed",
        provider=provider.value,
        expires_in=tokens.expires_in,
    )
    return tokens.access_token


async def get_valid_token(
    db: Session,
    adapter: CloudStorageAdapter,
    user_id: UUID,
    now: datetime | None = None,
) -> str:
    """Return a usable access token, refreshing it first if it has expired.

    Raises:
        CloudStorageError(NOT_CONNECTED): No active connection.
        CloudStorageError(TOKEN_REFRESH_FAILED): Expired and not refreshable.
    """
    now = now or _now()
    connection = await run_in_threadpool(_require_active, db, user_id, adapter.provider)

    if not is_token_expired(connection, now):
        return open_token(connection.access_token)

    return await _refresh(db, adapter, connection, now)


def get_connection_status(
    db: Session, user_id: UUID, provider: CloudProvider, now: datetime | None = None
) -> ConnectionStatusOut:
    connection = get_connection(db, user_id, provider)
    if connection is None or not connection.is_active:
        return ConnectionStatusOut(
            connected=False,
            account_email=None,
            account_name=None,
            last_verified_at=None,
            needs_reauth=False,
        )

    return ConnectionStatusOut(
        connected=True,
        account_email=connection.account_email,
        account_name=connection.account_name,
        last_verified_at=connection.last_verified_at,
        needs_reauth=is_token_expired(connection, now),
    )


async def verify_connection(
    db: Session,
    adapter: CloudStorageAdapter,
    user_id: UUID,
    now: datetime | None = None,
) -> bool:
    """Check the stored token; on rejection try one refresh.

    Returns:
        True if the connection is usable (last_verified_at is stamped).
    """
    now = now or _now()
    connection = await run_in_threadpool(_require_active, db, user_id, adapter.provider)

    if await adapter.verify(open_token(connection.access_token)):
        await run_in_threadpool(_mark_verified, db, connection, now)
        return True

    try:
        access_token = await _refresh(db, adapter, connection, now)
    except CloudStorageError:
        return False

    if not await adapter.verify(access_token):
        return False
    await run_in_threadpool(_mark_verified, db, connection, now)
    return True


async def disconnect(db: Session, adapter: CloudStorageAdapter, user_id: UUID) -> bool:
    """Revoke (best effort) and deactivate the connection.

    Returns:
        False if there was no active connection.
    """
    connection = await run_in_threadpool(get_connection, db, user_id, adapter.provider)
    if connection is None or not connection.is_active:
        return False

    revoked = await adapter.revoke(open_token(connection.access_token))
    await run_in_threadpool(_deactivate, db, connection)
    logger.info(
        "credentials.disconnected", provider=adapter.provider.value, revoked=revoked
    )
    return True
