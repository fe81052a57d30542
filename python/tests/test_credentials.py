"""Tests for the credential store.

Coverage:
- Expiry uses the 5 minute refresh buffer
- Valid tokens are returned without calling the provider
- Expired tokens are refreshed exactly once and persisted sealed
- Refresh failures surface as TOKEN_REFRESH_FAILED
- Missing or inactive connections are NOT_CONNECTED
- Reconnecting reactivates the existing row
- Status, verify and disconnect
"""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func, select

from casesync.db.models import CloudConnection
from casesync.providers.errors import CloudStorageError, CloudStorageErrorKind
from casesync.providers.types import AccountInfo, CloudProvider, Tokens
from casesync.services import credentials
from casesync.services.crypto import open_token
from tests.factories import create_test_connection

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


class TestIsTokenExpired:
    def test_outside_buffer_is_valid(self):
        connection = CloudConnection(token_expires_at=NOW + timedelta(minutes=6))

        assert credentials.is_token_expired(connection, NOW, buffer_s=300) is False

    def test_inside_buffer_is_expired(self):
        connection = CloudConnection(token_expires_at=NOW + timedelta(minutes=4))

        assert credentials.is_token_expired(connection, NOW, buffer_s=300) is True

    def test_missing_expiry_is_expired(self):
        connection = CloudConnection(token_expires_at=None)

        assert credentials.is_token_expired(connection, NOW, buffer_s=300) is True


class TestSaveConnection:
    def test_creates_sealed_connection(self, db_session, user_id):
        tokens = Tokens(access_token="access-1", refresh_token="refresh-1", expires_in=14400)
        account = AccountInfo("acct-9", "owner@example.com", "Case Owner")

        connection = credentials.save_connection(
            db_session, user_id, CloudProvider.dropbox, tokens, account, now=NOW
        )

        assert connection.is_active is True
        assert connection.access_token != "access-1"
        assert open_token(connection.access_token) == "access-1"
        assert open_token(connection.refresh_token) == "refresh-1"
        assert connection.token_expires_at == NOW + timedelta(seconds=14400)
        assert connection.account_email == "owner@example.com"
        assert connection.account_id == "acct-9"

    def test_reconnect_reuses_row(self, db_session, user_id):
        create_test_connection(db_session, user_id, is_active=False)
        tokens = Tokens(access_token="access-2", refresh_token=None, expires_in=3600)

        connection = credentials.save_connection(
            db_session, user_id, CloudProvider.dropbox, tokens, now=NOW
        )

        count = db_session.execute(
            select(func.count()).select_from(CloudConnection).where(
                CloudConnection.user_id == user_id
            )
        ).scalar_one()
        assert count == 1
        assert connection.is_active is True
        assert open_token(connection.access_token) == "access-2"
        # No refresh token in the response keeps the stored one
        assert open_token(connection.refresh_token) == "fake-refresh-token"

    def test_providers_are_separate(self, db_session, user_id):
        create_test_connection(db_session, user_id, provider=CloudProvider.dropbox)
        tokens = Tokens(access_token="graph", refresh_token="graph-refresh", expires_in=3600)

        credentials.save_connection(db_session, user_id, CloudProvider.onedrive, tokens, now=NOW)

        assert credentials.get_connection(db_session, user_id, CloudProvider.dropbox) is not None
        assert credentials.get_connection(db_session, user_id, CloudProvider.onedrive) is not None


class TestGetValidToken:
    @pytest.mark.asyncio
    async def test_valid_token_returned_without_refresh(self, db_session, user_id, dropbox):
        create_test_connection(db_session, user_id)

        token = await credentials.get_valid_token(db_session, dropbox, user_id)

        assert token == "fake-access-token"
        assert dropbox.refresh_calls == []

    @pytest.mark.asyncio
    async def test_expired_token_refreshed_once(self, db_session, user_id, dropbox):
        connection = create_test_connection(
            db_session, user_id, expires_at=datetime.now(UTC) + timedelta(minutes=2)
        )

        token = await credentials.get_valid_token(db_session, dropbox, user_id)

        assert token == "fake-refreshed-token"
        assert dropbox.refresh_calls == ["fake-refresh-token"]
        db_session.refresh(connection)
        assert open_token(connection.access_token) == "fake-refreshed-token"
        assert connection.token_expires_at > datetime.now(UTC) + timedelta(hours=3)

    @pytest.mark.asyncio
    async def test_refresh_failure(self, db_session, user_id, dropbox):
        create_test_connection(
            db_session, user_id, expires_at=datetime.now(UTC) - timedelta(minutes=1)
        )
        dropbox.refresh_error = CloudStorageError(
            CloudStorageErrorKind.TOKEN_REFRESH_FAILED, "rejected", provider="dropbox"
        )

        with pytest.raises(CloudStorageError) as exc_info:
            await credentials.get_valid_token(db_session, dropbox, user_id)

        assert exc_info.value.kind == CloudStorageErrorKind.TOKEN_REFRESH_FAILED
        assert len(dropbox.refresh_calls) == 1

    @pytest.mark.asyncio
    async def test_refresh_network_error_reported_as_refresh_failure(
        self, db_session, user_id, dropbox
    ):
        create_test_connection(
            db_session, user_id, expires_at=datetime.now(UTC) - timedelta(minutes=1)
        )
        dropbox.refresh_error = CloudStorageError(
            CloudStorageErrorKind.NETWORK_ERROR, "dropbox token refresh timed out"
        )

        with pytest.raises(CloudStorageError) as exc_info:
            await credentials.get_valid_token(db_session, dropbox, user_id)

        assert exc_info.value.kind == CloudStorageErrorKind.TOKEN_REFRESH_FAILED

    @pytest.mark.asyncio
    async def test_no_refresh_token(self, db_session, user_id, dropbox):
        create_test_connection(
            db_session,
            user_id,
            refresh_token=None,
            expires_at=datetime.now(UTC) - timedelta(minutes=1),
        )

        with pytest.raises(CloudStorageError) as exc_info:
            await credentials.get_valid_token(db_session, dropbox, user_id)

        assert exc_info.value.kind == CloudStorageErrorKind.TOKEN_REFRESH_FAILED
        assert dropbox.refresh_calls == []

    @pytest.mark.asyncio
    async def test_not_connected(self, db_session, user_id, dropbox):
        with pytest.raises(CloudStorageError) as exc_info:
            await credentials.get_valid_token(db_session, dropbox, user_id)

        assert exc_info.value.kind == CloudStorageErrorKind.NOT_CONNECTED

    @pytest.mark.asyncio
    async def test_inactive_connection(self, db_session, user_id, dropbox):
        create_test_connection(db_session, user_id, is_active=False)

        with pytest.raises(CloudStorageError) as exc_info:
            await credentials.get_valid_token(db_session, dropbox, user_id)

        assert exc_info.value.kind == CloudStorageErrorKind.NOT_CONNECTED


class TestConnectionStatus:
    def test_not_connected(self, db_session, user_id):
        status = credentials.get_connection_status(db_session, user_id, CloudProvider.dropbox)

        assert status.connected is False
        assert status.needs_reauth is False

    def test_connected(self, db_session, user_id):
        create_test_connection(db_session, user_id)

        status = credentials.get_connection_status(db_session, user_id, CloudProvider.dropbox)

        assert status.connected is True
        assert status.account_email == "owner@example.com"
        assert status.needs_reauth is False

    def test_expired_needs_reauth(self, db_session, user_id):
        create_test_connection(
            db_session, user_id, expires_at=datetime.now(UTC) - timedelta(hours=1)
        )

        status = credentials.get_connection_status(db_session, user_id, CloudProvider.dropbox)

        assert status.needs_reauth is True


class TestVerifyAndDisconnect:
    @pytest.mark.asyncio
    async def test_verify_stamps_last_verified(self, db_session, user_id, dropbox):
        connection = create_test_connection(db_session, user_id)

        assert await credentials.verify_connection(db_session, dropbox, user_id, now=NOW) is True
        assert connection.last_verified_at == NOW

    @pytest.mark.asyncio
    async def test_verify_refreshes_rejected_token(self, db_session, user_id, dropbox):
        create_test_connection(db_session, user_id, access_token="revoked-access")

        assert await credentials.verify_connection(db_session, dropbox, user_id) is True
        assert len(dropbox.refresh_calls) == 1

    @pytest.mark.asyncio
    async def test_verify_false_when_refresh_fails(self, db_session, user_id, dropbox):
        create_test_connection(db_session, user_id, access_token="revoked-access")
        dropbox.refresh_error = CloudStorageError(
            CloudStorageErrorKind.TOKEN_REFRESH_FAILED, "rejected"
        )

        assert await credentials.verify_connection(db_session, dropbox, user_id) is False

    @pytest.mark.asyncio
    async def test_disconnect(self, db_session, user_id, dropbox):
        connection = create_test_connection(db_session, user_id)

        assert await credentials.disconnect(db_session, dropbox, user_id) is True
        assert dropbox.revoked == ["fake-access-token"]
        db_session.refresh(connection)
        assert connection.is_active is False

        # Second call is a no-op
        assert await credentials.disconnect(db_session, dropbox, user_id) is False
