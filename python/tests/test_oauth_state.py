"""Tests for the signed OAuth state blob."""

import time
from uuid import uuid4

import jwt
import pytest

from casesync.auth.oauth_state import (
    OAUTH_STATE_ISSUER,
    OAUTH_STATE_TTL_SECONDS,
    decode_state,
    encode_state,
)
from casesync.errors import ApiError, ApiErrorCode
from casesync.providers.types import CloudProvider


class TestOAuthState:
    def test_round_trip(self):
        user_id = str(uuid4())
        state = encode_state(user_id, CloudProvider.dropbox)

        decoded = decode_state(state, CloudProvider.dropbox)

        assert decoded.user_id == user_id
        assert decoded.provider == CloudProvider.dropbox

    def test_each_blob_is_unique(self):
        user_id = str(uuid4())
        now = int(time.time())

        first = encode_state(user_id, CloudProvider.dropbox, now=now)
        second = encode_state(user_id, CloudProvider.dropbox, now=now)

        assert first != second

    def test_expired_rejected(self):
        issued = int(time.time()) - OAUTH_STATE_TTL_SECONDS - 5
        state = encode_state(str(uuid4()), CloudProvider.dropbox, now=issued)

        with pytest.raises(ApiError) as exc_info:
            decode_state(state, CloudProvider.dropbox)

        assert exc_info.value.code == ApiErrorCode.E_INVALID_STATE
        assert "expired" in exc_info.value.message

    def test_provider_mismatch_rejected(self):
        state = encode_state(str(uuid4()), CloudProvider.dropbox)

        with pytest.raises(ApiError) as exc_info:
            decode_state(state, CloudProvider.onedrive)

        assert exc_info.value.code == ApiErrorCode.E_INVALID_STATE

    def test_forged_signature_rejected(self):
        now = int(time.time())
        forged = jwt.encode(
            {
                "iss": OAUTH_STATE_ISSUER,
                "sub": str(uuid4()),
                "provider": "dropbox",
                "iat": now,
                "exp": now + 60,
            },
            "not-the-real-secret",
            algorithm="HS256",
        )

        with pytest.raises(ApiError) as exc_info:
            decode_state(forged, CloudProvider.dropbox)

        assert exc_info.value.code == ApiErrorCode.E_INVALID_STATE

    def test_garbage_rejected(self):
        with pytest.raises(ApiError):
            decode_state("not-a-state", CloudProvider.dropbox)
