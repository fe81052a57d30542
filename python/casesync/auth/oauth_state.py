"""OAuth state blob: mint and verify the CSRF state passed through the consent flow.

- HS256 signed with OAUTH_STATE_SECRET (never leaves the API process)
- Claims: iss=casesync-oauth, sub=user_id, provider=<tag>, iat, exp=iat+600s, jti=uuid
- Verification rejects a bad signature, an expired blob and a provider tag that
  does not match the callback being served
- The state is opaque to the provider; it comes back verbatim on the callback
"""

import time
from uuid import uuid4

import jwt

from casesync.config import get_settings
from casesync.errors import ApiError, ApiErrorCode
from casesync.logging import get_logger
from casesync.providers.types import CloudProvider, OAuthState

logger = get_logger(__name__)

OAUTH_STATE_ISSUER = "casesync-oauth"
OAUTH_STATE_TTL_SECONDS = 600  # 10 minutes


def encode_state(user_id: str, provider: CloudProvider, now: int | None = None) -> str:
    """Mint a signed, time-boxed state blob for an authorization URL.

    Args:
        user_id: The authenticated user starting the flow.
        provider: The provider the consent screen belongs to.
        now: Override for the issue time (seconds since epoch).

    Returns:
        Compact JWS string, URL-safe.
    """
    issued_at = int(time.time()) if now is None else now
    payload = {
        "iss": OAUTH_STATE_ISSUER,
        "sub": str(user_id),
        "provider": provider.value,
        "iat": issued_at,
        "exp": issued_at + OAUTH_STATE_TTL_SECONDS,
        "jti": str(uuid4()),
    }
    return jwt.encode(payload, get_settings().effective_oauth_state_secret, algorithm="HS256")


def decode_state(state: str, expected_provider: CloudProvider) -> OAuthState:
    """Verify a state blob returned on the OAuth callback.

    Args:
        state: The raw `state` query parameter.
        expected_provider: Provider whose callback is being served.

    Returns:
        The decoded OAuthState.

    Raises:
        ApiError(E_INVALID_STATE): Bad signature, expired, malformed, or wrong provider.
    """
    try:
        payload = jwt.decode(
            state,
            get_settings().effective_oauth_state_secret,
            algorithms=["HS256"],
            issuer=OAUTH_STATE_ISSUER,
            options={"require": ["exp", "iat", "iss", "sub", "provider"]},
        )
    except jwt.ExpiredSignatureError as err:
        raise ApiError(ApiErrorCode.E_INVALID_STATE, "OAuth state has expired") from err
    except jwt.InvalidTokenError as e:
        logger.warning("oauth_state_invalid", error=str(e))
        raise ApiError(ApiErrorCode.E_INVALID_STATE, "Invalid OAuth state") from e

    if payload.get("provider") != expected_provider.value:
        logger.warning(
            "oauth_state_provider_mismatch",
            expected=expected_provider.value,
            actual=payload.get("provider"),
        )
        raise ApiError(ApiErrorCode.E_INVALID_STATE, "OAuth state provider mismatch")

    return OAuthState(
        user_id=payload["sub"],
        provider=expected_provider,
        issued_at=int(payload["iat"]),
    )
