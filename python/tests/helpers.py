"""Test helpers for authentication and common test operations.

Provides:
- Token minting for test authentication
- Header generation for test requests
- Polling helpers for background sync runs
"""

import time
from uuid import UUID, uuid4

import jwt

from casesync.services.orchestrator import SyncOrchestrator
from tests.support.verifier import TEST_AUDIENCE, TEST_ISSUER, MockJwtVerifier

DEFAULT_EXPIRES_IN = 3600  # 1 hour


def mint_test_token(
    user_id: UUID | str,
    expires_in: int = DEFAULT_EXPIRES_IN,
    issuer: str = TEST_ISSUER,
    audience: str = TEST_AUDIENCE,
    **extra_claims,
) -> str:
    """Mint a JWT accepted by MockJwtVerifier."""
    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "iss": issuer,
        "aud": audience,
        "iat": now,
        "exp": now + expires_in,
        **extra_claims,
    }
    return jwt.encode(payload, MockJwtVerifier.get_private_key(), algorithm="RS256")


def auth_headers(user_id: UUID | str, **token_kwargs) -> dict[str, str]:
    """Return headers dict with valid Authorization for the given user."""
    return {"Authorization": f"Bearer {mint_test_token(user_id, **token_kwargs)}"}


def create_test_user_id() -> UUID:
    return uuid4()


def wait_for_sync_idle(
    orchestrator: SyncOrchestrator, case_id: UUID, timeout_s: float = 5.0
) -> None:
    """Block until the case has no active run.

    Only the in-memory guard is polled, so the waiting test thread never
    touches the database while the run is writing.
    """
    deadline = time.monotonic() + timeout_s
    while orchestrator.active.is_active(case_id):
        if time.monotonic() > deadline:
            raise AssertionError(f"Sync for case {case_id} still active after {timeout_s}s")
        time.sleep(0.01)
