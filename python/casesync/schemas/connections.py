"""Cloud connection Pydantic schemas.

Tokens never appear in any schema here.
"""

from datetime import datetime

from casesync.schemas.base import CamelModel


class ConnectionStatusOut(CamelModel):
    """Response schema for GET /auth/{provider}/status.

    needs_reauth is True when the stored access token is expired (or about to
    be) so the next call will need a refresh.
    """

    connected: bool
    account_email: str | None = None
    account_name: str | None = None
    last_verified_at: datetime | None = None
    needs_reauth: bool = False


class AuthorizationUrlOut(CamelModel):
    """Response schema for GET /auth/{provider}?redirect=false."""

    url: str
