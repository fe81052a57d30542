"""Application settings loaded from environment variables.

Environment Configuration:
    CASESYNC_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: PostgreSQL connection string (required)

Redis / Celery Configuration:
    REDIS_URL: Redis connection string (required for worker)
    CELERY_BROKER_URL: Celery broker URL (defaults to REDIS_URL)
    CELERY_RESULT_BACKEND: Celery result backend URL (defaults to REDIS_URL)

Auth Configuration:
    SUPABASE_JWKS_URL: Full URL to Supabase JWKS endpoint
    SUPABASE_ISSUER: Expected JWT issuer (trailing slash stripped)
    SUPABASE_AUDIENCES: Comma-separated list of allowed audiences

Cloud Provider Configuration:
    CLOUD_PROVIDERS_ENABLED: Comma-separated providers to construct at startup
    DROPBOX_APP_KEY / DROPBOX_APP_SECRET: Dropbox OAuth app credentials
    ONEDRIVE_CLIENT_ID / ONEDRIVE_CLIENT_SECRET / ONEDRIVE_TENANT_ID: Microsoft identity app
    OAUTH_REDIRECT_BASE_URL: Public base URL the providers redirect back to
    APP_REDIRECT_URL: Where the browser lands after the OAuth callback

Secrets (required in staging/prod):
    OAUTH_STATE_SECRET: HS256 key for the signed OAuth state blob
    TOKEN_ENCRYPTION_KEY: Base64 32-byte key sealing OAuth tokens at rest

Provider credentials are validated when the adapters are constructed, not here,
so a missing client secret surfaces as a ProviderError at process start.
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

# Development-only secrets. Never accepted in staging/prod (see validator).
DEV_OAUTH_STATE_SECRET = "casesync-dev-oauth-state-secret-not-for-production"
DEV_TOKEN_ENCRYPTION_KEY = "Y2FzZXN5bmMtZGV2LXRva2VuLWVuY3J5cHRpb24ta2U="

# Must match casesync.providers.types.CloudProvider
SUPPORTED_PROVIDERS = ("dropbox", "onedrive")


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Settings are loaded from environment variables.
    Validation rules:
    - DATABASE_URL is always required
    - OAUTH_STATE_SECRET and TOKEN_ENCRYPTION_KEY are required in staging and prod only
    - Retry/backoff tunables must be positive
    """

    casesync_env: Environment = Field(default=Environment.LOCAL, alias="CASESYNC_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]

    # Redis / Celery settings
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    celery_broker_url: str | None = Field(default=None, alias="CELERY_BROKER_URL")
    celery_result_backend: str | None = Field(default=None, alias="CELERY_RESULT_BACKEND")

    # Supabase auth settings
    supabase_jwks_url: str | None = Field(default=None, alias="SUPABASE_JWKS_URL")
    supabase_issuer: str | None = Field(default=None, alias="SUPABASE_ISSUER")
    supabase_audiences: str | None = Field(default=None, alias="SUPABASE_AUDIENCES")

    # Cloud providers
    cloud_providers_enabled: str = Field(
        default="dropbox,onedrive", alias="CLOUD_PROVIDERS_ENABLED"
    )
    dropbox_app_key: str | None = Field(default=None, alias="DROPBOX_APP_KEY")
    dropbox_app_secret: str | None = Field(default=None, alias="DROPBOX_APP_SECRET")
    onedrive_client_id: str | None = Field(default=None, alias="ONEDRIVE_CLIENT_ID")
    onedrive_client_secret: str | None = Field(default=None, alias="ONEDRIVE_CLIENT_SECRET")
    onedrive_tenant_id: str = Field(default="common", alias="ONEDRIVE_TENANT_ID")
    provider_timeout_s: float = Field(default=30.0, alias="PROVIDER_TIMEOUT_S")

    # OAuth redirects
    oauth_redirect_base_url: str = Field(
        default="http://localhost:8000", alias="OAUTH_REDIRECT_BASE_URL"
    )
    app_redirect_url: str = Field(
        default="http://localhost:3000/settings/integrations", alias="APP_REDIRECT_URL"
    )

    # Secrets
    oauth_state_secret: str | None = Field(default=None, alias="OAUTH_STATE_SECRET")
    token_encryption_key: str | None = Field(default=None, alias="TOKEN_ENCRYPTION_KEY")

    # Blob storage (Supabase Storage API)
    storage_url: str | None = Field(default=None, alias="STORAGE_URL")
    storage_write_token: str | None = Field(default=None, alias="STORAGE_WRITE_TOKEN")
    storage_bucket: str = Field(default="case-documents", alias="STORAGE_BUCKET")

    # Credential store
    token_refresh_buffer_s: int = Field(default=300, alias="TOKEN_REFRESH_BUFFER_S")  # 5 minutes

    # Folder enumeration
    listing_retry_attempts: int = Field(default=3, alias="LISTING_RETRY_ATTEMPTS")
    listing_retry_base_s: float = Field(default=1.0, alias="LISTING_RETRY_BASE_S")

    # Sync run liveness
    sync_heartbeat_interval_s: int = Field(default=30, alias="SYNC_HEARTBEAT_INTERVAL_S")
    sync_stale_run_s: int = Field(default=300, alias="SYNC_STALE_RUN_S")  # 5 minutes

    # Processing queue
    queue_max_attempts: int = Field(default=3, alias="QUEUE_MAX_ATTEMPTS")
    queue_retry_base_s: int = Field(default=60, alias="QUEUE_RETRY_BASE_S")
    queue_retry_cap_s: int = Field(default=900, alias="QUEUE_RETRY_CAP_S")  # 15 minutes
    queue_batch_size: int = Field(default=5, alias="QUEUE_BATCH_SIZE")
    queue_batch_time_budget_s: int = Field(default=55, alias="QUEUE_BATCH_TIME_BUDGET_S")
    queue_retention_days: int = Field(default=7, alias="QUEUE_RETENTION_DAYS")
    queue_stale_processing_s: int = Field(default=900, alias="QUEUE_STALE_PROCESSING_S")

    # Classification collaborator
    classifier_url: str | None = Field(default=None, alias="CLASSIFIER_URL")
    classifier_api_key: str | None = Field(default=None, alias="CLASSIFIER_API_KEY")
    classifier_timeout_s: int = Field(default=120, alias="CLASSIFIER_TIMEOUT_S")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure secrets are set outside local/test and tunables are sane."""
        if self.casesync_env in (Environment.STAGING, Environment.PROD):
            missing = []
            if not self.oauth_state_secret:
                missing.append("OAUTH_STATE_SECRET")
            if not self.token_encryption_key:
                missing.append("TOKEN_ENCRYPTION_KEY")
            if missing:
                raise ValueError(
                    f"{', '.join(missing)} required for CASESYNC_ENV={self.casesync_env.value}"
                )

        if self.queue_max_attempts < 1:
            raise ValueError("QUEUE_MAX_ATTEMPTS must be at least 1")
        if self.queue_retry_base_s < 0 or self.queue_retry_cap_s < self.queue_retry_base_s:
            raise ValueError("QUEUE_RETRY_CAP_S must be >= QUEUE_RETRY_BASE_S >= 0")
        if self.listing_retry_attempts < 0:
            raise ValueError("LISTING_RETRY_ATTEMPTS must be >= 0")
        if self.sync_stale_run_s <= self.sync_heartbeat_interval_s:
            raise ValueError("SYNC_STALE_RUN_S must be greater than SYNC_HEARTBEAT_INTERVAL_S")

        unknown = [p for p in self.enabled_provider_list if p not in SUPPORTED_PROVIDERS]
        if unknown:
            raise ValueError(f"Unknown CLOUD_PROVIDERS_ENABLED entries: {', '.join(unknown)}")

        return self

    @property
    def audience_list(self) -> list[str]:
        """Parse comma-separated audiences into a list."""
        if self.supabase_audiences:
            return [a.strip() for a in self.supabase_audiences.split(",") if a.strip()]
        return []

    @property
    def normalized_issuer(self) -> str | None:
        """Return issuer with trailing slash stripped."""
        if self.supabase_issuer:
            return self.supabase_issuer.rstrip("/")
        return None

    @property
    def enabled_provider_list(self) -> list[str]:
        """Parse comma-separated enabled providers into a list."""
        return [
            p.strip().lower() for p in self.cloud_providers_enabled.split(",") if p.strip()
        ]

    @property
    def effective_oauth_state_secret(self) -> str:
        """Return the state signing secret, falling back to the dev secret locally."""
        return self.oauth_state_secret or DEV_OAUTH_STATE_SECRET

    @property
    def effective_token_encryption_key(self) -> str:
        """Return the token sealing key, falling back to the dev key locally."""
        return self.token_encryption_key or DEV_TOKEN_ENCRYPTION_KEY

    @property
    def effective_celery_broker_url(self) -> str | None:
        """Return Celery broker URL, falling back to REDIS_URL if not set."""
        return self.celery_broker_url or self.redis_url

    @property
    def effective_celery_result_backend(self) -> str | None:
        """Return Celery result backend URL, falling back to REDIS_URL if not set."""
        return self.celery_result_backend or self.redis_url

    def oauth_callback_url(self, provider: str) -> str:
        """Build the OAuth redirect URI registered with the provider."""
        return f"{self.oauth_redirect_base_url.rstrip('/')}/auth/{provider}/callback"


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
