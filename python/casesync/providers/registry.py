"""Provider registry: one adapter per enabled backend.

Constructed once in the application lifespan over the shared httpx client and
injected into routes and the sync orchestrator. Tests build a registry from
fake adapters instead of patching module globals.
"""

from collections.abc import Mapping

import httpx

from casesync.config import Settings
from casesync.errors import ApiErrorCode, InvalidRequestError
from casesync.logging import get_logger
from casesync.providers.adapter import CloudStorageAdapter
from casesync.providers.dropbox_adapter import DropboxAdapter
from casesync.providers.onedrive_adapter import OneDriveAdapter
from casesync.providers.types import CloudProvider

logger = get_logger(__name__)


def parse_provider(value: str) -> CloudProvider:
    """Parse a provider path segment.

    Raises:
        InvalidRequestError: If the value is not a known provider.
    """
    try:
        return CloudProvider(value.lower())
    except ValueError as e:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST, f"Unknown provider: {value}"
        ) from e


class ProviderRegistry:
    """Resolves CloudProvider tags to adapter instances."""

    def __init__(self, adapters: Mapping[CloudProvider, CloudStorageAdapter]):
        self._adapters: dict[CloudProvider, CloudStorageAdapter] = dict(adapters)

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, settings: Settings) -> "ProviderRegistry":
        """Build adapters for every enabled provider.

        Raises:
            CloudStorageError(PROVIDER_ERROR): An enabled provider lacks credentials.
        """
        adapters: dict[CloudProvider, CloudStorageAdapter] = {}
        for name in settings.enabled_provider_list:
            provider = CloudProvider(name)
            if provider == CloudProvider.dropbox:
                adapters[provider] = DropboxAdapter(
                    client,
                    client_id=settings.dropbox_app_key,
                    client_secret=settings.dropbox_app_secret,
                    timeout_s=settings.provider_timeout_s,
                )
            elif provider == CloudProvider.onedrive:
                adapters[provider] = OneDriveAdapter(
                    client,
                    client_id=settings.onedrive_client_id,
                    client_secret=settings.onedrive_client_secret,
                    tenant_id=settings.onedrive_tenant_id,
                    timeout_s=settings.provider_timeout_s,
                )
        logger.info("provider_registry_ready", providers=[p.value for p in adapters])
        return cls(adapters)

    def get(self, provider: CloudProvider) -> CloudStorageAdapter:
        """Return the adapter for a provider.

        Raises:
            InvalidRequestError(E_INVALID_PROVIDER): The provider is not enabled.
        """
        adapter = self._adapters.get(provider)
        if adapter is None:
            raise InvalidRequestError(
                ApiErrorCode.E_INVALID_PROVIDER, f"Provider {provider.value} is not enabled"
            )
        return adapter

    def is_enabled(self, provider: CloudProvider) -> bool:
        return provider in self._adapters

    @property
    def providers(self) -> list[CloudProvider]:
        return list(self._adapters)
