"""Tests for the provider registry."""

import httpx
import pytest

from casesync.config import Settings
from casesync.errors import ApiErrorCode, InvalidRequestError
from casesync.providers.dropbox_adapter import DropboxAdapter
from casesync.providers.errors import CloudStorageError, CloudStorageErrorKind
from casesync.providers.onedrive_adapter import OneDriveAdapter
from casesync.providers.registry import ProviderRegistry, parse_provider
from casesync.providers.types import CloudProvider


def _settings(**overrides) -> Settings:
    values = {
        "DATABASE_URL": "sqlite://",
        "CASESYNC_ENV": "test",
        "DROPBOX_APP_KEY": "key",
        "DROPBOX_APP_SECRET": "secret",
        "ONEDRIVE_CLIENT_ID": "client",
        "ONEDRIVE_CLIENT_SECRET": "secret",
    }
    values.update(overrides)
    return Settings(**values)


class TestParseProvider:
    def test_case_insensitive(self):
        assert parse_provider("OneDrive") == CloudProvider.onedrive

    def test_unknown_provider(self):
        with pytest.raises(InvalidRequestError) as exc_info:
            parse_provider("gdrive")

        assert exc_info.value.code == ApiErrorCode.E_INVALID_REQUEST


class TestProviderRegistry:
    def test_builds_enabled_adapters(self):
        registry = ProviderRegistry.from_settings(httpx.AsyncClient(), _settings())

        assert isinstance(registry.get(CloudProvider.dropbox), DropboxAdapter)
        assert isinstance(registry.get(CloudProvider.onedrive), OneDriveAdapter)
        assert registry.providers == [CloudProvider.dropbox, CloudProvider.onedrive]

    def test_disabled_provider_rejected(self):
        registry = ProviderRegistry.from_settings(
            httpx.AsyncClient(), _settings(CLOUD_PROVIDERS_ENABLED="dropbox")
        )

        assert registry.is_enabled(CloudProvider.onedrive) is False
        with pytest.raises(InvalidRequestError) as exc_info:
            registry.get(CloudProvider.onedrive)

        assert exc_info.value.code == ApiErrorCode.E_INVALID_PROVIDER

    def test_missing_credentials_fail_startup(self):
        with pytest.raises(CloudStorageError) as exc_info:
            ProviderRegistry.from_settings(
                httpx.AsyncClient(),
                _settings(CLOUD_PROVIDERS_ENABLED="onedrive", ONEDRIVE_CLIENT_SECRET=""),
            )

        assert exc_info.value.kind == CloudStorageErrorKind.PROVIDER_ERROR
