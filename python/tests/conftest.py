"""Pytest configuration and fixtures for casesync tests.

Test isolation strategy:
- One engine per session; tables are created from the ORM metadata
- Each test runs inside an outer transaction that is rolled back; every
  session the code under test opens joins it through a savepoint
- DATABASE_URL selects the database; without it tests run on in-memory SQLite
- Provider adapters and the classifier are in-memory fakes; HTTP-level
  adapter tests use respx
"""

import os
import sys
from collections.abc import Generator
from pathlib import Path
from uuid import UUID

# Test defaults must be in place before casesync settings are first read
os.environ.setdefault("CASESYNC_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DROPBOX_APP_KEY", "test-dropbox-key")
os.environ.setdefault("DROPBOX_APP_SECRET", "test-dropbox-secret")
os.environ.setdefault("ONEDRIVE_CLIENT_ID", "test-onedrive-client")
os.environ.setdefault("ONEDRIVE_CLIENT_SECRET", "test-onedrive-secret")

# Add repo root to sys.path for importing top-level packages (e.g., apps)
_repo_root = Path(__file__).parent.parent.parent
if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from casesync.app import add_request_id_middleware, create_app
from casesync.config import Settings, clear_settings_cache, get_settings
from casesync.db.engine import create_db_engine
from casesync.db.models import Base
from casesync.db.session import get_db
from casesync.providers.registry import ProviderRegistry
from casesync.providers.types import CloudProvider
from casesync.services.crypto import clear_key_cache
from casesync.services.orchestrator import SyncOrchestrator
from casesync.storage.client import FakeBlobStore
from tests.helpers import create_test_user_id
from tests.support.fakes import FakeAdapter, FakeClassifier, no_sleep
from tests.support.verifier import MockJwtVerifier
from tests.utils.db import TestDatabaseManager, enable_sqlite_savepoints


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    """Create a database engine for the test session with the schema in place."""
    database_url = os.environ["DATABASE_URL"]
    engine = create_db_engine(database_url)
    if engine.dialect.name == "sqlite":
        enable_sqlite_savepoints(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_manager(engine: Engine) -> Generator[TestDatabaseManager, None, None]:
    with TestDatabaseManager(engine) as manager:
        yield manager


@pytest.fixture
def session_factory(db_manager: TestDatabaseManager) -> sessionmaker[Session]:
    """Session factory bound to the test transaction (used by background work)."""
    return db_manager.session_factory


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Provide a database session with savepoint isolation."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def user_id() -> UUID:
    return create_test_user_id()


@pytest.fixture
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def dropbox() -> FakeAdapter:
    return FakeAdapter(CloudProvider.dropbox)


@pytest.fixture
def onedrive() -> FakeAdapter:
    return FakeAdapter(CloudProvider.onedrive)


@pytest.fixture
def registry(dropbox: FakeAdapter, onedrive: FakeAdapter) -> ProviderRegistry:
    return ProviderRegistry({CloudProvider.dropbox: dropbox, CloudProvider.onedrive: onedrive})


@pytest.fixture
def classifier() -> FakeClassifier:
    return FakeClassifier()


@pytest.fixture
def orchestrator(
    registry: ProviderRegistry,
    blob_store: FakeBlobStore,
    session_factory: sessionmaker[Session],
    settings: Settings,
) -> SyncOrchestrator:
    return SyncOrchestrator(registry, blob_store, session_factory, settings, sleep=no_sleep)


@pytest.fixture
def app(
    registry: ProviderRegistry,
    orchestrator: SyncOrchestrator,
    session_factory: sessionmaker[Session],
):
    """FastAPI app with the test verifier, fake providers and the test database."""
    app = create_app(token_verifier=MockJwtVerifier())
    add_request_id_middleware(app, log_requests=False)

    def override_get_db() -> Generator[Session, None, None]:
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.provider_registry = registry
    app.state.orchestrator = orchestrator
    return app


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Authenticated-capable client; pass auth_headers(user_id) per request."""
    with TestClient(app, follow_redirects=False) as client:
        yield client


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset cached settings and the sealing key before each test."""
    clear_settings_cache()
    clear_key_cache()
    yield
    clear_settings_cache()
    clear_key_cache()
