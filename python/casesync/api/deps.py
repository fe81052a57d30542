"""FastAPI dependencies for route handlers.

Shared singletons (provider registry, sync orchestrator) are created in the
application lifespan and read from app.state here, so tests can swap them
by assigning app.state before issuing requests.
"""

from fastapi import Request

from casesync.db.session import get_db, get_session_factory
from casesync.providers.adapter import CloudStorageAdapter
from casesync.providers.registry import ProviderRegistry, parse_provider
from casesync.services.orchestrator import SyncOrchestrator

__all__ = [
    "get_db",
    "get_session_factory",
    "get_provider_registry",
    "get_orchestrator",
    "get_adapter",
]


def get_provider_registry(request: Request) -> ProviderRegistry:
    """Get the shared provider registry from app state."""
    return request.app.state.provider_registry


def get_orchestrator(request: Request) -> SyncOrchestrator:
    """Get the process-wide sync orchestrator from app state."""
    return request.app.state.orchestrator


def get_adapter(provider: str, request: Request) -> CloudStorageAdapter:
    """Resolve the {provider} path segment to its adapter.

    Raises:
        InvalidRequestError: Unknown provider (E_INVALID_REQUEST) or one that
            is not enabled (E_INVALID_PROVIDER).
    """
    return get_provider_registry(request).get(parse_provider(provider))
