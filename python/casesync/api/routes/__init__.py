"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
This allows tests to import modules without requiring all environment
variables to be configured upfront.
"""

from fastapi import APIRouter

from casesync.api.routes.auth import router as auth_router
from casesync.api.routes.cases import router as cases_router
from casesync.api.routes.folders import router as folders_router
from casesync.api.routes.health import router as health_router


def create_api_router() -> APIRouter:
    """Create and configure the API router.

    The provider folder routes (/{provider}/folders) are registered last so
    their leading path parameter never shadows a fixed prefix.

    Returns:
        Configured APIRouter with all routes registered.
    """
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(auth_router, tags=["auth"])
    api_router.include_router(cases_router, tags=["cases"])
    api_router.include_router(folders_router, tags=["folders"])
    return api_router


__all__ = ["create_api_router"]
