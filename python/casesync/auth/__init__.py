"""Authentication module.

This module provides:
- Bearer token verification (Supabase JWKS verifier)
- Auth middleware for FastAPI and the Viewer identity
- The signed OAuth state blob used by provider consent flows

Note: Test-only verifiers are in tests/support/test_verifier.py
"""

from casesync.auth.middleware import AuthMiddleware, Viewer, get_viewer
from casesync.auth.verifier import SupabaseJwksVerifier, TokenVerifier

__all__ = [
    "AuthMiddleware",
    "Viewer",
    "get_viewer",
    "SupabaseJwksVerifier",
    "TokenVerifier",
]
