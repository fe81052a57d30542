"""Tests for X-Request-ID middleware.

Tests cover:
- Request ID generation when missing
- Request ID preservation when valid, UUID normalization, replacement when invalid
- Request ID presence on auth failures and in error bodies
"""

from uuid import UUID

from casesync.middleware.request_id import resolve_request_id
from tests.helpers import auth_headers


class TestResolveRequestId:
    def test_uuid_lowercased(self):
        assert resolve_request_id("ABCDEF01-2345-6789-ABCD-EF0123456789") == (
            "abcdef01-2345-6789-abcd-ef0123456789"
        )

    def test_safe_token_kept(self):
        assert resolve_request_id("abc_def-123") == "abc_def-123"

    def test_invalid_replaced(self):
        replaced = resolve_request_id("bad id with spaces")
        UUID(replaced)

    def test_too_long_replaced(self):
        replaced = resolve_request_id("a" * 200)
        UUID(replaced)


class TestRequestIdMiddleware:
    def test_generated_when_missing(self, client, user_id):
        response = client.get("/auth/dropbox/status", headers=auth_headers(user_id))

        assert response.status_code == 200
        UUID(response.headers["X-Request-ID"])

    def test_preserved_when_valid(self, client, user_id):
        response = client.get(
            "/auth/dropbox/status",
            headers={**auth_headers(user_id), "X-Request-ID": "abc_def-123"},
        )

        assert response.headers["X-Request-ID"] == "abc_def-123"

    def test_present_on_auth_failure(self, client):
        response = client.get("/auth/dropbox/status", headers={"X-Request-ID": "req-401"})

        assert response.status_code == 401
        assert response.headers["X-Request-ID"] == "req-401"
        assert response.json()["error"]["request_id"] == "req-401"

    def test_in_error_body(self, client, user_id):
        response = client.get(
            f"/cases/{user_id}/folder",
            headers={**auth_headers(user_id), "X-Request-ID": "req-404"},
        )

        assert response.status_code == 404
        assert response.json()["error"] == {
            "code": "E_CASE_NOT_FOUND",
            "message": "Case not found",
            "request_id": "req-404",
        }
