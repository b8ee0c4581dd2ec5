"""
Boresha Reviews - Security Headers Middleware Tests

Tests for SecurityHeadersMiddleware (middleware/security.py):
- Required security headers present on API responses
- HSTS only added for HTTPS requests
- Middleware can be disabled via SECURITY_HEADERS_ENABLED env var
"""
import os
from unittest.mock import patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from middleware.security import SecurityHeadersMiddleware, is_security_headers_enabled


@pytest.fixture
def test_client():
    from main import app
    return TestClient(app)


class TestSecurityHeadersPresence:
    """Verify all required security headers are present."""

    def test_x_content_type_options(self, test_client):
        response = test_client.get("/health")
        assert response.headers.get("X-Content-Type-Options") == "nosniff"

    def test_x_frame_options(self, test_client):
        response = test_client.get("/health")
        assert response.headers.get("X-Frame-Options") == "DENY"

    def test_referrer_policy(self, test_client):
        response = test_client.get("/health")
        assert response.headers.get("Referrer-Policy") == "no-referrer"

    def test_csp_denies_everything(self, test_client):
        response = test_client.get("/health")
        assert response.headers.get("Content-Security-Policy") == "default-src 'none'; frame-ancestors 'none'"


class TestHSTS:
    """Verify HSTS behavior."""

    def test_no_hsts_over_http(self, test_client):
        response = test_client.get("/health")
        assert "Strict-Transport-Security" not in response.headers

    def test_hsts_with_forwarded_proto(self, test_client):
        response = test_client.get("/health", headers={"X-Forwarded-Proto": "https"})
        hsts = response.headers.get("Strict-Transport-Security")
        assert "max-age=31536000" in hsts
        assert "includeSubDomains" in hsts


class TestSecurityMiddlewareConfig:
    """Verify middleware configurability."""

    def test_enabled_by_default(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("SECURITY_HEADERS_ENABLED", None)
            assert is_security_headers_enabled() is True

    @patch.dict(os.environ, {"SECURITY_HEADERS_ENABLED": "false"}, clear=False)
    def test_disabled_via_env(self):
        mini_app = FastAPI()
        mini_app.add_middleware(SecurityHeadersMiddleware)

        @mini_app.get("/ping")
        async def ping():
            return {"ok": True}

        response = TestClient(mini_app).get("/ping")
        assert "Content-Security-Policy" not in response.headers
