"""
Boresha Reviews - Health Endpoint Tests

Tests for /health, /readiness and /api/version probe endpoints.

Run: python -m pytest -xvs tests/test_health_endpoints.py
"""

import os
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def client():
    """Create a FastAPI TestClient for health endpoint tests."""
    from main import app
    return TestClient(app)


class TestHealthEndpoint:
    """Test the /health liveness probe."""

    def test_health_returns_200(self, client):
        """GET /health should return 200 with status and version."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data

    def test_version_endpoint(self, client):
        response = client.get("/api/version")
        assert response.json()["name"] == "Boresha Reviews"

    def test_correlation_id_echoed(self, client):
        response = client.get("/health", headers={"X-Correlation-ID": "abc-123"})
        assert response.headers["X-Correlation-ID"] == "abc-123"


class TestReadinessEndpoint:
    """Test the /readiness probe endpoint."""

    def test_readiness_includes_checks(self, client):
        """GET /readiness should report every dependency check."""
        response = client.get("/readiness")
        assert response.status_code == 200
        data = response.json()
        assert data["checks"]["database"] is True
        assert set(data["checks"]) == {"database", "review_source", "llm", "internal_key"}
        assert {s["name"] for s in data["sources"]} == {"Zembra", "Yelp"}

    @patch.dict(os.environ, {"OPENAI_API_KEY": "sk-test"}, clear=False)
    def test_ready_when_everything_configured(self, client):
        data = client.get("/readiness").json()
        assert data["status"] == "ready"

    @patch.dict(os.environ, {"OPENAI_API_KEY": ""}, clear=False)
    def test_degraded_without_llm_key(self, client):
        data = client.get("/readiness").json()
        assert data["status"] == "degraded"
        assert data["checks"]["llm"] is False
