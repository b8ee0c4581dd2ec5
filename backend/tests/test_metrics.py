"""
Tests for the metrics module and MetricsMiddleware.

CI-safe: No external dependencies or API keys required.
"""

import importlib
import os
import sys
from unittest.mock import patch, MagicMock

import pytest


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _reload_metrics(env_overrides=None):
    """Reload the metrics module with optional env var overrides."""
    env = env_overrides or {}
    with patch.dict(os.environ, env, clear=False):
        # Remove cached module so it re-evaluates globals
        if "metrics" in sys.modules:
            del sys.modules["metrics"]
        import metrics
        importlib.reload(metrics)
        return metrics


# ---------------------------------------------------------------------------
# Unit tests: metrics module
# ---------------------------------------------------------------------------

class TestMetricsModule:
    """Tests for backend/metrics.py"""

    def test_metrics_disabled_by_env(self):
        m = _reload_metrics({"METRICS_ENABLED": "false"})
        assert m.METRICS_ENABLED is False

    def test_noop_metric_labels(self):
        """NoOp metrics should silently accept any labels."""
        m = _reload_metrics({"METRICS_ENABLED": "false"})
        m.http_requests_total.labels(method="GET", path="/test", status="200").inc()
        m.reviews_ingested_total.labels(source="webhook", result="new").inc(3)
        m.llm_request_duration.labels(model="gpt", kind="batch").observe(0.5)
        m.llm_rate_limit_wait_seconds.observe(1.0)
        m.drain_passes_total.inc()

    def test_track_request(self):
        m = _reload_metrics({"METRICS_ENABLED": "false"})
        initial = m._internal_counters["http_requests"]
        m.track_request("GET", "/api/version", 200, 0.05)
        assert m._internal_counters["http_requests"] == initial + 1

    def test_track_reviews_ingested(self):
        m = _reload_metrics({"METRICS_ENABLED": "false"})
        m.track_reviews_ingested("pull", new=4, duplicate=2)
        m.track_reviews_ingested("webhook", new=1, updated=3)
        summary = m.get_metrics_summary()
        assert summary["reviews_new_total"] == 5
        assert summary["reviews_updated_total"] == 3

    def test_track_llm_call_rate_limited(self):
        m = _reload_metrics({"METRICS_ENABLED": "false"})
        m.track_llm_call("gpt-3.5-turbo", "batch", duration=1.2)
        m.track_llm_call("gpt-3.5-turbo", "batch", outcome="rate_limited")
        summary = m.get_metrics_summary()
        assert summary["llm_requests_total"] == 2
        assert summary["llm_rate_limited_total"] == 1

    def test_track_drain_pass(self):
        m = _reload_metrics({"METRICS_ENABLED": "false"})
        m.track_drain_pass(processed=10, skipped=5, errors=1)
        m.track_rate_limit_wait(2.5)
        summary = m.get_metrics_summary()
        assert summary["drain_passes_total"] == 1
        assert summary["drained_processed_total"] == 10
        assert summary["drained_skipped_total"] == 5
        assert summary["drained_errors_total"] == 1
        assert summary["rate_limit_wait_seconds_total"] == pytest.approx(2.5)
        assert summary["uptime_seconds"] >= 0


# ---------------------------------------------------------------------------
# MetricsMiddleware tests
# ---------------------------------------------------------------------------

class TestMetricsMiddleware:
    """Tests for middleware/metrics.py"""

    def test_normalize_path_with_id(self):
        from middleware.metrics import MetricsMiddleware
        mw = MetricsMiddleware(app=MagicMock())
        assert mw._normalize_path("/api/sentiment/drains/abc-123") == "/api/sentiment/drains/{id}"

    def test_normalize_path_no_match(self):
        from middleware.metrics import MetricsMiddleware
        mw = MetricsMiddleware(app=MagicMock())
        assert mw._normalize_path("/api/reviews/fetch") == "/api/reviews/fetch"

    def test_skip_paths(self):
        from middleware.metrics import MetricsMiddleware
        mw = MetricsMiddleware(app=MagicMock())
        assert "/health" in mw._SKIP_PATHS
        assert "/metrics" in mw._SKIP_PATHS


# ---------------------------------------------------------------------------
# /metrics endpoint tests (via TestClient)
# ---------------------------------------------------------------------------

class TestMetricsEndpoint:
    """Tests for the /metrics endpoint in routers/health.py"""

    def test_metrics_endpoint_json_fallback(self):
        """When METRICS_ENABLED is false, /metrics returns the JSON summary."""
        _reload_metrics({"METRICS_ENABLED": "false"})

        from fastapi import FastAPI
        from fastapi.testclient import TestClient
        from routers.health import router

        test_app = FastAPI()
        test_app.include_router(router)

        response = TestClient(test_app).get("/metrics")
        assert response.status_code == 200
        data = response.json()
        assert data["metrics_enabled"] is False
        assert "drain_passes_total" in data
