"""
Boresha Reviews - Prometheus Metrics Module

Pipeline and HTTP metrics backed by prometheus_client. When
METRICS_ENABLED is false every metric is a no-op stub, so call sites
never need to check the flag.

Usage:
    from metrics import track_request, track_llm_call, track_reviews_ingested
    track_request("GET", "/api/sentiment/drains/{id}", 200, 0.045)
    track_llm_call("gpt-3.5-turbo", "batch", duration=1.5)
    track_reviews_ingested("webhook", new=12, updated=3)
"""

import os
import time
import logging
from typing import Dict, Any

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST  # noqa: F401

logger = logging.getLogger(__name__)

METRICS_ENABLED = os.environ.get("METRICS_ENABLED", "false").lower() == "true"


class _NoOpMetric:
    """No-op metric that silently discards all operations."""

    def labels(self, *args, **kwargs):
        return self

    def inc(self, amount=1):
        pass

    def observe(self, amount):
        pass


if METRICS_ENABLED:
    logger.info("Prometheus metrics enabled")

    # HTTP metrics
    http_requests_total = Counter(
        "http_requests_total",
        "Total HTTP requests",
        ["method", "path", "status"]
    )
    http_request_duration = Histogram(
        "http_request_duration_seconds",
        "HTTP request duration in seconds",
        ["method", "path"],
        buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
    )

    # Ingestion metrics
    reviews_ingested_total = Counter(
        "reviews_ingested_total",
        "Reviews written to the review store",
        ["source", "result"]
    )

    # LLM metrics
    llm_requests_total = Counter(
        "llm_requests_total",
        "Total LLM sentiment calls",
        ["model", "kind", "outcome"]
    )
    llm_request_duration = Histogram(
        "llm_request_duration_seconds",
        "LLM request duration in seconds",
        ["model", "kind"],
        buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)
    )
    llm_rate_limit_wait_seconds = Histogram(
        "llm_rate_limit_wait_seconds",
        "Time spent waiting on the shared LLM rate limit",
        buckets=(0.0, 0.5, 1.0, 2.0, 5.0, 15.0, 30.0, 61.0)
    )

    # Drain metrics
    drain_passes_total = Counter(
        "enrichment_drain_passes_total",
        "Enrichment drain passes"
    )
    drained_reviews_total = Counter(
        "enrichment_reviews_total",
        "Reviews handled by the enrichment drain",
        ["result"]
    )
else:
    http_requests_total = _NoOpMetric()
    http_request_duration = _NoOpMetric()
    reviews_ingested_total = _NoOpMetric()
    llm_requests_total = _NoOpMetric()
    llm_request_duration = _NoOpMetric()
    llm_rate_limit_wait_seconds = _NoOpMetric()
    drain_passes_total = _NoOpMetric()
    drained_reviews_total = _NoOpMetric()


# --- Convenience functions ---

# In-memory counters for the JSON summary
_internal_counters: Dict[str, Any] = {
    "http_requests": 0,
    "reviews_new": 0,
    "reviews_updated": 0,
    "llm_requests": 0,
    "llm_rate_limited": 0,
    "rate_limit_wait_seconds": 0.0,
    "drain_passes": 0,
    "drained_processed": 0,
    "drained_skipped": 0,
    "drained_errors": 0,
    "started_at": time.time(),
}


def track_request(method: str, path: str, status: int, duration: float) -> None:
    """Track an HTTP request."""
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration.labels(method=method, path=path).observe(duration)
    _internal_counters["http_requests"] += 1


def track_reviews_ingested(source: str, new: int = 0, duplicate: int = 0, updated: int = 0, errors: int = 0) -> None:
    """Track reviews handled by a pull fetch or a webhook push."""
    for result, count in (("new", new), ("duplicate", duplicate), ("updated", updated), ("error", errors)):
        if count:
            reviews_ingested_total.labels(source=source, result=result).inc(count)
    _internal_counters["reviews_new"] += new
    _internal_counters["reviews_updated"] += updated


def track_llm_call(model: str, kind: str, outcome: str = "ok", duration: float = 0.0) -> None:
    """Track one LLM completion call (kind: batch or single)."""
    llm_requests_total.labels(model=model, kind=kind, outcome=outcome).inc()
    if duration > 0:
        llm_request_duration.labels(model=model, kind=kind).observe(duration)
    _internal_counters["llm_requests"] += 1
    if outcome == "rate_limited":
        _internal_counters["llm_rate_limited"] += 1


def track_rate_limit_wait(seconds: float) -> None:
    llm_rate_limit_wait_seconds.observe(seconds)
    _internal_counters["rate_limit_wait_seconds"] += seconds


def track_drain_pass(processed: int, skipped: int, errors: int) -> None:
    """Track one enrichment drain pass."""
    drain_passes_total.inc()
    if processed:
        drained_reviews_total.labels(result="processed").inc(processed)
    if skipped:
        drained_reviews_total.labels(result="skipped").inc(skipped)
    if errors:
        drained_reviews_total.labels(result="error").inc(errors)
    _internal_counters["drain_passes"] += 1
    _internal_counters["drained_processed"] += processed
    _internal_counters["drained_skipped"] += skipped
    _internal_counters["drained_errors"] += errors


def get_metrics_summary() -> Dict[str, Any]:
    """Return a JSON summary of metrics (used when METRICS_ENABLED is false)."""
    uptime = time.time() - _internal_counters["started_at"]
    return {
        "metrics_enabled": METRICS_ENABLED,
        "uptime_seconds": round(uptime, 1),
        "http_requests_total": _internal_counters["http_requests"],
        "reviews_new_total": _internal_counters["reviews_new"],
        "reviews_updated_total": _internal_counters["reviews_updated"],
        "llm_requests_total": _internal_counters["llm_requests"],
        "llm_rate_limited_total": _internal_counters["llm_rate_limited"],
        "rate_limit_wait_seconds_total": round(_internal_counters["rate_limit_wait_seconds"], 3),
        "drain_passes_total": _internal_counters["drain_passes"],
        "drained_processed_total": _internal_counters["drained_processed"],
        "drained_skipped_total": _internal_counters["drained_skipped"],
        "drained_errors_total": _internal_counters["drained_errors"],
    }
