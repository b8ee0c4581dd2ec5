"""Security and observability middleware for the Boresha Reviews backend."""

from middleware.security import SecurityHeadersMiddleware  # noqa: F401
from middleware.metrics import MetricsMiddleware  # noqa: F401

__all__ = ["SecurityHeadersMiddleware", "MetricsMiddleware"]
