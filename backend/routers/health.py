"""
Boresha Reviews - Health & Version Router

Endpoints:
- GET /api/version - Application version info
- GET /health - Liveness probe
- GET /readiness - Readiness probe (database, review source, LLM key)
- GET /metrics - Prometheus metrics or a JSON summary
"""

import os
import logging
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import get_db
from constants import __version__
from review_sources import get_all_source_status

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/api/version")
async def get_version():
    """Return application version information."""
    return {"version": __version__, "name": "Boresha Reviews"}


@router.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """Liveness probe."""
    try:
        db.execute(text("SELECT 1"))
        return {"status": "healthy", "version": __version__}
    except SQLAlchemyError as e:
        logger.error(f"Health check database error: {e}")
        return JSONResponse(status_code=503, content={"status": "unhealthy"})


@router.get("/readiness")
async def readiness_check(db: Session = Depends(get_db)):
    """Readiness probe. Only the database is critical."""
    checks = {}

    try:
        db.execute(text("SELECT 1"))
        checks["database"] = True
    except SQLAlchemyError:
        checks["database"] = False

    sources = get_all_source_status()
    checks["review_source"] = any(s["configured"] for s in sources)
    checks["llm"] = bool(os.getenv("OPENAI_API_KEY"))
    checks["internal_key"] = bool(os.getenv("INTERNAL_API_KEY"))

    critical_ok = checks["database"]
    all_ok = all(checks.values())

    status_code = 200 if critical_ok else 503
    if all_ok:
        status_text = "ready"
    elif critical_ok:
        status_text = "degraded"
    else:
        status_text = "unhealthy"

    return JSONResponse(
        status_code=status_code,
        content={
            "status": status_text,
            "version": __version__,
            "checks": checks,
            "sources": sources,
        }
    )


@router.get("/metrics")
async def metrics_endpoint():
    """Prometheus metrics endpoint.

    Returns Prometheus text format when METRICS_ENABLED=true,
    otherwise returns a JSON summary.
    """
    from metrics import METRICS_ENABLED, generate_latest, CONTENT_TYPE_LATEST, get_metrics_summary
    from starlette.responses import Response

    if METRICS_ENABLED:
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return get_metrics_summary()
