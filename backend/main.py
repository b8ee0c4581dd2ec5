"""
Boresha Reviews - Review Ingestion & Enrichment Backend

FastAPI service that:
1. Pulls reviews from Zembra / Yelp and receives Zembra webhook pushes
2. Stores them deduplicated per platform connection
3. Enriches them with LLM sentiment, keywords and topics
"""
import os
import logging
import uuid
from contextlib import asynccontextmanager

from dotenv import load_dotenv

load_dotenv()

from constants import RATE_LIMIT_ENABLED, __version__  # noqa: E402

logger = logging.getLogger(__name__)

from slowapi import Limiter, _rate_limit_exceeded_handler  # noqa: E402
from slowapi.errors import RateLimitExceeded  # noqa: E402
from slowapi.middleware import SlowAPIMiddleware  # noqa: E402
from slowapi.util import get_remote_address  # noqa: E402

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[os.getenv("RATE_LIMIT_DEFAULT", "120/minute")],
    enabled=RATE_LIMIT_ENABLED,
)

# Structured JSON logging for production
if os.getenv("JSON_LOGGING", "false").lower() == "true":
    from pythonjsonlogger import jsonlogger

    _json_handler = logging.StreamHandler()
    _json_formatter = jsonlogger.JsonFormatter(
        '%(asctime)s %(name)s %(levelname)s %(message)s',
        rename_fields={"asctime": "timestamp", "levelname": "level"}
    )
    _json_handler.setFormatter(_json_formatter)
    logging.root.handlers = [_json_handler]
    logging.root.setLevel(logging.INFO)
    logger.info("JSON logging enabled")
else:
    logging.basicConfig(level=logging.INFO)

from fastapi import FastAPI  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402

from database import init_async_db  # noqa: E402
from middleware import MetricsMiddleware, SecurityHeadersMiddleware  # noqa: E402
from routers import health as health_router  # noqa: E402
from routers import reviews as reviews_router  # noqa: E402
from routers import sentiment as sentiment_router  # noqa: E402
from routers import webhooks as webhooks_router  # noqa: E402
from routers import zembra as zembra_router  # noqa: E402
from services.task_service import task_service  # noqa: E402


# ============== FastAPI App ==============

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Boresha Reviews backend starting...")

    optional_features = {
        "ZEMBRA_API_TOKEN": "Zembra review fetch and webhook",
        "YELP_API_KEY": "Direct Yelp review fetch",
        "OPENAI_API_KEY": "Sentiment enrichment",
        "INTERNAL_API_KEY": "Internal enrichment endpoints",
    }
    for env_key, feature in optional_features.items():
        if not os.getenv(env_key):
            logger.warning(f"{env_key} not set - {feature} disabled")

    await init_async_db()
    logger.info(f"Boresha Reviews v{__version__} ready")

    yield

    # Shutdown
    await task_service.shutdown()
    logger.info("Boresha Reviews backend stopped")


app = FastAPI(
    title="Boresha Reviews API",
    description="Review ingestion and AI enrichment pipeline",
    version=__version__,
    lifespan=lifespan
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)


@app.middleware("http")
async def correlation_id_middleware(request, call_next):
    """Add correlation ID to all requests for distributed tracing."""
    correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
    response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id
    return response


app.include_router(health_router.router)  # Health, readiness, metrics, version
app.include_router(reviews_router.router)  # Review fetch trigger
app.include_router(webhooks_router.router)  # Provider webhooks
app.include_router(sentiment_router.internal_router)  # Internal enrichment
app.include_router(sentiment_router.router)  # Sentiment refresh & drain status
app.include_router(zembra_router.router)  # Direct Zembra client calls

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(MetricsMiddleware)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )
