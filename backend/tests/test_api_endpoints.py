"""
Boresha Reviews - API Endpoint Tests

Drives the routers through the ASGI app with pipeline components and the
database session swapped via app.dependency_overrides. Requests run on
the test's event loop so the per-test SQLite database can be shared.

Run: python -m pytest -xvs tests/test_api_endpoints.py
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select

from conftest import INTERNAL_KEY, ZEMBRA_TOKEN, count_rows, make_review, seed_company, seed_reviews
from auth_manager import auth_manager
from database import FetchCallLog, PlatformConnection, Review, SyncLog, get_async_db
from dependencies import (
    get_drainer,
    get_orchestrator,
    get_review_store,
    get_session_factory,
    get_tasks,
)
from enrichment import DrainResult, EnrichmentDrainer
from fetch_orchestrator import FetchOrchestrator
from main import app
from review_sources.base_source import FetchOutcome
from review_store import ReviewStoreWriter


def _bearer(email):
    return {"Authorization": f"Bearer {auth_manager.create_access_token({'sub': email})}"}


@pytest.fixture
def tasks():
    service = MagicMock()
    service.schedule_drain = MagicMock(return_value=True)
    service.get_status = MagicMock(return_value=None)
    return service


@pytest.fixture
def source():
    adapter = MagicMock()
    adapter.fetch_reviews = AsyncMock(return_value=FetchOutcome.empty())
    return adapter


@pytest_asyncio.fixture
async def client(session_factory, tasks, source):
    async def override_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = override_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_review_store] = lambda: ReviewStoreWriter(session_factory)
    app.dependency_overrides[get_tasks] = lambda: tasks
    app.dependency_overrides[get_orchestrator] = lambda: FetchOrchestrator(
        session_factory, source_resolver=lambda network: source, schedule_drain=tasks.schedule_drain
    )

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.clear()


# ──────────────────────────────────────────────────────────────────────────────
# POST /api/reviews/fetch
# ──────────────────────────────────────────────────────────────────────────────


class TestReviewFetchEndpoint:

    @pytest.mark.asyncio
    async def test_requires_token(self, client):
        response = await client.post("/api/reviews/fetch", json={"company_id": "x"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Not authenticated"

    @pytest.mark.asyncio
    async def test_invalid_token(self, client):
        response = await client.post(
            "/api/reviews/fetch", json={"company_id": "x"}, headers={"Authorization": "Bearer nope"}
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid or expired token"

    @pytest.mark.asyncio
    async def test_missing_company_id(self, client, session_factory):
        ids = await seed_company(session_factory)
        response = await client.post("/api/reviews/fetch", json={}, headers=_bearer(ids["owner_email"]))
        assert response.status_code == 400
        assert response.json()["detail"] == "company_id is required"

    @pytest.mark.asyncio
    async def test_unknown_company(self, client, session_factory):
        ids = await seed_company(session_factory)
        response = await client.post(
            "/api/reviews/fetch", json={"company_id": "missing"}, headers=_bearer(ids["owner_email"])
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_non_owner_forbidden(self, client, session_factory, source):
        ids = await seed_company(session_factory)
        other = await seed_company(session_factory, network="tripadvisor", slug="other")

        response = await client.post(
            "/api/reviews/fetch", json={"company_id": ids["company_id"]}, headers=_bearer(other["owner_email"])
        )

        assert response.status_code == 403
        assert await count_rows(session_factory, FetchCallLog) == 0
        source.fetch_reviews.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_owner_fetch_then_cooldown(self, client, session_factory, source, tasks):
        ids = await seed_company(session_factory)
        source.fetch_reviews = AsyncMock(return_value=FetchOutcome.with_reviews([make_review("a")]))
        headers = _bearer(ids["owner_email"])

        first = await client.post("/api/reviews/fetch", json={"company_id": ids["company_id"]}, headers=headers)
        second = await client.post("/api/reviews/fetch", json={"company_id": ids["company_id"]}, headers=headers)

        assert first.status_code == 200
        assert first.json() == {"success": True, "skipped": False, "locationsProcessed": 1, "reviewsInserted": 1}
        tasks.schedule_drain.assert_called_once_with(ids["company_id"])

        body = second.json()
        assert body["skipped"] is True
        assert body["cooldownHours"] == 48
        assert body["nextEligibleAt"].endswith("Z")
        assert source.fetch_reviews.await_count == 1


# ──────────────────────────────────────────────────────────────────────────────
# POST /api/webhooks/zembra
# ──────────────────────────────────────────────────────────────────────────────


def _webhook_body(slug="cafe-du-port", reviews=None):
    return {
        "type": "reviews",
        "data": {
            "job": {"jobId": "job-77", "network": "google"},
            "target": {"slug": slug},
            "reviews": reviews if reviews is not None else [
                {"id": "z1", "text": "Superbe", "rating": 5, "timestamp": "2026-04-01T10:00:00Z",
                 "author": {"name": "Wanjiru"}},
                {"id": "z2", "text": "Bof", "rating": 3, "timestamp": "2026-04-02T10:00:00Z"},
            ],
        },
    }


class TestZembraWebhook:

    @pytest.mark.asyncio
    async def test_wrong_token(self, client):
        response = await client.post("/api/webhooks/zembra", json=_webhook_body(), headers={"X-Zembra-Token": "bad"})
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Unauthorized"}

    @pytest.mark.asyncio
    async def test_non_ascii_token_rejected(self, client):
        response = await client.post(
            "/api/webhooks/zembra", json=_webhook_body(), headers={"X-Zembra-Token": "café".encode("utf-8")}
        )
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Unauthorized"}

    @pytest.mark.asyncio
    async def test_empty_body_is_liveness(self, client):
        response = await client.post("/api/webhooks/zembra", content=b"", headers={"X-Zembra-Token": ZEMBRA_TOKEN})
        assert response.status_code == 200
        assert response.json()["success"] is True

    @pytest.mark.asyncio
    async def test_invalid_json(self, client):
        response = await client.post(
            "/api/webhooks/zembra", content=b"{not json", headers={"X-Zembra-Token": ZEMBRA_TOKEN}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON payload"

    @pytest.mark.asyncio
    async def test_non_review_events_ignored(self, client):
        response = await client.post(
            "/api/webhooks/zembra", json={"type": "listing"}, headers={"X-Zembra-Token": ZEMBRA_TOKEN}
        )
        assert response.json() == {"success": True, "message": "Not a reviews webhook, ignoring"}

    @pytest.mark.asyncio
    async def test_unknown_slug_acknowledged(self, client, session_factory):
        response = await client.post(
            "/api/webhooks/zembra", json=_webhook_body(slug="nowhere"), headers={"X-Zembra-Token": ZEMBRA_TOKEN}
        )
        assert response.status_code == 200
        assert response.json() == {"success": False, "error": "No platform connection found for slug: nowhere"}
        assert await count_rows(session_factory, Review) == 0

    @pytest.mark.asyncio
    async def test_reviews_upserted(self, client, session_factory, tasks):
        ids = await seed_company(session_factory)
        connection_id = ids["connection_ids"][0]
        headers = {"X-Zembra-Token": ZEMBRA_TOKEN}

        first = await client.post("/api/webhooks/zembra", json=_webhook_body(), headers=headers)
        redelivery = _webhook_body(reviews=[{"id": "z2", "text": "Finalement très bien", "rating": 4}])
        second = await client.post("/api/webhooks/zembra", json=redelivery, headers=headers)

        assert first.json() == {"success": True, "message": "Processed 2 reviews", "reviewsProcessed": 2}
        assert second.json()["reviewsProcessed"] == 1
        assert tasks.schedule_drain.call_count == 2
        tasks.schedule_drain.assert_called_with(ids["company_id"], retry_count=0)

        async with session_factory() as session:
            reviews = {
                r.external_id: r
                for r in (await session.execute(select(Review))).scalars().all()
            }
            connection = await session.get(PlatformConnection, connection_id)
        assert set(reviews) == {"z1", "z2"}
        assert reviews["z2"].content == "Finalement très bien"
        assert reviews["z2"].author_name == "Anonymous"
        assert reviews["z1"].author_name == "Wanjiru"
        assert connection.connection_metadata["zembraJobId"] == "job-77"
        assert connection.connection_metadata["lastFetchCount"] == 1
        assert await count_rows(session_factory, SyncLog) == 2


# ──────────────────────────────────────────────────────────────────────────────
# Internal enrichment endpoints
# ──────────────────────────────────────────────────────────────────────────────


class TestInternalEndpoints:

    @pytest.mark.asyncio
    async def test_internal_key_required(self, client):
        response = await client.post("/api/internal/sentiment-analysis", json={"company_id": "x"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Unauthorized - internal access only"

    @pytest.mark.asyncio
    async def test_non_ascii_internal_key_rejected(self, client):
        response = await client.post(
            "/api/internal/sentiment-analysis",
            json={"company_id": "x"},
            headers={"X-Internal-Key": "café".encode("utf-8")},
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_drain_endpoint(self, client):
        drainer = MagicMock()
        drainer.drain = AsyncMock(return_value=DrainResult(processed=4, total=4, message="ok"))
        app.dependency_overrides[get_drainer] = lambda: drainer

        response = await client.post(
            "/api/internal/sentiment-analysis",
            json={"company_id": "c1", "retry_count": 3},
            headers={"X-Internal-Key": INTERNAL_KEY},
        )

        assert response.status_code == 200
        assert response.json()["processed"] == 4
        drainer.drain.assert_awaited_once_with("c1", retry_count=3)

    @pytest.mark.asyncio
    async def test_drain_unknown_company(self, client, session_factory):
        app.dependency_overrides[get_drainer] = lambda: EnrichmentDrainer(session_factory, MagicMock())

        response = await client.post(
            "/api/internal/sentiment-analysis",
            json={"company_id": "missing"},
            headers={"X-Internal-Key": INTERNAL_KEY},
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_drain_requires_company(self, client):
        response = await client.post(
            "/api/internal/sentiment-analysis", json={}, headers={"X-Internal-Key": INTERNAL_KEY}
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_single_review_without_record(self, client):
        response = await client.post(
            "/api/internal/sentiment-analysis/review", json={}, headers={"X-Internal-Key": INTERNAL_KEY}
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "No review record in payload"

    @pytest.mark.asyncio
    async def test_single_review_rating_only(self, client, session_factory):
        ids = await seed_company(session_factory)
        connection_id = ids["connection_ids"][0]
        (review_id,) = await seed_reviews(session_factory, connection_id, 1, content="", rating=1)
        app.dependency_overrides[get_drainer] = lambda: EnrichmentDrainer(session_factory, MagicMock())

        response = await client.post(
            "/api/internal/sentiment-analysis/review",
            json={"record": {"id": review_id, "content": "", "rating": 1, "platform_connection_id": connection_id}},
            headers={"X-Internal-Key": INTERNAL_KEY},
        )

        assert response.status_code == 200
        assert response.json()["sentiment"] == "negative"


# ──────────────────────────────────────────────────────────────────────────────
# Public sentiment endpoints
# ──────────────────────────────────────────────────────────────────────────────


class TestSentimentEndpoints:

    @pytest.mark.asyncio
    async def test_refresh_requires_admin(self, client, session_factory):
        ids = await seed_company(session_factory)
        response = await client.post(
            "/api/sentiment/refresh", json={"company_id": ids["company_id"]}, headers=_bearer(ids["owner_email"])
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_refresh_schedules_drain(self, client, session_factory, tasks):
        ids = await seed_company(session_factory)
        admin = await seed_company(session_factory, owner_role="admin", network="yelp", slug="admin-slug")

        response = await client.post(
            "/api/sentiment/refresh", json={"company_id": ids["company_id"]}, headers=_bearer(admin["owner_email"])
        )

        assert response.status_code == 202
        assert response.json()["scheduled"] is True
        tasks.schedule_drain.assert_called_once_with(ids["company_id"])

    @pytest.mark.asyncio
    async def test_drain_status_idle(self, client, session_factory):
        ids = await seed_company(session_factory)
        response = await client.get(f"/api/sentiment/drains/{ids['company_id']}", headers=_bearer(ids["owner_email"]))
        assert response.status_code == 200
        assert response.json() == {"company_id": ids["company_id"], "status": "idle"}

    @pytest.mark.asyncio
    async def test_drain_status_forbidden_for_strangers(self, client, session_factory):
        ids = await seed_company(session_factory)
        other = await seed_company(session_factory, network="tripadvisor", slug="other")
        response = await client.get(
            f"/api/sentiment/drains/{ids['company_id']}", headers=_bearer(other["owner_email"])
        )
        assert response.status_code == 403
