"""
Boresha Reviews - Test Configuration and Fixtures

Environment is set before any application module is imported so the
module-level engines in database.py point at a throwaway SQLite file.
Pipeline tests get their own aiosqlite database per test through the
session_factory fixture.
"""
import os
import sys
from datetime import datetime
from typing import Optional

import pytest
import pytest_asyncio

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment
os.environ['TESTING'] = 'true'
os.environ['DATABASE_URL'] = 'sqlite:///./test_boresha_reviews.db'
os.environ['RATE_LIMIT_ENABLED'] = 'false'
os.environ['METRICS_ENABLED'] = 'false'
os.environ.setdefault('SECRET_KEY', 'test-secret-key-for-pytest-do-not-use-in-prod')
os.environ['INTERNAL_API_KEY'] = 'test-internal-key'
os.environ['ZEMBRA_API_TOKEN'] = 'test-zembra-token'

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402


INTERNAL_KEY = 'test-internal-key'
ZEMBRA_TOKEN = 'test-zembra-token'


# ==============================================================================
# Database Fixtures
# ==============================================================================

@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Fresh SQLite database with the full schema for one test."""
    from database import Base

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pipeline.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    yield factory

    await engine.dispose()


# ==============================================================================
# Seed Helpers
# ==============================================================================

async def seed_company(
    session_factory,
    owner_role: str = "member",
    language: Optional[str] = "fr",
    network: str = "google",
    slug: Optional[str] = "cafe-du-port",
    connections: int = 1,
):
    """
    Create owner, company, one active location and its connections.

    Returns a dict of ids: owner_id, company_id, location_id, connection_ids.
    """
    from database import Company, Location, Platform, PlatformConnection, User, new_id

    async with session_factory() as session:
        owner = User(id=new_id(), email=f"owner-{new_id()[:8]}@example.com", role=owner_role,
                     preferred_language=language, is_active=True)
        company = Company(id=new_id(), name="Cafe du Port", owner_id=owner.id)
        location = Location(id=new_id(), company_id=company.id, name="Main street", is_active=True)
        platform = Platform(id=new_id(), name=network, display_name=network.title())
        session.add_all([owner, company, location, platform])

        connection_ids = []
        for index in range(connections):
            connection = PlatformConnection(
                id=new_id(),
                location_id=location.id,
                platform_id=platform.id,
                platform_location_id=f"{slug}-{index}" if slug and index else slug,
                is_active=True,
            )
            session.add(connection)
            connection_ids.append(connection.id)
        await session.commit()

    return {
        "owner_id": owner.id,
        "owner_email": owner.email,
        "company_id": company.id,
        "location_id": location.id,
        "connection_ids": connection_ids,
    }


async def seed_reviews(session_factory, connection_id: str, count: int, content: str = "Great coffee",
                       rating: float = 5, start: int = 0):
    """Insert `count` reviews with external ids ext-{start}..; returns their ids."""
    from database import Review, new_id

    ids = []
    async with session_factory() as session:
        for index in range(start, start + count):
            review = Review(
                id=new_id(),
                platform_connection_id=connection_id,
                external_id=f"ext-{index}",
                author_name="Amina",
                rating=rating,
                content=content,
                published_at=datetime(2026, 1, 1, 12, 0, 0),
            )
            session.add(review)
            ids.append(review.id)
        await session.commit()
    return ids


async def count_rows(session_factory, model) -> int:
    from sqlalchemy import func, select

    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(model))
        return result.scalar_one()


def make_review(external_id: str, content: str = "Lovely staff", rating: float = 4):
    from review_sources.base_source import StandardReview

    return StandardReview(
        external_id=external_id,
        author_name="Amina",
        rating=rating,
        content=content,
        published_at=datetime(2026, 1, 1, 12, 0, 0),
        raw_data={"id": external_id},
    )


# ==============================================================================
# Utility Functions
# ==============================================================================

def assert_valid_response(response, expected_status=200):
    """Assert that an API response is valid."""
    assert response.status_code == expected_status, f"Expected {expected_status}, got {response.status_code}: {response.text}"
    return response.json()
