"""
Boresha Reviews - Database Module with SQLAlchemy 2.0 Async Support

Supports both:
- Sync engine (health probes, Alembic migrations)
- Async engine (review ingestion + enrichment pipeline)

Uniqueness is enforced by constraints, never by read-then-write:
- reviews(platform_connection_id, external_id)
- sentiment_analysis(review_id)
- keywords(normalized_text)
- topics(company_id, name)
- review_keywords(review_id, keyword_id), review_topics(review_id, topic_id)

Writers use dialect_insert() to get an INSERT that supports
ON CONFLICT on both PostgreSQL and SQLite.

USAGE:
------
FastAPI dependency:
    from database import get_async_db
    @router.get("/items/{id}")
    async def get_item(id: str, db: AsyncSession = Depends(get_async_db)):
        return await get_company_by_id(db, id)

Outside of FastAPI:
    async with get_async_session() as session:
        reviews = await get_unprocessed_reviews(session, company_id)
"""

from sqlalchemy import (
    create_engine, Column, Integer, String, Float, DateTime, Text, Boolean, ForeignKey,
    Index, JSON, UniqueConstraint, event, select, func, exists,
)
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import sessionmaker, relationship, declarative_base
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator, List, Optional
import os
import uuid
import logging

logger = logging.getLogger(__name__)

# =============================================================================
# DATABASE URL CONFIGURATION
# =============================================================================

def _get_database_url() -> str:
    """Get sync database URL."""
    url = os.getenv("DATABASE_URL")
    if url:
        # Convert async URL to sync if needed
        if url.startswith("postgresql+asyncpg://"):
            return url.replace("postgresql+asyncpg://", "postgresql://")
        if url.startswith("sqlite+aiosqlite://"):
            return url.replace("sqlite+aiosqlite://", "sqlite://")
        return url

    # Default for development (SQLite)
    return "sqlite:///./boresha_reviews.db"


def _get_async_database_url() -> str:
    """Get async database URL (asyncpg for PostgreSQL, aiosqlite for SQLite)."""
    async_url = os.getenv("DATABASE_URL_ASYNC")
    if async_url:
        return async_url

    url = _get_database_url()
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://")
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://")
    return url


# =============================================================================
# SYNC ENGINE (Health probes, Alembic)
# =============================================================================

DATABASE_URL = _get_database_url()

if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
        pool_pre_ping=True,
        echo=os.getenv("DB_ECHO", "false").lower() == "true"
    )
else:
    engine = create_engine(
        DATABASE_URL,
        pool_size=int(os.getenv("DB_POOL_SIZE", "10")),
        max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "20")),
        pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
        pool_pre_ping=True,
        echo=os.getenv("DB_ECHO", "false").lower() == "true"
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# =============================================================================
# ASYNC ENGINE (Pipeline)
# =============================================================================

ASYNC_DATABASE_URL = _get_async_database_url()

if ASYNC_DATABASE_URL.startswith("sqlite+aiosqlite"):
    async_engine = create_async_engine(
        ASYNC_DATABASE_URL,
        echo=os.getenv("DB_ECHO", "false").lower() == "true"
    )
else:
    async_engine = create_async_engine(
        ASYNC_DATABASE_URL,
        pool_size=int(os.getenv("DB_POOL_SIZE", "20")),
        max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
        pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
        pool_pre_ping=True,
        echo=os.getenv("DB_ECHO", "false").lower() == "true"
    )

AsyncSessionLocal = async_sessionmaker(
    async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)
logger.info(f"Async database engine initialized: {ASYNC_DATABASE_URL[:30]}...")


# =============================================================================
# SESSION DEPENDENCY FUNCTIONS
# =============================================================================

def get_db():
    """Sync database session dependency (FastAPI)."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


async def get_async_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Async database session dependency (FastAPI).

    Usage:
        @router.get("/items")
        async def get_items(db: AsyncSession = Depends(get_async_db)):
            result = await db.execute(select(Item))
            return result.scalars().all()
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Async context manager for database sessions outside of FastAPI.

    Commits on success, rolls back and re-raises on error.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def new_id() -> str:
    """Primary keys are UUID strings (shared with the hosted Postgres schema)."""
    return str(uuid.uuid4())


def dialect_insert(session: AsyncSession, model):
    """Return an INSERT construct for the session's dialect that supports ON CONFLICT."""
    dialect_name = session.get_bind().dialect.name
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RuntimeError(f"Upsert not supported for dialect: {dialect_name}")
    return insert(model)


# ============== Database Models ==============

class User(Base):
    """Application user. role=admin may act on every company."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=True)
    role = Column(String, default="member")  # member, admin
    preferred_language = Column(String(8), nullable=True)  # en, fr
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Company(Base):
    """Tenant root. The owner's language drives LLM prompt language."""
    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    owner_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner = relationship("User")
    locations = relationship("Location", back_populates="company")


class Location(Base):
    __tablename__ = "locations"

    id = Column(String(36), primary_key=True, default=new_id)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    address = Column(String, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    company = relationship("Company", back_populates="locations")
    connections = relationship("PlatformConnection", back_populates="location")


class Platform(Base):
    """Review platform / provider network (google, tripadvisor, yelp, ...)."""
    __tablename__ = "platforms"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String, unique=True, nullable=False)
    display_name = Column(String, nullable=True)


class PlatformConnection(Base):
    """Binds a Location to one provider identity (slug) on one platform."""
    __tablename__ = "platform_connections"

    id = Column(String(36), primary_key=True, default=new_id)
    location_id = Column(String(36), ForeignKey("locations.id"), nullable=False, index=True)
    platform_id = Column(String(36), ForeignKey("platforms.id"), nullable=True)
    platform_location_id = Column(String, nullable=True, index=True)  # provider slug
    is_active = Column(Boolean, default=True)
    last_sync_at = Column(DateTime, nullable=True)
    # "metadata" is reserved on declarative classes
    connection_metadata = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    location = relationship("Location", back_populates="connections")
    platform = relationship("Platform")


class Review(Base):
    """Canonical review. Immutable after ingestion except enrichment side tables."""
    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint("platform_connection_id", "external_id", name="uq_reviews_connection_external"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    platform_connection_id = Column(String(36), ForeignKey("platform_connections.id"), nullable=False, index=True)
    external_id = Column(String, nullable=False)
    author_name = Column(String, default="")
    author_avatar_url = Column(String, nullable=True)
    rating = Column(Float, default=0)
    title = Column(String, nullable=True)
    content = Column(Text, default="")
    published_at = Column(DateTime, nullable=True)
    reply_content = Column(Text, nullable=True)
    reply_at = Column(DateTime, nullable=True)
    raw_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    connection = relationship("PlatformConnection")
    sentiment = relationship("SentimentAnalysis", back_populates="review", uselist=False)


class SentimentAnalysis(Base):
    """One row per review, written by idempotent upsert on review_id."""
    __tablename__ = "sentiment_analysis"

    id = Column(String(36), primary_key=True, default=new_id)
    review_id = Column(String(36), ForeignKey("reviews.id"), unique=True, nullable=False)
    sentiment = Column(String(16), nullable=False)  # positive, negative, neutral, mixed
    sentiment_score = Column(Float, default=0.0)  # [-1.0, 1.0]
    emotions = Column(JSON, nullable=True)  # {"emoticons": [...]}
    confidence = Column(Float, default=0.85)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    review = relationship("Review", back_populates="sentiment")


class Keyword(Base):
    """Global keyword, deduplicated by upper-cased trimmed text."""
    __tablename__ = "keywords"

    id = Column(String(36), primary_key=True, default=new_id)
    text = Column(String, nullable=False)
    normalized_text = Column(String, unique=True, nullable=False)
    category = Column(String(32), default="other")
    language = Column(String(8), default="en")
    created_at = Column(DateTime, default=datetime.utcnow)


class Topic(Base):
    """Company-scoped theme with running counts per sentiment."""
    __tablename__ = "topics"
    __table_args__ = (
        UniqueConstraint("company_id", "name", name="uq_topics_company_name"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    category = Column(String(32), default="neutral")  # satisfaction, dissatisfaction, neutral
    description = Column(Text, default="")
    keywords = Column(JSON, default=list)
    occurrence_count = Column(Integer, default=0)
    sentiment_distribution = Column(JSON, default=dict)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ReviewKeyword(Base):
    __tablename__ = "review_keywords"
    __table_args__ = (
        UniqueConstraint("review_id", "keyword_id", name="uq_review_keywords_review_keyword"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    review_id = Column(String(36), ForeignKey("reviews.id"), nullable=False, index=True)
    keyword_id = Column(String(36), ForeignKey("keywords.id"), nullable=False, index=True)
    platform_connection_id = Column(String(36), ForeignKey("platform_connections.id"), nullable=True)
    frequency = Column(Integer, default=1)
    relevance_score = Column(Float, default=0.5)
    created_at = Column(DateTime, default=datetime.utcnow)


class ReviewTopic(Base):
    __tablename__ = "review_topics"
    __table_args__ = (
        UniqueConstraint("review_id", "topic_id", name="uq_review_topics_review_topic"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    review_id = Column(String(36), ForeignKey("reviews.id"), nullable=False, index=True)
    topic_id = Column(String(36), ForeignKey("topics.id"), nullable=False, index=True)
    platform_connection_id = Column(String(36), ForeignKey("platform_connections.id"), nullable=True)
    relevance_score = Column(Float, default=0.5)
    created_at = Column(DateTime, default=datetime.utcnow)


class FetchCallLog(Base):
    """One row per orchestrator run for a company; drives the fetch cooldown."""
    __tablename__ = "review_fetch_call_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False)
    requested_by = Column(String(36), nullable=True)
    status = Column(String(16), default="pending")  # pending, success, error
    triggered_at = Column(DateTime, default=datetime.utcnow)
    locations_processed = Column(Integer, default=0)
    reviews_inserted = Column(Integer, default=0)
    error_message = Column(Text, nullable=True)
    completed_at = Column(DateTime, nullable=True)


class RateLimitLog(Base):
    """Append-only LLM call timestamps, pruned probabilistically."""
    __tablename__ = "llm_rate_limit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)


class SyncLog(Base):
    """Audit row per connection sync (webhook push or pull)."""
    __tablename__ = "sync_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    platform_connection_id = Column(String(36), ForeignKey("platform_connections.id"), nullable=False, index=True)
    status = Column(String(16), nullable=False)  # success, failed
    reviews_fetched = Column(Integer, default=0)
    reviews_new = Column(Integer, default=0)
    reviews_updated = Column(Integer, default=0)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)


# ============== Performance Indexes ==============

Index('ix_fetch_log_company_triggered', FetchCallLog.company_id, FetchCallLog.triggered_at.desc())
Index('ix_review_connection_published', Review.platform_connection_id, Review.published_at.desc())
Index('ix_location_company_active', Location.company_id, Location.is_active)

# =============================================================================
# TABLE CREATION & DATABASE INITIALIZATION
# =============================================================================

# Create tables using sync engine
Base.metadata.create_all(bind=engine)

if DATABASE_URL.startswith("sqlite"):
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        """Enable SQLite performance optimizations."""
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()


async def init_async_db():
    """
    Initialize async database tables.

    PostgreSQL tables are managed by Alembic migrations; SQLite development
    databases are created here so the pipeline can run without migrating.
    """
    if ASYNC_DATABASE_URL.startswith("sqlite"):
        async with async_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    logger.info("Async database initialization complete")


# =============================================================================
# ASYNC CRUD HELPERS - SQLAlchemy 2.0 Patterns
# =============================================================================

class UnknownCompanyError(Exception):
    """Raised when a company id does not resolve to a company."""

    def __init__(self, company_id: str):
        super().__init__(f"Company not found: {company_id}")
        self.company_id = company_id


async def get_company_by_id(session: AsyncSession, company_id: str):
    """Get company by ID."""
    result = await session.execute(
        select(Company).where(Company.id == company_id)
    )
    return result.scalar_one_or_none()


async def require_company(session: AsyncSession, company_id: str) -> Company:
    """Like get_company_by_id but raises UnknownCompanyError."""
    company = await get_company_by_id(session, company_id)
    if company is None:
        raise UnknownCompanyError(company_id)
    return company


async def get_user_by_email(session: AsyncSession, email: str):
    """Get user by email."""
    result = await session.execute(
        select(User).where(User.email == email)
    )
    return result.scalar_one_or_none()


async def get_user_by_id(session: AsyncSession, user_id: str):
    """Get user by ID."""
    result = await session.execute(
        select(User).where(User.id == user_id)
    )
    return result.scalar_one_or_none()


async def get_owner_language(session: AsyncSession, company: Company) -> Optional[str]:
    """Preferred language of the company owner, if set."""
    if not company.owner_id:
        return None
    result = await session.execute(
        select(User.preferred_language).where(User.id == company.owner_id)
    )
    return result.scalar_one_or_none()


async def get_active_locations(session: AsyncSession, company_id: str) -> List[Location]:
    """Active locations of a company."""
    result = await session.execute(
        select(Location).where(Location.company_id == company_id, Location.is_active == True)  # noqa: E712
    )
    return list(result.scalars().all())


async def get_active_connections(session: AsyncSession, location_id: str):
    """Active platform connections of a location with their platform name."""
    result = await session.execute(
        select(PlatformConnection, Platform.name)
        .outerjoin(Platform, PlatformConnection.platform_id == Platform.id)
        .where(PlatformConnection.location_id == location_id, PlatformConnection.is_active == True)  # noqa: E712
    )
    return list(result.all())


async def find_connection_by_slug(session: AsyncSession, slug: str):
    """First (connection, company_id) whose provider slug matches."""
    result = await session.execute(
        select(PlatformConnection, Location.company_id)
        .join(Location, PlatformConnection.location_id == Location.id)
        .where(PlatformConnection.platform_location_id == slug)
        .limit(1)
    )
    return result.first()


async def get_company_id_for_connection(session: AsyncSession, connection_id: str) -> Optional[str]:
    """Resolve connection -> location -> company."""
    result = await session.execute(
        select(Location.company_id)
        .join(PlatformConnection, PlatformConnection.location_id == Location.id)
        .where(PlatformConnection.id == connection_id)
    )
    return result.scalar_one_or_none()


async def get_latest_fetch_log(session: AsyncSession, company_id: str) -> Optional[FetchCallLog]:
    """Most recent non-error fetch log for a company."""
    result = await session.execute(
        select(FetchCallLog)
        .where(FetchCallLog.company_id == company_id, FetchCallLog.status != "error")
        .order_by(FetchCallLog.triggered_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


def _unprocessed_filter(company_id: str):
    return (
        Location.company_id == company_id,
        Location.is_active == True,  # noqa: E712
        ~exists().where(SentimentAnalysis.review_id == Review.id),
    )


async def count_unprocessed_reviews(session: AsyncSession, company_id: str) -> int:
    """Count reviews of a company that have no sentiment analysis yet."""
    result = await session.execute(
        select(func.count(Review.id))
        .join(PlatformConnection, Review.platform_connection_id == PlatformConnection.id)
        .join(Location, PlatformConnection.location_id == Location.id)
        .where(*_unprocessed_filter(company_id))
    )
    return result.scalar_one() or 0


async def get_unprocessed_reviews(session: AsyncSession, company_id: str, limit: int = 100) -> List[Review]:
    """Newest reviews of a company that have no sentiment analysis yet."""
    result = await session.execute(
        select(Review)
        .join(PlatformConnection, Review.platform_connection_id == PlatformConnection.id)
        .join(Location, PlatformConnection.location_id == Location.id)
        .where(*_unprocessed_filter(company_id))
        .order_by(Review.published_at.desc(), Review.id)
        .limit(limit)
    )
    return list(result.scalars().all())


async def has_sentiment_analysis(session: AsyncSession, review_id: str) -> bool:
    """True when the review already has a sentiment row."""
    result = await session.execute(
        select(SentimentAnalysis.id).where(SentimentAnalysis.review_id == review_id)
    )
    return result.scalar_one_or_none() is not None


# Log database configuration on import
logger.info(f"Database URL (sync): {DATABASE_URL[:50]}...")
logger.info(f"Database URL (async): {ASYNC_DATABASE_URL[:50]}...")
