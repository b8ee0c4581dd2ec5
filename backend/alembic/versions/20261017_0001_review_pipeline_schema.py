"""Review ingestion and enrichment schema

Revision ID: 0001
Revises:
Create Date: 2026-10-17

Creates the pipeline tables. Deduplication is enforced by unique
constraints that the writers target with INSERT ... ON CONFLICT:
- reviews(platform_connection_id, external_id)
- sentiment_analysis(review_id)
- keywords(normalized_text)
- topics(company_id, name)
- review_keywords(review_id, keyword_id)
- review_topics(review_id, topic_id)
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create pipeline tables."""
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String, nullable=False),
        sa.Column('full_name', sa.String, nullable=True),
        sa.Column('role', sa.String, default='member'),
        sa.Column('preferred_language', sa.String(8), nullable=True),
        sa.Column('is_active', sa.Boolean, default=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'companies',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String, nullable=False),
        sa.Column('owner_id', sa.String(36), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_companies_owner_id', 'companies', ['owner_id'])

    op.create_table(
        'locations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('company_id', sa.String(36), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('name', sa.String, nullable=False),
        sa.Column('address', sa.String, nullable=True),
        sa.Column('is_active', sa.Boolean, default=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_locations_company_id', 'locations', ['company_id'])
    op.create_index('ix_location_company_active', 'locations', ['company_id', 'is_active'])

    op.create_table(
        'platforms',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String, nullable=False, unique=True),
        sa.Column('display_name', sa.String, nullable=True),
    )

    op.create_table(
        'platform_connections',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('location_id', sa.String(36), sa.ForeignKey('locations.id'), nullable=False),
        sa.Column('platform_id', sa.String(36), sa.ForeignKey('platforms.id'), nullable=True),
        sa.Column('platform_location_id', sa.String, nullable=True),
        sa.Column('is_active', sa.Boolean, default=True),
        sa.Column('last_sync_at', sa.DateTime, nullable=True),
        sa.Column('metadata', sa.JSON, default={}),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_platform_connections_location_id', 'platform_connections', ['location_id'])
    op.create_index('ix_platform_connections_platform_location_id', 'platform_connections', ['platform_location_id'])

    op.create_table(
        'reviews',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('platform_connection_id', sa.String(36), sa.ForeignKey('platform_connections.id'), nullable=False),
        sa.Column('external_id', sa.String, nullable=False),
        sa.Column('author_name', sa.String, default=''),
        sa.Column('author_avatar_url', sa.String, nullable=True),
        sa.Column('rating', sa.Float, default=0),
        sa.Column('title', sa.String, nullable=True),
        sa.Column('content', sa.Text, default=''),
        sa.Column('published_at', sa.DateTime, nullable=True),
        sa.Column('reply_content', sa.Text, nullable=True),
        sa.Column('reply_at', sa.DateTime, nullable=True),
        sa.Column('raw_data', sa.JSON, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('platform_connection_id', 'external_id', name='uq_reviews_connection_external'),
    )
    op.create_index('ix_reviews_platform_connection_id', 'reviews', ['platform_connection_id'])
    op.create_index(
        'ix_review_connection_published', 'reviews',
        ['platform_connection_id', sa.text('published_at DESC')],
    )

    op.create_table(
        'sentiment_analysis',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('review_id', sa.String(36), sa.ForeignKey('reviews.id'), nullable=False, unique=True),
        sa.Column('sentiment', sa.String(16), nullable=False),
        sa.Column('sentiment_score', sa.Float, default=0.0),
        sa.Column('emotions', sa.JSON, nullable=True),
        sa.Column('confidence', sa.Float, default=0.85),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        'keywords',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('text', sa.String, nullable=False),
        sa.Column('normalized_text', sa.String, nullable=False, unique=True),
        sa.Column('category', sa.String(32), default='other'),
        sa.Column('language', sa.String(8), default='en'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        'topics',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('company_id', sa.String(36), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('name', sa.String, nullable=False),
        sa.Column('category', sa.String(32), default='neutral'),
        sa.Column('description', sa.Text, default=''),
        sa.Column('keywords', sa.JSON, default=[]),
        sa.Column('occurrence_count', sa.Integer, default=0),
        sa.Column('sentiment_distribution', sa.JSON, default={}),
        sa.Column('is_active', sa.Boolean, default=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('company_id', 'name', name='uq_topics_company_name'),
    )
    op.create_index('ix_topics_company_id', 'topics', ['company_id'])

    op.create_table(
        'review_keywords',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('review_id', sa.String(36), sa.ForeignKey('reviews.id'), nullable=False),
        sa.Column('keyword_id', sa.String(36), sa.ForeignKey('keywords.id'), nullable=False),
        sa.Column('platform_connection_id', sa.String(36), sa.ForeignKey('platform_connections.id'), nullable=True),
        sa.Column('frequency', sa.Integer, default=1),
        sa.Column('relevance_score', sa.Float, default=0.5),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('review_id', 'keyword_id', name='uq_review_keywords_review_keyword'),
    )
    op.create_index('ix_review_keywords_review_id', 'review_keywords', ['review_id'])
    op.create_index('ix_review_keywords_keyword_id', 'review_keywords', ['keyword_id'])

    op.create_table(
        'review_topics',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('review_id', sa.String(36), sa.ForeignKey('reviews.id'), nullable=False),
        sa.Column('topic_id', sa.String(36), sa.ForeignKey('topics.id'), nullable=False),
        sa.Column('platform_connection_id', sa.String(36), sa.ForeignKey('platform_connections.id'), nullable=True),
        sa.Column('relevance_score', sa.Float, default=0.5),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('review_id', 'topic_id', name='uq_review_topics_review_topic'),
    )
    op.create_index('ix_review_topics_review_id', 'review_topics', ['review_id'])
    op.create_index('ix_review_topics_topic_id', 'review_topics', ['topic_id'])

    op.create_table(
        'review_fetch_call_logs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('company_id', sa.String(36), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('requested_by', sa.String(36), nullable=True),
        sa.Column('status', sa.String(16), default='pending'),
        sa.Column('triggered_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('locations_processed', sa.Integer, default=0),
        sa.Column('reviews_inserted', sa.Integer, default=0),
        sa.Column('error_message', sa.Text, nullable=True),
        sa.Column('completed_at', sa.DateTime, nullable=True),
    )
    op.create_index(
        'ix_fetch_log_company_triggered', 'review_fetch_call_logs',
        ['company_id', sa.text('triggered_at DESC')],
    )

    op.create_table(
        'llm_rate_limit_log',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_llm_rate_limit_log_created_at', 'llm_rate_limit_log', ['created_at'])

    op.create_table(
        'sync_logs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('platform_connection_id', sa.String(36), sa.ForeignKey('platform_connections.id'), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('reviews_fetched', sa.Integer, default=0),
        sa.Column('reviews_new', sa.Integer, default=0),
        sa.Column('reviews_updated', sa.Integer, default=0),
        sa.Column('error_message', sa.Text, nullable=True),
        sa.Column('started_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime, nullable=True),
    )
    op.create_index('ix_sync_logs_platform_connection_id', 'sync_logs', ['platform_connection_id'])


def downgrade() -> None:
    """Drop pipeline tables in dependency order."""
    op.drop_table('sync_logs')
    op.drop_table('llm_rate_limit_log')
    op.drop_table('review_fetch_call_logs')
    op.drop_table('review_topics')
    op.drop_table('review_keywords')
    op.drop_table('topics')
    op.drop_table('keywords')
    op.drop_table('sentiment_analysis')
    op.drop_table('reviews')
    op.drop_table('platform_connections')
    op.drop_table('platforms')
    op.drop_table('locations')
    op.drop_table('companies')
    op.drop_table('users')
