"""add artists, smartlinks and platform_clicks tables

Revision ID: smartlinks_001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = 'smartlinks_001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'artists',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False, unique=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_artists_slug', 'artists', ['slug'], unique=True)

    op.create_table(
        'smartlinks',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('artist_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('artists.id'), nullable=False),
        sa.Column('slug', sa.String(150), nullable=False),
        sa.Column('track_title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('cover_image_url', sa.Text(), nullable=True),
        sa.Column('platform_links', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('tracking_config', postgresql.JSONB(), nullable=True),
        sa.Column('status', sa.String(20), server_default='published'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_smartlinks_slug', 'smartlinks', ['slug'], unique=True)

    op.create_table(
        'platform_clicks',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('smartlink_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('smartlinks.id'), nullable=False),
        sa.Column('platform_key', sa.String(50), nullable=False),
        sa.Column('destination_url', sa.Text(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=True),
        sa.Column('reported_position', sa.Integer(), nullable=True),
        sa.Column('order_source', sa.String(20), nullable=True),
        sa.Column('ab_test_variant', sa.String(40), nullable=True),
        sa.Column('country_code', sa.String(2), nullable=True),
        sa.Column('location_source', sa.String(20), nullable=True),
        sa.Column('vendors', postgresql.JSONB(), nullable=True),
        sa.Column('is_duplicate', sa.Boolean(), server_default='false'),
        sa.Column('risk_score', sa.Float(), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_platform_clicks_smartlink_id', 'platform_clicks', ['smartlink_id'])
    op.create_index('ix_platform_clicks_created_at', 'platform_clicks', ['created_at'])
    op.create_index('ix_platform_clicks_smartlink_platform', 'platform_clicks', ['smartlink_id', 'platform_key'])


def downgrade() -> None:
    op.drop_index('ix_platform_clicks_smartlink_platform')
    op.drop_index('ix_platform_clicks_created_at')
    op.drop_index('ix_platform_clicks_smartlink_id')
    op.drop_table('platform_clicks')
    op.drop_index('ix_smartlinks_slug')
    op.drop_table('smartlinks')
    op.drop_index('ix_artists_slug')
    op.drop_table('artists')
