"""initial schema: users, links, clicks, saved views, annotations

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '0001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), 'postgresql')


def upgrade() -> None:
    # --- Users ---
    op.create_table('users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=100), nullable=False),
        sa.Column('email_verified', sa.Boolean(), nullable=False),
        sa.Column('verify_code', sa.String(length=6), nullable=True),
        sa.Column('verify_code_expires', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reset_code', sa.String(length=6), nullable=True),
        sa.Column('reset_code_expires', sa.DateTime(timezone=True), nullable=True),
        sa.Column('role', sa.String(length=10), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)
    op.create_index(op.f('ix_users_email_verified'), 'users', ['email_verified'], unique=False)
    op.create_index(op.f('ix_users_role'), 'users', ['role'], unique=False)

    # --- Links ---
    op.create_table('links',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('owner_id', sa.Uuid(), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('long_url', sa.Text(), nullable=False),
        sa.Column('domain', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('password_hash', sa.String(length=100), nullable=True),
        sa.Column('max_clicks', sa.Integer(), nullable=False),
        sa.Column('clicks_count', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=True),
        sa.Column('favicon', sa.Text(), nullable=True),
        sa.Column('notes', sa.String(length=1000), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_links_owner_id'), 'links', ['owner_id'], unique=False)
    op.create_index(op.f('ix_links_code'), 'links', ['code'], unique=True)

    # --- Clicks (append-only) ---
    op.create_table('clicks',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('link_id', sa.Uuid(), nullable=False),
        sa.Column('ts', sa.DateTime(timezone=True), nullable=False),
        sa.Column('referer', sa.Text(), nullable=True),
        sa.Column('country', sa.String(length=8), nullable=True),
        sa.Column('ua', sa.Text(), nullable=True),
        sa.Column('device', sa.String(length=20), nullable=True),
        sa.Column('browser', sa.String(length=50), nullable=True),
        sa.Column('ip_hash', sa.String(length=32), nullable=True),
        sa.Column('tz_offset', sa.Integer(), nullable=True),
        sa.Column('utm_source', sa.String(length=64), nullable=True),
        sa.Column('utm_medium', sa.String(length=64), nullable=True),
        sa.Column('utm_campaign', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['link_id'], ['links.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_clicks_link_id'), 'clicks', ['link_id'], unique=False)
    op.create_index(op.f('ix_clicks_ts'), 'clicks', ['ts'], unique=False)
    op.create_index('ix_clicks_link_ts', 'clicks', ['link_id', 'ts'], unique=False)

    # --- Saved views ---
    op.create_table('saved_views',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('owner_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('range', sa.String(length=3), nullable=False),
        sa.Column('compare', sa.Boolean(), nullable=False),
        sa.Column('filters', JSONType, nullable=True),
        sa.Column('breakdown', sa.String(length=10), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_saved_views_owner_id'), 'saved_views', ['owner_id'], unique=False)

    # --- Annotations ---
    op.create_table('annotations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('owner_id', sa.Uuid(), nullable=False),
        sa.Column('scope', sa.String(length=50), nullable=False),
        sa.Column('ts', sa.DateTime(timezone=True), nullable=False),
        sa.Column('label', sa.String(length=200), nullable=False),
        sa.Column('color', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_annotations_owner_id'), 'annotations', ['owner_id'], unique=False)
    op.create_index(op.f('ix_annotations_ts'), 'annotations', ['ts'], unique=False)


def downgrade() -> None:
    op.drop_table('annotations')
    op.drop_table('saved_views')
    op.drop_table('clicks')
    op.drop_table('links')
    op.drop_table('users')
