"""Add users, shared events and content tables

Revision ID: 001
Revises:
Create Date: 2026-09-14

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create users, events, event_members and content"""
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True, nullable=False),
        sa.Column('username', sa.String(50), nullable=False),
        sa.Column('display_name', sa.String(100), nullable=True),
        sa.Column('phone_number', sa.String(32), nullable=True),
        sa.Column('profile_photo_key', sa.String(512), nullable=True),
        sa.Column('enrolled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)
    op.create_index('ix_users_phone_number', 'users', ['phone_number'], unique=False)

    op.create_table(
        'events',
        sa.Column('id', sa.String(36), primary_key=True, nullable=False),
        sa.Column('owner_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('event_date', sa.Date(), nullable=True),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ends_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_events_owner_id', 'events', ['owner_id'], unique=False)

    op.create_table(
        'event_members',
        sa.Column('id', sa.String(36), primary_key=True, nullable=False),
        sa.Column('event_id', sa.String(36), sa.ForeignKey('events.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('invited_by_id', sa.String(36), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('joined_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('event_id', 'user_id', name='uq_event_member'),
    )
    op.create_index('idx_event_members_user_status', 'event_members', ['user_id', 'status'], unique=False)

    op.create_table(
        'content',
        sa.Column('id', sa.String(36), primary_key=True, nullable=False),
        sa.Column('owner_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('object_key', sa.String(512), nullable=False, unique=True),
        sa.Column('thumbnail_key', sa.String(512), nullable=True),
        sa.Column('media_type', sa.String(10), nullable=False, server_default='photo'),
        sa.Column('event_id', sa.String(36), sa.ForeignKey('events.id', ondelete='SET NULL'), nullable=True),
        sa.Column('processing_status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('processing_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('idx_content_owner_created', 'content', ['owner_id', 'created_at'], unique=False)
    op.create_index('idx_content_event_created', 'content', ['event_id', 'created_at'], unique=False)
    op.create_index('idx_content_status', 'content', ['processing_status'], unique=False)
    op.create_index('idx_content_deleted', 'content', ['deleted_at'], unique=False)


def downgrade():
    """Drop content, event and user tables"""
    op.drop_index('idx_content_deleted', 'content')
    op.drop_index('idx_content_status', 'content')
    op.drop_index('idx_content_event_created', 'content')
    op.drop_index('idx_content_owner_created', 'content')
    op.drop_table('content')
    op.drop_index('idx_event_members_user_status', 'event_members')
    op.drop_table('event_members')
    op.drop_index('ix_events_owner_id', 'events')
    op.drop_table('events')
    op.drop_index('ix_users_phone_number', 'users')
    op.drop_index('ix_users_username', 'users')
    op.drop_table('users')
