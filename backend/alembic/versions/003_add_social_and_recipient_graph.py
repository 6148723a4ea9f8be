"""Add friendships, recipient edges and feed entries

Revision ID: 003
Revises: 002
Create Date: 2026-09-21

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '003'
down_revision = '002'
branch_labels = None
depends_on = None


def upgrade():
    """Create friendships, recipient_edges and feed_entries"""
    op.create_table(
        'friendships',
        sa.Column('id', sa.String(36), primary_key=True, nullable=False),
        sa.Column('user_a_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('user_b_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('requester_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('retroactive_completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('user_a_id', 'user_b_id', name='uq_friendship_pair'),
        sa.CheckConstraint('user_a_id < user_b_id', name='ck_friendship_canonical_order'),
    )
    op.create_index('idx_friendships_user_a_status', 'friendships', ['user_a_id', 'status'], unique=False)
    op.create_index('idx_friendships_user_b_status', 'friendships', ['user_b_id', 'status'], unique=False)

    op.create_table(
        'recipient_edges',
        sa.Column('id', sa.String(36), primary_key=True, nullable=False),
        sa.Column('content_id', sa.String(36), sa.ForeignKey('content.id'), nullable=False),
        sa.Column('recipient_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('content_owner_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('method', sa.String(20), nullable=False),
        sa.Column('confidence', sa.Integer(), nullable=False),
        sa.Column('provenance', sa.String(20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('content_id', 'recipient_id', 'method', name='uq_recipient_edge_grant'),
        sa.CheckConstraint('confidence >= 0 AND confidence <= 100', name='ck_recipient_edge_confidence'),
    )
    op.create_index(
        'idx_recipient_edges_recipient_created', 'recipient_edges', ['recipient_id', 'created_at'], unique=False
    )
    op.create_index(
        'idx_recipient_edges_content_recipient', 'recipient_edges', ['content_id', 'recipient_id'], unique=False
    )
    op.create_index(
        'idx_recipient_edges_owner_recipient', 'recipient_edges', ['content_owner_id', 'recipient_id'], unique=False
    )

    op.create_table(
        'feed_entries',
        sa.Column('id', sa.String(36), primary_key=True, nullable=False),
        sa.Column('recipient_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('content_id', sa.String(36), sa.ForeignKey('content.id'), nullable=False),
        sa.Column('content_owner_id', sa.String(36), nullable=False),
        sa.Column('object_key', sa.String(512), nullable=False),
        sa.Column('thumbnail_key', sa.String(512), nullable=True),
        sa.Column('media_type', sa.String(10), nullable=False),
        sa.Column('content_created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('edge_id', sa.String(36), nullable=False),
        sa.Column('edge_created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('method', sa.String(20), nullable=False),
        sa.Column('confidence', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('recipient_id', 'content_id', name='uq_feed_entry_recipient_content'),
    )
    op.create_index(
        'idx_feed_entries_recipient_edge_created', 'feed_entries', ['recipient_id', 'edge_created_at'], unique=False
    )
    op.create_index('idx_feed_entries_content', 'feed_entries', ['content_id'], unique=False)


def downgrade():
    """Drop feed, recipient graph and friendship tables"""
    op.drop_index('idx_feed_entries_content', 'feed_entries')
    op.drop_index('idx_feed_entries_recipient_edge_created', 'feed_entries')
    op.drop_table('feed_entries')
    op.drop_index('idx_recipient_edges_owner_recipient', 'recipient_edges')
    op.drop_index('idx_recipient_edges_content_recipient', 'recipient_edges')
    op.drop_index('idx_recipient_edges_recipient_created', 'recipient_edges')
    op.drop_table('recipient_edges')
    op.drop_index('idx_friendships_user_b_status', 'friendships')
    op.drop_index('idx_friendships_user_a_status', 'friendships')
    op.drop_table('friendships')
