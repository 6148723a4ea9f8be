"""Add change feed outbox, consumer checkpoints, dead letters and retroactive jobs

Revision ID: 004
Revises: 003
Create Date: 2026-09-28

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '004'
down_revision = '003'
branch_labels = None
depends_on = None


def upgrade():
    """Create edge_changes, stream_checkpoints, dead_letters and retroactive_jobs"""
    op.create_table(
        'edge_changes',
        sa.Column('seq', sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column('edge_id', sa.String(36), nullable=False, unique=True),
        sa.Column('recipient_id', sa.String(36), nullable=False),
        sa.Column('content_id', sa.String(36), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sqlite_autoincrement=True,
    )

    op.create_table(
        'stream_checkpoints',
        sa.Column('consumer', sa.String(100), primary_key=True, nullable=False),
        sa.Column('last_seq', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'dead_letters',
        sa.Column('id', sa.String(36), primary_key=True, nullable=False),
        sa.Column('consumer', sa.String(100), nullable=False),
        sa.Column('seq', sa.Integer(), nullable=False),
        sa.Column('edge_id', sa.String(36), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        'idx_dead_letters_consumer_resolved', 'dead_letters', ['consumer', 'resolved_at'], unique=False
    )

    op.create_table(
        'retroactive_jobs',
        sa.Column('id', sa.String(36), primary_key=True, nullable=False),
        sa.Column('friendship_id', sa.String(36), sa.ForeignKey('friendships.id'), nullable=False),
        sa.Column('owner_id', sa.String(36), nullable=False),
        sa.Column('trusted_user_id', sa.String(36), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('last_face_identity_id', sa.String(36), nullable=True),
        sa.Column('identities_scanned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('identities_resolved', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('grants_created', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('idx_retroactive_jobs_friendship', 'retroactive_jobs', ['friendship_id'], unique=False)
    op.create_index('idx_retroactive_jobs_status', 'retroactive_jobs', ['status'], unique=False)


def downgrade():
    """Drop pipeline bookkeeping tables"""
    op.drop_index('idx_retroactive_jobs_status', 'retroactive_jobs')
    op.drop_index('idx_retroactive_jobs_friendship', 'retroactive_jobs')
    op.drop_table('retroactive_jobs')
    op.drop_index('idx_dead_letters_consumer_resolved', 'dead_letters')
    op.drop_table('dead_letters')
    op.drop_table('stream_checkpoints')
    op.drop_table('edge_changes')
