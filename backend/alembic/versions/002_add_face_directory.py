"""Add per-owner face directory

Revision ID: 002
Revises: 001
Create Date: 2026-09-16

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '002'
down_revision = '001'
branch_labels = None
depends_on = None


def upgrade():
    """Create face_identities and content_faces"""
    op.create_table(
        'face_identities',
        sa.Column('id', sa.String(36), primary_key=True, nullable=False),
        sa.Column('owner_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('signature_ref', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='UNKNOWN'),
        sa.Column('resolved_to_user_id', sa.String(36), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('resolved_confidence', sa.Integer(), nullable=True),
        sa.Column('first_seen_content_id', sa.String(36), nullable=False),
        sa.Column('last_seen_content_id', sa.String(36), nullable=False),
        sa.Column('detection_count', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('owner_id', 'signature_ref', name='uq_face_identity_owner_signature'),
    )
    op.create_index('idx_face_identities_owner_status', 'face_identities', ['owner_id', 'status'], unique=False)
    op.create_index(
        'idx_face_identities_owner_resolved', 'face_identities', ['owner_id', 'resolved_to_user_id'], unique=False
    )

    op.create_table(
        'content_faces',
        sa.Column('id', sa.String(36), primary_key=True, nullable=False),
        sa.Column('content_id', sa.String(36), sa.ForeignKey('content.id'), nullable=False),
        sa.Column('face_identity_id', sa.String(36), sa.ForeignKey('face_identities.id'), nullable=False),
        sa.Column('bounding_box', sa.Text(), nullable=False),  # JSON object
        sa.Column('confidence', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('idx_content_faces_content', 'content_faces', ['content_id', 'face_identity_id'], unique=False)
    op.create_index('idx_content_faces_identity', 'content_faces', ['face_identity_id', 'content_id'], unique=False)


def downgrade():
    """Drop face directory tables"""
    op.drop_index('idx_content_faces_identity', 'content_faces')
    op.drop_index('idx_content_faces_content', 'content_faces')
    op.drop_table('content_faces')
    op.drop_index('idx_face_identities_owner_resolved', 'face_identities')
    op.drop_index('idx_face_identities_owner_status', 'face_identities')
    op.drop_table('face_identities')
