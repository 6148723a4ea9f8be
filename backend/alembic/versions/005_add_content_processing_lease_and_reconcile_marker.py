"""Add processing lease start and grant reconciliation marker to content

Revision ID: 005
Revises: 004
Create Date: 2026-10-17

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '005'
down_revision = '004'
branch_labels = None
depends_on = None


def upgrade():
    """Add content.processing_started_at and content.grants_reconciled_at"""
    op.add_column('content', sa.Column('processing_started_at', sa.DateTime(timezone=True), nullable=True))
    op.add_column('content', sa.Column('grants_reconciled_at', sa.DateTime(timezone=True), nullable=True))


def downgrade():
    """Remove the lease and reconciliation columns"""
    op.drop_column('content', 'grants_reconciled_at')
    op.drop_column('content', 'processing_started_at')
