"""create reports table

Revision ID: 3f1c9a2d7b10
Revises:
Create Date: 2026-10-19 09:12:44.118203
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f1c9a2d7b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

report_status = sa.Enum('pending', 'in_progress', 'completed', name='report_status')


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'reports',
        sa.Column('id', sa.String(length=36), primary_key=True, nullable=False),
        sa.Column('reporter_id', sa.String(length=64), nullable=False),
        sa.Column('latitude', sa.Float, nullable=False),
        sa.Column('longitude', sa.Float, nullable=False),
        sa.Column('location_name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('image_url', sa.String, nullable=True),
        sa.Column('status', report_status, nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_reports_id', 'reports', ['id'])
    op.create_index('ix_reports_reporter_id', 'reports', ['reporter_id'])
    op.create_index('ix_reports_created_at', 'reports', ['created_at'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_reports_created_at', table_name='reports')
    op.drop_index('ix_reports_reporter_id', table_name='reports')
    op.drop_index('ix_reports_id', table_name='reports')
    op.drop_table('reports')
    report_status.drop(op.get_bind(), checkfirst=True)
