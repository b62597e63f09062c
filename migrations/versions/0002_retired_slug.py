"""0002 retired slug tombstones

Revision ID: 0002_retired_slug
Revises: 0001_initial_schema
Create Date: 2026-10-20 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0002_retired_slug'
down_revision = '0001_initial_schema'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'retired_slug',
        sa.Column('slug', sa.String(length=100), nullable=False),
        sa.Column('report_id', sa.String(length=32), nullable=False),
        sa.Column('retired_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('slug'),
    )
    with op.batch_alter_table('retired_slug', schema=None) as batch_op:
        batch_op.create_index('ix_retired_slug_report_id', ['report_id'], unique=False)


def downgrade():
    with op.batch_alter_table('retired_slug', schema=None) as batch_op:
        batch_op.drop_index('ix_retired_slug_report_id')
    op.drop_table('retired_slug')
