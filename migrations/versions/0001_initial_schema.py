"""0001 initial report sharing schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'report',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('security_score', sa.Integer(), nullable=True),
        sa.Column('owner_id', sa.String(length=64), nullable=True),
        sa.Column('has_ai_analysis', sa.Boolean(), nullable=False),
        sa.Column('slug', sa.String(length=100), nullable=True),
        sa.Column('is_public', sa.Boolean(), nullable=False),
        sa.Column('custom_title', sa.String(length=255), nullable=True),
        sa.Column('custom_description', sa.Text(), nullable=True),
        sa.Column('og_image_url', sa.Text(), nullable=True),
        sa.Column('share_count', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('report', schema=None) as batch_op:
        batch_op.create_index('ix_report_slug', ['slug'], unique=True)
        batch_op.create_index('ix_report_owner_id', ['owner_id'], unique=False)
        batch_op.create_index('ix_report_created_at', ['created_at'], unique=False)
        batch_op.create_index('ix_report_public_created', ['is_public', 'created_at'], unique=False)

    op.create_table(
        'share_event',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('report_id', sa.String(length=32), nullable=False),
        sa.Column('share_method', sa.String(length=32), nullable=False),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('referrer', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['report_id'], ['report.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('share_event', schema=None) as batch_op:
        batch_op.create_index('ix_share_event_report_id', ['report_id'], unique=False)
        batch_op.create_index('ix_share_event_share_method', ['share_method'], unique=False)
        batch_op.create_index('ix_share_event_created_at', ['created_at'], unique=False)

    op.create_table(
        'report_view',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('report_id', sa.String(length=32), nullable=False),
        sa.Column('viewer_ip', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('referrer', sa.Text(), nullable=True),
        sa.Column('country', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['report_id'], ['report.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('report_view', schema=None) as batch_op:
        batch_op.create_index('ix_report_view_report_id', ['report_id'], unique=False)
        batch_op.create_index('ix_report_view_created_at', ['created_at'], unique=False)

    op.create_table(
        'feature_flag',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('feature_flag', schema=None) as batch_op:
        batch_op.create_index('ix_feature_flag_key', ['key'], unique=True)
        batch_op.create_index('ix_feature_flag_created_at', ['created_at'], unique=False)


def downgrade():
    with op.batch_alter_table('feature_flag', schema=None) as batch_op:
        batch_op.drop_index('ix_feature_flag_created_at')
        batch_op.drop_index('ix_feature_flag_key')
    op.drop_table('feature_flag')

    with op.batch_alter_table('report_view', schema=None) as batch_op:
        batch_op.drop_index('ix_report_view_created_at')
        batch_op.drop_index('ix_report_view_report_id')
    op.drop_table('report_view')

    with op.batch_alter_table('share_event', schema=None) as batch_op:
        batch_op.drop_index('ix_share_event_created_at')
        batch_op.drop_index('ix_share_event_share_method')
        batch_op.drop_index('ix_share_event_report_id')
    op.drop_table('share_event')

    with op.batch_alter_table('report', schema=None) as batch_op:
        batch_op.drop_index('ix_report_public_created')
        batch_op.drop_index('ix_report_created_at')
        batch_op.drop_index('ix_report_owner_id')
        batch_op.drop_index('ix_report_slug')
    op.drop_table('report')
