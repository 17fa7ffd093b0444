"""create trace ledger tables

Revision ID: 4e7a1b9c2d30
Revises:
Create Date: 2026-10-18 09:12:44.102931

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4e7a1b9c2d30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # users table
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('state', sa.String(length=128), nullable=True),
        sa.Column('district', sa.String(length=128), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email')
    )
    op.create_index('idx_users_role', 'users', ['role'], unique=False)

    # audit_events table
    op.create_table(
        'audit_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('request_id', sa.String(length=64), nullable=True),
        sa.Column('client_ip', sa.String(length=64), nullable=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('actor_role', sa.String(length=32), nullable=True),
        sa.Column('action', sa.String(length=128), nullable=False),
        sa.Column('entity_type', sa.String(length=128), nullable=True),
        sa.Column('entity_id', sa.String(length=128), nullable=True),
        sa.Column('reason', sa.String(length=512), nullable=True),
        sa.Column('metadata_json', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['actor_user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_audit_events_entity', 'audit_events', ['entity_type', 'entity_id'], unique=False)

    # batches table
    op.create_table(
        'batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('trace_id', sa.String(length=64), nullable=False),
        sa.Column('batch_id', sa.String(length=64), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Numeric(precision=14, scale=3), nullable=False),
        sa.Column('quantity_unit', sa.String(length=16), nullable=False),
        sa.Column('producer_id', sa.Integer(), nullable=False),
        sa.Column('production_timestamp', sa.DateTime(), nullable=False),
        sa.Column('location_state', sa.String(length=128), nullable=False),
        sa.Column('location_district', sa.String(length=128), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_batches_quantity_positive'),
        sa.ForeignKeyConstraint(['producer_id'], ['users.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('trace_id'),
        sa.UniqueConstraint('batch_id')
    )
    op.create_index('idx_batches_producer', 'batches', ['producer_id'], unique=False)
    op.create_index('idx_batches_production_timestamp', 'batches', ['production_timestamp'], unique=False)

    # media table
    op.create_table(
        'media',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('trace_id', sa.String(length=64), nullable=False),
        sa.Column('media_type', sa.String(length=32), nullable=False),
        sa.Column('url', sa.String(length=1024), nullable=False),
        sa.Column('storage_key', sa.String(length=512), nullable=False),
        sa.Column('original_filename', sa.String(length=255), nullable=True),
        sa.Column('content_type', sa.String(length=128), nullable=False),
        sa.Column('sha256', sa.String(length=64), nullable=False),
        sa.Column('size_bytes', sa.Integer(), nullable=False),
        sa.Column('captured_at', sa.DateTime(), nullable=False),
        sa.Column('uploaded_by_user_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['trace_id'], ['batches.trace_id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['uploaded_by_user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('storage_key')
    )
    op.create_index('idx_media_trace', 'media', ['trace_id'], unique=False)
    op.create_index('idx_media_type', 'media', ['media_type'], unique=False)

    # activities table
    op.create_table(
        'activities',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('trace_id', sa.String(length=64), nullable=False),
        sa.Column('actor_role', sa.String(length=32), nullable=False),
        sa.Column('actor_id', sa.Integer(), nullable=False),
        sa.Column('activity_type', sa.String(length=64), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('extra_data', sa.JSON(), nullable=False),
        sa.Column('submission_id', sa.String(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['trace_id'], ['batches.trace_id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['actor_id'], ['users.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_activities_trace_ts', 'activities', ['trace_id', 'timestamp'], unique=False)
    op.create_index('idx_activities_actor', 'activities', ['actor_id'], unique=False)
    op.create_index('idx_activities_type', 'activities', ['activity_type'], unique=False)
    op.create_index('idx_activities_submission', 'activities', ['submission_id'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_activities_submission', table_name='activities')
    op.drop_index('idx_activities_type', table_name='activities')
    op.drop_index('idx_activities_actor', table_name='activities')
    op.drop_index('idx_activities_trace_ts', table_name='activities')
    op.drop_table('activities')
    op.drop_index('idx_media_type', table_name='media')
    op.drop_index('idx_media_trace', table_name='media')
    op.drop_table('media')
    op.drop_index('idx_batches_production_timestamp', table_name='batches')
    op.drop_index('idx_batches_producer', table_name='batches')
    op.drop_table('batches')
    op.drop_index('idx_audit_events_entity', table_name='audit_events')
    op.drop_table('audit_events')
    op.drop_index('idx_users_role', table_name='users')
    op.drop_table('users')
