"""monitored targets, query records, snapshots, events and suggestions

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'monitored_targets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('owner', sa.String(length=128), nullable=False, server_default='', index=True),
        sa.Column('host', sa.String(length=255), nullable=False),
        sa.Column('port', sa.Integer(), nullable=False, server_default='5432'),
        sa.Column('database_name', sa.String(length=128), nullable=False),
        sa.Column('username', sa.String(length=128), nullable=False),
        sa.Column('password_encrypted', sa.Text(), nullable=False),
        sa.Column('db_type', sa.String(length=32), nullable=False, server_default='postgresql'),
        sa.Column('monitoring_enabled', sa.Boolean(), nullable=False, server_default=sa.false(), index=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    )
    op.create_index('ix_target_owner_host_db', 'monitored_targets', ['owner', 'host', 'port', 'database_name'], unique=True)

    op.create_table(
        'query_records',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('target_id', sa.Integer(), sa.ForeignKey('monitored_targets.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('query_text', sa.Text(), nullable=False),
        sa.Column('query_hash', sa.String(length=64), nullable=False),
        sa.Column('calls', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_time_ms', sa.Float(), nullable=False, server_default='0'),
        sa.Column('mean_time_ms', sa.Float(), nullable=False, server_default='0', index=True),
        sa.Column('min_time_ms', sa.Float(), nullable=False, server_default='0'),
        sa.Column('max_time_ms', sa.Float(), nullable=False, server_default='0'),
        sa.Column('rows_returned', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('statement_type', sa.String(length=16), nullable=False, server_default='OTHER'),
        sa.Column('table_name', sa.String(length=255), nullable=True),
        sa.Column('alerts_enabled', sa.Boolean(), nullable=False, server_default=sa.false(), index=True),
        sa.Column('collected_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, index=True),
    )
    op.create_index('ix_query_record_identity', 'query_records', ['target_id', 'query_hash'], unique=True)

    op.create_table(
        'table_snapshots',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('target_id', sa.Integer(), sa.ForeignKey('monitored_targets.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('schema_name', sa.String(length=128), nullable=False, server_default='public'),
        sa.Column('table_name', sa.String(length=255), nullable=False),
        sa.Column('columns', sa.JSON(), nullable=False),
        sa.Column('primary_keys', sa.JSON(), nullable=False),
        sa.Column('foreign_keys', sa.JSON(), nullable=False),
        sa.Column('indexes', sa.JSON(), nullable=False),
        sa.Column('row_count', sa.BigInteger(), nullable=True),
        sa.Column('captured_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, index=True),
    )
    op.create_index('ix_table_snapshot_identity', 'table_snapshots', ['target_id', 'schema_name', 'table_name'], unique=True)

    op.create_table(
        'table_usage',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('target_id', sa.Integer(), sa.ForeignKey('monitored_targets.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('table_name', sa.String(length=255), nullable=False),
        sa.Column('call_count', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('last_used', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    )
    op.create_index('ix_table_usage_identity', 'table_usage', ['target_id', 'table_name'], unique=True)

    op.create_table(
        'critical_query_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('target_id', sa.Integer(), sa.ForeignKey('monitored_targets.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('query_hash', sa.String(length=64), nullable=False, index=True),
        sa.Column('query_text', sa.Text(), nullable=False),
        sa.Column('calls', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_time_ms', sa.Float(), nullable=False, server_default='0'),
        sa.Column('mean_time_ms', sa.Float(), nullable=False, server_default='0'),
        sa.Column('rows_returned', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('rank', sa.Integer(), nullable=False),
        sa.Column('detected_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, index=True),
    )
    op.create_index('ix_critical_event_target_ts', 'critical_query_events', ['target_id', 'detected_at'])

    op.create_table(
        'suggestion_sets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('target_id', sa.Integer(), sa.ForeignKey('monitored_targets.id', ondelete='CASCADE'), nullable=False, unique=True, index=True),
        sa.Column('suggestions', sa.JSON(), nullable=False),
        sa.Column('source', sa.String(length=16), nullable=False, server_default='ai'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, index=True),
    )


def downgrade():
    op.drop_table('suggestion_sets')
    op.drop_index('ix_critical_event_target_ts', table_name='critical_query_events')
    op.drop_table('critical_query_events')
    op.drop_index('ix_table_usage_identity', table_name='table_usage')
    op.drop_table('table_usage')
    op.drop_index('ix_table_snapshot_identity', table_name='table_snapshots')
    op.drop_table('table_snapshots')
    op.drop_index('ix_query_record_identity', table_name='query_records')
    op.drop_table('query_records')
    op.drop_index('ix_target_owner_host_db', table_name='monitored_targets')
    op.drop_table('monitored_targets')
