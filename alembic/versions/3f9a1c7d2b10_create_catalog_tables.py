"""create_catalog_tables

Revision ID: 3f9a1c7d2b10
Revises:
Create Date: 2026-10-17 09:12:44.318207

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from pgvector.sqlalchemy import Vector


# revision identifiers, used by Alembic.
revision: str = '3f9a1c7d2b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EMBEDDING_DIMENSIONS = 1536


def upgrade() -> None:
    """Upgrade schema."""
    op.execute('CREATE EXTENSION IF NOT EXISTS vector')

    op.create_table('mbs_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('item_number', sa.Integer(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('short_description', sa.String(length=255), nullable=True),
        sa.Column('category', sa.String(), nullable=True),
        sa.Column('sub_category', sa.String(), nullable=True),
        sa.Column('group_name', sa.String(), nullable=True),
        sa.Column('sub_group', sa.String(), nullable=True),
        sa.Column('provider_type', sa.String(length=10), nullable=True),
        sa.Column('service_type', sa.String(), nullable=True),
        sa.Column('schedule_fee', sa.Numeric(10, 2), nullable=True),
        sa.Column('benefit_75', sa.Numeric(10, 2), nullable=True),
        sa.Column('benefit_85', sa.Numeric(10, 2), nullable=True),
        sa.Column('benefit_100', sa.Numeric(10, 2), nullable=True),
        sa.Column('has_anaesthetic', sa.Boolean(), nullable=False),
        sa.Column('anaesthetic_basic_units', sa.Integer(), nullable=True),
        sa.Column('derived_fee_description', sa.Text(), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('tsv', postgresql.TSVECTOR(), nullable=True),
        sa.Column('embedding', Vector(EMBEDDING_DIMENSIONS), nullable=True),
        sa.Column('raw_xml_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('embedded_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('lexical_indexed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('last_updated', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('item_number'),
        comment='Canonical MBS catalog; tsv and embedding are derived columns'
    )
    op.create_index('ix_mbs_items_tsv', 'mbs_items', ['tsv'], postgresql_using='gin')
    op.create_index(
        'ix_mbs_items_embedding', 'mbs_items', ['embedding'],
        postgresql_using='hnsw',
        postgresql_with={'m': 16, 'ef_construction': 64},
        postgresql_ops={'embedding': 'vector_cosine_ops'},
    )
    op.create_index('ix_mbs_items_provider_type', 'mbs_items', ['provider_type'])
    op.create_index('ix_mbs_items_category', 'mbs_items', ['category'])
    op.create_index('ix_mbs_items_is_active', 'mbs_items', ['is_active'])
    op.create_index('ix_mbs_items_schedule_fee', 'mbs_items', ['schedule_fee'])

    op.create_table('mbs_ingestion_runs',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('file_name', sa.String(), nullable=False),
        sa.Column('file_hash', sa.String(length=64), nullable=False),
        sa.Column('file_size', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, comment='processing | completed | failed'),
        sa.Column('items_processed', sa.Integer(), nullable=False),
        sa.Column('items_inserted', sa.Integer(), nullable=False),
        sa.Column('items_updated', sa.Integer(), nullable=False),
        sa.Column('items_failed', sa.Integer(), nullable=False),
        sa.Column('started_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('completed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('processing_time_ms', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('error_details', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('processor_version', sa.String(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_mbs_ingestion_runs_file_hash', 'mbs_ingestion_runs', ['file_hash'])
    op.create_index('ix_mbs_ingestion_runs_status_started', 'mbs_ingestion_runs', ['status', 'started_at'])

    op.create_table('catalog_jobs',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('kind', sa.String(), nullable=False, comment='ingest | embed | reindex'),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('state', sa.String(), nullable=False, comment='queued | active | completed | failed | cancelled'),
        sa.Column('parent_job_id', sa.UUID(), nullable=True),
        sa.Column('max_attempts', sa.Integer(), nullable=False),
        sa.Column('initial_backoff_seconds', sa.Float(), nullable=False),
        sa.Column('backoff_coefficient', sa.Float(), nullable=False),
        sa.Column('max_backoff_seconds', sa.Float(), nullable=False),
        sa.Column('attempts_made', sa.Integer(), nullable=False),
        sa.Column('progress', sa.Integer(), nullable=False),
        sa.Column('cancel_requested', sa.Boolean(), nullable=False),
        sa.Column('result', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('temporal_workflow_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('processed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('finished_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        comment='Job queue backend with parent to child dependencies'
    )
    op.create_index('ix_catalog_jobs_parent_job_id', 'catalog_jobs', ['parent_job_id'])
    op.create_index('ix_catalog_jobs_state_priority', 'catalog_jobs', ['state', 'priority', 'created_at'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_catalog_jobs_state_priority', table_name='catalog_jobs')
    op.drop_index('ix_catalog_jobs_parent_job_id', table_name='catalog_jobs')
    op.drop_table('catalog_jobs')
    op.drop_index('ix_mbs_ingestion_runs_status_started', table_name='mbs_ingestion_runs')
    op.drop_index('ix_mbs_ingestion_runs_file_hash', table_name='mbs_ingestion_runs')
    op.drop_table('mbs_ingestion_runs')
    op.drop_index('ix_mbs_items_schedule_fee', table_name='mbs_items')
    op.drop_index('ix_mbs_items_is_active', table_name='mbs_items')
    op.drop_index('ix_mbs_items_category', table_name='mbs_items')
    op.drop_index('ix_mbs_items_provider_type', table_name='mbs_items')
    op.drop_index('ix_mbs_items_embedding', table_name='mbs_items')
    op.drop_index('ix_mbs_items_tsv', table_name='mbs_items')
    op.drop_table('mbs_items')
