"""ingest and approval tables

Revision ID: 5c2e81d0a7f4
Revises:
Create Date: 2026-10-19 09:12:44.318502

Existing databases created through create_all() (see main.py lifespan)
should be stamped with:

    alembic stamp head
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '5c2e81d0a7f4'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'ingest_runs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('month', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        sa.Column('message', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_ingest_runs_month', 'ingest_runs', ['month'])
    op.create_index('ix_ingest_runs_status', 'ingest_runs', ['status'])
    op.create_index('ix_ingest_runs_started_at', 'ingest_runs', ['started_at'])

    op.create_table(
        'source_values',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('ingest_run_id', sa.Integer(), nullable=False),
        sa.Column('source_name', sa.String(length=255), nullable=False),
        sa.Column('source_url', sa.Text(), nullable=False),
        sa.Column('value', sa.Float(), nullable=True),
        sa.Column('previous_value', sa.Float(), nullable=True),
        sa.Column('delta', sa.Float(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('carried_forward', sa.Boolean(), nullable=False),
        sa.Column('value_date', sa.Date(), nullable=True),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('approval_status', sa.String(length=20), nullable=False),
        sa.Column('approval_note', sa.Text(), nullable=True),
        sa.Column('approved_by', sa.String(length=255), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['ingest_run_id'], ['ingest_runs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_source_values_ingest_run_id', 'source_values', ['ingest_run_id'])
    op.create_index('ix_source_values_source_name', 'source_values', ['source_name'])
    op.create_index('ix_source_values_approval_status', 'source_values', ['approval_status'])

    op.create_table(
        'source_release_schedules',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('source_name', sa.String(length=255), nullable=False),
        sa.Column('advance_months', sa.Integer(), nullable=False),
        sa.Column('next_expected_release_date', sa.Date(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_source_release_schedules_source_name', 'source_release_schedules', ['source_name'], unique=True
    )

    op.create_table(
        'source_statistics',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('source_name', sa.String(length=255), nullable=False),
        sa.Column('weight', sa.Float(), nullable=True),
        sa.Column('mean', sa.Float(), nullable=True),
        sa.Column('stdev', sa.Float(), nullable=True),
        sa.Column('direction', sa.String(length=50), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_source_statistics_source_name', 'source_statistics', ['source_name'], unique=True)


def downgrade() -> None:
    op.drop_index('ix_source_statistics_source_name', table_name='source_statistics')
    op.drop_table('source_statistics')
    op.drop_index('ix_source_release_schedules_source_name', table_name='source_release_schedules')
    op.drop_table('source_release_schedules')
    op.drop_index('ix_source_values_approval_status', table_name='source_values')
    op.drop_index('ix_source_values_source_name', table_name='source_values')
    op.drop_index('ix_source_values_ingest_run_id', table_name='source_values')
    op.drop_table('source_values')
    op.drop_index('ix_ingest_runs_started_at', table_name='ingest_runs')
    op.drop_index('ix_ingest_runs_status', table_name='ingest_runs')
    op.drop_index('ix_ingest_runs_month', table_name='ingest_runs')
    op.drop_table('ingest_runs')
