"""initial journal schema

Revision ID: 001
Revises:
Create Date: 2024-06-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    op.create_table(
        'workout',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('external_id', sa.Text(), nullable=True),
        sa.Column('source', sa.Text(), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('type', sa.Text(), nullable=False),
        sa.Column('calories', sa.Float(), nullable=True),
        sa.Column('distance_km', sa.Float(), nullable=True),
        sa.Column('avg_heart_rate', sa.Float(), nullable=True),
        sa.Column('device', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    # Natural keys: external id when present, otherwise the time window + type.
    op.create_index(
        'uq_workout_source_external_id', 'workout', ['source', 'external_id'], unique=True,
        sqlite_where=sa.text('external_id IS NOT NULL'),
        postgresql_where=sa.text('external_id IS NOT NULL'),
    )
    op.create_index(
        'uq_workout_source_window_type', 'workout', ['source', 'start_time', 'end_time', 'type'], unique=True,
        sqlite_where=sa.text('external_id IS NULL'),
        postgresql_where=sa.text('external_id IS NULL'),
    )
    op.create_index('ix_workout_start_time', 'workout', ['start_time'])

    op.create_table(
        'daily_metric',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('date_iso', sa.Date(), nullable=False),
        sa.Column('source', sa.Text(), nullable=False),
        sa.Column('steps', sa.Integer(), nullable=True),
        sa.Column('sleep_hours', sa.Float(), nullable=True),
        sa.Column('avg_bpm', sa.Float(), nullable=True),
        sa.Column('calories_burned', sa.Float(), nullable=True),
        sa.Column('sleep_stages', JSON_TYPE, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('uq_daily_metric_source_date', 'daily_metric', ['source', 'date_iso'], unique=True)
    op.create_index('ix_daily_metric_date_iso', 'daily_metric', ['date_iso'])

    op.create_table(
        'lift_entry',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Text(), nullable=False),
        sa.Column('date_iso', sa.Date(), nullable=False),
        sa.Column('lift', sa.Text(), nullable=False),
        sa.Column('weight_kg', sa.Float(), nullable=False),
        sa.Column('reps', sa.Integer(), nullable=False),
        sa.Column('rpe', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_lift_entry_user_id', 'lift_entry', ['user_id'])

    op.create_table(
        'cardio_entry',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Text(), nullable=False),
        sa.Column('date_iso', sa.Date(), nullable=False),
        sa.Column('machine', sa.Text(), nullable=False),
        sa.Column('seconds', sa.Integer(), nullable=False),
        sa.Column('calories', sa.Float(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_cardio_entry_user_id', 'cardio_entry', ['user_id'])

    op.create_table(
        'run_entry',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Text(), nullable=False),
        sa.Column('date_iso', sa.Date(), nullable=False),
        sa.Column('distance_meters', sa.Float(), nullable=False),
        sa.Column('input_type', sa.Text(), nullable=False),
        sa.Column('time_seconds', sa.Float(), nullable=False),
        sa.Column('pace_sec_per_km', sa.Float(), nullable=False),
        sa.Column('rounds', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_run_entry_user_id', 'run_entry', ['user_id'])

    op.create_table(
        'strava_connection',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Text(), nullable=False, unique=True),
        sa.Column('athlete_id', sa.BigInteger(), nullable=False),
        sa.Column('athlete_name', sa.Text(), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('refresh_token', sa.Text(), nullable=False),
        sa.Column('expires_at', sa.BigInteger(), nullable=False),
        sa.Column('scope', sa.Text(), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('connected_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        'strava_activity',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column('user_id', sa.Text(), nullable=False),
        sa.Column('type', sa.Text(), nullable=True),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('timezone', sa.Text(), nullable=True),
        sa.Column('moving_time', sa.Integer(), nullable=True),
        sa.Column('elapsed_time', sa.Integer(), nullable=True),
        sa.Column('distance_m', sa.Float(), nullable=True),
        sa.Column('calories', sa.Float(), nullable=True),
        sa.Column('average_heartrate', sa.Float(), nullable=True),
        sa.Column('max_heartrate', sa.Float(), nullable=True),
        sa.Column('average_speed', sa.Float(), nullable=True),
        sa.Column('max_speed', sa.Float(), nullable=True),
        sa.Column('total_elevation_gain', sa.Float(), nullable=True),
        sa.Column('source', sa.Text(), nullable=False, server_default='strava'),
        sa.Column('raw', JSON_TYPE, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_strava_activity_user_id', 'strava_activity', ['user_id'])
    op.create_index('ix_strava_activity_user_start', 'strava_activity', ['user_id', 'start_date'])


def downgrade() -> None:
    op.drop_table('strava_activity')
    op.drop_table('strava_connection')
    op.drop_table('run_entry')
    op.drop_table('cardio_entry')
    op.drop_table('lift_entry')
    op.drop_table('daily_metric')
    op.drop_table('workout')
