from sqlalchemy import Column, Integer, BigInteger, Boolean, Float, Date, DateTime, Text, Index, JSON, Uuid, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator
from core.database import Base
import uuid
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime stored as UTC.

    Naive values are taken to be UTC. Values read back are always aware,
    including on SQLite which has no native timezone support.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# JSONB on Postgres, plain JSON (text) elsewhere.
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Workout(Base):
    """
    Canonical workout, one row per natural key.

    Natural key: (source, external_id) when the source supplies an id,
    otherwise (source, start_time, end_time, type).
    """
    __tablename__ = "workout"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    external_id = Column(Text, nullable=True)
    source = Column(Text, nullable=False)
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    type = Column(Text, nullable=False)
    calories = Column(Float, nullable=True)
    distance_km = Column(Float, nullable=True)
    avg_heart_rate = Column(Float, nullable=True)
    device = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index(
            "uq_workout_source_external_id",
            "source",
            "external_id",
            unique=True,
            sqlite_where=text("external_id IS NOT NULL"),
            postgresql_where=text("external_id IS NOT NULL"),
        ),
        Index(
            "uq_workout_source_window_type",
            "source",
            "start_time",
            "end_time",
            "type",
            unique=True,
            sqlite_where=text("external_id IS NULL"),
            postgresql_where=text("external_id IS NULL"),
        ),
        Index("ix_workout_start_time", "start_time"),
    )


class DailyMetric(Base):
    """Per-day health aggregates. First write wins per (source, date_iso)."""
    __tablename__ = "daily_metric"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    date_iso = Column(Date, nullable=False)
    source = Column(Text, nullable=False)
    steps = Column(Integer, nullable=True)
    sleep_hours = Column(Float, nullable=True)
    avg_bpm = Column(Float, nullable=True)
    calories_burned = Column(Float, nullable=True)
    # [{"stage": "Deep", "minutes": 62.0}, ...] or NULL when no sleep samples
    sleep_stages = Column(JSONType, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("uq_daily_metric_source_date", "source", "date_iso", unique=True),
        Index("ix_daily_metric_date_iso", "date_iso"),
    )


class LiftEntry(Base):
    """One top set per entry."""
    __tablename__ = "lift_entry"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    date_iso = Column(Date, nullable=False)
    lift = Column(Text, nullable=False)  # Deadlift, BackSquat, FrontSquat, BenchPress, InclineBenchPress
    weight_kg = Column(Float, nullable=False)
    reps = Column(Integer, nullable=False)
    rpe = Column(Float, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)


class CardioEntry(Base):
    __tablename__ = "cardio_entry"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    date_iso = Column(Date, nullable=False)
    machine = Column(Text, nullable=False)  # RowErg, BikeErg, SkiErg, AssaultBike
    seconds = Column(Integer, nullable=False)
    calories = Column(Float, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)


class RunEntry(Base):
    """
    Interval or single run.

    input_type says which of time_seconds / pace_sec_per_km the user typed;
    the other is derived once at entry time and stored as-is.
    """
    __tablename__ = "run_entry"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    date_iso = Column(Date, nullable=False)
    distance_meters = Column(Float, nullable=False)
    input_type = Column(Text, nullable=False)  # TIME or PACE
    time_seconds = Column(Float, nullable=False)
    pace_sec_per_km = Column(Float, nullable=False)
    rounds = Column(Integer, nullable=False, default=1)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)


class Profile(Base):
    """Per-user training preferences. Created on first update."""
    __tablename__ = "profile"

    user_id = Column(Text, primary_key=True)
    training_focus = Column(Text, nullable=True)  # STRENGTH, HYPERTROPHY, HYBRID
    onboarding_complete = Column(Boolean, default=False, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class StravaConnection(Base):
    """One Strava link per user. Tokens are Fernet-encrypted at rest."""
    __tablename__ = "strava_connection"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, unique=True)
    athlete_id = Column(BigInteger, nullable=False)
    athlete_name = Column(Text, nullable=True)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    expires_at = Column(BigInteger, nullable=False)  # epoch seconds
    scope = Column(Text, nullable=True)
    last_sync_at = Column(UTCDateTime, nullable=True)
    connected_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class StravaActivity(Base):
    """Raw Strava activity cache keyed by Strava's own activity id."""
    __tablename__ = "strava_activity"

    id = Column(BigInteger, primary_key=True, autoincrement=False)
    user_id = Column(Text, nullable=False, index=True)
    type = Column(Text, nullable=True)
    name = Column(Text, nullable=True)
    start_date = Column(UTCDateTime, nullable=True)
    timezone = Column(Text, nullable=True)
    moving_time = Column(Integer, nullable=True)
    elapsed_time = Column(Integer, nullable=True)
    distance_m = Column(Float, nullable=True)
    calories = Column(Float, nullable=True)
    average_heartrate = Column(Float, nullable=True)
    max_heartrate = Column(Float, nullable=True)
    average_speed = Column(Float, nullable=True)
    max_speed = Column(Float, nullable=True)
    total_elevation_gain = Column(Float, nullable=True)
    source = Column(Text, nullable=False, default="strava")
    raw = Column(JSONType, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_strava_activity_user_start", "user_id", "start_date"),
    )
