from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from datetime import datetime, date, timezone
from enum import Enum
from uuid import UUID
from typing import Optional, List


class CamelModel(BaseModel):
    """Wire models: camelCase on the wire, snake_case in Python, both accepted on input."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def _as_utc(value: datetime) -> datetime:
    # Offset-less timestamps are taken to be UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------

class WorkoutType(str, Enum):
    RUNNING = "Running"
    WALKING = "Walking"
    CYCLING = "Cycling"
    STRENGTH = "Strength"
    ROWING = "Rowing"
    SWIMMING = "Swimming"
    ELLIPTICAL = "Elliptical"
    CARDIO = "Cardio"
    WORKOUT = "Workout"


class SleepStageName(str, Enum):
    AWAKE = "Awake"
    REM = "REM"
    CORE = "Core"
    DEEP = "Deep"


class LiftName(str, Enum):
    DEADLIFT = "Deadlift"
    BACK_SQUAT = "BackSquat"
    FRONT_SQUAT = "FrontSquat"
    BENCH_PRESS = "BenchPress"
    INCLINE_BENCH_PRESS = "InclineBenchPress"


class CardioMachine(str, Enum):
    ROW_ERG = "RowErg"
    BIKE_ERG = "BikeErg"
    SKI_ERG = "SkiErg"
    ASSAULT_BIKE = "AssaultBike"


class RunInputType(str, Enum):
    TIME = "TIME"
    PACE = "PACE"


class LiftMetric(str, Enum):
    E1RM = "e1RM"
    WEIGHT = "Weight"
    REPS = "Reps"
    RPE = "RPE"


class HealthPeriod(str, Enum):
    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"


class TrainingFocus(str, Enum):
    STRENGTH = "STRENGTH"
    HYPERTROPHY = "HYPERTROPHY"
    HYBRID = "HYBRID"


# ---------------------------------------------------------------------------
# Canonical records (ingest)
# ---------------------------------------------------------------------------

class SleepStage(CamelModel):
    stage: SleepStageName
    minutes: float = Field(ge=0)


class WorkoutIn(CamelModel):
    external_id: Optional[str] = None
    source: str = Field(min_length=1)
    start_time: datetime
    end_time: datetime
    type: str = Field(min_length=1)
    calories: Optional[float] = Field(default=None, ge=0)
    distance_km: Optional[float] = Field(default=None, ge=0)
    avg_heart_rate: Optional[float] = Field(default=None, ge=0)
    device: Optional[str] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalize_tz(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @field_validator("external_id")
    @classmethod
    def _blank_external_id(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def _end_after_start(self):
        if self.end_time < self.start_time:
            raise ValueError("endTime must not be before startTime")
        return self


class DailyMetricIn(CamelModel):
    date_iso: date = Field(alias="dateISO")
    source: str = Field(min_length=1)
    steps: Optional[int] = Field(default=None, ge=0)
    sleep_hours: Optional[float] = Field(default=None, ge=0)
    avg_bpm: Optional[float] = Field(default=None, alias="avgBPM", ge=0)
    calories_burned: Optional[float] = Field(default=None, ge=0)
    sleep_stages: Optional[List[SleepStage]] = None

    @field_validator("steps", mode="before")
    @classmethod
    def _round_steps(cls, v):
        # HealthKit sums come back as doubles.
        if isinstance(v, float):
            return int(round(v))
        return v

    @field_validator("sleep_stages")
    @classmethod
    def _empty_stages_are_absent(cls, v):
        return v or None


class IngestRequest(CamelModel):
    workouts: List[WorkoutIn] = Field(default_factory=list)
    metrics: List[DailyMetricIn] = Field(default_factory=list)


class IngestResponse(CamelModel):
    ok: bool = True
    workouts_inserted: int
    metrics_inserted: int
    workouts_skipped: int = 0
    metrics_skipped: int = 0


class WorkoutResponse(CamelModel):
    id: UUID
    external_id: Optional[str] = None
    source: str
    start_time: datetime
    end_time: datetime
    type: str
    calories: Optional[float] = None
    distance_km: Optional[float] = None
    avg_heart_rate: Optional[float] = None
    device: Optional[str] = None
    created_at: datetime


class DailyMetricResponse(CamelModel):
    id: UUID
    date_iso: date = Field(alias="dateISO")
    source: str
    steps: Optional[int] = None
    sleep_hours: Optional[float] = None
    avg_bpm: Optional[float] = Field(default=None, alias="avgBPM")
    calories_burned: Optional[float] = None
    sleep_stages: Optional[List[SleepStage]] = None
    created_at: datetime


# ---------------------------------------------------------------------------
# Journal entries
# ---------------------------------------------------------------------------

class LiftEntryCreate(CamelModel):
    date_iso: date = Field(alias="dateISO")
    lift: LiftName
    weight_kg: float = Field(gt=0)
    reps: int = Field(gt=0)
    rpe: Optional[float] = Field(default=None, ge=1, le=10)


class LiftEntryResponse(LiftEntryCreate):
    id: UUID
    created_at: datetime


class CardioEntryCreate(CamelModel):
    date_iso: date = Field(alias="dateISO")
    machine: CardioMachine
    seconds: int = Field(gt=0)
    calories: float = Field(ge=0)


class CardioEntryResponse(CardioEntryCreate):
    id: UUID
    created_at: datetime


class RunEntryCreate(CamelModel):
    date_iso: date = Field(alias="dateISO")
    distance_meters: float = Field(gt=0)
    input_type: RunInputType
    time_seconds: Optional[float] = Field(default=None, gt=0)
    pace_sec_per_km: Optional[float] = Field(default=None, gt=0)
    rounds: int = Field(default=1, ge=1, le=99)

    @model_validator(mode="after")
    def _authoritative_field_present(self):
        if self.input_type == RunInputType.TIME and self.time_seconds is None:
            raise ValueError("timeSeconds is required when inputType is TIME")
        if self.input_type == RunInputType.PACE and self.pace_sec_per_km is None:
            raise ValueError("paceSecPerKm is required when inputType is PACE")
        return self


class RunEntryResponse(CamelModel):
    id: UUID
    date_iso: date = Field(alias="dateISO")
    distance_meters: float
    input_type: RunInputType
    time_seconds: float
    pace_sec_per_km: float
    rounds: int
    created_at: datetime


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------

class ProfileUpdate(CamelModel):
    """Partial update. An explicit null clears the training focus."""
    training_focus: Optional[TrainingFocus] = None
    onboarding_complete: Optional[bool] = None


class ProfileResponse(CamelModel):
    training_focus: Optional[TrainingFocus] = None
    onboarding_complete: bool = False


# ---------------------------------------------------------------------------
# Progress (derived on read)
# ---------------------------------------------------------------------------

class SeriesPoint(CamelModel):
    date_iso: date = Field(alias="dateISO")
    value: float


class WorkoutsPerDayPoint(CamelModel):
    date_iso: date = Field(alias="dateISO")
    workouts: int
    cumulative: int


class OverviewResponse(CamelModel):
    days: int
    total_workouts: int
    lifted_tons: float
    total_reps: int
    heaviest_lift_kg: Optional[float] = None
    imported_hours: float
    active_calories: float
    series: List[WorkoutsPerDayPoint]


class LiftProgressResponse(CamelModel):
    lift: LiftName
    metric: LiftMetric
    rpe_available: bool
    points: List[SeriesPoint]


class CardioPoint(CamelModel):
    date_iso: date = Field(alias="dateISO")
    seconds: int
    calories: float


class CardioProgressResponse(CamelModel):
    machine: CardioMachine
    points: List[CardioPoint]


class RunPacePoint(CamelModel):
    date_iso: date = Field(alias="dateISO")
    pace_sec_per_km: float
    rounds: int


class RunProgressResponse(CamelModel):
    distance_meters: Optional[float] = None
    points: List[RunPacePoint]


class SleepStageShare(CamelModel):
    stage: SleepStageName
    minutes: float
    share: float


class HealthSummaryResponse(CamelModel):
    period: HealthPeriod
    days: int
    avg_steps: Optional[float] = None
    avg_sleep_hours: Optional[float] = None
    avg_bpm: Optional[float] = Field(default=None, alias="avgBPM")
    avg_calories: Optional[float] = None
    sleep_composition: List[SleepStageShare] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Strava
# ---------------------------------------------------------------------------

class StravaSyncResponse(CamelModel):
    success: bool = True
    imported_count: int
    updated_count: int
    last_sync_at: datetime


class StravaStatusResponse(CamelModel):
    connected: bool
    athlete_id: Optional[int] = None
    athlete_name: Optional[str] = None
    scope: Optional[str] = None
    last_sync_at: Optional[datetime] = None


class StravaActivityResponse(CamelModel):
    id: int
    type: Optional[str] = None
    category: Optional[WorkoutType] = None
    name: Optional[str] = None
    start_date: Optional[datetime] = None
    timezone: Optional[str] = None
    moving_time: Optional[int] = None
    elapsed_time: Optional[int] = None
    distance_m: Optional[float] = None
    calories: Optional[float] = None
    average_heartrate: Optional[float] = None
    max_heartrate: Optional[float] = None
    average_speed: Optional[float] = None
    max_speed: Optional[float] = None
    total_elevation_gain: Optional[float] = None
