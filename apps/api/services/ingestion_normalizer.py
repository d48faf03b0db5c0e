"""
Ingestion Normalizer

Turns source-specific payloads into canonical WorkoutIn / DailyMetricIn
records:
- Apple Health workout samples and per-day statistics (steps, active energy,
  heart rate, sleep analysis)
- Strava activity summaries (from /athlete/activities)

Fields the source did not provide stay None. Nothing here touches the
database; the upsert store takes it from there.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Awaitable, Dict, Iterable, List, Optional, Protocol, Tuple

from schemas import (
    DailyMetricIn,
    IngestRequest,
    SleepStage,
    SleepStageName,
    WorkoutIn,
    WorkoutType,
)

logger = logging.getLogger(__name__)

APPLE_HEALTH_SOURCE = "Apple Health"
STRAVA_SOURCE = "Strava"


# ---------------------------------------------------------------------------
# Workout types
# ---------------------------------------------------------------------------

_HK_PREFIX = "hkworkoutactivitytype"

# Keys are lowercased with spaces/underscores removed.
_WORKOUT_TYPE_ALIASES: Dict[str, WorkoutType] = {
    "running": WorkoutType.RUNNING,
    "run": WorkoutType.RUNNING,
    "walking": WorkoutType.WALKING,
    "walk": WorkoutType.WALKING,
    "cycling": WorkoutType.CYCLING,
    "strength": WorkoutType.STRENGTH,
    "functionalstrengthtraining": WorkoutType.STRENGTH,
    "traditionalstrengthtraining": WorkoutType.STRENGTH,
    "elliptical": WorkoutType.ELLIPTICAL,
    "rowing": WorkoutType.ROWING,
    "swimming": WorkoutType.SWIMMING,
    "cardio": WorkoutType.CARDIO,
    "workout": WorkoutType.WORKOUT,
}


def normalize_workout_type(label: Optional[str]) -> str:
    """
    Map a source activity label to the canonical workout type.

    Accepts HealthKit names with or without the HKWorkoutActivityType prefix
    and labels that are already canonical. Anything unrecognised becomes
    "Workout".

    Examples:
        >>> normalize_workout_type("HKWorkoutActivityTypeTraditionalStrengthTraining")
        'Strength'
        >>> normalize_workout_type("yoga")
        'Workout'
    """
    key = (label or "").strip().replace(" ", "").replace("_", "").lower()
    if key.startswith(_HK_PREFIX):
        key = key[len(_HK_PREFIX):]
    return _WORKOUT_TYPE_ALIASES.get(key, WorkoutType.WORKOUT).value


def normalize_workout(workout: WorkoutIn) -> WorkoutIn:
    return workout.model_copy(update={"type": normalize_workout_type(workout.type)})


def normalize_ingest_payload(payload: IngestRequest) -> Tuple[List[WorkoutIn], List[DailyMetricIn]]:
    """Canonicalise a validated ingest body. Metrics are already canonical."""
    return [normalize_workout(w) for w in payload.workouts], list(payload.metrics)


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _positive_or_none(value: Any) -> Optional[float]:
    if value is None:
        return None
    value = float(value)
    return value if value > 0 else None


def normalize_healthkit_workout(sample: Dict[str, Any]) -> WorkoutIn:
    """
    Convert one workout sample from the device bridge.

    Expected keys: uuid, activityType, startDate, endDate and optionally
    totalEnergyBurned (kcal), totalDistance (metres), averageHeartRate, device.
    """
    distance_m = _positive_or_none(sample.get("totalDistance"))
    return WorkoutIn(
        external_id=sample.get("uuid"),
        source=APPLE_HEALTH_SOURCE,
        start_time=_parse_timestamp(sample["startDate"]),
        end_time=_parse_timestamp(sample["endDate"]),
        type=normalize_workout_type(sample.get("activityType")),
        calories=sample.get("totalEnergyBurned"),
        distance_km=distance_m / 1000.0 if distance_m is not None else None,
        avg_heart_rate=sample.get("averageHeartRate"),
        device=sample.get("device"),
    )


# ---------------------------------------------------------------------------
# Sleep
# ---------------------------------------------------------------------------

# HKCategoryValueSleepAnalysis
SLEEP_IN_BED = 0
SLEEP_ASLEEP_UNSPECIFIED = 1
SLEEP_AWAKE = 2
SLEEP_ASLEEP_CORE = 3
SLEEP_ASLEEP_DEEP = 4
SLEEP_ASLEEP_REM = 5

_SLEEP_CODE_STAGES = {
    SLEEP_ASLEEP_UNSPECIFIED: SleepStageName.CORE,
    SLEEP_AWAKE: SleepStageName.AWAKE,
    SLEEP_ASLEEP_CORE: SleepStageName.CORE,
    SLEEP_ASLEEP_DEEP: SleepStageName.DEEP,
    SLEEP_ASLEEP_REM: SleepStageName.REM,
}

STAGE_ORDER = (SleepStageName.AWAKE, SleepStageName.REM, SleepStageName.CORE, SleepStageName.DEEP)


@dataclass(frozen=True)
class SleepSample:
    value: int
    start: datetime
    end: datetime

    @property
    def minutes(self) -> float:
        return max((self.end - self.start).total_seconds(), 0.0) / 60.0


def sleep_stage_for_code(value: int) -> Optional[SleepStageName]:
    """In-bed samples have no stage. Unknown codes count as Core sleep."""
    if value == SLEEP_IN_BED:
        return None
    return _SLEEP_CODE_STAGES.get(value, SleepStageName.CORE)


def aggregate_sleep_stages(samples: Iterable[SleepSample]) -> Optional[List[SleepStage]]:
    """
    Total minutes per stage, in Awake/REM/Core/Deep order.

    Returns None (not an empty list) when there is no staged sleep at all.
    """
    totals: Dict[SleepStageName, float] = {}
    for sample in samples:
        stage = sleep_stage_for_code(sample.value)
        if stage is None:
            continue
        totals[stage] = totals.get(stage, 0.0) + sample.minutes

    stages = [
        SleepStage(stage=stage, minutes=round(totals[stage], 2))
        for stage in STAGE_ORDER
        if totals.get(stage, 0.0) > 0
    ]
    return stages or None


def sleep_hours_from_stages(stages: Optional[List[SleepStage]]) -> Optional[float]:
    """Hours actually asleep (Awake excluded)."""
    if not stages:
        return None
    asleep = sum(s.minutes for s in stages if s.stage != SleepStageName.AWAKE)
    return round(asleep / 60.0, 2)


def build_daily_metric(
    day: date,
    source: str = APPLE_HEALTH_SOURCE,
    *,
    steps: Optional[float] = None,
    active_calories: Optional[float] = None,
    avg_heart_rate: Optional[float] = None,
    sleep_samples: Optional[Iterable[SleepSample]] = None,
) -> DailyMetricIn:
    """Join one day's independently fetched measurements. Missing ones stay absent."""
    stages = aggregate_sleep_stages(sleep_samples or [])
    return DailyMetricIn(
        date_iso=day,
        source=source,
        steps=int(round(steps)) if steps is not None else None,
        sleep_hours=sleep_hours_from_stages(stages),
        avg_bpm=round(avg_heart_rate, 1) if avg_heart_rate is not None else None,
        calories_burned=round(active_calories, 1) if active_calories is not None else None,
        sleep_stages=stages,
    )


# ---------------------------------------------------------------------------
# Concurrent per-day collection
# ---------------------------------------------------------------------------

class HealthDataSource(Protocol):
    """What the device bridge provides. Every query covers [start, end)."""

    async def workouts(self, start: datetime, end: datetime) -> List[Dict[str, Any]]: ...

    async def steps(self, start: datetime, end: datetime) -> Optional[float]: ...

    async def active_calories(self, start: datetime, end: datetime) -> Optional[float]: ...

    async def average_heart_rate(self, start: datetime, end: datetime) -> Optional[float]: ...

    async def sleep_samples(self, start: datetime, end: datetime) -> List[SleepSample]: ...


async def _bounded(awaitable: Awaitable[Any], timeout_s: float, what: str, day: date) -> Any:
    """Await one sub-query; a timeout or failure yields None for that field."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_s)
    except asyncio.TimeoutError:
        logger.warning(
            f"Health sub-query timed out: {what} {day.isoformat()}",
            extra={"extra_fields": {"query": what, "day": day.isoformat(), "timeout_s": timeout_s}},
        )
    except Exception as e:  # one failed query must not drop the rest of the day
        logger.warning(
            f"Health sub-query failed: {what} {day.isoformat()}: {e}",
            extra={"extra_fields": {"query": what, "day": day.isoformat()}},
        )
    return None


def _day_bounds(day: date) -> Tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


async def collect_day_metric(
    source: HealthDataSource,
    day: date,
    *,
    timeout_s: float,
    source_name: str = APPLE_HEALTH_SOURCE,
) -> DailyMetricIn:
    start, end = _day_bounds(day)
    steps, calories, heart_rate, sleep = await asyncio.gather(
        _bounded(source.steps(start, end), timeout_s, "steps", day),
        _bounded(source.active_calories(start, end), timeout_s, "active_calories", day),
        _bounded(source.average_heart_rate(start, end), timeout_s, "heart_rate", day),
        _bounded(source.sleep_samples(start, end), timeout_s, "sleep", day),
    )
    return build_daily_metric(
        day,
        source_name,
        steps=steps,
        active_calories=calories,
        avg_heart_rate=heart_rate,
        sleep_samples=sleep,
    )


async def collect_daily_metrics(
    source: HealthDataSource,
    start: date,
    end: date,
    *,
    timeout_s: float = 10.0,
    source_name: str = APPLE_HEALTH_SOURCE,
) -> List[DailyMetricIn]:
    """
    One DailyMetricIn per calendar day in [start, end], newest first.

    The four sub-queries of each day run concurrently, and days run
    concurrently with each other.
    """
    if end < start:
        return []
    days = [start + timedelta(days=i) for i in range((end - start).days + 1)]
    metrics = await asyncio.gather(
        *(collect_day_metric(source, d, timeout_s=timeout_s, source_name=source_name) for d in days)
    )
    return sorted(metrics, key=lambda m: m.date_iso, reverse=True)


async def collect_health_payload(
    source: HealthDataSource,
    days: int,
    *,
    today: Optional[date] = None,
    timeout_s: float = 10.0,
) -> IngestRequest:
    """Everything the bridge should post for the last `days` days (today included)."""
    today = today or datetime.now(timezone.utc).date()
    start_day = today - timedelta(days=max(days - 1, 0))
    window_start, _ = _day_bounds(start_day)
    _, window_end = _day_bounds(today)

    samples, metrics = await asyncio.gather(
        _bounded(source.workouts(window_start, window_end), timeout_s, "workouts", today),
        collect_daily_metrics(source, start_day, today, timeout_s=timeout_s),
    )
    workouts = [normalize_healthkit_workout(s) for s in samples or []]
    return IngestRequest(workouts=workouts, metrics=metrics)


# ---------------------------------------------------------------------------
# Strava
# ---------------------------------------------------------------------------

STRAVA_RUN_TYPES = frozenset({"run"})
STRAVA_CARDIO_TYPES = frozenset({
    "workout",
    "crossfit",
    "rowing",
    "ride",
    "bike",
    "cycling",
    "elliptical",
    "stairstepper",
    "weighttraining",
    "swim",
    "hike",
    "walk",
    "virtualride",
    "ebikeride",
})


def map_strava_type_to_category(activity_type: Optional[str]) -> WorkoutType:
    """
    Strava activity type -> Running or Cardio.

    Unlisted types (Yoga, future types) also land in Cardio; see DESIGN.md.
    """
    key = (activity_type or "").strip().lower()
    if key in STRAVA_RUN_TYPES:
        return WorkoutType.RUNNING
    if key in STRAVA_CARDIO_TYPES:
        return WorkoutType.CARDIO
    return WorkoutType.CARDIO


def strava_activity_row(user_id: str, activity: Dict[str, Any]) -> Dict[str, Any]:
    """Column values for the strava_activity cache row. `raw` keeps the whole payload."""
    start_date = activity.get("start_date")
    return {
        "id": int(activity["id"]),
        "user_id": user_id,
        "type": activity.get("type"),
        "name": activity.get("name") or activity.get("type"),
        "start_date": _parse_timestamp(start_date) if start_date else None,
        "timezone": activity.get("timezone"),
        "moving_time": activity.get("moving_time"),
        "elapsed_time": activity.get("elapsed_time"),
        "distance_m": activity.get("distance"),
        "calories": activity.get("calories"),
        "average_heartrate": activity.get("average_heartrate"),
        "max_heartrate": activity.get("max_heartrate"),
        "average_speed": activity.get("average_speed"),
        "max_speed": activity.get("max_speed"),
        "total_elevation_gain": activity.get("total_elevation_gain"),
        "source": "strava",
        "raw": activity,
    }


def strava_activity_to_workout(activity: Dict[str, Any]) -> Optional[WorkoutIn]:
    """Canonical workout for a Strava activity, or None if it has no start time."""
    if not activity.get("start_date") or activity.get("id") is None:
        return None
    start = _parse_timestamp(activity["start_date"])
    duration_s = activity.get("elapsed_time") or activity.get("moving_time") or 0
    distance_m = _positive_or_none(activity.get("distance"))
    return WorkoutIn(
        external_id=str(activity["id"]),
        source=STRAVA_SOURCE,
        start_time=start,
        end_time=start + timedelta(seconds=int(duration_s)),
        type=map_strava_type_to_category(activity.get("type")).value,
        calories=activity.get("calories"),
        distance_km=distance_m / 1000.0 if distance_m is not None else None,
        avg_heart_rate=activity.get("average_heartrate"),
        device=activity.get("device_name"),
    )
