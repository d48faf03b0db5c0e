"""
Derived Metrics Engine

Pure functions over canonical records: no I/O, no clock (callers pass
`today`). Inputs are duck-typed: ORM rows and pydantic schemas both work
as long as they carry the attribute names used here.

e1RM    = weight_kg * (1 + reps / 30)      (Epley)
Tonnage = sum(weight_kg * reps) / 1000     (metric tons, top set only)
Pace    = time_seconds / (distance_m / 1000)
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from schemas import HealthPeriod, LiftMetric, RunInputType, SleepStageName

HEALTH_PERIOD_DAYS = {
    HealthPeriod.DAILY: 1,
    HealthPeriod.WEEKLY: 7,
    HealthPeriod.MONTHLY: 30,
}

STAGE_ORDER = (SleepStageName.AWAKE, SleepStageName.REM, SleepStageName.CORE, SleepStageName.DEEP)


# ---------------------------------------------------------------------------
# Strength
# ---------------------------------------------------------------------------

def e1rm(weight_kg: float, reps: int) -> float:
    """
    Estimated one-rep max (Epley).

    Reps are not clamped; entry validation guarantees reps > 0.

    Examples:
        >>> round(e1rm(100, 5), 2)
        116.67
    """
    return weight_kg * (1 + reps / 30)


def lifted_tonnage(lifts: Iterable[Any]) -> float:
    """
    Total volume in metric tons.

    Approximate: only the top set of each entry is recorded.
    """
    return sum(l.weight_kg * l.reps for l in lifts) / 1000


def heaviest_lift(lifts: Iterable[Any]) -> Optional[float]:
    weights = [l.weight_kg for l in lifts]
    return max(weights) if weights else None


def total_reps(lifts: Iterable[Any]) -> int:
    return sum(l.reps for l in lifts)


def has_enough_rpe(lifts: Iterable[Any], lift: str, threshold: int = 3) -> bool:
    """The RPE view is offered once `threshold` entries for the lift carry an RPE."""
    return sum(1 for l in lifts if l.lift == lift and l.rpe is not None) >= threshold


def _lift_value(entry: Any, metric: LiftMetric) -> Optional[float]:
    if metric == LiftMetric.E1RM:
        return round(e1rm(entry.weight_kg, entry.reps), 1)
    if metric == LiftMetric.WEIGHT:
        return float(entry.weight_kg)
    if metric == LiftMetric.REPS:
        return float(entry.reps)
    if metric == LiftMetric.RPE:
        return float(entry.rpe) if entry.rpe is not None else None
    raise ValueError(f"Unknown lift metric: {metric}")


def lift_progress_series(
    lifts: Iterable[Any],
    lift: str,
    metric: LiftMetric,
    *,
    window: int,
    today: date,
) -> List[Tuple[date, float]]:
    """One point per entry of `lift` inside the window, oldest first. RPE-less rows drop out of the RPE view."""
    points = []
    for entry in lifts:
        if entry.lift != lift or not in_window(entry.date_iso, window=window, today=today):
            continue
        value = _lift_value(entry, metric)
        if value is not None:
            points.append((entry.date_iso, value))
    return sorted(points, key=lambda p: p[0])


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------

def pace_from_time(time_seconds: float, distance_m: float) -> float:
    return time_seconds / (distance_m / 1000)


def time_from_pace(pace_sec_per_km: float, distance_m: float) -> float:
    return pace_sec_per_km * (distance_m / 1000)


def derive_run_fields(
    distance_m: float,
    input_type: RunInputType,
    *,
    time_seconds: Optional[float] = None,
    pace_sec_per_km: Optional[float] = None,
) -> Tuple[float, float]:
    """
    Fill in the non-authoritative half of a run at entry time.

    Args:
        distance_m: Run (or interval) distance in metres, > 0
        input_type: TIME if the user typed the time, PACE if they typed the pace
        time_seconds: Required for TIME
        pace_sec_per_km: Required for PACE

    Returns:
        (time_seconds, pace_sec_per_km)

    Examples:
        >>> derive_run_fields(800, RunInputType.TIME, time_seconds=228)
        (228, 285.0)
    """
    if distance_m <= 0:
        raise ValueError("distance_m must be positive")
    if input_type == RunInputType.TIME:
        if time_seconds is None:
            raise ValueError("time_seconds is required for TIME runs")
        return time_seconds, pace_from_time(time_seconds, distance_m)
    if pace_sec_per_km is None:
        raise ValueError("pace_sec_per_km is required for PACE runs")
    return time_from_pace(pace_sec_per_km, distance_m), pace_sec_per_km


def normalize_run_pace(run: Any) -> float:
    """Pace in s/km: the stored pace for PACE runs, computed from time otherwise."""
    if run.input_type == RunInputType.PACE and run.pace_sec_per_km is not None:
        return float(run.pace_sec_per_km)
    return pace_from_time(run.time_seconds, run.distance_meters)


def run_pace_series(
    runs: Iterable[Any],
    *,
    window: int,
    today: date,
    distance_m: Optional[float] = None,
) -> List[Tuple[date, float, int]]:
    """(date, pace s/km, rounds) per run in the window, oldest first; optionally one distance only."""
    points = [
        (r.date_iso, round(normalize_run_pace(r), 1), r.rounds)
        for r in runs
        if in_window(r.date_iso, window=window, today=today)
        and (distance_m is None or r.distance_meters == distance_m)
    ]
    return sorted(points, key=lambda p: p[0])


# ---------------------------------------------------------------------------
# Cardio
# ---------------------------------------------------------------------------

def cardio_progress_series(
    entries: Iterable[Any],
    machine: str,
    *,
    window: int,
    today: date,
) -> List[Tuple[date, int, float]]:
    points = [
        (e.date_iso, e.seconds, e.calories)
        for e in entries
        if e.machine == machine and in_window(e.date_iso, window=window, today=today)
    ]
    return sorted(points, key=lambda p: p[0])


# ---------------------------------------------------------------------------
# Rolling windows
# ---------------------------------------------------------------------------

def in_window(day: date, *, window: int, today: date) -> bool:
    """True if `day` falls in [today - window, today]."""
    return today - timedelta(days=window) <= day <= today


def window_days(*, window: int, today: date) -> List[date]:
    """Every calendar day in [today - window, today], oldest first (window + 1 days)."""
    start = today - timedelta(days=window)
    return [start + timedelta(days=i) for i in range(window + 1)]


def workouts_per_day(dates: Iterable[date], *, window: int, today: date) -> List[Tuple[date, int]]:
    """
    Gap-filled activity counts: one point per day in the window, zero when idle.

    Examples:
        >>> len(workouts_per_day([date(2024, 1, 3)], window=30, today=date(2024, 1, 31)))
        31
    """
    counts: Dict[date, int] = {}
    for d in dates:
        if in_window(d, window=window, today=today):
            counts[d] = counts.get(d, 0) + 1
    return [(d, counts.get(d, 0)) for d in window_days(window=window, today=today)]


def cumulative_workouts(dates: Iterable[date], *, window: int, today: date) -> List[Tuple[date, int, int]]:
    """(date, count, running total) for the overview curve."""
    series = []
    running = 0
    for d, count in workouts_per_day(dates, window=window, today=today):
        running += count
        series.append((d, count, running))
    return series


# ---------------------------------------------------------------------------
# Health metrics
# ---------------------------------------------------------------------------

def _average(values: Sequence[float]) -> Optional[float]:
    if not values:
        return None
    return round(sum(values) / len(values), 2)


def health_period_averages(metrics: Iterable[Any], *, period_days: int, today: date) -> Dict[str, Optional[float]]:
    """
    Mean of each daily field over the period.

    A day that lacks a field is left out of that field's mean (absence is
    unknown, not zero). A field no day carries averages to None.
    """
    in_period = [m for m in metrics if in_window(m.date_iso, window=period_days, today=today)]
    return {
        "avg_steps": _average([m.steps for m in in_period if m.steps is not None]),
        "avg_sleep_hours": _average([m.sleep_hours for m in in_period if m.sleep_hours is not None]),
        "avg_bpm": _average([m.avg_bpm for m in in_period if m.avg_bpm is not None]),
        "avg_calories": _average([m.calories_burned for m in in_period if m.calories_burned is not None]),
    }


def _stage_fields(stage: Any) -> Tuple[str, float]:
    if isinstance(stage, dict):
        return stage["stage"], float(stage["minutes"])
    return stage.stage, float(stage.minutes)


def sleep_stage_composition(stages: Iterable[Any]) -> List[Tuple[SleepStageName, float, float]]:
    """
    (stage, minutes, share of total) in Awake/REM/Core/Deep order.

    Accepts stage dicts (as stored) or SleepStage models, possibly from
    several nights; minutes of the same stage are summed.
    """
    totals: Dict[SleepStageName, float] = {}
    for stage in stages:
        name, minutes = _stage_fields(stage)
        key = SleepStageName(name)
        totals[key] = totals.get(key, 0.0) + minutes

    total = sum(totals.values())
    if total <= 0:
        return []
    return [
        (name, round(totals[name], 2), round(totals[name] / total, 4))
        for name in STAGE_ORDER
        if totals.get(name, 0.0) > 0
    ]


def period_sleep_composition(metrics: Iterable[Any], *, period_days: int, today: date) -> List[Tuple[SleepStageName, float, float]]:
    stages: List[Any] = []
    for m in metrics:
        if m.sleep_stages and in_window(m.date_iso, window=period_days, today=today):
            stages.extend(m.sleep_stages)
    return sleep_stage_composition(stages)


# ---------------------------------------------------------------------------
# Overview
# ---------------------------------------------------------------------------

@dataclass
class OverviewStats:
    total_workouts: int
    lifted_tons: float
    total_reps: int
    heaviest_lift_kg: Optional[float]
    imported_hours: float
    active_calories: float
    series: List[Tuple[date, int, int]]


def overview_stats(
    *,
    lifts: Sequence[Any],
    cardio: Sequence[Any],
    runs: Sequence[Any],
    imported: Sequence[Any],
    window: int,
    today: date,
) -> OverviewStats:
    """Headline numbers and the cumulative workouts curve for the window."""
    def recent(items, day_of):
        return [i for i in items if in_window(day_of(i), window=window, today=today)]

    lifts = recent(lifts, lambda l: l.date_iso)
    cardio = recent(cardio, lambda c: c.date_iso)
    runs = recent(runs, lambda r: r.date_iso)
    imported = recent(imported, lambda w: w.start_time.date())

    dates = (
        [l.date_iso for l in lifts]
        + [c.date_iso for c in cardio]
        + [r.date_iso for r in runs]
        + [w.start_time.date() for w in imported]
    )
    imported_seconds = sum((w.end_time - w.start_time).total_seconds() for w in imported)

    return OverviewStats(
        total_workouts=len(dates),
        lifted_tons=round(lifted_tonnage(lifts), 2),
        total_reps=total_reps(lifts),
        heaviest_lift_kg=heaviest_lift(lifts),
        imported_hours=round(imported_seconds / 3600, 2),
        active_calories=round(sum(w.calories or 0 for w in imported), 1),
        series=cumulative_workouts(dates, window=window, today=today),
    )
