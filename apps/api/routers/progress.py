"""
Progress API Router

Read-only views derived on every request from the stored records:
overview curve, lift / cardio / run progress and health period averages.
Nothing derived here is persisted.
"""

import logging
from datetime import datetime, time, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from core.auth import get_current_user_id, require_api_key
from core.config import settings
from core.database import get_db
from core.exceptions import ValidationError
from models import CardioEntry, LiftEntry, RunEntry, Workout
from schemas import (
    CardioMachine,
    CardioPoint,
    CardioProgressResponse,
    HealthPeriod,
    HealthSummaryResponse,
    LiftMetric,
    LiftName,
    LiftProgressResponse,
    OverviewResponse,
    RunPacePoint,
    RunProgressResponse,
    SeriesPoint,
    SleepStageShare,
    WorkoutsPerDayPoint,
)
from services import derived_metrics
from services.upsert_store import list_daily_metrics

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/progress", tags=["progress"])


def _today():
    return datetime.now(timezone.utc).date()


def _user_rows(db: Session, model, user_id: str):
    return list(db.execute(select(model).where(model.user_id == user_id)).scalars())


@router.get("/overview", response_model=OverviewResponse)
def get_overview(
    days: int = Query(default=30, ge=1, le=365),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Headline totals plus a gap-free cumulative workouts curve (days + 1 points)."""
    today = _today()
    imported = list(
        db.execute(
            select(Workout).where(
                Workout.start_time >= datetime.combine(
                    today - timedelta(days=days), time.min, tzinfo=timezone.utc
                )
            )
        ).scalars()
    )
    stats = derived_metrics.overview_stats(
        lifts=_user_rows(db, LiftEntry, user_id),
        cardio=_user_rows(db, CardioEntry, user_id),
        runs=_user_rows(db, RunEntry, user_id),
        imported=imported,
        window=days,
        today=today,
    )
    return OverviewResponse(
        days=days,
        total_workouts=stats.total_workouts,
        lifted_tons=stats.lifted_tons,
        total_reps=stats.total_reps,
        heaviest_lift_kg=stats.heaviest_lift_kg,
        imported_hours=stats.imported_hours,
        active_calories=stats.active_calories,
        series=[
            WorkoutsPerDayPoint(date_iso=d, workouts=count, cumulative=running)
            for d, count, running in stats.series
        ],
    )


@router.get("/lifts/{lift}", response_model=LiftProgressResponse)
def get_lift_progress(
    lift: LiftName,
    metric: LiftMetric = Query(default=LiftMetric.E1RM),
    days: int = Query(default=90, ge=1, le=3650),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Progress of one lift.

    The RPE view needs RPE_MIN_ENTRIES entries with an RPE; below that it is
    refused with 400 and `rpeAvailable` is false on the other views.
    """
    lifts = _user_rows(db, LiftEntry, user_id)
    rpe_available = derived_metrics.has_enough_rpe(lifts, lift.value, threshold=settings.RPE_MIN_ENTRIES)
    if metric == LiftMetric.RPE and not rpe_available:
        raise ValidationError(
            f"RPE view needs at least {settings.RPE_MIN_ENTRIES} {lift.value} entries with RPE",
            field="metric",
        )

    points = derived_metrics.lift_progress_series(lifts, lift.value, metric, window=days, today=_today())
    return LiftProgressResponse(
        lift=lift,
        metric=metric,
        rpe_available=rpe_available,
        points=[SeriesPoint(date_iso=d, value=v) for d, v in points],
    )


@router.get("/cardio/{machine}", response_model=CardioProgressResponse)
def get_cardio_progress(
    machine: CardioMachine,
    days: int = Query(default=90, ge=1, le=3650),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    points = derived_metrics.cardio_progress_series(
        _user_rows(db, CardioEntry, user_id), machine.value, window=days, today=_today()
    )
    return CardioProgressResponse(
        machine=machine,
        points=[CardioPoint(date_iso=d, seconds=s, calories=c) for d, s, c in points],
    )


@router.get("/runs", response_model=RunProgressResponse)
def get_run_progress(
    distance_meters: Optional[float] = Query(default=None, alias="distanceMeters", gt=0),
    days: int = Query(default=90, ge=1, le=3650),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Pace (s/km) per run, optionally for one interval distance."""
    points = derived_metrics.run_pace_series(
        _user_rows(db, RunEntry, user_id), window=days, today=_today(), distance_m=distance_meters
    )
    return RunProgressResponse(
        distance_meters=distance_meters,
        points=[RunPacePoint(date_iso=d, pace_sec_per_km=p, rounds=r) for d, p, r in points],
    )


@router.get("/health", response_model=HealthSummaryResponse, dependencies=[Depends(require_api_key)])
def get_health_summary(
    period: HealthPeriod = Query(default=HealthPeriod.WEEKLY),
    db: Session = Depends(get_db),
):
    """Averages of steps / sleep / BPM / calories and sleep-stage mix over the period."""
    period_days = derived_metrics.HEALTH_PERIOD_DAYS[period]
    today = _today()
    metrics = list_daily_metrics(db, today - timedelta(days=period_days), today)
    averages = derived_metrics.health_period_averages(metrics, period_days=period_days, today=today)
    composition = derived_metrics.period_sleep_composition(metrics, period_days=period_days, today=today)
    return HealthSummaryResponse(
        period=period,
        days=period_days,
        sleep_composition=[
            SleepStageShare(stage=stage, minutes=minutes, share=share)
            for stage, minutes, share in composition
        ],
        **averages,
    )
