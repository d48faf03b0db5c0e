"""
Deduplicating Upsert Store

The only write path for canonical workout, daily metric and Strava activity
rows.

- Workouts and daily metrics are insert-or-ignore on their natural key. A
  conflicting row is counted as skipped and never merged.
- Strava activities are insert-or-update on Strava's own id (latest fetch wins).
- Each batch is one transaction: it is either fully committed or fully
  rolled back (PersistenceError).
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.database import dialect_insert
from core.exceptions import PersistenceError
from models import DailyMetric, StravaActivity, Workout, utcnow
from schemas import DailyMetricIn, WorkoutIn
from services.ingestion_normalizer import strava_activity_row, strava_activity_to_workout

logger = logging.getLogger(__name__)


@dataclass
class UpsertResult:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
        }


@dataclass
class IngestResult:
    workouts: UpsertResult = field(default_factory=UpsertResult)
    metrics: UpsertResult = field(default_factory=UpsertResult)

    def to_dict(self) -> Dict[str, Any]:
        return {"workouts": self.workouts.to_dict(), "metrics": self.metrics.to_dict()}


def _insert_workout(db: Session, workout: WorkoutIn) -> bool:
    stmt = (
        dialect_insert(db, Workout)
        .values(
            id=uuid.uuid4(),
            external_id=workout.external_id,
            source=workout.source,
            start_time=workout.start_time,
            end_time=workout.end_time,
            type=workout.type,
            calories=workout.calories,
            distance_km=workout.distance_km,
            avg_heart_rate=workout.avg_heart_rate,
            device=workout.device,
            created_at=utcnow(),
        )
        # No conflict target: either partial unique index counts as a duplicate.
        .on_conflict_do_nothing()
        .returning(Workout.id)
    )
    return db.execute(stmt).scalar_one_or_none() is not None


def _insert_daily_metric(db: Session, metric: DailyMetricIn) -> bool:
    stages = (
        [s.model_dump(mode="json") for s in metric.sleep_stages]
        if metric.sleep_stages
        else None
    )
    stmt = (
        dialect_insert(db, DailyMetric)
        .values(
            id=uuid.uuid4(),
            date_iso=metric.date_iso,
            source=metric.source,
            steps=metric.steps,
            sleep_hours=metric.sleep_hours,
            avg_bpm=metric.avg_bpm,
            calories_burned=metric.calories_burned,
            sleep_stages=stages,
            created_at=utcnow(),
        )
        .on_conflict_do_nothing()
        .returning(DailyMetric.id)
    )
    return db.execute(stmt).scalar_one_or_none() is not None


def insert_workouts(db: Session, workouts: Iterable[WorkoutIn]) -> UpsertResult:
    """Insert-or-ignore. Does not commit."""
    result = UpsertResult()
    for workout in workouts:
        if _insert_workout(db, workout):
            result.inserted += 1
        else:
            result.skipped += 1
    return result


def insert_daily_metrics(db: Session, metrics: Iterable[DailyMetricIn]) -> UpsertResult:
    """Insert-or-ignore. Does not commit."""
    result = UpsertResult()
    for metric in metrics:
        if _insert_daily_metric(db, metric):
            result.inserted += 1
        else:
            result.skipped += 1
    return result


def ingest_health_batch(
    db: Session,
    workouts: Iterable[WorkoutIn],
    metrics: Iterable[DailyMetricIn],
) -> IngestResult:
    """Insert a device batch as a single transaction."""
    try:
        result = IngestResult(
            workouts=insert_workouts(db, workouts),
            metrics=insert_daily_metrics(db, metrics),
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Health batch rolled back: {e}", exc_info=True)
        raise PersistenceError("Failed to persist health batch") from e

    logger.info(
        "Health batch ingested",
        extra={"extra_fields": result.to_dict()},
    )
    return result


def upsert_strava_activities(
    db: Session,
    user_id: str,
    activities: List[Dict[str, Any]],
) -> UpsertResult:
    """
    Insert-or-update Strava activities by id, as a single transaction.

    `inserted` counts ids that were not stored before this batch; every
    other row (including a repeat inside the batch) counts as `updated`.
    Each activity also gets a canonical Workout (insert-or-ignore).
    """
    result = UpsertResult()
    rows = [(a, strava_activity_row(user_id, a)) for a in activities if a.get("id") is not None]
    result.skipped = len(activities) - len(rows)

    try:
        ids = {row["id"] for _, row in rows}
        seen = set()
        if ids:
            seen = set(db.execute(select(StravaActivity.id).where(StravaActivity.id.in_(ids))).scalars())

        now = utcnow()
        for activity, row in rows:
            values = dict(row, updated_at=now)
            stmt = dialect_insert(db, StravaActivity).values(created_at=now, **values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[StravaActivity.id],
                set_={key: stmt.excluded[key] for key in values if key != "id"},
            )
            db.execute(stmt)

            if row["id"] in seen:
                result.updated += 1
            else:
                result.inserted += 1
                seen.add(row["id"])

            workout = strava_activity_to_workout(activity)
            if workout is not None:
                _insert_workout(db, workout)

        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Strava activity batch rolled back for user {user_id}: {e}", exc_info=True)
        raise PersistenceError("Failed to persist Strava activities") from e

    return result


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def list_workouts(
    db: Session,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[Workout]:
    """Workouts whose start_time is within [start, end], newest first."""
    stmt = select(Workout)
    if start is not None:
        stmt = stmt.where(Workout.start_time >= start)
    if end is not None:
        stmt = stmt.where(Workout.start_time <= end)
    stmt = stmt.order_by(Workout.start_time.desc())
    return list(db.execute(stmt).scalars())


def list_daily_metrics(
    db: Session,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[DailyMetric]:
    """Daily metrics whose date_iso is within [start, end], newest first."""
    stmt = select(DailyMetric)
    if start is not None:
        stmt = stmt.where(DailyMetric.date_iso >= start)
    if end is not None:
        stmt = stmt.where(DailyMetric.date_iso <= end)
    stmt = stmt.order_by(DailyMetric.date_iso.desc(), DailyMetric.source)
    return list(db.execute(stmt).scalars())


def list_strava_activities(db: Session, user_id: str, limit: int = 200) -> List[StravaActivity]:
    stmt = (
        select(StravaActivity)
        .where(StravaActivity.user_id == user_id)
        .order_by(StravaActivity.start_date.desc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())
