"""
Device ingest and canonical reads.

POST /api/health/ingest   workouts + daily metrics from the phone bridge
GET  /api/workouts        ?from&to, inclusive on startTime
GET  /api/metrics         ?from&to, inclusive on dateISO

All three sit behind the optional API key.
"""
import logging
from datetime import date, datetime, time, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.auth import require_api_key
from core.database import get_db
from core.exceptions import ValidationError
from schemas import DailyMetricResponse, IngestRequest, IngestResponse, WorkoutResponse
from services.ingestion_normalizer import normalize_ingest_payload
from services.upsert_store import ingest_health_batch, list_daily_metrics, list_workouts

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"], dependencies=[Depends(require_api_key)])


def _is_date_only(value: str) -> bool:
    return len(value) == 10 and value[4] == "-" and value[7] == "-"


def _parse_bound(value: Optional[str], *, end_of_day: bool, field: str) -> Optional[datetime]:
    """ISO date or datetime -> aware UTC datetime. A bare date means the whole day."""
    if not value:
        return None
    try:
        if _is_date_only(value):
            day = date.fromisoformat(value)
            return datetime.combine(day, time.max if end_of_day else time.min, tzinfo=timezone.utc)
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"'{field}' must be an ISO-8601 date or timestamp", field=field)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _parse_day(value: Optional[str], *, field: str) -> Optional[date]:
    if not value:
        return None
    try:
        if _is_date_only(value):
            return date.fromisoformat(value)
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        raise ValidationError(f"'{field}' must be an ISO-8601 date", field=field)


@router.post("/health/ingest", response_model=IngestResponse)
def ingest_health_data(payload: IngestRequest, db: Session = Depends(get_db)):
    """
    Store a batch of Apple Health workouts and daily metrics.

    Duplicates (same natural key) are skipped and counted, never overwritten.
    The whole batch commits or none of it does.
    """
    workouts, metrics = normalize_ingest_payload(payload)
    result = ingest_health_batch(db, workouts, metrics)
    return IngestResponse(
        ok=True,
        workouts_inserted=result.workouts.inserted,
        metrics_inserted=result.metrics.inserted,
        workouts_skipped=result.workouts.skipped,
        metrics_skipped=result.metrics.skipped,
    )


@router.get("/workouts", response_model=List[WorkoutResponse])
def get_workouts(
    from_: Optional[str] = Query(default=None, alias="from"),
    to: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
):
    """Canonical workouts, newest first."""
    start = _parse_bound(from_, end_of_day=False, field="from")
    end = _parse_bound(to, end_of_day=True, field="to")
    return list_workouts(db, start, end)


@router.get("/metrics", response_model=List[DailyMetricResponse])
def get_metrics(
    from_: Optional[str] = Query(default=None, alias="from"),
    to: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
):
    """Daily metrics, newest first, with sleepStages expanded back into a list."""
    return list_daily_metrics(db, _parse_day(from_, field="from"), _parse_day(to, field="to"))
