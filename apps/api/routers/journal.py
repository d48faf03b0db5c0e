"""
Manual journal entries: lifts, cardio machine efforts and runs.

Entries belong to the session user. Runs store both time and pace; the one
the user did not type is derived here, once, and never recomputed.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from core.auth import get_current_user_id
from core.database import get_db
from models import CardioEntry, LiftEntry, RunEntry
from schemas import (
    CardioEntryCreate,
    CardioEntryResponse,
    LiftEntryCreate,
    LiftEntryResponse,
    RunEntryCreate,
    RunEntryResponse,
)
from services.derived_metrics import derive_run_fields

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/journal", tags=["journal"])


def _newest_first(db: Session, model, user_id: str):
    stmt = (
        select(model)
        .where(model.user_id == user_id)
        .order_by(model.date_iso.desc(), model.created_at.desc())
    )
    return list(db.execute(stmt).scalars())


@router.post("/lifts", response_model=LiftEntryResponse, status_code=status.HTTP_201_CREATED)
def create_lift_entry(
    entry: LiftEntryCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Log one top set."""
    row = LiftEntry(
        user_id=user_id,
        date_iso=entry.date_iso,
        lift=entry.lift.value,
        weight_kg=entry.weight_kg,
        reps=entry.reps,
        rpe=entry.rpe,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@router.get("/lifts", response_model=List[LiftEntryResponse])
def list_lift_entries(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return _newest_first(db, LiftEntry, user_id)


@router.post("/cardio", response_model=CardioEntryResponse, status_code=status.HTTP_201_CREATED)
def create_cardio_entry(
    entry: CardioEntryCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    row = CardioEntry(
        user_id=user_id,
        date_iso=entry.date_iso,
        machine=entry.machine.value,
        seconds=entry.seconds,
        calories=entry.calories,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@router.get("/cardio", response_model=List[CardioEntryResponse])
def list_cardio_entries(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return _newest_first(db, CardioEntry, user_id)


@router.post("/runs", response_model=RunEntryResponse, status_code=status.HTTP_201_CREATED)
def create_run_entry(
    entry: RunEntryCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Log a run or a set of intervals.

    TIME entries get pace = time / km; PACE entries get time = pace * km.
    """
    time_seconds, pace_sec_per_km = derive_run_fields(
        entry.distance_meters,
        entry.input_type,
        time_seconds=entry.time_seconds,
        pace_sec_per_km=entry.pace_sec_per_km,
    )
    row = RunEntry(
        user_id=user_id,
        date_iso=entry.date_iso,
        distance_meters=entry.distance_meters,
        input_type=entry.input_type.value,
        time_seconds=time_seconds,
        pace_sec_per_km=pace_sec_per_km,
        rounds=entry.rounds,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@router.get("/runs", response_model=List[RunEntryResponse])
def list_run_entries(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return _newest_first(db, RunEntry, user_id)
