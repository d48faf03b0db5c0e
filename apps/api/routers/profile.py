"""
Profile API Router

Training focus and onboarding state for the session user.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.auth import get_current_user_id
from core.database import get_db
from core.exceptions import NotFoundError
from models import Profile
from schemas import ProfileResponse, ProfileUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/profile", tags=["profile"])


@router.get("", response_model=ProfileResponse)
def get_profile(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    """Get the current user's profile. 404 until it has been written once."""
    profile = db.get(Profile, user_id)
    if profile is None:
        raise NotFoundError("Profile", user_id)
    return profile


@router.patch("", response_model=ProfileResponse)
def update_profile(
    request: ProfileUpdate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Update only the fields present in the body.

    The row is created on first update. `trainingFocus: null` clears the
    focus; `onboardingComplete: null` is ignored.
    """
    profile = db.get(Profile, user_id)
    if profile is None:
        profile = Profile(user_id=user_id, onboarding_complete=False)
        db.add(profile)

    for field, value in request.model_dump(mode="json", exclude_unset=True).items():
        if field == "onboarding_complete" and value is None:
            continue
        setattr(profile, field, value)

    db.commit()
    db.refresh(profile)
    logger.info(f"Profile updated for user {user_id}")
    return profile
