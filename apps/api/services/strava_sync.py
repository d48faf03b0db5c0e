"""
Strava activity sync: token -> paginated fetch -> upsert -> last_sync_at.

Request-scoped; there is no background worker. Errors from each step
propagate unchanged for the router to map:
StravaNotConnectedError, StravaRefreshError, StravaRateLimitError,
StravaProviderError, PersistenceError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from services.strava_connections import StravaConnectionRepository
from services.strava_service import StravaClient, fetch_activities, sync_since_epoch
from services.strava_tokens import StravaNotConnectedError, StravaTokenManager
from services.upsert_store import upsert_strava_activities

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    imported: int
    updated: int
    fetched: int
    last_sync_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "imported": self.imported,
            "updated": self.updated,
            "fetched": self.fetched,
            "last_sync_at": self.last_sync_at.isoformat(),
        }


def sync_strava_activities(
    db: Session,
    user_id: str,
    *,
    repository: StravaConnectionRepository,
    token_manager: StravaTokenManager,
    client: StravaClient,
    page_size: int = 50,
    max_records: int = 200,
    initial_days: int = 30,
    now: Optional[datetime] = None,
) -> SyncResult:
    connection = repository.get(user_id)
    if connection is None:
        raise StravaNotConnectedError(f"No Strava connection for user {user_id}")

    # Taken before fetching so nothing created mid-sync falls between windows.
    started_at = now or datetime.now(timezone.utc)

    access_token = token_manager.get_valid_access_token(user_id)
    since = sync_since_epoch(connection.last_sync_at, now=started_at, initial_days=initial_days)
    activities = fetch_activities(
        client,
        access_token,
        since_epoch=since,
        page_size=page_size,
        max_records=max_records,
    )

    upserted = upsert_strava_activities(db, user_id, activities)
    repository.mark_synced(user_id, started_at)

    result = SyncResult(
        imported=upserted.inserted,
        updated=upserted.updated,
        fetched=len(activities),
        last_sync_at=started_at,
    )
    logger.info(
        "Strava sync complete",
        extra={"extra_fields": {"user_id": user_id, "since": since, **result.to_dict()}},
    )
    return result
