"""
StravaConnection persistence.

Every method is its own committed transaction, so a token handed back by
the token manager has always been durably stored first. Tokens are
encrypted on the way in and decrypted on the way out; callers only ever
see plaintext snapshots.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError

from core.database import Database, dialect_insert
from core.exceptions import PersistenceError
from models import StravaConnection, utcnow
from services.token_encryption import decrypt_token, encrypt_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionSnapshot:
    user_id: str
    athlete_id: int
    athlete_name: Optional[str]
    access_token: Optional[str]
    refresh_token: Optional[str]
    expires_at: int
    scope: Optional[str]
    last_sync_at: Optional[datetime]
    connected_at: Optional[datetime]


def _snapshot(row: StravaConnection) -> ConnectionSnapshot:
    return ConnectionSnapshot(
        user_id=row.user_id,
        athlete_id=row.athlete_id,
        athlete_name=row.athlete_name,
        access_token=decrypt_token(row.access_token),
        refresh_token=decrypt_token(row.refresh_token),
        expires_at=int(row.expires_at),
        scope=row.scope,
        last_sync_at=row.last_sync_at,
        connected_at=row.connected_at,
    )


class StravaConnectionRepository:
    def __init__(self, database: Database):
        self.database = database

    def get(self, user_id: str) -> Optional[ConnectionSnapshot]:
        with self.database.session() as db:
            row = db.execute(
                select(StravaConnection).where(StravaConnection.user_id == user_id)
            ).scalar_one_or_none()
            return _snapshot(row) if row is not None else None

    def save_connection(
        self,
        user_id: str,
        *,
        athlete_id: int,
        athlete_name: Optional[str],
        access_token: str,
        refresh_token: str,
        expires_at: int,
        scope: Optional[str],
    ) -> ConnectionSnapshot:
        """Create or replace the user's connection (upsert on user_id)."""
        now = utcnow()
        values = {
            "athlete_id": int(athlete_id),
            "athlete_name": athlete_name,
            "access_token": encrypt_token(access_token),
            "refresh_token": encrypt_token(refresh_token),
            "expires_at": int(expires_at),
            "scope": scope,
            "updated_at": now,
        }
        try:
            with self.database.session() as db:
                stmt = dialect_insert(db, StravaConnection).values(
                    user_id=user_id, connected_at=now, **values
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[StravaConnection.user_id],
                    set_={key: stmt.excluded[key] for key in values},
                )
                db.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(f"Failed to save Strava connection for user {user_id}: {e}")
            raise PersistenceError("Failed to save Strava connection") from e

        logger.info(
            "Strava connection saved",
            extra={"extra_fields": {"user_id": user_id, "athlete_id": int(athlete_id)}},
        )
        return self.get(user_id)

    def save_tokens(self, user_id: str, *, access_token: str, refresh_token: str, expires_at: int) -> bool:
        """Persist rotated tokens. Returns False if the connection no longer exists."""
        try:
            with self.database.session() as db:
                result = db.execute(
                    update(StravaConnection)
                    .where(StravaConnection.user_id == user_id)
                    .values(
                        access_token=encrypt_token(access_token),
                        refresh_token=encrypt_token(refresh_token),
                        expires_at=int(expires_at),
                        updated_at=utcnow(),
                    )
                )
                return result.rowcount > 0
        except SQLAlchemyError as e:
            logger.error(f"Failed to save refreshed Strava tokens for user {user_id}: {e}")
            raise PersistenceError("Failed to save refreshed Strava tokens") from e

    def mark_synced(self, user_id: str, when: datetime) -> None:
        try:
            with self.database.session() as db:
                db.execute(
                    update(StravaConnection)
                    .where(StravaConnection.user_id == user_id)
                    .values(last_sync_at=when, updated_at=utcnow())
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to record Strava sync time for user {user_id}: {e}")
            raise PersistenceError("Failed to record Strava sync time") from e

    def delete(self, user_id: str) -> bool:
        with self.database.session() as db:
            result = db.execute(delete(StravaConnection).where(StravaConnection.user_id == user_id))
            deleted = result.rowcount > 0
        if deleted:
            logger.info("Strava connection removed", extra={"extra_fields": {"user_id": user_id}})
        return deleted
