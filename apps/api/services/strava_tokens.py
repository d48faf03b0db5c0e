"""
Strava OAuth token lifecycle.

    Disconnected -> Connected(valid) -> Connected(expiring) -> Connected(valid) -> Disconnected
                    (code exchange)     (within buffer)        (refresh)           (disconnect)

`get_valid_access_token` hands out a token only after any refresh has been
persisted. Refreshing is single-flight per user: callers serialize on a
per-user lock (plus a Redis lock when Redis is configured) and re-read the
connection once they hold it, so a caller that waited reuses the token the
first one stored instead of refreshing again.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from redis.exceptions import TimeoutError as RedisLockTimeout

from core.cache import distributed_lock
from services.strava_connections import ConnectionSnapshot, StravaConnectionRepository
from services.strava_service import StravaClient, StravaProviderError, StravaRateLimitError

logger = logging.getLogger(__name__)


class StravaNotConnectedError(RuntimeError):
    """The user has no (usable) Strava connection."""


class StravaRefreshError(RuntimeError):
    """Token refresh failed. The stored connection is left as it was."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UserLocks:
    """One threading.Lock per user id, created on first use."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def get(self, user_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.Lock()
            return lock


# Shared by every manager in the process; managers are built per request.
_refresh_locks = UserLocks()


def athlete_display_name(athlete: Optional[Dict[str, Any]]) -> Optional[str]:
    """'Firstname Lastname', falling back to the username."""
    athlete = athlete or {}
    full = " ".join(p for p in (athlete.get("firstname"), athlete.get("lastname")) if p).strip()
    return full or athlete.get("username") or None


class StravaTokenManager:
    def __init__(
        self,
        repository: StravaConnectionRepository,
        client: StravaClient,
        *,
        refresh_buffer_s: int = 300,
        clock: Callable[[], float] = time.time,
        locks: UserLocks = _refresh_locks,
        lock_wait_s: float = 30.0,
    ):
        self.repository = repository
        self.client = client
        self.refresh_buffer_s = refresh_buffer_s
        self.clock = clock
        self.locks = locks
        self.lock_wait_s = lock_wait_s

    # -- connect / disconnect ---------------------------------------------

    def complete_authorization(self, user_id: str, code: str, scope: Optional[str] = None) -> ConnectionSnapshot:
        """
        Exchange an OAuth code and store the connection (upsert on user_id).

        `scope` is what the athlete actually granted (Strava reports it on the
        callback, not in the token response).

        Raises StravaProviderError / StravaRateLimitError from the exchange and
        PersistenceError if it cannot be stored.
        """
        data = self.client.exchange_code(code)
        athlete = data.get("athlete") or {}
        if not data.get("access_token") or not data.get("refresh_token") or athlete.get("id") is None:
            raise StravaProviderError(
                "Strava token response is missing tokens or athlete",
                status_code=None,
                code="invalid_response",
            )
        return self.repository.save_connection(
            user_id,
            athlete_id=athlete["id"],
            athlete_name=athlete_display_name(athlete),
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_at=self._expires_at(data),
            scope=scope or data.get("scope"),
        )

    def disconnect(self, user_id: str) -> bool:
        return self.repository.delete(user_id)

    # -- tokens ------------------------------------------------------------

    def needs_refresh(self, connection: ConnectionSnapshot) -> bool:
        return connection.expires_at < self.clock() + self.refresh_buffer_s

    def get_valid_access_token(self, user_id: str) -> str:
        connection = self._load(user_id)
        if not self.needs_refresh(connection):
            return connection.access_token

        with self.locks.get(user_id):
            try:
                with distributed_lock(f"strava-refresh:{user_id}", ttl_s=60, wait_s=self.lock_wait_s):
                    # Someone may have refreshed while we waited.
                    connection = self._load(user_id)
                    if not self.needs_refresh(connection):
                        return connection.access_token
                    return self._refresh(connection)
            except RedisLockTimeout as e:
                raise StravaRefreshError("Timed out waiting for another token refresh") from e

    def _load(self, user_id: str) -> ConnectionSnapshot:
        connection = self.repository.get(user_id)
        if connection is None:
            raise StravaNotConnectedError(f"No Strava connection for user {user_id}")
        if not connection.access_token or not connection.refresh_token:
            logger.error(f"Stored Strava tokens for user {user_id} cannot be decrypted")
            raise StravaNotConnectedError(f"Stored Strava tokens for user {user_id} are unreadable")
        return connection

    def _refresh(self, connection: ConnectionSnapshot) -> str:
        user_id = connection.user_id
        try:
            data = self.client.refresh_access_token(connection.refresh_token)
        except StravaRateLimitError:
            raise
        except StravaProviderError as e:
            logger.warning(
                f"Strava token refresh failed for user {user_id}: {e}",
                extra={"extra_fields": {"user_id": user_id, "status_code": e.status_code}},
            )
            raise StravaRefreshError(str(e), status_code=e.status_code) from e

        access_token = data.get("access_token")
        if not access_token:
            raise StravaRefreshError("Strava refresh response has no access_token")
        refresh_token = data.get("refresh_token") or connection.refresh_token
        expires_at = self._expires_at(data)

        if not self.repository.save_tokens(
            user_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
        ):
            # Disconnected while the refresh was in flight.
            raise StravaNotConnectedError(f"Strava connection for user {user_id} was removed")

        logger.info(
            "Strava token refreshed",
            extra={"extra_fields": {"user_id": user_id, "expires_at": expires_at}},
        )
        return access_token

    def _expires_at(self, data: Dict[str, Any]) -> int:
        if data.get("expires_at") is not None:
            return int(data["expires_at"])
        if data.get("expires_in") is not None:
            return int(self.clock()) + int(data["expires_in"])
        raise StravaRefreshError("Strava token response has no expiry")
