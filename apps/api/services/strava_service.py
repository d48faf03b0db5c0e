"""
Strava HTTP client and paginated activity fetch.

`StravaClient` wraps a requests.Session with an explicit open()/close()
lifecycle so tests can hand in their own session. Every call has a bounded
timeout and ends in exactly one of:
- parsed JSON
- StravaRateLimitError (HTTP 429)
- StravaProviderError (any other non-2xx, network failure, bad body)
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests

from core.config import Settings, require_strava_config, settings

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_S = 900  # Strava rate limits reset on 15-minute boundaries


class StravaRateLimitError(RuntimeError):
    def __init__(self, message: str, *, retry_after_s: int):
        super().__init__(message)
        self.retry_after_s = int(retry_after_s)


class StravaProviderError(RuntimeError):
    """Non-2xx (other than 429) or transport failure talking to Strava."""

    def __init__(self, message: str, *, status_code: Optional[int], code: str = "provider_error"):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


def _retry_after(headers) -> int:
    try:
        return max(int(headers.get("Retry-After")), 1)
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER_S


class StravaClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        *,
        timeout: float = 30,
        api_base: str = "https://www.strava.com/api/v3",
        oauth_base: str = "https://www.strava.com/oauth",
        scope: str = "read,activity:read",
        session: Optional[requests.Session] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout
        self.api_base = api_base.rstrip("/")
        self.oauth_base = oauth_base.rstrip("/")
        self.scope = scope
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_settings(cls, s: Settings = settings, session: Optional[requests.Session] = None) -> "StravaClient":
        """Raises ConfigurationError when the Strava app credentials are missing."""
        client_id, client_secret, redirect_uri = require_strava_config(s)
        return cls(
            client_id,
            client_secret,
            redirect_uri,
            timeout=s.EXTERNAL_API_TIMEOUT,
            api_base=s.STRAVA_API_BASE,
            oauth_base=s.STRAVA_OAUTH_BASE,
            scope=s.STRAVA_SCOPE,
            session=session,
        )

    def open(self) -> "StravaClient":
        if self._session is None:
            self._session = requests.Session()
            self._owns_session = True
        return self

    def close(self) -> None:
        if self._session is not None and self._owns_session:
            self._session.close()
            self._session = None

    def __enter__(self) -> "StravaClient":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()

    # -- OAuth -------------------------------------------------------------

    def authorize_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": self.scope,
            "approval_prompt": "force",
            "state": state,
        }
        return f"{self.oauth_base}/authorize?{urlencode(params)}"

    def exchange_code(self, code: str) -> Dict[str, Any]:
        """
        Exchange an authorization code.

        Returns dict with: access_token, refresh_token, expires_at, athlete, ...
        """
        return self._request(
            "POST",
            f"{self.oauth_base}/token",
            json={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "grant_type": "authorization_code",
            },
        )

    def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        """
        Exchange a refresh token for a new access token.

        Returns dict with: access_token, refresh_token, expires_at, expires_in, token_type
        """
        return self._request(
            "POST",
            f"{self.oauth_base}/token",
            json={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )

    # -- API ---------------------------------------------------------------

    def get_activities_page(
        self,
        access_token: str,
        *,
        page: int,
        per_page: int,
        after: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        params = {"page": int(page), "per_page": int(per_page)}
        if after is not None and after > 0:
            params["after"] = int(after)
        data = self._request(
            "GET",
            f"{self.api_base}/athlete/activities",
            headers={"Authorization": f"Bearer {access_token}"},
            params=params,
        )
        return data if isinstance(data, list) else []

    def _request(self, method: str, url: str, **kwargs) -> Any:
        session = self.open()._session
        try:
            r = session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Strava request failed: {method} {url}: {e}")
            raise StravaProviderError(f"Strava request failed: {e}", status_code=None, code="network") from e

        if r.status_code == 429:
            retry_after = _retry_after(r.headers)
            logger.warning(
                "Strava rate limit reached",
                extra={"extra_fields": {"url": url, "retry_after_s": retry_after}},
            )
            raise StravaRateLimitError(
                f"429 Rate limited by Strava (Retry-After {retry_after}s)",
                retry_after_s=retry_after,
            )

        if r.status_code >= 400:
            try:
                payload = r.json()
            except ValueError:
                payload = {"message": r.text}
            message = str((payload or {}).get("message") or r.reason or "error")
            logger.warning(
                f"Strava returned {r.status_code}",
                extra={"extra_fields": {"url": url, "status_code": r.status_code, "message": message}},
            )
            raise StravaProviderError(
                f"Strava returned {r.status_code}: {message}",
                status_code=r.status_code,
                code=message,
            )

        try:
            return r.json()
        except ValueError as e:
            raise StravaProviderError(
                "Strava returned a non-JSON body",
                status_code=r.status_code,
                code="invalid_response",
            ) from e


def fetch_activities(
    client: StravaClient,
    access_token: str,
    *,
    since_epoch: Optional[int] = None,
    page_size: int = 50,
    max_records: int = 200,
) -> List[Dict[str, Any]]:
    """
    Page through /athlete/activities.

    Stops after a short (or empty) page or once `max_records` are
    accumulated, then trims to `max_records`. A 429 on any page aborts the
    whole fetch with StravaRateLimitError. Nothing is deduplicated here.
    """
    activities: List[Dict[str, Any]] = []
    page = 1
    while len(activities) < max_records:
        batch = client.get_activities_page(access_token, page=page, per_page=page_size, after=since_epoch)
        activities.extend(batch)
        if len(batch) < page_size:
            break
        page += 1
    return activities[:max_records]


def sync_since_epoch(
    last_sync_at: Optional[datetime],
    *,
    now: Optional[datetime] = None,
    initial_days: int = 30,
) -> int:
    """`after` for the next sync: the previous sync time, else `initial_days` ago."""
    if last_sync_at is not None:
        if last_sync_at.tzinfo is None:
            last_sync_at = last_sync_at.replace(tzinfo=timezone.utc)
        return int(last_sync_at.timestamp())
    now = now or datetime.now(timezone.utc)
    return int((now - timedelta(days=initial_days)).timestamp())
