"""
Tests for the Strava HTTP client and paginated fetch.

The client is handed a MagicMock session, so no network is touched.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from services.strava_service import (
    DEFAULT_RETRY_AFTER_S,
    StravaClient,
    StravaProviderError,
    StravaRateLimitError,
    fetch_activities,
    sync_since_epoch,
)


def _client(session):
    return StravaClient(
        "12345",
        "secret",
        "https://api.example.test/api/strava/callback",
        timeout=5,
        session=session,
    )


class TestRequestErrors:
    def test_429_is_rate_limited_with_retry_after(self, make_response):
        session = MagicMock()
        session.request.return_value = make_response(429, {"message": "Rate Limit Exceeded"}, {"Retry-After": "120"})

        with pytest.raises(StravaRateLimitError) as exc_info:
            _client(session).get_activities_page("token", page=1, per_page=50)

        assert exc_info.value.retry_after_s == 120

    def test_429_without_header_uses_default_wait(self, make_response):
        session = MagicMock()
        session.request.return_value = make_response(429, {})

        with pytest.raises(StravaRateLimitError) as exc_info:
            _client(session).refresh_access_token("refresh")

        assert exc_info.value.retry_after_s == DEFAULT_RETRY_AFTER_S

    def test_500_is_provider_error_not_rate_limit(self, make_response):
        session = MagicMock()
        session.request.return_value = make_response(500, {"message": "Server Error"})

        with pytest.raises(StravaProviderError) as exc_info:
            _client(session).get_activities_page("token", page=1, per_page=50)

        assert not isinstance(exc_info.value, StravaRateLimitError)
        assert exc_info.value.status_code == 500
        assert exc_info.value.code == "Server Error"

    def test_network_failure_is_provider_error(self):
        session = MagicMock()
        session.request.side_effect = requests.exceptions.ConnectTimeout("timed out")

        with pytest.raises(StravaProviderError) as exc_info:
            _client(session).exchange_code("abc")

        assert exc_info.value.status_code is None
        assert exc_info.value.code == "network"

    def test_non_json_body_is_provider_error(self, make_response):
        session = MagicMock()
        session.request.return_value = make_response(200, None, text="<html>")

        with pytest.raises(StravaProviderError) as exc_info:
            _client(session).exchange_code("abc")

        assert exc_info.value.code == "invalid_response"

    def test_every_call_has_a_timeout(self, make_response):
        session = MagicMock()
        session.request.return_value = make_response(200, [])

        _client(session).get_activities_page("token", page=2, per_page=30, after=1714521600)

        method, url = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        assert method == "GET"
        assert url.endswith("/athlete/activities")
        assert kwargs["timeout"] == 5
        assert kwargs["params"] == {"page": 2, "per_page": 30, "after": 1714521600}
        assert kwargs["headers"] == {"Authorization": "Bearer token"}


class TestOAuthRequests:
    def test_authorize_url(self):
        url = _client(MagicMock()).authorize_url("opaque-state")

        parsed = urlparse(url)
        query = parse_qs(parsed.query)
        assert parsed.path.endswith("/oauth/authorize")
        assert query["client_id"] == ["12345"]
        assert query["response_type"] == ["code"]
        assert query["scope"] == ["read,activity:read"]
        assert query["state"] == ["opaque-state"]
        assert query["redirect_uri"] == ["https://api.example.test/api/strava/callback"]

    def test_refresh_posts_refresh_grant(self, make_response):
        session = MagicMock()
        session.request.return_value = make_response(200, {"access_token": "new"})

        data = _client(session).refresh_access_token("old-refresh")

        assert data == {"access_token": "new"}
        body = session.request.call_args.kwargs["json"]
        assert body["grant_type"] == "refresh_token"
        assert body["refresh_token"] == "old-refresh"

    def test_injected_session_is_not_closed(self):
        session = MagicMock()
        client = _client(session)

        client.close()

        session.close.assert_not_called()


class FakePagedClient:
    """Serves `total` activities in pages; records the pages requested."""

    def __init__(self, total, rate_limit_on_page=None):
        self.total = total
        self.rate_limit_on_page = rate_limit_on_page
        self.pages = []

    def get_activities_page(self, access_token, *, page, per_page, after=None):
        self.pages.append(page)
        if page == self.rate_limit_on_page:
            raise StravaRateLimitError("429", retry_after_s=60)
        start = (page - 1) * per_page
        return [{"id": i} for i in range(start, min(start + per_page, self.total))]


class TestFetchActivities:
    def test_stops_after_short_page(self):
        client = FakePagedClient(total=110)

        activities = fetch_activities(client, "token", page_size=50, max_records=200)

        assert len(activities) == 110
        assert client.pages == [1, 2, 3]

    def test_empty_first_page(self):
        client = FakePagedClient(total=0)

        assert fetch_activities(client, "token", page_size=50) == []
        assert client.pages == [1]

    def test_stops_at_cap(self):
        client = FakePagedClient(total=1000)

        activities = fetch_activities(client, "token", page_size=50, max_records=200)

        assert len(activities) == 200
        assert client.pages == [1, 2, 3, 4]

    def test_overshoot_is_trimmed_to_cap(self):
        client = FakePagedClient(total=1000)

        activities = fetch_activities(client, "token", page_size=50, max_records=120)

        assert len(activities) == 120
        assert client.pages == [1, 2, 3]
        assert activities[-1] == {"id": 119}

    def test_rate_limit_mid_fetch_aborts(self):
        client = FakePagedClient(total=1000, rate_limit_on_page=2)

        with pytest.raises(StravaRateLimitError):
            fetch_activities(client, "token", page_size=50)


class TestSyncWindow:
    def test_first_sync_goes_back_initial_days(self):
        now = datetime(2024, 5, 31, tzinfo=timezone.utc)

        since = sync_since_epoch(None, now=now, initial_days=30)

        assert since == int((now - timedelta(days=30)).timestamp())

    def test_later_syncs_start_at_last_sync(self):
        last = datetime(2024, 5, 30, 12, tzinfo=timezone.utc)

        assert sync_since_epoch(last, initial_days=30) == int(last.timestamp())

    def test_naive_last_sync_is_utc(self):
        assert sync_since_epoch(datetime(2024, 5, 30, 12)) == int(
            datetime(2024, 5, 30, 12, tzinfo=timezone.utc).timestamp()
        )
