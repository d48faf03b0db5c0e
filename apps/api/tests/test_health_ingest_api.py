"""
Tests for the device ingest and canonical read endpoints.

Covers:
- Re-posting a batch is a no-op (insert-or-ignore on the natural keys)
- Daily metrics are first-write-wins
- Malformed bodies are a 400 and write nothing
- A failed batch is rolled back as a whole
- Optional API key (x-api-key or Bearer)
- Inclusive date bounds on the reads
"""
from datetime import datetime, timezone
from unittest.mock import patch

from sqlalchemy.exc import SQLAlchemyError

from core.config import settings


def _parse(ts: str) -> datetime:
    return datetime.fromisoformat(ts.replace("Z", "+00:00"))


def _workout(**overrides):
    body = {
        "externalId": "hk-1",
        "source": "Apple Health",
        "startTime": "2024-05-01T07:00:00Z",
        "endTime": "2024-05-01T07:45:00Z",
        "type": "HKWorkoutActivityTypeRunning",
        "calories": 420.5,
        "distanceKm": 8.2,
        "avgHeartRate": 152,
        "device": "Apple Watch",
    }
    body.update(overrides)
    return body


def _metric(**overrides):
    body = {
        "dateISO": "2024-05-01",
        "source": "Apple Health",
        "steps": 10432.0,
        "sleepHours": 7.25,
        "avgBPM": 61,
        "caloriesBurned": 650,
        "sleepStages": [
            {"stage": "Awake", "minutes": 15},
            {"stage": "REM", "minutes": 95},
            {"stage": "Core", "minutes": 250},
            {"stage": "Deep", "minutes": 90},
        ],
    }
    body.update(overrides)
    return body


class TestIngestIdempotency:
    def test_second_post_of_same_workout_is_skipped(self, client):
        payload = {"workouts": [_workout()], "metrics": []}

        first = client.post("/api/health/ingest", json=payload)
        assert first.status_code == 200
        assert first.json() == {
            "ok": True,
            "workoutsInserted": 1,
            "metricsInserted": 0,
            "workoutsSkipped": 0,
            "metricsSkipped": 0,
        }

        second = client.post("/api/health/ingest", json=payload)
        assert second.status_code == 200
        assert second.json()["workoutsInserted"] == 0
        assert second.json()["workoutsSkipped"] == 1

        rows = client.get("/api/workouts").json()
        assert len(rows) == 1

    def test_scenario_minimal_running_workout(self, client):
        payload = {"workouts": [{
            "source": "Apple Health",
            "externalId": "abc",
            "startTime": "2024-01-01T10:00:00Z",
            "endTime": "2024-01-01T10:45:00Z",
            "type": "Running",
        }]}

        assert client.post("/api/health/ingest", json=payload).json()["workoutsInserted"] == 1
        assert client.post("/api/health/ingest", json=payload).json()["workoutsInserted"] == 0

    def test_workout_type_is_normalized(self, client):
        client.post("/api/health/ingest", json={"workouts": [_workout()]})

        rows = client.get("/api/workouts").json()
        assert rows[0]["type"] == "Running"
        assert rows[0]["externalId"] == "hk-1"
        assert rows[0]["distanceKm"] == 8.2

    def test_unknown_type_becomes_workout(self, client):
        client.post("/api/health/ingest", json={"workouts": [_workout(type="HKWorkoutActivityTypeYoga")]})

        rows = client.get("/api/workouts").json()
        assert rows[0]["type"] == "Workout"

    def test_offset_timestamps_are_stored_in_utc(self, client):
        client.post(
            "/api/health/ingest",
            json={"workouts": [_workout(startTime="2024-05-01T09:00:00+02:00", endTime="2024-05-01T09:30:00+02:00")]},
        )

        row = client.get("/api/workouts").json()[0]
        assert _parse(row["startTime"]) == datetime(2024, 5, 1, 7, 0, tzinfo=timezone.utc)
        assert _parse(row["endTime"]) == datetime(2024, 5, 1, 7, 30, tzinfo=timezone.utc)

    def test_workouts_without_external_id_dedupe_on_window_and_type(self, client):
        workout = _workout(externalId=None)
        other_type = _workout(externalId=None, type="Walking")

        resp = client.post("/api/health/ingest", json={"workouts": [workout, workout, other_type]})

        assert resp.json()["workoutsInserted"] == 2
        assert resp.json()["workoutsSkipped"] == 1

    def test_metrics_are_first_write_wins(self, client):
        first = client.post("/api/health/ingest", json={"metrics": [_metric()]})
        assert first.json()["metricsInserted"] == 1

        second = client.post("/api/health/ingest", json={"metrics": [_metric(steps=99999)]})
        assert second.json()["metricsInserted"] == 0
        assert second.json()["metricsSkipped"] == 1

        rows = client.get("/api/metrics").json()
        assert len(rows) == 1
        assert rows[0]["steps"] == 10432

    def test_same_day_from_another_source_is_a_separate_metric(self, client):
        resp = client.post(
            "/api/health/ingest",
            json={"metrics": [_metric(), _metric(source="Garmin", steps=9000)]},
        )
        assert resp.json()["metricsInserted"] == 2


class TestIngestValidation:
    def test_end_before_start_is_rejected(self, client):
        resp = client.post(
            "/api/health/ingest",
            json={"workouts": [_workout(endTime="2024-05-01T06:00:00Z")]},
        )

        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid payload"
        assert client.get("/api/workouts").json() == []

    def test_missing_required_field_rejects_whole_batch(self, client):
        bad_metric = _metric()
        del bad_metric["dateISO"]

        resp = client.post(
            "/api/health/ingest",
            json={"workouts": [_workout()], "metrics": [bad_metric]},
        )

        assert resp.status_code == 400
        assert client.get("/api/workouts").json() == []

    def test_negative_steps_rejected(self, client):
        resp = client.post("/api/health/ingest", json={"metrics": [_metric(steps=-5)]})
        assert resp.status_code == 400

    def test_store_failure_rolls_back_the_batch(self, client):
        with patch(
            "services.upsert_store.insert_daily_metrics",
            side_effect=SQLAlchemyError("disk full"),
        ):
            resp = client.post(
                "/api/health/ingest",
                json={"workouts": [_workout()], "metrics": [_metric()]},
            )

        assert resp.status_code == 500
        assert resp.json() == {"error": "Database error"}
        assert client.get("/api/workouts").json() == []


class TestApiKey:
    def test_open_when_no_key_configured(self, client):
        assert client.get("/api/workouts").status_code == 200

    def test_missing_key_is_401(self, client, monkeypatch):
        monkeypatch.setattr(settings, "API_KEY", "device-key")

        resp = client.post("/api/health/ingest", json={"workouts": [_workout()]})

        assert resp.status_code == 401
        assert resp.json()["error"] == "Unauthorized"

    def test_wrong_key_is_401(self, client, monkeypatch):
        monkeypatch.setattr(settings, "API_KEY", "device-key")

        resp = client.get("/api/metrics", headers={"x-api-key": "nope"})

        assert resp.status_code == 401

    def test_header_key_accepted(self, client, monkeypatch):
        monkeypatch.setattr(settings, "API_KEY", "device-key")

        resp = client.post(
            "/api/health/ingest",
            json={"workouts": [_workout()]},
            headers={"x-api-key": "device-key"},
        )

        assert resp.status_code == 200
        assert resp.json()["workoutsInserted"] == 1

    def test_bearer_key_accepted(self, client, monkeypatch):
        monkeypatch.setattr(settings, "API_KEY", "device-key")

        resp = client.get("/api/workouts", headers={"Authorization": "Bearer device-key"})

        assert resp.status_code == 200


class TestReads:
    def _seed(self, client):
        workouts = [
            _workout(externalId="a", startTime="2024-05-01T07:00:00Z", endTime="2024-05-01T08:00:00Z"),
            _workout(externalId="b", startTime="2024-05-02T23:30:00Z", endTime="2024-05-02T23:59:00Z"),
            _workout(externalId="c", startTime="2024-05-03T00:10:00Z", endTime="2024-05-03T01:00:00Z"),
        ]
        metrics = [
            _metric(dateISO="2024-05-01"),
            _metric(dateISO="2024-05-02", sleepStages=None, steps=8000),
            _metric(dateISO="2024-05-03"),
        ]
        client.post("/api/health/ingest", json={"workouts": workouts, "metrics": metrics})

    def test_workout_bounds_are_inclusive_whole_days(self, client):
        self._seed(client)

        rows = client.get("/api/workouts", params={"from": "2024-05-01", "to": "2024-05-02"}).json()

        assert [r["externalId"] for r in rows] == ["b", "a"]

    def test_workout_timestamp_bound_includes_exact_match(self, client):
        self._seed(client)

        rows = client.get("/api/workouts", params={"to": "2024-05-01T07:00:00Z"}).json()

        assert [r["externalId"] for r in rows] == ["a"]

    def test_metric_bounds_are_inclusive(self, client):
        self._seed(client)

        rows = client.get("/api/metrics", params={"from": "2024-05-02", "to": "2024-05-03"}).json()

        assert [r["dateISO"] for r in rows] == ["2024-05-03", "2024-05-02"]

    def test_sleep_stages_come_back_as_a_list(self, client):
        self._seed(client)

        rows = {r["dateISO"]: r for r in client.get("/api/metrics").json()}

        assert rows["2024-05-01"]["sleepStages"] == [
            {"stage": "Awake", "minutes": 15.0},
            {"stage": "REM", "minutes": 95.0},
            {"stage": "Core", "minutes": 250.0},
            {"stage": "Deep", "minutes": 90.0},
        ]
        assert rows["2024-05-01"]["avgBPM"] == 61.0
        assert rows["2024-05-02"]["sleepStages"] is None

    def test_bad_bound_is_400(self, client):
        resp = client.get("/api/workouts", params={"from": "last tuesday"})

        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR_FROM"
