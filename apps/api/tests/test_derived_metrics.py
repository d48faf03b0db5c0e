"""
Tests for the derived metrics engine (pure functions, no database).
"""
from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from schemas import LiftMetric, RunInputType, SleepStageName
from services.derived_metrics import (
    cumulative_workouts,
    derive_run_fields,
    e1rm,
    has_enough_rpe,
    health_period_averages,
    heaviest_lift,
    in_window,
    lift_progress_series,
    lifted_tonnage,
    normalize_run_pace,
    overview_stats,
    pace_from_time,
    period_sleep_composition,
    run_pace_series,
    sleep_stage_composition,
    time_from_pace,
    total_reps,
    workouts_per_day,
)

TODAY = date(2024, 5, 31)


def _lift(day, weight, reps, lift="Deadlift", rpe=None):
    return SimpleNamespace(date_iso=day, lift=lift, weight_kg=weight, reps=reps, rpe=rpe)


def _run(day, distance, input_type, time_seconds, pace, rounds=1):
    return SimpleNamespace(
        date_iso=day,
        distance_meters=distance,
        input_type=input_type,
        time_seconds=time_seconds,
        pace_sec_per_km=pace,
        rounds=rounds,
    )


def _metric(day, steps=None, sleep_hours=None, avg_bpm=None, calories=None, stages=None):
    return SimpleNamespace(
        date_iso=day,
        steps=steps,
        sleep_hours=sleep_hours,
        avg_bpm=avg_bpm,
        calories_burned=calories,
        sleep_stages=stages,
    )


class TestStrength:
    def test_e1rm_epley(self):
        assert round(e1rm(100, 5), 2) == 116.67
        assert e1rm(100, 0) == 100

    def test_e1rm_grows_with_weight(self):
        for reps in (1, 5, 10):
            assert e1rm(100, reps) < e1rm(102.5, reps)

    def test_tonnage_and_totals(self):
        lifts = [_lift(TODAY, 100, 5), _lift(TODAY, 140, 3, lift="BackSquat")]

        assert lifted_tonnage(lifts) == pytest.approx(0.92)
        assert total_reps(lifts) == 8
        assert heaviest_lift(lifts) == 140
        assert heaviest_lift([]) is None

    def test_rpe_threshold(self):
        lifts = [
            _lift(TODAY, 100, 5, rpe=8),
            _lift(TODAY, 100, 5, rpe=8.5),
            _lift(TODAY, 100, 5),
            _lift(TODAY, 80, 5, lift="BenchPress", rpe=7),
        ]

        assert has_enough_rpe(lifts, "Deadlift", threshold=3) is False
        lifts.append(_lift(TODAY, 105, 3, rpe=9))
        assert has_enough_rpe(lifts, "Deadlift", threshold=3) is True

    def test_progress_series_filters_lift_and_window(self):
        lifts = [
            _lift(TODAY - timedelta(days=3), 100, 5),
            _lift(TODAY - timedelta(days=10), 95, 5),
            _lift(TODAY - timedelta(days=200), 80, 5),
            _lift(TODAY, 60, 8, lift="BenchPress"),
        ]

        series = lift_progress_series(lifts, "Deadlift", LiftMetric.E1RM, window=90, today=TODAY)

        assert series == [
            (TODAY - timedelta(days=10), 110.8),
            (TODAY - timedelta(days=3), 116.7),
        ]

    def test_rpe_series_skips_entries_without_rpe(self):
        lifts = [_lift(TODAY, 100, 5, rpe=8), _lift(TODAY - timedelta(days=1), 100, 5)]

        series = lift_progress_series(lifts, "Deadlift", LiftMetric.RPE, window=30, today=TODAY)

        assert series == [(TODAY, 8.0)]


class TestRuns:
    def test_time_entry_derives_pace(self):
        time_seconds, pace = derive_run_fields(800, RunInputType.TIME, time_seconds=228)

        assert time_seconds == 228
        assert pace == pytest.approx(285.0)

    def test_pace_entry_derives_time(self):
        time_seconds, pace = derive_run_fields(5000, RunInputType.PACE, pace_sec_per_km=300)

        assert (time_seconds, pace) == (1500.0, 300)

    def test_round_trip(self):
        pace = pace_from_time(228, 800)

        assert time_from_pace(pace, 800) == pytest.approx(228)

    def test_authoritative_field_required(self):
        with pytest.raises(ValueError):
            derive_run_fields(800, RunInputType.TIME)
        with pytest.raises(ValueError):
            derive_run_fields(800, RunInputType.PACE, time_seconds=200)
        with pytest.raises(ValueError):
            derive_run_fields(0, RunInputType.TIME, time_seconds=200)

    def test_normalized_pace_prefers_stored_pace_for_pace_runs(self):
        pace_run = _run(TODAY, 1000, RunInputType.PACE, 241.0, 240.0)
        time_run = _run(TODAY, 400, RunInputType.TIME, 80.0, 999.0)

        assert normalize_run_pace(pace_run) == 240.0
        assert normalize_run_pace(time_run) == pytest.approx(200.0)

    def test_pace_series_by_distance(self):
        runs = [
            _run(TODAY - timedelta(days=1), 800, RunInputType.TIME, 228, 285.0, rounds=6),
            _run(TODAY - timedelta(days=5), 400, RunInputType.TIME, 80, 200.0, rounds=10),
            _run(TODAY - timedelta(days=8), 800, RunInputType.TIME, 232, 290.0, rounds=5),
        ]

        series = run_pace_series(runs, window=30, today=TODAY, distance_m=800)

        assert series == [
            (TODAY - timedelta(days=8), 290.0, 5),
            (TODAY - timedelta(days=1), 285.0, 6),
        ]


class TestWindows:
    def test_window_is_inclusive(self):
        assert in_window(TODAY - timedelta(days=30), window=30, today=TODAY)
        assert in_window(TODAY, window=30, today=TODAY)
        assert not in_window(TODAY - timedelta(days=31), window=30, today=TODAY)
        assert not in_window(TODAY + timedelta(days=1), window=30, today=TODAY)

    def test_gap_filled_series_has_window_plus_one_points(self):
        series = workouts_per_day([TODAY - timedelta(days=2)], window=30, today=TODAY)

        assert len(series) == 31
        assert series[0] == (TODAY - timedelta(days=30), 0)
        assert series[-1] == (TODAY, 0)
        assert sum(count for _, count in series) == 1

    def test_cumulative_counts(self):
        dates = [TODAY - timedelta(days=2), TODAY - timedelta(days=2), TODAY]

        series = cumulative_workouts(dates, window=3, today=TODAY)

        assert [(count, running) for _, count, running in series] == [(0, 0), (2, 2), (0, 2), (1, 3)]


class TestHealth:
    def test_averages_ignore_absent_values(self):
        metrics = [
            _metric(TODAY, steps=10000, sleep_hours=7.0),
            _metric(TODAY - timedelta(days=1), steps=6000, avg_bpm=60),
            _metric(TODAY - timedelta(days=2)),
        ]

        averages = health_period_averages(metrics, period_days=7, today=TODAY)

        assert averages == {
            "avg_steps": 8000.0,
            "avg_sleep_hours": 7.0,
            "avg_bpm": 60.0,
            "avg_calories": None,
        }

    def test_averages_respect_period(self):
        metrics = [_metric(TODAY, steps=10000), _metric(TODAY - timedelta(days=10), steps=2000)]

        assert health_period_averages(metrics, period_days=7, today=TODAY)["avg_steps"] == 10000.0
        assert health_period_averages(metrics, period_days=30, today=TODAY)["avg_steps"] == 6000.0

    def test_sleep_composition_shares(self):
        composition = sleep_stage_composition([
            {"stage": "Core", "minutes": 200},
            {"stage": "Deep", "minutes": 100},
            {"stage": "Awake", "minutes": 20},
            {"stage": "REM", "minutes": 80},
        ])

        assert composition == [
            (SleepStageName.AWAKE, 20.0, 0.05),
            (SleepStageName.REM, 80.0, 0.2),
            (SleepStageName.CORE, 200.0, 0.5),
            (SleepStageName.DEEP, 100.0, 0.25),
        ]
        assert sleep_stage_composition([]) == []

    def test_period_composition_sums_nights(self):
        metrics = [
            _metric(TODAY, stages=[{"stage": "Deep", "minutes": 60}]),
            _metric(TODAY - timedelta(days=1), stages=[{"stage": "Deep", "minutes": 40}, {"stage": "Core", "minutes": 100}]),
            _metric(TODAY - timedelta(days=2)),
        ]

        composition = period_sleep_composition(metrics, period_days=7, today=TODAY)

        assert composition == [
            (SleepStageName.CORE, 100.0, 0.5),
            (SleepStageName.DEEP, 100.0, 0.5),
        ]


class TestOverview:
    def test_totals_and_curve(self):
        lifts = [_lift(TODAY, 100, 5), _lift(TODAY - timedelta(days=40), 200, 1)]
        cardio = [SimpleNamespace(date_iso=TODAY - timedelta(days=1), machine="RowErg", seconds=600, calories=150)]
        runs = [_run(TODAY - timedelta(days=2), 5000, RunInputType.TIME, 1500, 300.0)]
        start = datetime(2024, 5, 30, 6, 0, tzinfo=timezone.utc)
        imported = [SimpleNamespace(start_time=start, end_time=start + timedelta(minutes=90), calories=500.0)]

        stats = overview_stats(lifts=lifts, cardio=cardio, runs=runs, imported=imported, window=30, today=TODAY)

        assert stats.total_workouts == 4
        assert stats.lifted_tons == 0.5
        assert stats.total_reps == 5
        assert stats.heaviest_lift_kg == 100
        assert stats.imported_hours == 1.5
        assert stats.active_calories == 500.0
        assert len(stats.series) == 31
        assert stats.series[-1][2] == 4
