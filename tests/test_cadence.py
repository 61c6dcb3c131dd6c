import random
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from core.cadence import (
    DailyCadence,
    HourlyCadence,
    compute_next_run_at,
    describe_cadence,
    parse_cadence,
    preview_runs,
    skeleton_next_run,
)

NY = ZoneInfo("America/New_York")
BERLIN = ZoneInfo("Europe/Berlin")
UTC = timezone.utc


class MaxRng:
    """Always returns the top of the jitter window."""

    def randint(self, a, b):
        return b


def daily(**overrides):
    cfg = {
        "mode": "daily",
        "timezone": "America/New_York",
        "startDate": "2024-06-09",
        "dailyHour": 20,
        "dailyRandomMinutes": 0,
    }
    cfg.update(overrides)
    return cfg


def hourly(**overrides):
    cfg = {
        "mode": "hourly",
        "timezone": "Europe/Berlin",
        "startDate": "2024-06-10",
        "everyHours": 6,
        "hourlyRandomMinutes": 0,
    }
    cfg.update(overrides)
    return cfg


class TestParseCadence:
    def test_daily_parses_into_struct(self):
        spec = parse_cadence(daily(dailyRandomMinutes=15))
        assert isinstance(spec, DailyCadence)
        assert spec.hour == 20
        assert spec.random_minutes == 15
        assert spec.zone == NY

    def test_hourly_parses_into_struct(self):
        spec = parse_cadence(hourly())
        assert isinstance(spec, HourlyCadence)
        assert spec.every_hours == 6

    def test_missing_jitter_means_zero(self):
        cfg = daily()
        del cfg["dailyRandomMinutes"]
        assert parse_cadence(cfg).random_minutes == 0

    @pytest.mark.parametrize(
        "cfg",
        [
            {k: v for k, v in daily().items() if k != "timezone"},
            {k: v for k, v in daily().items() if k != "startDate"},
            {k: v for k, v in daily().items() if k != "dailyHour"},
            daily(timezone="Mars/Olympus_Mons"),
            daily(mode="weekly"),
            daily(dailyHour=24),
            daily(dailyHour=-1),
            daily(dailyHour=True),
            daily(dailyRandomMinutes=121),
            daily(startDate="not-a-date"),
            hourly(everyHours=0),
            hourly(hourlyRandomMinutes=-5),
            {k: v for k, v in hourly().items() if k != "everyHours"},
            {},
            None,
            "daily",
        ],
    )
    def test_incomplete_specs_yield_no_next_run(self, cfg):
        assert parse_cadence(cfg) is None
        assert compute_next_run_at(cfg, datetime(2024, 6, 10, tzinfo=UTC)) is None


class TestDaily:
    def test_after_todays_slot_rolls_to_tomorrow(self):
        now = datetime(2024, 6, 10, 21, 0, tzinfo=NY)
        expected = datetime(2024, 6, 11, 20, 0, tzinfo=NY).astimezone(UTC)

        assert compute_next_run_at(daily(), now) == expected
        assert expected == datetime(2024, 6, 12, 0, 0, tzinfo=UTC)

    def test_before_todays_slot_stays_today(self):
        now = datetime(2024, 6, 10, 9, 30, tzinfo=NY)
        assert compute_next_run_at(daily(), now) == datetime(2024, 6, 10, 20, 0, tzinfo=NY)

    def test_exactly_at_slot_is_not_strictly_after(self):
        now = datetime(2024, 6, 10, 20, 0, tzinfo=NY)
        assert compute_next_run_at(daily(), now) == datetime(2024, 6, 11, 20, 0, tzinfo=NY)

    def test_future_start_date_anchors_first_run(self):
        now = datetime(2024, 6, 10, 9, 0, tzinfo=NY)
        result = compute_next_run_at(daily(startDate="2024-06-15"), now)
        assert result == datetime(2024, 6, 15, 20, 0, tzinfo=NY)

    def test_local_hour_survives_dst_change(self):
        # 2024-03-10 is the spring-forward day in New York.
        now = datetime(2024, 3, 9, 21, 0, tzinfo=NY)
        result = compute_next_run_at(daily(startDate="2024-03-01"), now)
        assert result == datetime(2024, 3, 11, 0, 0, tzinfo=UTC)
        assert result.astimezone(NY).hour == 20

    def test_jitter_only_delays_within_window(self):
        rng = random.Random(7)
        cfg = daily(dailyRandomMinutes=45)
        spec = parse_cadence(cfg)
        base = datetime(2024, 6, 10, 0, 0, tzinfo=UTC)
        for minutes in range(0, 48 * 60, 37):
            now = base + timedelta(minutes=minutes)
            skeleton = skeleton_next_run(spec, now)
            result = compute_next_run_at(cfg, now, rng)
            assert result > now
            assert skeleton <= result <= skeleton + timedelta(minutes=45)

    def test_jitter_upper_bound_is_inclusive(self):
        now = datetime(2024, 6, 10, 9, 0, tzinfo=NY)
        result = compute_next_run_at(daily(dailyRandomMinutes=30), now, MaxRng())
        assert result == datetime(2024, 6, 10, 20, 30, tzinfo=NY)

    def test_recompute_before_next_run_is_stable(self):
        spec = parse_cadence(daily())
        first = skeleton_next_run(spec, datetime(2024, 6, 10, 8, 0, tzinfo=NY))
        second = skeleton_next_run(spec, datetime(2024, 6, 10, 19, 59, tzinfo=NY))
        assert first == second == datetime(2024, 6, 10, 20, 0, tzinfo=NY)


class TestHourly:
    def test_aligns_to_start_date_boundaries(self):
        start = datetime(2024, 6, 10, 0, 0, tzinfo=BERLIN)
        now = start + timedelta(hours=2, minutes=30)
        assert compute_next_run_at(hourly(), now) == start + timedelta(hours=6)

    def test_exact_boundary_moves_to_next_one(self):
        start = datetime(2024, 6, 10, 0, 0, tzinfo=BERLIN)
        assert compute_next_run_at(hourly(), start + timedelta(hours=6)) == start + timedelta(hours=12)

    def test_future_start_date_anchors_at_local_midnight(self):
        now = datetime(2024, 6, 8, 15, 0, tzinfo=UTC)
        assert compute_next_run_at(hourly(), now) == datetime(2024, 6, 10, 0, 0, tzinfo=BERLIN)

    def test_repeated_runs_never_drift_from_anchor(self):
        rng = random.Random(11)
        cfg = hourly(everyHours=3, hourlyRandomMinutes=40)
        spec = parse_cadence(cfg)
        anchor = datetime(2024, 6, 10, 0, 0, tzinfo=BERLIN).astimezone(UTC)
        period = timedelta(hours=3)

        now = anchor + timedelta(minutes=17)
        for _ in range(50):
            skeleton = skeleton_next_run(spec, now)
            assert (skeleton - anchor) % period == timedelta(0)
            now = compute_next_run_at(cfg, now, rng)
            assert skeleton <= now <= skeleton + timedelta(minutes=40)

    def test_recompute_before_next_run_is_stable(self):
        spec = parse_cadence(hourly())
        start = datetime(2024, 6, 10, 0, 0, tzinfo=BERLIN)
        first = skeleton_next_run(spec, start + timedelta(hours=6, minutes=5))
        second = skeleton_next_run(spec, start + timedelta(hours=11, minutes=59))
        assert first == second == start + timedelta(hours=12)


class TestPreview:
    def test_daily_preview_lists_consecutive_days(self):
        now = datetime(2024, 6, 10, 21, 0, tzinfo=NY)
        runs = preview_runs(daily(), now, count=3)
        assert [r.astimezone(NY).day for r in runs] == [11, 12, 13]
        assert all(r.astimezone(NY).hour == 20 for r in runs)

    def test_preview_matches_execution(self):
        now = datetime(2024, 6, 10, 1, 0, tzinfo=UTC)
        assert preview_runs(hourly(), now, count=1)[0] == compute_next_run_at(hourly(), now)

    def test_preview_stops_at_unrepresentable_period(self):
        cfg = hourly(everyHours=10**12)
        anchor = datetime(2024, 6, 10, 0, 0, tzinfo=BERLIN)

        runs = preview_runs(cfg, datetime(2024, 6, 8, 0, 0, tzinfo=UTC), count=3)

        assert runs == [anchor]
        assert compute_next_run_at(cfg, anchor + timedelta(hours=1)) is None

    def test_incomplete_preview_is_empty(self):
        assert preview_runs({"mode": "daily"}, count=3) == []

    def test_describe(self):
        assert describe_cadence(daily()).startswith("Daily at 20:00")
        assert describe_cadence(hourly()).startswith("Every 6h")
        assert "incomplete" in describe_cadence({})
