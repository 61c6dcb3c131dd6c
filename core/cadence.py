"""Compute when a campaign should fire next.

A cadence is either *daily* (one post per day at a fixed local hour) or
*hourly* (one post every N hours, counted from local midnight of the start
date). Wall-clock construction happens in the campaign's own timezone; every
comparison and every returned value is UTC.

The same functions back both execution (``CampaignRunner`` recomputing
``next_run_at`` after a post) and display (``cli.py --preview``), so what a
user is shown is exactly what will be scheduled.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, List, Mapping, Optional, Union
from zoneinfo import ZoneInfo

from core.logger import get_logger
from core.timeutil import as_utc, resolve_zone, utcnow

log = get_logger("Cadence")

MODES = ("daily", "hourly")
MAX_RANDOM_MINUTES = 120


@dataclass(frozen=True)
class DailyCadence:
    timezone: str
    zone: ZoneInfo
    start_date: date
    hour: int
    random_minutes: int = 0

    mode = "daily"


@dataclass(frozen=True)
class HourlyCadence:
    timezone: str
    zone: ZoneInfo
    start_date: date
    every_hours: int
    random_minutes: int = 0

    mode = "hourly"


Cadence = Union[DailyCadence, HourlyCadence]


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str) and value.strip():
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _as_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and len(value.strip()) >= 10:
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def _random_minutes(raw: Mapping[str, Any], key: str) -> Optional[int]:
    # An absent jitter field means "no jitter"; a present one must be in range.
    if raw.get(key) is None:
        return 0
    minutes = _as_int(raw.get(key))
    if minutes is None or not 0 <= minutes <= MAX_RANDOM_MINUTES:
        return None
    return minutes


def parse_cadence(raw: Any) -> Optional[Cadence]:
    """Validate a ``scheduleConfig`` blob. Returns None when it is incomplete."""

    if isinstance(raw, (DailyCadence, HourlyCadence)):
        return raw
    if not isinstance(raw, Mapping):
        return None

    mode = raw.get("mode")
    zone = resolve_zone(raw.get("timezone"))
    start_date = _as_date(raw.get("startDate"))
    if mode not in MODES or zone is None or start_date is None:
        return None

    if mode == "daily":
        hour = _as_int(raw.get("dailyHour"))
        jitter = _random_minutes(raw, "dailyRandomMinutes")
        if hour is None or not 0 <= hour <= 23 or jitter is None:
            return None
        return DailyCadence(raw["timezone"].strip(), zone, start_date, hour, jitter)

    every = _as_int(raw.get("everyHours"))
    jitter = _random_minutes(raw, "hourlyRandomMinutes")
    if every is None or every < 1 or jitter is None:
        return None
    return HourlyCadence(raw["timezone"].strip(), zone, start_date, every, jitter)


def is_complete(raw: Any) -> bool:
    return parse_cadence(raw) is not None


def _wall_clock(zone: ZoneInfo, day: date, hour: int) -> datetime:
    """``day`` at ``hour``:00 local time, as UTC."""
    return as_utc(datetime(day.year, day.month, day.day, hour, tzinfo=zone))


def _daily_skeleton(spec: DailyCadence, now: datetime) -> datetime:
    today = now.astimezone(spec.zone).date()
    target = _wall_clock(spec.zone, today, spec.hour)
    if target <= now:
        target = _wall_clock(spec.zone, today + timedelta(days=1), spec.hour)

    if _wall_clock(spec.zone, spec.start_date, 0) > target:
        target = _wall_clock(spec.zone, spec.start_date, spec.hour)
    return target


def _hourly_skeleton(spec: HourlyCadence, now: datetime) -> datetime:
    # Boundaries sit a whole number of periods after local midnight of the
    # start date, measured in elapsed hours so DST shifts cannot skew them.
    anchor = _wall_clock(spec.zone, spec.start_date, 0)
    if anchor > now:
        return anchor
    period = timedelta(hours=spec.every_hours)
    periods_elapsed = (now - anchor) // period
    return anchor + (periods_elapsed + 1) * period


def skeleton_next_run(spec: Cadence, now: datetime) -> datetime:
    """Jitter-free next run strictly after ``now`` (UTC)."""

    now = as_utc(now)
    if isinstance(spec, DailyCadence):
        return _daily_skeleton(spec, now)
    return _hourly_skeleton(spec, now)


def jitter(random_minutes: int, rng=None) -> timedelta:
    """Delay-only offset in [0, random_minutes] minutes, whole seconds."""

    if random_minutes <= 0:
        return timedelta(0)
    rng = rng or random
    return timedelta(seconds=rng.randint(0, random_minutes * 60))


def compute_next_run_at(config: Any, now: Optional[datetime] = None, rng=None) -> Optional[datetime]:
    """Next UTC execution instant for a cadence, or None if it is incomplete.

    ``config`` may be the raw ``scheduleConfig`` mapping or an already parsed
    cadence. ``rng`` only needs ``randint`` and exists so tests can pin the
    jitter.
    """

    spec = parse_cadence(config)
    if spec is None:
        return None
    now = as_utc(now) if now is not None else utcnow()
    try:
        skeleton = skeleton_next_run(spec, now)
        return skeleton + jitter(spec.random_minutes, rng)
    except (OverflowError, ValueError) as exc:
        log.error(f"Could not compute next run for {spec.mode} cadence in {spec.timezone}: {exc}")
        return None


def preview_runs(
    config: Any,
    now: Optional[datetime] = None,
    count: int = 5,
    rng=None,
    with_jitter: bool = False,
) -> List[datetime]:
    """The next ``count`` run instants, each computed from the previous one."""

    spec = parse_cadence(config)
    if spec is None or count <= 0:
        return []
    cursor = as_utc(now) if now is not None else utcnow()
    runs: List[datetime] = []
    for _ in range(count):
        try:
            instant = skeleton_next_run(spec, cursor)
        except (OverflowError, ValueError) as exc:
            log.error(f"Preview stopped after {len(runs)} run(s) for {spec.mode} cadence in {spec.timezone}: {exc}")
            break
        if with_jitter:
            instant = instant + jitter(spec.random_minutes, rng)
        runs.append(instant)
        cursor = instant
    return runs


def describe_cadence(config: Any) -> str:
    spec = parse_cadence(config)
    if spec is None:
        return "not scheduled (incomplete cadence)"
    if isinstance(spec, DailyCadence):
        return f"Daily at {spec.hour:02d}:00 + {spec.random_minutes}m · TZ {spec.timezone} · from {spec.start_date}"
    return f"Every {spec.every_hours}h + {spec.random_minutes}m · TZ {spec.timezone} · from {spec.start_date}"
