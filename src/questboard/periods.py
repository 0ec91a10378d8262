"""Day/week window utilities for quests, XP caps and leaderboard snapshots.

Windows are computed in the configured wall-clock zone and returned as UTC
datetimes. Weeks start on Sunday (day 0) and end Saturday 23:59:59.999.
Window ends are inclusive, one millisecond before the next window starts.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)

CADENCE_DAILY = "daily"
CADENCE_WEEKLY = "weekly"
CADENCE_ONE_TIME = "one-time"
ONE_TIME_PERIOD_KEY = "once"


@dataclass(frozen=True)
class Window:
    start: datetime
    end: datetime
    # First instant of the following window (None for unbounded windows)
    next_start: datetime | None = None

    def contains(self, dt: datetime) -> bool:
        return self.start <= dt <= self.end


def _local_midnight(d: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(d, time.min, tzinfo=tz).astimezone(timezone.utc)


def get_sunday(dt: datetime, tz: ZoneInfo) -> date:
    """Get the Sunday starting the local week containing dt."""
    d = dt.astimezone(tz).date()
    # weekday(): Monday=0 .. Sunday=6
    return d - timedelta(days=(d.weekday() + 1) % 7)


def day_window(now: datetime, tz: ZoneInfo) -> Window:
    """Local day containing now: [00:00:00, 23:59:59.999]."""
    today = now.astimezone(tz).date()
    start = _local_midnight(today, tz)
    next_start = _local_midnight(today + timedelta(days=1), tz)
    return Window(start, next_start - _ONE_MS, next_start)


def week_window(now: datetime, tz: ZoneInfo) -> Window:
    """Local Sunday-to-Saturday week containing now."""
    sunday = get_sunday(now, tz)
    start = _local_midnight(sunday, tz)
    next_start = _local_midnight(sunday + timedelta(days=7), tz)
    return Window(start, next_start - _ONE_MS, next_start)


def all_time_window(now: datetime) -> Window:
    return Window(EPOCH, now)


def window_for(kind: str, now: datetime, tz: ZoneInfo) -> Window:
    """Window for a cadence ('daily'/'weekly') or leaderboard period ('all-time')."""
    if kind == CADENCE_DAILY:
        return day_window(now, tz)
    if kind == CADENCE_WEEKLY:
        return week_window(now, tz)
    if kind == "all-time":
        return all_time_window(now)
    raise ValueError(f"Unknown period: {kind}")


def period_key(cadence: str, window: Window | None, tz: ZoneInfo) -> str:
    """Stable key identifying a quest period, e.g. 'daily:2026-10-18'."""
    if cadence == CADENCE_ONE_TIME or window is None:
        return ONE_TIME_PERIOD_KEY
    return f"{cadence}:{window.start.astimezone(tz).date().isoformat()}"
