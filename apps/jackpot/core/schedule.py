from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from apps.jackpot.db.models import JackpotType


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back naive; everything is stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _at(day: date, draw_time: time) -> datetime:
    return datetime.combine(day, draw_time.replace(tzinfo=None), tzinfo=timezone.utc)


def compute_next_draw_at(
    frequency: str,
    draw_time: time,
    draw_day_of_week: int | None,
    after: datetime,
) -> datetime:
    """First draw instant strictly after ``after``.

    ``draw_day_of_week`` counts from Sunday (0) to Saturday (6). Monthly
    pools draw on the first day of the month.
    """
    after = ensure_utc(after)
    if frequency == JackpotType.DAILY.value:
        candidate = _at(after.date(), draw_time)
        if candidate <= after:
            candidate += timedelta(days=1)
        return candidate
    if frequency == JackpotType.WEEKLY.value:
        if draw_day_of_week is None or not 0 <= draw_day_of_week <= 6:
            raise ValueError("weekly pools need draw_day_of_week in 0..6")
        target_weekday = (draw_day_of_week - 1) % 7
        days_ahead = (target_weekday - after.weekday()) % 7
        candidate = _at(after.date() + timedelta(days=days_ahead), draw_time)
        if candidate <= after:
            candidate += timedelta(days=7)
        return candidate
    if frequency == JackpotType.MONTHLY.value:
        candidate = _at(after.date().replace(day=1), draw_time)
        if candidate <= after:
            year, month = (after.year + 1, 1) if after.month == 12 else (after.year, after.month + 1)
            candidate = _at(date(year, month, 1), draw_time)
        return candidate
    raise ValueError(f"unknown draw frequency: {frequency}")


@dataclass(frozen=True)
class Countdown:
    days: int
    hours: int
    minutes: int
    seconds: int

    @property
    def total_seconds(self) -> int:
        return ((self.days * 24 + self.hours) * 60 + self.minutes) * 60 + self.seconds

    def to_dict(self) -> dict[str, int]:
        return {"days": self.days, "hours": self.hours, "minutes": self.minutes, "seconds": self.seconds}


def time_until_draw(next_draw_at: datetime | None, now: datetime | None = None) -> Countdown:
    if next_draw_at is None:
        return Countdown(0, 0, 0, 0)
    now = ensure_utc(now or utcnow())
    remaining = int((ensure_utc(next_draw_at) - now).total_seconds())
    if remaining <= 0:
        return Countdown(0, 0, 0, 0)
    days, remaining = divmod(remaining, 86_400)
    hours, remaining = divmod(remaining, 3_600)
    minutes, seconds = divmod(remaining, 60)
    return Countdown(days, hours, minutes, seconds)


def format_countdown(next_draw_at: datetime | None, now: datetime | None = None) -> str:
    left = time_until_draw(next_draw_at, now)
    if left.days > 0:
        return f"{left.days}d {left.hours}h {left.minutes}m"
    if left.hours > 0:
        return f"{left.hours}h {left.minutes}m {left.seconds}s"
    return f"{left.minutes}m {left.seconds}s"
