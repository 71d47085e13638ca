"""Time parsing and interval arithmetic for the scheduling domain.

All intervals are half-open ``[start, end)`` and use timezone-aware UTC
datetimes. Local wall-clock times from availability entries are localized
with pytz and converted to UTC before any arithmetic.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Optional

import pytz

from ...enums import IntervalState, RecurrenceFrequency


@dataclass(frozen=True)
class Interval:
    start: datetime
    end: datetime

    @property
    def minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60


@dataclass(frozen=True)
class ResolvedInterval:
    start: datetime
    end: datetime
    state: IntervalState

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end, "state": self.state.value}


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC; naive values are read as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def get_timezone(tz_name: Optional[str]):
    """Resolve an IANA name, raising ValueError for unknown zones"""
    try:
        return pytz.timezone(tz_name or "UTC")
    except pytz.UnknownTimeZoneError:
        raise ValueError(f"Unknown timezone '{tz_name}'") from None


def localize(day: date, wall_time: time, tz) -> datetime:
    """Combine a local date and wall-clock time, returning UTC"""
    local_dt = tz.localize(datetime.combine(day, wall_time))
    return local_dt.astimezone(timezone.utc)


def js_weekday(day: date) -> int:
    """Weekday number with 0 = Sunday ... 6 = Saturday"""
    return (day.weekday() + 1) % 7


def local_dates(range_start: datetime, range_end: datetime, tz) -> list[date]:
    """Every local calendar date touched by [range_start, range_end)"""
    first = to_utc(range_start).astimezone(tz).date()
    last = (to_utc(range_end) - timedelta(microseconds=1)).astimezone(tz).date()
    days = []
    current = first
    while current <= last:
        days.append(current)
        current += timedelta(days=1)
    return days


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open overlap test; touching boundaries do not overlap"""
    return a_start < b_end and a_end > b_start


def merge_intervals(intervals: Iterable[Interval]) -> list[Interval]:
    """Union overlapping or adjacent intervals"""
    ordered = sorted(intervals, key=lambda i: (i.start, i.end))
    if not ordered:
        return []

    merged = [ordered[0]]
    for current in ordered[1:]:
        last = merged[-1]
        if current.start <= last.end:
            if current.end > last.end:
                merged[-1] = Interval(last.start, current.end)
        else:
            merged.append(current)
    return merged


def subtract_interval(interval: Interval, block: Interval) -> list[Interval]:
    """Remove block from interval, leaving 0, 1 or 2 pieces"""
    if block.end <= interval.start or block.start >= interval.end:
        return [interval]

    pieces = []
    if block.start > interval.start:
        pieces.append(Interval(interval.start, block.start))
    if block.end < interval.end:
        pieces.append(Interval(block.end, interval.end))
    return pieces


def subtract_all(intervals: Iterable[Interval], blocks: Iterable[Interval]) -> list[Interval]:
    remaining = list(intervals)
    for block in blocks:
        next_remaining = []
        for interval in remaining:
            next_remaining.extend(subtract_interval(interval, block))
        remaining = next_remaining
    return remaining


def clip(intervals: Iterable[Interval], range_start: datetime, range_end: datetime) -> list[Interval]:
    clipped = []
    for interval in intervals:
        start = max(interval.start, range_start)
        end = min(interval.end, range_end)
        if start < end:
            clipped.append(Interval(start, end))
    return clipped


def cover_range(
    available: list[Interval], range_start: datetime, range_end: datetime
) -> list[ResolvedInterval]:
    """Lay available intervals over the range and fill the gaps as unavailable.

    ``available`` must already be merged, sorted and clipped to the range.
    """
    resolved = []
    cursor = range_start
    for interval in available:
        if interval.start > cursor:
            resolved.append(ResolvedInterval(cursor, interval.start, IntervalState.UNAVAILABLE))
        resolved.append(ResolvedInterval(interval.start, interval.end, IntervalState.AVAILABLE))
        cursor = interval.end
    if cursor < range_end:
        resolved.append(ResolvedInterval(cursor, range_end, IntervalState.UNAVAILABLE))
    return resolved


def _months_between(anchor: date, target: date) -> int:
    return (target.year - anchor.year) * 12 + (target.month - anchor.month)


def recurrence_matches(
    pattern: Optional[dict],
    day_of_week: Optional[int],
    anchor: Optional[date],
    target: date,
) -> bool:
    """Decide whether a recurring entry applies on ``target``.

    ``pattern`` is the stored {frequency, interval, end_date, days_of_week}
    struct; a missing pattern means "every week on day_of_week".
    """
    pattern = pattern or {}
    if anchor and target < anchor:
        return False

    end_date = pattern.get("end_date")
    if end_date:
        if isinstance(end_date, str):
            end_date = date.fromisoformat(end_date[:10])
        if target > end_date:
            return False

    frequency = RecurrenceFrequency(pattern.get("frequency", RecurrenceFrequency.WEEKLY.value))
    interval = max(1, int(pattern.get("interval") or 1))

    if frequency == RecurrenceFrequency.DAILY:
        days = pattern.get("days_of_week")
        if days and js_weekday(target) not in days:
            return False
        if anchor and interval > 1:
            return (target - anchor).days % interval == 0
        return True

    if frequency == RecurrenceFrequency.WEEKLY:
        days = pattern.get("days_of_week") or ([day_of_week] if day_of_week is not None else [])
        if js_weekday(target) not in days:
            return False
        if anchor and interval > 1:
            anchor_week = anchor - timedelta(days=js_weekday(anchor))
            target_week = target - timedelta(days=js_weekday(target))
            return ((target_week - anchor_week).days // 7) % interval == 0
        return True

    # Monthly: same day-of-month as the anchor, or the weekday filter without one
    if anchor:
        if target.day != anchor.day:
            return False
        return _months_between(anchor, target) % interval == 0
    return day_of_week is not None and js_weekday(target) == day_of_week


def round_up(value: datetime, step_minutes: int) -> datetime:
    """Round a UTC datetime up to the next multiple of step_minutes"""
    value = value.replace(second=0, microsecond=0) + (
        timedelta(minutes=1) if value.second or value.microsecond else timedelta()
    )
    remainder = (value.hour * 60 + value.minute) % step_minutes
    if remainder:
        value += timedelta(minutes=step_minutes - remainder)
    return value


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """UTC midnight-to-midnight bounds of a calendar date"""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)
