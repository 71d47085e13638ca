"""
Availability Service

Resolves an agent's availability for a UTC range, considering:
- Recurring weekly (or daily/monthly) windows
- Date-specific available windows, which replace the recurring set for that
  date in every timezone
- Busy / break / vacation entries, which subtract from available time
- The timezone of each entry
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ...auth import RequestContext
from ...enums import AvailabilityKind, IntervalState
from ...models import AvailabilityEntry
from .errors import NotFoundError, ValidationError
from .repository import AvailabilityRepository
from .schemas import AvailabilityEntrySchema
from .time_calculator import (
    Interval,
    ResolvedInterval,
    clip,
    cover_range,
    get_timezone,
    local_dates,
    localize,
    merge_intervals,
    recurrence_matches,
    subtract_all,
    to_utc,
)

logger = logging.getLogger(__name__)

MAX_RANGE_DAYS = 366


def _place(entry, day, tz, available: list, blocked: list) -> None:
    start = localize(day, entry.start_time, tz)
    end = localize(day, entry.end_time, tz)
    if end <= start:
        # Wall-clock window collapsed by a DST jump
        return
    if AvailabilityKind(entry.kind) == AvailabilityKind.AVAILABLE:
        available.append(Interval(start, end))
    else:
        blocked.append(Interval(start, end))


def resolve_availability(
    entries: Iterable, range_start: datetime, range_end: datetime
) -> list[ResolvedInterval]:
    """
    Resolve availability entries into intervals covering [range_start, range_end).

    Returns an ordered, non-overlapping list of available / unavailable
    intervals in UTC. Pure: the same entries and range always give the same
    output.

    Steps:
        1. Collect the dates that carry explicit available windows
        2. Expand recurring entries per local date in their own timezone,
           skipping those dates
        3. Add explicit-date entries on their own date
        4. Subtract busy/break/vacation blocks, merge, clip to the range
        5. Fill the gaps as unavailable
    """
    range_start = to_utc(range_start)
    range_end = to_utc(range_end)
    if range_end <= range_start:
        return []

    recurring_by_zone = defaultdict(list)
    explicit = []
    for entry in entries:
        if entry.is_recurring:
            recurring_by_zone[entry.timezone or "UTC"].append(entry)
        elif entry.date is not None:
            explicit.append(entry)

    # Explicit available windows replace the recurring pattern for their date,
    # whatever timezone either side uses; explicit blocks only subtract
    override_dates = {
        e.date for e in explicit if AvailabilityKind(e.kind) == AvailabilityKind.AVAILABLE
    }

    available: list[Interval] = []
    blocked: list[Interval] = []

    for tz_name, zone_entries in recurring_by_zone.items():
        tz = get_timezone(tz_name)
        for day in local_dates(range_start, range_end, tz):
            if day in override_dates:
                continue
            for entry in zone_entries:
                if recurrence_matches(
                    entry.recurring_pattern, entry.day_of_week, entry.effective_from, day
                ):
                    _place(entry, day, tz, available, blocked)

    for entry in explicit:
        _place(entry, entry.date, get_timezone(entry.timezone), available, blocked)

    free = merge_intervals(subtract_all(merge_intervals(available), merge_intervals(blocked)))
    free = clip(free, range_start, range_end)
    return cover_range(free, range_start, range_end)


def available_only(resolved: Iterable[ResolvedInterval]) -> list[Interval]:
    return [Interval(r.start, r.end) for r in resolved if r.state == IntervalState.AVAILABLE]


class AvailabilityService:
    """Service layer for agent availability"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = AvailabilityRepository()

    def get_entries(self, ctx: RequestContext, agent_id: str) -> list[AvailabilityEntry]:
        return self.repo.get_for_agent(self.db, ctx.workspace_id, agent_id)

    def resolve(
        self, ctx: RequestContext, agent_id: str, range_start: datetime, range_end: datetime
    ) -> list[ResolvedInterval]:
        """Resolved free/busy intervals for an agent over [range_start, range_end)"""
        range_start = to_utc(range_start)
        range_end = to_utc(range_end)
        if range_end <= range_start:
            raise ValidationError("Range end must be after range start", field="endDate")
        if range_end - range_start > timedelta(days=MAX_RANGE_DAYS):
            raise ValidationError(
                f"Range cannot exceed {MAX_RANGE_DAYS} days", field="endDate"
            )

        entries = self.get_entries(ctx, agent_id)
        return resolve_availability(entries, range_start, range_end)

    def available_intervals(
        self, ctx: RequestContext, agent_id: str, range_start: datetime, range_end: datetime
    ) -> list[Interval]:
        return available_only(self.resolve(ctx, agent_id, range_start, range_end))

    def upsert_entries(
        self,
        ctx: RequestContext,
        agent_id: str,
        entries: list[AvailabilityEntrySchema],
        replace: bool = False,
    ) -> list[AvailabilityEntry]:
        """
        Create or update availability entries for an agent.

        Entries carrying an id update the stored entry; entries without one are
        created. With ``replace`` the agent's other entries are removed.
        """
        existing = {e.id: e for e in self.get_entries(ctx, agent_id)}
        saved = []

        for data in entries:
            if data.id:
                entry = existing.get(data.id)
                if entry is None:
                    raise NotFoundError(f"Availability entry {data.id} not found")
            else:
                entry = AvailabilityEntry(workspace_id=ctx.workspace_id, user_id=agent_id)
                self.db.add(entry)

            entry.kind = data.kind
            entry.is_recurring = data.isRecurring
            entry.day_of_week = data.dayOfWeek if data.isRecurring else None
            entry.date = None if data.isRecurring else data.date
            entry.recurring_pattern = (
                data.recurringPattern.to_storage() if data.recurringPattern else None
            )
            entry.effective_from = data.effectiveFrom
            entry.start_time = data.startTime
            entry.end_time = data.endTime
            entry.timezone = data.timezone
            entry.notes = data.notes
            saved.append(entry)

        removed = 0
        if replace:
            self.db.flush()
            keep = {e.id for e in saved}
            removed = self.repo.delete_many(
                self.db, [e for entry_id, e in existing.items() if entry_id not in keep]
            )

        self.db.commit()
        for entry in saved:
            self.db.refresh(entry)

        logger.info(
            f"📅 Availability updated for agent {agent_id}: {len(saved)} saved, {removed} removed"
        )
        return saved

    def delete_entry(self, ctx: RequestContext, entry_id: str) -> None:
        entry = self.repo.get_by_id(self.db, ctx.workspace_id, entry_id)
        if not entry:
            raise NotFoundError("Availability entry not found")
        self.repo.delete_many(self.db, [entry])
        self.db.commit()
        logger.info(f"🗑️ Availability entry {entry_id} deleted")


def day_window(day, tz_name: Optional[str] = None) -> tuple[datetime, datetime]:
    """UTC bounds of a local calendar day"""
    tz = get_timezone(tz_name)
    start = localize(day, datetime.min.time(), tz)
    end = localize(day + timedelta(days=1), datetime.min.time(), tz)
    return start, end
