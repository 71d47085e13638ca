"""
Slot Generation Service

Generates discrete bookable slots, considering:
- Resolved availability (a slot never spans a gap)
- Existing appointments padded by the buffer on both sides
- Active holds on slots that are not committed yet
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ...auth import RequestContext
from ...config import DEFAULT_BUFFER_MINUTES, DEFAULT_SLOT_STEP_MINUTES
from ...database import utcnow
from ...enums import NON_BLOCKING_STATUSES, IntervalState
from .availability_service import AvailabilityService
from .errors import ValidationError
from .repository import AppointmentRepository, HoldRepository
from .time_calculator import Interval, overlaps, to_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimeSlot:
    start: datetime
    end: datetime
    duration: int
    available: bool = True
    conflict_reason: Optional[str] = None


@dataclass(frozen=True)
class _BlockedWindow:
    start: datetime
    end: datetime
    reason: str


def validate_slot_params(duration_minutes: int, buffer_minutes: int, step_minutes: int) -> None:
    if duration_minutes is None or duration_minutes <= 0:
        raise ValidationError("Duration must be a positive number of minutes", field="duration")
    if buffer_minutes < 0:
        raise ValidationError("Buffer cannot be negative", field="bufferMinutes")
    if step_minutes <= 0:
        raise ValidationError("Step must be a positive number of minutes", field="stepMinutes")


def _blocked_windows(busy: Iterable, holds: Iterable, buffer: timedelta) -> list[_BlockedWindow]:
    windows = []
    for appointment in busy:
        status = getattr(appointment, "status", None)
        if status is not None and status in NON_BLOCKING_STATUSES:
            continue
        windows.append(
            _BlockedWindow(
                appointment.start_time - buffer,
                appointment.end_time + buffer,
                f"Overlaps appointment {getattr(appointment, 'id', '')}".strip(),
            )
        )
    for hold in holds:
        windows.append(
            _BlockedWindow(hold.start_time - buffer, hold.end_time + buffer, "Slot is held by another booking")
        )
    windows.sort(key=lambda w: w.start)
    return windows


def generate_slots(
    availability: Iterable,
    busy: Iterable = (),
    duration_minutes: int = 60,
    buffer_minutes: int = 0,
    step_minutes: int = DEFAULT_SLOT_STEP_MINUTES,
    holds: Iterable = (),
    include_unavailable: bool = False,
) -> list[TimeSlot]:
    """
    Walk each available interval in step increments and keep the candidates that fit.

    A candidate [start, start + duration) is valid when it and its trailing
    buffer fit inside one available interval and it does not overlap any
    blocking appointment's [start - buffer, end + buffer) window.

    Args:
        availability: resolved intervals (unavailable ones are skipped) or plain Intervals
        busy: appointments of the agent; cancelled / no_show never block
        holds: active holds, blocking exactly like appointments
        include_unavailable: also return rejected candidates with a conflict_reason
    """
    validate_slot_params(duration_minutes, buffer_minutes, step_minutes)

    duration = timedelta(minutes=duration_minutes)
    buffer = timedelta(minutes=buffer_minutes)
    step = timedelta(minutes=step_minutes)
    windows = _blocked_windows(busy, holds, buffer)

    intervals = [
        Interval(to_utc(r.start), to_utc(r.end))
        for r in availability
        if getattr(r, "state", IntervalState.AVAILABLE) == IntervalState.AVAILABLE
    ]
    intervals.sort(key=lambda i: i.start)

    slots = []
    for interval in intervals:
        candidate = interval.start
        while candidate + duration + buffer <= interval.end:
            end = candidate + duration
            reason = None
            for window in windows:
                if window.start >= end:
                    break
                if overlaps(candidate, end, window.start, window.end):
                    reason = window.reason
                    break

            if reason is None:
                slots.append(TimeSlot(candidate, end, duration_minutes))
            elif include_unavailable:
                slots.append(
                    TimeSlot(candidate, end, duration_minutes, available=False, conflict_reason=reason)
                )
            candidate += step

    return slots


class SlotService:
    """Wires availability, bookings and holds into the slot generator"""

    def __init__(self, db: Session):
        self.db = db
        self.availability = AvailabilityService(db)
        self.appointment_repo = AppointmentRepository()
        self.hold_repo = HoldRepository()

    def get_available_slots(
        self,
        ctx: RequestContext,
        agent_id: str,
        range_start: datetime,
        range_end: datetime,
        duration_minutes: int,
        buffer_minutes: Optional[int] = None,
        step_minutes: Optional[int] = None,
        include_unavailable: bool = False,
        now: Optional[datetime] = None,
        exclude_hold_id: Optional[str] = None,
    ) -> list[TimeSlot]:
        """Bookable slots for an agent in [range_start, range_end)"""
        buffer_minutes = DEFAULT_BUFFER_MINUTES if buffer_minutes is None else buffer_minutes
        step_minutes = step_minutes or DEFAULT_SLOT_STEP_MINUTES
        validate_slot_params(duration_minutes, buffer_minutes, step_minutes)

        range_start = to_utc(range_start)
        range_end = to_utc(range_end)
        resolved = self.availability.resolve(ctx, agent_id, range_start, range_end)

        padding = timedelta(minutes=buffer_minutes)
        busy = self.appointment_repo.get_overlapping(
            self.db,
            ctx.workspace_id,
            agent_id,
            range_start - padding,
            range_end + padding,
            active_only=False,
        )
        holds = [
            hold
            for hold in self.hold_repo.get_active(
                self.db,
                ctx.workspace_id,
                agent_id,
                now or utcnow(),
                range_start - padding,
                range_end + padding,
            )
            if hold.id != exclude_hold_id
        ]

        slots = generate_slots(
            resolved,
            busy,
            duration_minutes=duration_minutes,
            buffer_minutes=buffer_minutes,
            step_minutes=step_minutes,
            holds=holds,
            include_unavailable=include_unavailable,
        )
        logger.debug(
            f"Generated {len(slots)} slots for agent {agent_id} "
            f"({range_start.isoformat()} - {range_end.isoformat()})"
        )
        return slots
