"""
Overlap Detection Service

Detects double bookings for an agent. Only scheduled, confirmed and
rescheduled appointments hold a calendar position; touching boundaries are
not conflicts.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ...auth import RequestContext
from ...config import CONFLICT_MAX_SUGGESTIONS, CONFLICT_SUGGESTION_DAYS
from ...models import Appointment
from .errors import ValidationError
from .repository import AppointmentRepository
from .slot_service import SlotService, TimeSlot
from .time_calculator import day_bounds, to_utc

logger = logging.getLogger(__name__)


@dataclass
class ConflictResult:
    conflicts: list[Appointment] = field(default_factory=list)
    suggestions: list[TimeSlot] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return len(self.conflicts) > 0


class ConflictService:
    """Service layer for conflict detection and alternative suggestions"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = AppointmentRepository()
        self.slots = SlotService(db)

    def find_conflicts(
        self,
        ctx: RequestContext,
        agent_id: str,
        start: datetime,
        end: datetime,
        exclude_appointment_id: Optional[str] = None,
    ) -> list[Appointment]:
        start = to_utc(start)
        end = to_utc(end)
        if end <= start:
            raise ValidationError("endTime must be after startTime", field="endTime")
        return self.repo.get_overlapping(
            self.db, ctx.workspace_id, agent_id, start, end, exclude_id=exclude_appointment_id
        )

    def check(
        self,
        ctx: RequestContext,
        agent_id: str,
        start: datetime,
        end: datetime,
        exclude_appointment_id: Optional[str] = None,
        with_suggestions: bool = True,
        buffer_minutes: Optional[int] = None,
    ) -> ConflictResult:
        """
        Check a proposed interval against the agent's active appointments.

        When conflicts exist, suggestions are generated for the same duration
        over the same day +/- CONFLICT_SUGGESTION_DAYS.
        """
        start = to_utc(start)
        end = to_utc(end)
        conflicts = self.find_conflicts(ctx, agent_id, start, end, exclude_appointment_id)
        result = ConflictResult(conflicts=conflicts)

        if result.has_conflicts:
            logger.info(
                f"⚠️ {len(conflicts)} conflict(s) for agent {agent_id} at {start.isoformat()}"
            )
            if with_suggestions:
                result.suggestions = self.suggest_alternatives(
                    ctx, agent_id, start, end, buffer_minutes=buffer_minutes
                )

        return result

    def suggest_alternatives(
        self,
        ctx: RequestContext,
        agent_id: str,
        start: datetime,
        end: datetime,
        buffer_minutes: Optional[int] = None,
        limit: int = CONFLICT_MAX_SUGGESTIONS,
    ) -> list[TimeSlot]:
        """Free slots of the same duration closest to the requested start"""
        duration_minutes = int((end - start).total_seconds() // 60)
        if duration_minutes <= 0:
            return []

        window_start, _ = day_bounds(start.date() - timedelta(days=CONFLICT_SUGGESTION_DAYS))
        _, window_end = day_bounds(start.date() + timedelta(days=CONFLICT_SUGGESTION_DAYS))

        slots = self.slots.get_available_slots(
            ctx,
            agent_id,
            window_start,
            window_end,
            duration_minutes,
            buffer_minutes=buffer_minutes,
        )
        slots.sort(key=lambda s: (abs((s.start - start).total_seconds()), s.start))
        return sorted(slots[:limit], key=lambda s: s.start)
