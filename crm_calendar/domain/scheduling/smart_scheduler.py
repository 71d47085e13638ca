"""
Smart Scheduling Service

Picks and books the best slot for a request:
- Candidates come from the slot generator over the search window
- Each candidate is scored on preferred-date proximity, priority-weighted
  earliness, same-day agent load and the agent's weakest completion hour
- The winner is re-checked and committed through the appointment store,
  retrying on a fresh snapshot when another booking wins the race
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ...auth import RequestContext
from ...config import (
    DEFAULT_SLOT_STEP_MINUTES,
    SCORE_WEIGHT_HOUR,
    SCORE_WEIGHT_LOAD,
    SCORE_WEIGHT_PROXIMITY,
    SCORE_WEIGHT_URGENCY,
    SMART_SCHEDULE_MAX_RETRIES,
    SMART_SCHEDULE_TIMEOUT_SECONDS,
    SMART_SCHEDULE_WINDOW_DAYS,
)
from ...database import utcnow
from ...enums import AppointmentPriority, AppointmentType
from .analytics_service import AnalyticsService
from .appointment_service import AppointmentService, CommitHook
from .conflict_service import ConflictService
from .errors import (
    ConcurrencyError,
    ConflictError,
    InvalidRequestError,
    NoAvailabilityError,
    SchedulingTimeoutError,
)
from .repository import AppointmentRepository
from .schemas import AppointmentCreate, SmartScheduleRequest
from .slot_service import SlotService, TimeSlot
from .time_calculator import day_bounds, round_up

logger = logging.getLogger(__name__)

# How strongly each priority pulls the choice toward the start of the window
PRIORITY_EARLINESS = {
    AppointmentPriority.URGENT: 1.0,
    AppointmentPriority.HIGH: 0.6,
    AppointmentPriority.MEDIUM: 0.2,
    AppointmentPriority.LOW: 0.0,
}

PREPARATION_TIPS = {
    AppointmentType.VIEWING: [
        "Confirm property access and keys",
        "Review the listing details and recent comparable sales",
        "Prepare a viewing feedback form",
    ],
    AppointmentType.MEETING: [
        "Review the contact's history and open deals",
        "Share an agenda ahead of the meeting",
    ],
    AppointmentType.CALL: [
        "Review notes from previous conversations",
        "Prepare the key questions to qualify the lead",
    ],
    AppointmentType.INSPECTION: [
        "Bring the inspection checklist",
        "Confirm access with the occupant",
    ],
    AppointmentType.SIGNING: [
        "Prepare the final documents for signature",
        "Verify identification requirements for all parties",
    ],
    AppointmentType.CONSULTATION: [
        "Review the contact's stated requirements",
        "Prepare current market insights",
    ],
}

MAX_ALTERNATIVE_DATES = 5


@dataclass
class ScoredSlot:
    slot: TimeSlot
    score: float
    factors: dict = field(default_factory=dict)
    preferred_distance: Optional[int] = None
    same_day_load: int = 0


def score_slot(
    slot: TimeSlot,
    window_start: datetime,
    window_end: datetime,
    priority: AppointmentPriority,
    preferred_dates: list[date],
    day_load: Counter,
    avoid_hour: Optional[int] = None,
) -> ScoredSlot:
    """Weighted score of one candidate; every factor lies in [0, 1]"""
    slot_day = slot.start.date()

    distance = None
    proximity = 0.0
    if preferred_dates:
        distance = min(abs((slot_day - d).days) for d in preferred_dates)
        proximity = 1 / (1 + distance)

    span = (window_end - window_start).total_seconds()
    earliness = 1.0 - min(1.0, max(0.0, (slot.start - window_start).total_seconds() / span))
    urgency = PRIORITY_EARLINESS[priority] * earliness

    load_count = day_load.get(slot_day, 0)
    load = 1 / (1 + load_count)

    hour = 0.0 if avoid_hour is not None and slot.start.hour == avoid_hour else 1.0

    factors = {
        "proximity": SCORE_WEIGHT_PROXIMITY * proximity,
        "urgency": SCORE_WEIGHT_URGENCY * urgency,
        "load": SCORE_WEIGHT_LOAD * load,
        "hour": SCORE_WEIGHT_HOUR * hour,
    }
    return ScoredSlot(
        slot=slot,
        score=sum(factors.values()),
        factors=factors,
        preferred_distance=distance,
        same_day_load=load_count,
    )


def rank_slots(scored: list[ScoredSlot]) -> list[ScoredSlot]:
    # Highest score first; equal scores fall back to the earliest start
    return sorted(scored, key=lambda s: (-s.score, s.slot.start))


def build_reason(
    best: ScoredSlot, priority: AppointmentPriority, has_preferred: bool, avoid_hour: Optional[int]
) -> str:
    """Explain the choice from its strongest scoring factors"""
    phrases = {}
    if priority in (AppointmentPriority.URGENT, AppointmentPriority.HIGH):
        phrases["urgency"] = (
            f"{priority.value.capitalize()} priority, so the earliest suitable time was favored"
        )
    if has_preferred:
        if best.preferred_distance == 0:
            phrases["proximity"] = "Falls on a preferred date"
        else:
            days = best.preferred_distance
            phrases["proximity"] = (
                f"Closest opening to the preferred dates ({days} day{'s' if days != 1 else ''} away)"
            )
    if best.same_day_load == 0:
        phrases["load"] = "The agent has no other appointments that day"
    else:
        phrases["load"] = f"Balances the agent's load ({best.same_day_load} other that day)"
    if avoid_hour is not None:
        phrases["hour"] = f"Avoids {avoid_hour:02d}:00 UTC, the agent's lowest completion hour"

    ordered = sorted(phrases, key=lambda name: -best.factors.get(name, 0.0))
    required = {"urgency", "proximity"}
    chosen = [name for i, name in enumerate(ordered) if i < 2 or name in required]
    if not chosen:
        return "Best available slot based on the agent's availability."
    return "; ".join(phrases[name] for name in chosen) + "."


class SmartScheduler:
    """Service layer for automated slot selection and booking"""

    def __init__(self, db: Session):
        self.db = db
        self.slots = SlotService(db)
        self.conflicts = ConflictService(db)
        self.appointments = AppointmentService(db)
        self.analytics = AnalyticsService(db)
        self.repo = AppointmentRepository()

    @staticmethod
    def _validate(request: SmartScheduleRequest) -> None:
        if not request.contactId:
            raise InvalidRequestError("contactId is required", field="contactId")
        if not request.assignedToId:
            raise InvalidRequestError("assignedToId is required", field="assignedToId")
        if request.type is None:
            raise InvalidRequestError("type is required", field="type")
        if request.duration is None or request.duration <= 0:
            raise InvalidRequestError("duration must be a positive number of minutes", field="duration")

    @staticmethod
    def _check_deadline(deadline: float) -> None:
        if time.monotonic() >= deadline:
            raise SchedulingTimeoutError("Smart scheduling exceeded its time budget")

    @staticmethod
    def search_window(now: datetime, preferred_dates: list[date]) -> tuple[datetime, datetime]:
        window_start = now
        if preferred_dates:
            window_start = max(now, day_bounds(min(preferred_dates))[0])
        window_start = round_up(window_start, DEFAULT_SLOT_STEP_MINUTES)

        window_end = window_start + timedelta(days=SMART_SCHEDULE_WINDOW_DAYS)
        if preferred_dates:
            window_end = max(window_end, day_bounds(max(preferred_dates))[1])
        return window_start, window_end

    def _day_load(self, ctx: RequestContext, agent_id: str, start: datetime, end: datetime) -> Counter:
        booked = self.repo.get_overlapping(self.db, ctx.workspace_id, agent_id, start, end)
        return Counter(a.start_time.date() for a in booked)

    def _alternative_dates(
        self, ctx: RequestContext, agent_id: str, duration: int, after: datetime, now: datetime
    ) -> list[date]:
        slots = self.slots.get_available_slots(
            ctx,
            agent_id,
            after,
            after + timedelta(days=SMART_SCHEDULE_WINDOW_DAYS),
            duration,
            now=now,
        )
        dates = sorted({s.start.date() for s in slots})
        return dates[:MAX_ALTERNATIVE_DATES]

    def schedule(
        self,
        ctx: RequestContext,
        request: SmartScheduleRequest,
        now: Optional[datetime] = None,
        deadline: Optional[float] = None,
        on_commit: Optional[list[CommitHook]] = None,
    ) -> dict:
        """
        Choose and book the best slot for the request.

        Args:
            now: reference time, defaults to the current UTC time
            deadline: time.monotonic() value after which the search gives up

        Returns:
            {"appointment": Appointment, "recommendation": {...}}

        Raises:
            InvalidRequestError: missing contact, agent or type, or a bad duration
            NoAvailabilityError: no candidate slot in the window
            ConflictError: every attempt lost its slot to a concurrent booking
            SchedulingTimeoutError: the deadline passed before a commit
        """
        self._validate(request)
        now = now or utcnow()
        if deadline is None:
            deadline = time.monotonic() + (request.timeoutSeconds or SMART_SCHEDULE_TIMEOUT_SECONDS)

        agent_id = request.assignedToId
        preferred = sorted(set(request.preferredDates or []))
        window_start, window_end = self.search_window(now, preferred)
        logger.info(
            f"🤖 Smart scheduling {request.type.value} for contact {request.contactId} "
            f"with agent {agent_id} ({window_start.date()} - {window_end.date()})"
        )

        avoid_hour = self.analytics.lowest_completion_hour(ctx, agent_id, now=now)
        last_slot = None
        max_attempts = max(1, SMART_SCHEDULE_MAX_RETRIES)

        for attempt in range(1, max_attempts + 1):
            self._check_deadline(deadline)
            # Fresh snapshot on every attempt
            self.db.expire_all()

            candidates = self.slots.get_available_slots(
                ctx, agent_id, window_start, window_end, request.duration, now=now
            )
            self._check_deadline(deadline)
            if not candidates:
                alternatives = self._alternative_dates(
                    ctx, agent_id, request.duration, window_end, now
                )
                logger.warning(f"⚠️ No availability for agent {agent_id} in the search window")
                raise NoAvailabilityError(
                    "No available slots found in the search window", alternative_dates=alternatives
                )

            day_load = self._day_load(ctx, agent_id, window_start, window_end)
            ranked = rank_slots(
                [
                    score_slot(
                        slot, window_start, window_end, request.priority, preferred, day_load, avoid_hour
                    )
                    for slot in candidates
                ]
            )
            best = ranked[0]
            last_slot = best.slot

            # Race guard before committing
            check = self.conflicts.check(
                ctx, agent_id, best.slot.start, best.slot.end, with_suggestions=False
            )
            if check.has_conflicts:
                logger.warning(f"⚠️ Attempt {attempt}: slot {best.slot.start.isoformat()} taken, retrying")
                continue

            self._check_deadline(deadline)
            try:
                appointment = self.appointments.create(
                    ctx, self._build_create(request, best), on_commit=on_commit
                )
            except (ConflictError, ConcurrencyError) as e:
                logger.warning(f"⚠️ Attempt {attempt}: lost booking race ({e.code}), retrying")
                continue

            reason = build_reason(best, request.priority, bool(preferred), avoid_hour)
            logger.info(
                f"✅ Smart scheduled appointment {appointment.id} at "
                f"{appointment.start_time.isoformat()} (score {best.score:.3f})"
            )
            return {
                "appointment": appointment,
                "recommendation": {
                    "priority": request.priority,
                    "reason": reason,
                    "suggestedPreparation": list(PREPARATION_TIPS.get(request.type, [])),
                },
            }

        logger.error(f"❌ Smart scheduling gave up after {max_attempts} attempts")
        conflicts = self.repo.get_overlapping(
            self.db, ctx.workspace_id, agent_id, last_slot.start, last_slot.end
        )
        raise ConflictError(
            f"Could not secure a slot after {max_attempts} attempts",
            conflicts=conflicts,
        )

    @staticmethod
    def _build_create(request: SmartScheduleRequest, best: ScoredSlot) -> AppointmentCreate:
        requirements = request.requirements
        metadata = {
            "source": "smart_schedule",
            "score": round(best.score, 4),
            "estimatedDuration": request.duration,
        }
        if requirements and requirements.meetingUrl:
            metadata["meetingUrlRequired"] = True

        return AppointmentCreate(
            title=request.title or f"{request.type.value.capitalize()} with contact {request.contactId}",
            description=f"Smart-scheduled {request.type.value} appointment",
            type=request.type,
            priority=request.priority,
            startTime=best.slot.start,
            endTime=best.slot.end,
            location=requirements.location if requirements else None,
            contactId=request.contactId,
            assignedToId=request.assignedToId,
            propertyId=request.propertyId,
            attendees=(requirements.attendees or []) if requirements else [],
            metadata=metadata,
        )
