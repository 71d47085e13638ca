"""Appointment service - Business logic for the appointment store"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ...auth import RequestContext
from ...config import SLOT_HOLD_TTL_MINUTES
from ...database import utcnow
from ...enums import ACTIVE_STATUSES, AppointmentStatus
from ...models import Appointment, SlotHold
from .conflict_service import ConflictService
from .errors import (
    ConcurrencyError,
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    SchedulingError,
    ValidationError,
)
from .locks import agent_locks
from .repository import AgentCalendarRepository, AppointmentRepository, HoldRepository
from .schemas import AppointmentCreate, AppointmentUpdate, BulkUpdateItem
from .time_calculator import to_utc

logger = logging.getLogger(__name__)

CommitHook = Callable[[Appointment], None]

DEFAULT_REMINDERS = (
    {"type": "email", "minutes_before": 60, "sent": False},
    {"type": "email", "minutes_before": 15, "sent": False},
)

# Allowed status transitions; terminal statuses map to an empty set
VALID_TRANSITIONS = {
    AppointmentStatus.SCHEDULED: {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.RESCHEDULED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.CONFIRMED: {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.RESCHEDULED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.RESCHEDULED: {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.RESCHEDULED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELLED: set(),
    AppointmentStatus.NO_SHOW: set(),
}

# Plain column updates: schema field -> model attribute
_SIMPLE_FIELDS = {
    "title": "title",
    "description": "description",
    "type": "type",
    "priority": "priority",
    "timezone": "timezone",
    "location": "location",
    "meetingUrl": "meeting_url",
    "contactId": "contact_id",
    "propertyId": "property_id",
    "metadata": "extra_metadata",
}

# Columns that cannot be cleared with an explicit null
_REQUIRED_FIELDS = {"title", "type", "priority"}


def validate_status_transition(current: AppointmentStatus, requested: AppointmentStatus) -> None:
    """Raise InvalidTransitionError unless ``current -> requested`` is allowed"""
    if requested == current:
        return
    if requested not in VALID_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(current, requested)


def reminders_to_storage(reminders) -> list[dict]:
    return [
        {"type": r.type.value, "minutes_before": r.minutesBefore, "sent": r.sent} for r in reminders
    ]


def _run_hooks(appointment: Appointment, hooks: Optional[Iterable[CommitHook]]) -> None:
    # Hooks run after the commit; a failing hook never undoes the booking
    for hook in hooks or ():
        try:
            hook(appointment)
        except Exception as e:
            logger.error(f"❌ Post-commit hook failed for appointment {appointment.id}: {e}")


class AppointmentService:
    """Service layer for appointment business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = AppointmentRepository()
        self.hold_repo = HoldRepository()
        self.calendar_repo = AgentCalendarRepository()
        self.conflicts = ConflictService(db)

    def _reject(
        self,
        ctx: RequestContext,
        error: ConflictError,
        agent_id: str,
        start: datetime,
        end: datetime,
        exclude_id: Optional[str] = None,
    ) -> None:
        """Roll back, then attach freshly loaded conflicts and alternative slots"""
        self.db.rollback()
        if error.conflicts:
            error.conflicts = self.repo.get_overlapping(
                self.db, ctx.workspace_id, agent_id, start, end, exclude_id=exclude_id
            )
        error.suggestions = self.conflicts.suggest_alternatives(ctx, agent_id, start, end)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, ctx: RequestContext, appointment_id: str) -> Appointment:
        appointment = self.repo.get_by_id(self.db, ctx.workspace_id, appointment_id)
        if not appointment:
            raise NotFoundError(f"Appointment {appointment_id} not found")
        return appointment

    def list_appointments(
        self,
        ctx: RequestContext,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        types: Optional[Iterable] = None,
        statuses: Optional[Iterable] = None,
        priorities: Optional[Iterable] = None,
        contact_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> tuple[list[Appointment], int]:
        """Filtered appointments ordered by start; returns (items, count)"""
        start = to_utc(start) if start else None
        end = to_utc(end) if end else None
        if start and end and end <= start:
            raise ValidationError("endDate must be after startDate", field="endDate")
        if skip < 0 or (limit is not None and limit < 0):
            raise ValidationError("skip and limit cannot be negative", field="limit")

        return self.repo.search(
            self.db,
            ctx.workspace_id,
            start=start,
            end=end,
            types=types,
            statuses=statuses,
            priorities=priorities,
            contact_id=contact_id,
            agent_id=agent_id,
            skip=skip,
            limit=limit,
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(
        self,
        ctx: RequestContext,
        data: AppointmentCreate,
        on_commit: Optional[list[CommitHook]] = None,
    ) -> Appointment:
        """
        Book an appointment.

        The conflict check and the insert run as one unit per agent, so two
        concurrent bookings for overlapping windows cannot both succeed. The
        loser gets a ConflictError with the conflicting bookings and
        alternative slots.
        """
        agent_id = data.assignedToId
        start, end = data.startTime, data.endTime
        logger.info(f"📥 Creating appointment for agent {agent_id} at {start.isoformat()}")

        with agent_locks.hold(ctx.workspace_id, [agent_id]):
            try:
                # Bookings committed by other sessions must be visible to the check
                self.db.expire_all()
                calendar = self.calendar_repo.lock(self.db, ctx.workspace_id, agent_id)
                now = utcnow()

                conflicts = self.repo.get_overlapping(self.db, ctx.workspace_id, agent_id, start, end)
                if conflicts:
                    raise ConflictError(
                        "Requested time overlaps an existing appointment",
                        conflicts=conflicts,
                    )

                holds = self.hold_repo.get_active(
                    self.db, ctx.workspace_id, agent_id, now, start, end
                )
                own = [h for h in holds if h.holder_id == ctx.user_id]
                blocking = [h for h in holds if h.holder_id != ctx.user_id]
                if blocking:
                    raise ConflictError(
                        "Requested time is held by another booking",
                        details={"hold_ids": [h.id for h in blocking]},
                    )

                appointment = Appointment(
                    workspace_id=ctx.workspace_id,
                    title=data.title,
                    description=data.description,
                    type=data.type,
                    status=data.status,
                    priority=data.priority,
                    start_time=start,
                    end_time=end,
                    timezone=data.timezone,
                    location=data.location,
                    meeting_url=data.meetingUrl,
                    contact_id=data.contactId,
                    assigned_to_id=agent_id,
                    property_id=data.propertyId,
                    attendees=[a.model_dump() for a in data.attendees],
                    reminders=(
                        reminders_to_storage(data.reminders)
                        if data.reminders is not None
                        else [dict(r) for r in DEFAULT_REMINDERS]
                    ),
                    extra_metadata=dict(data.metadata),
                    recurring_pattern=(
                        data.recurringPattern.to_storage() if data.recurringPattern else None
                    ),
                )
                self.repo.add(self.db, appointment)

                # The caller's own holds over this window are consumed by the booking
                for hold in own:
                    self.db.delete(hold)

                calendar.booking_count = (calendar.booking_count or 0) + 1
                calendar.last_booked_at = now
                self.db.commit()
            except ConflictError as e:
                logger.warning(f"⚠️ Booking rejected for agent {agent_id}: {e.message}")
                self._reject(ctx, e, agent_id, start, end)
                raise
            except Exception:
                self.db.rollback()
                raise

        self.db.refresh(appointment)
        logger.info(f"✅ Appointment {appointment.id} created for agent {agent_id}")
        _run_hooks(appointment, on_commit)
        return appointment

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def _collect_changes(self, appointment: Appointment, data: AppointmentUpdate) -> dict:
        provided = data.model_fields_set
        changes = {}

        for field, attr in _SIMPLE_FIELDS.items():
            if field not in provided:
                continue
            value = getattr(data, field)
            if value is None and field in _REQUIRED_FIELDS:
                continue
            if field == "metadata":
                value = dict(value or {})
            changes[attr] = value

        if "attendees" in provided and data.attendees is not None:
            changes["attendees"] = [a.model_dump() for a in data.attendees]
        if "reminders" in provided and data.reminders is not None:
            changes["reminders"] = reminders_to_storage(data.reminders)
        if "recurringPattern" in provided:
            changes["recurring_pattern"] = (
                data.recurringPattern.to_storage() if data.recurringPattern else None
            )

        if data.startTime is not None and data.startTime != appointment.start_time:
            changes["start_time"] = data.startTime
        if data.endTime is not None and data.endTime != appointment.end_time:
            changes["end_time"] = data.endTime
        if data.assignedToId and data.assignedToId != appointment.assigned_to_id:
            changes["assigned_to_id"] = data.assignedToId

        return changes

    def update(
        self,
        ctx: RequestContext,
        appointment_id: str,
        data: AppointmentUpdate,
        on_commit: Optional[list[CommitHook]] = None,
    ) -> Appointment:
        """
        Apply a partial update guarded by the caller's last seen version.

        Moving a scheduled or confirmed appointment (new times or a new
        agent) marks it rescheduled and re-runs the conflict check, excluding
        the appointment itself, inside the agent's critical section.
        """
        appointment = self.get(ctx, appointment_id)
        if appointment.version != data.version:
            logger.warning(
                f"⚠️ Stale update on appointment {appointment_id}: "
                f"v{data.version} != v{appointment.version}"
            )
            raise ConcurrencyError(
                "Appointment was modified by someone else; re-fetch and retry",
                expected_version=data.version,
                current_version=appointment.version,
            )

        changes = self._collect_changes(appointment, data)
        current = appointment.status
        moved = any(k in changes for k in ("start_time", "end_time", "assigned_to_id"))

        new_status = data.status or current
        if moved and data.status is None:
            if current in (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED):
                new_status = AppointmentStatus.RESCHEDULED
            elif current not in ACTIVE_STATUSES:
                raise InvalidTransitionError(current, AppointmentStatus.RESCHEDULED)
        validate_status_transition(current, new_status)
        if new_status != current:
            changes["status"] = new_status

        start = changes.get("start_time", appointment.start_time)
        end = changes.get("end_time", appointment.end_time)
        if end <= start:
            raise ValidationError("endTime must be after startTime", field="endTime")

        agent_id = changes.get("assigned_to_id", appointment.assigned_to_id)
        needs_check = moved and new_status in ACTIVE_STATUSES
        lock_agents = {appointment.assigned_to_id, agent_id} if needs_check else set()

        with agent_locks.hold(ctx.workspace_id, lock_agents):
            try:
                if needs_check:
                    for locked_agent in sorted(lock_agents):
                        self.calendar_repo.lock(self.db, ctx.workspace_id, locked_agent)
                    conflicts = self.repo.get_overlapping(
                        self.db, ctx.workspace_id, agent_id, start, end, exclude_id=appointment.id
                    )
                    if conflicts:
                        raise ConflictError(
                            "Rescheduled time overlaps an existing appointment",
                            conflicts=conflicts,
                        )

                for attr, value in changes.items():
                    setattr(appointment, attr, value)
                self.db.commit()
            except StaleDataError:
                self.db.rollback()
                logger.warning(f"⚠️ Lost update race on appointment {appointment_id}")
                raise ConcurrencyError(
                    "Appointment was modified by someone else; re-fetch and retry",
                    expected_version=data.version,
                ) from None
            except ConflictError as e:
                logger.warning(f"⚠️ Reschedule rejected for {appointment_id}: {e.message}")
                self._reject(ctx, e, agent_id, start, end, exclude_id=appointment_id)
                raise
            except Exception:
                self.db.rollback()
                raise

        self.db.refresh(appointment)
        if "status" in changes:
            logger.info(
                f"✅ Appointment {appointment.id} transitioned: {current.value} → {new_status.value}"
            )
        else:
            logger.info(f"✅ Appointment {appointment.id} updated (v{appointment.version})")
        _run_hooks(appointment, on_commit)
        return appointment

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(self, ctx: RequestContext, appointment_id: str, hard: bool = False) -> None:
        """
        Cancel an appointment, or remove it entirely with ``hard``.

        Cancelling an already cancelled appointment is a no-op. Hard deletes
        are reserved to workspace admins.
        """
        appointment = self.get(ctx, appointment_id)

        if hard:
            if not ctx.is_admin:
                logger.warning(f"⚠️ User {ctx.user_id} attempted hard delete of {appointment_id}")
                raise ForbiddenError("Only workspace admins can permanently delete appointments")
            self.repo.delete(self.db, appointment)
            self.db.commit()
            logger.info(f"🗑️ Appointment {appointment_id} permanently deleted")
            return

        if appointment.status == AppointmentStatus.CANCELLED:
            return
        validate_status_transition(appointment.status, AppointmentStatus.CANCELLED)

        appointment.status = AppointmentStatus.CANCELLED
        try:
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            raise ConcurrencyError(
                "Appointment was modified by someone else; re-fetch and retry"
            ) from None
        logger.info(f"🚫 Appointment {appointment_id} cancelled")

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    def bulk_update(self, ctx: RequestContext, items: list[BulkUpdateItem]) -> dict:
        """Apply each update independently; one failure never blocks the others"""
        result = {"succeeded": [], "failed": []}
        for item in items:
            try:
                self.update(ctx, item.id, item)
                result["succeeded"].append(item.id)
            except SchedulingError as e:
                result["failed"].append({"id": item.id, "reason": e.message, "code": e.code})

        logger.info(
            f"📦 Bulk update: {len(result['succeeded'])} succeeded, {len(result['failed'])} failed"
        )
        return result

    def bulk_delete(self, ctx: RequestContext, appointment_ids: list[str], hard: bool = False) -> dict:
        result = {"succeeded": [], "failed": []}
        for appointment_id in appointment_ids:
            try:
                self.delete(ctx, appointment_id, hard=hard)
                result["succeeded"].append(appointment_id)
            except SchedulingError as e:
                result["failed"].append({"id": appointment_id, "reason": e.message, "code": e.code})

        logger.info(
            f"📦 Bulk delete: {len(result['succeeded'])} succeeded, {len(result['failed'])} failed"
        )
        return result

    # ------------------------------------------------------------------
    # Holds
    # ------------------------------------------------------------------

    def hold_slot(
        self,
        ctx: RequestContext,
        agent_id: str,
        start: datetime,
        end: datetime,
        ttl_minutes: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> SlotHold:
        """Reserve a free window for a short time before it is booked"""
        start = to_utc(start)
        end = to_utc(end)
        if end <= start:
            raise ValidationError("endTime must be after startTime", field="endTime")
        now = now or utcnow()
        ttl = timedelta(minutes=ttl_minutes or SLOT_HOLD_TTL_MINUTES)

        with agent_locks.hold(ctx.workspace_id, [agent_id]):
            try:
                self.db.expire_all()
                self.calendar_repo.lock(self.db, ctx.workspace_id, agent_id)
                self.hold_repo.purge_expired(self.db, now)

                conflicts = self.repo.get_overlapping(self.db, ctx.workspace_id, agent_id, start, end)
                if conflicts:
                    raise ConflictError(
                        "Requested time overlaps an existing appointment", conflicts=conflicts
                    )
                if self.hold_repo.get_active(self.db, ctx.workspace_id, agent_id, now, start, end):
                    raise ConflictError("Requested time is already held")

                hold = SlotHold(
                    workspace_id=ctx.workspace_id,
                    agent_id=agent_id,
                    holder_id=ctx.user_id,
                    start_time=start,
                    end_time=end,
                    expires_at=now + ttl,
                )
                self.db.add(hold)
                self.db.commit()
            except ConflictError as e:
                self._reject(ctx, e, agent_id, start, end)
                raise
            except Exception:
                self.db.rollback()
                raise

        self.db.refresh(hold)
        logger.info(f"⏳ Slot held for agent {agent_id} until {hold.expires_at.isoformat()}")
        return hold

    def release_hold(self, ctx: RequestContext, hold_id: str) -> None:
        hold = self.hold_repo.get_by_id(self.db, ctx.workspace_id, hold_id)
        if not hold:
            raise NotFoundError("Hold not found")
        if hold.holder_id != ctx.user_id and not ctx.is_admin:
            raise ForbiddenError("Only the holder can release this hold")
        self.db.delete(hold)
        self.db.commit()
        logger.info(f"🔓 Hold {hold_id} released")
