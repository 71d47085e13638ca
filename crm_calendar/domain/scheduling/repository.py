"""Scheduling repository - Database operations for appointments, availability and holds"""

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ...enums import ACTIVE_STATUSES, NON_BLOCKING_STATUSES
from ...models import AgentCalendar, Appointment, AvailabilityEntry, SlotHold


class AppointmentRepository:
    """Repository for appointment database operations"""

    @staticmethod
    def get_by_id(db: Session, workspace_id: str, appointment_id: str) -> Optional[Appointment]:
        return (
            db.query(Appointment)
            .filter(Appointment.id == appointment_id, Appointment.workspace_id == workspace_id)
            .first()
        )

    @staticmethod
    def search(
        db: Session,
        workspace_id: str,
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
        """Filter appointments; returns (page, total matching)"""
        query = db.query(Appointment).filter(Appointment.workspace_id == workspace_id)

        if start:
            query = query.filter(Appointment.start_time >= start)
        if end:
            query = query.filter(Appointment.start_time < end)
        if types:
            query = query.filter(Appointment.type.in_(list(types)))
        if statuses:
            query = query.filter(Appointment.status.in_(list(statuses)))
        if priorities:
            query = query.filter(Appointment.priority.in_(list(priorities)))
        if contact_id:
            query = query.filter(Appointment.contact_id == contact_id)
        if agent_id:
            query = query.filter(Appointment.assigned_to_id == agent_id)

        total = query.count()
        query = query.order_by(Appointment.start_time.asc(), Appointment.id.asc())
        if skip:
            query = query.offset(skip)
        if limit is not None:
            query = query.limit(limit)
        return query.all(), total

    @staticmethod
    def get_overlapping(
        db: Session,
        workspace_id: str,
        agent_id: str,
        start: datetime,
        end: datetime,
        exclude_id: Optional[str] = None,
        active_only: bool = True,
    ) -> list[Appointment]:
        """Appointments of an agent that overlap [start, end)"""
        query = db.query(Appointment).filter(
            Appointment.workspace_id == workspace_id,
            Appointment.assigned_to_id == agent_id,
            Appointment.start_time < end,
            Appointment.end_time > start,
        )
        if active_only:
            query = query.filter(Appointment.status.in_(list(ACTIVE_STATUSES)))
        else:
            query = query.filter(Appointment.status.notin_(list(NON_BLOCKING_STATUSES)))
        if exclude_id:
            query = query.filter(Appointment.id != exclude_id)
        return query.order_by(Appointment.start_time.asc()).all()

    @staticmethod
    def add(db: Session, appointment: Appointment) -> Appointment:
        db.add(appointment)
        db.flush()
        return appointment

    @staticmethod
    def delete(db: Session, appointment: Appointment) -> None:
        db.delete(appointment)
        db.flush()


class AvailabilityRepository:
    """Repository for availability entries"""

    @staticmethod
    def get_for_agent(db: Session, workspace_id: str, agent_id: str) -> list[AvailabilityEntry]:
        return (
            db.query(AvailabilityEntry)
            .filter(
                AvailabilityEntry.workspace_id == workspace_id,
                AvailabilityEntry.user_id == agent_id,
            )
            .order_by(AvailabilityEntry.created_at.asc(), AvailabilityEntry.id.asc())
            .all()
        )

    @staticmethod
    def get_by_id(db: Session, workspace_id: str, entry_id: str) -> Optional[AvailabilityEntry]:
        return (
            db.query(AvailabilityEntry)
            .filter(AvailabilityEntry.id == entry_id, AvailabilityEntry.workspace_id == workspace_id)
            .first()
        )

    @staticmethod
    def delete_many(db: Session, entries: Iterable[AvailabilityEntry]) -> int:
        deleted = 0
        for entry in entries:
            db.delete(entry)
            deleted += 1
        return deleted


class HoldRepository:
    """Repository for uncommitted slot holds"""

    @staticmethod
    def get_active(
        db: Session,
        workspace_id: str,
        agent_id: str,
        now: datetime,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[SlotHold]:
        query = db.query(SlotHold).filter(
            SlotHold.workspace_id == workspace_id,
            SlotHold.agent_id == agent_id,
            SlotHold.expires_at > now,
        )
        if start and end:
            query = query.filter(SlotHold.start_time < end, SlotHold.end_time > start)
        return query.order_by(SlotHold.start_time.asc()).all()

    @staticmethod
    def get_by_id(db: Session, workspace_id: str, hold_id: str) -> Optional[SlotHold]:
        return (
            db.query(SlotHold)
            .filter(SlotHold.id == hold_id, SlotHold.workspace_id == workspace_id)
            .first()
        )

    @staticmethod
    def purge_expired(db: Session, now: datetime) -> int:
        return (
            db.query(SlotHold)
            .filter(SlotHold.expires_at <= now)
            .delete(synchronize_session=False)
        )


class AgentCalendarRepository:
    """Row locks used to serialize booking writes per agent"""

    @staticmethod
    def lock(db: Session, workspace_id: str, agent_id: str) -> AgentCalendar:
        """
        Lock (creating on first use) the agent's calendar row for this transaction.

        On PostgreSQL this is SELECT ... FOR UPDATE; SQLite ignores the clause and
        relies on the in-process agent lock.
        """
        calendar = (
            db.query(AgentCalendar)
            .filter(AgentCalendar.workspace_id == workspace_id, AgentCalendar.agent_id == agent_id)
            .with_for_update()
            .first()
        )
        if calendar is None:
            calendar = AgentCalendar(workspace_id=workspace_id, agent_id=agent_id, booking_count=0)
            db.add(calendar)
            db.flush()
        return calendar
