import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    Enum,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)

from .database import Base, UTCDateTime, utcnow
from .enums import (
    AppointmentPriority,
    AppointmentStatus,
    AppointmentType,
    AvailabilityKind,
)


def generate_id():
    """Generate an opaque unique identifier"""
    return str(uuid.uuid4())


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def _enum_column(enum_cls, name: str):
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        values_callable=_enum_values,
        validate_strings=True,
        length=32,
    )


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=generate_id)
    workspace_id = Column(String(64), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(_enum_column(AppointmentType, "appointment_type"), nullable=False)
    status = Column(
        _enum_column(AppointmentStatus, "appointment_status"),
        nullable=False,
        default=AppointmentStatus.SCHEDULED,
    )
    priority = Column(
        _enum_column(AppointmentPriority, "appointment_priority"),
        nullable=False,
        default=AppointmentPriority.MEDIUM,
    )
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    timezone = Column(String(100), nullable=True)  # Display timezone only, times are UTC
    location = Column(Text, nullable=True)
    meeting_url = Column(String(500), nullable=True)
    contact_id = Column(String(64), nullable=True, index=True)
    assigned_to_id = Column(String(64), nullable=False)
    property_id = Column(String(64), nullable=True)
    attendees = Column(JSON, nullable=False, default=list)  # [{name, email, phone, role}]
    reminders = Column(JSON, nullable=False, default=list)  # [{type, minutes_before, sent}]
    # "metadata" is reserved on declarative classes
    extra_metadata = Column("metadata", JSON, nullable=False, default=dict)
    recurring_pattern = Column(JSON, nullable=True)  # {frequency, interval, end_date, days_of_week}
    version = Column(Integer, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index("ix_appointments_agent_window", "workspace_id", "assigned_to_id", "start_time", "end_time"),
    )

    def __repr__(self) -> str:
        return f"<Appointment {self.id} {self.start_time} ({self.status.value if self.status else None})>"


class AvailabilityEntry(Base):
    __tablename__ = "availability_entries"

    id = Column(String(36), primary_key=True, default=generate_id)
    workspace_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    kind = Column(
        _enum_column(AvailabilityKind, "availability_kind"),
        nullable=False,
        default=AvailabilityKind.AVAILABLE,
    )
    is_recurring = Column(Boolean, nullable=False, default=False)
    day_of_week = Column(Integer, nullable=True)  # 0 = Sunday ... 6 = Saturday
    date = Column(Date, nullable=True)  # Explicit-date exception
    recurring_pattern = Column(JSON, nullable=True)  # {frequency, interval, end_date, days_of_week}
    effective_from = Column(Date, nullable=True)  # Anchor for every-N recurrences
    start_time = Column(Time, nullable=False)  # Local time of day
    end_time = Column(Time, nullable=False)
    timezone = Column(String(100), nullable=False, default="UTC")
    notes = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)


class SlotHold(Base):
    """Short-lived reservation of a slot that has not been booked yet"""

    __tablename__ = "slot_holds"

    id = Column(String(36), primary_key=True, default=generate_id)
    workspace_id = Column(String(64), nullable=False)
    agent_id = Column(String(64), nullable=False)
    holder_id = Column(String(64), nullable=True)
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (Index("ix_slot_holds_agent", "workspace_id", "agent_id", "expires_at"),)


class AgentCalendar(Base):
    """Row-lock target that serializes booking writes for one agent"""

    __tablename__ = "agent_calendars"

    id = Column(Integer, primary_key=True, autoincrement=True)
    workspace_id = Column(String(64), nullable=False)
    agent_id = Column(String(64), nullable=False)
    booking_count = Column(Integer, nullable=False, default=0)
    last_booked_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (UniqueConstraint("workspace_id", "agent_id", name="uq_agent_calendar"),)
