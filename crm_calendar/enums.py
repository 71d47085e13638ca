"""Closed value sets used across the calendar domain"""

import enum


class AppointmentType(str, enum.Enum):
    VIEWING = "viewing"
    MEETING = "meeting"
    CALL = "call"
    INSPECTION = "inspection"
    SIGNING = "signing"
    CONSULTATION = "consultation"


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    NO_SHOW = "no_show"


class AppointmentPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class AvailabilityKind(str, enum.Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    BREAK = "break"
    VACATION = "vacation"


class RecurrenceFrequency(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ReminderType(str, enum.Enum):
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


class IntervalState(str, enum.Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


# Statuses that hold a calendar position for conflict detection
ACTIVE_STATUSES = frozenset(
    {AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED, AppointmentStatus.RESCHEDULED}
)

# Statuses that never block slot generation
NON_BLOCKING_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW})

TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
)
