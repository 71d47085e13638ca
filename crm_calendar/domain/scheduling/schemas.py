"""Scheduling domain schemas - Pydantic models for validation"""

from datetime import date, datetime, time
from datetime import date as date_type
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ...enums import (
    AppointmentPriority,
    AppointmentStatus,
    AppointmentType,
    AvailabilityKind,
    IntervalState,
    RecurrenceFrequency,
    ReminderType,
)
from ...shared.validators import validate_email, validate_timezone
from .time_calculator import to_utc


class AttendeeSchema(BaseModel):
    name: str
    email: str
    phone: Optional[str] = None
    role: Optional[str] = None

    @field_validator("email")
    @classmethod
    def check_email(cls, v):
        return validate_email(v)


class ReminderSchema(BaseModel):
    type: ReminderType = ReminderType.EMAIL
    minutesBefore: int = Field(ge=0)
    sent: bool = False


class RecurrencePatternSchema(BaseModel):
    frequency: RecurrenceFrequency
    interval: int = Field(default=1, ge=1)
    endDate: Optional[date] = None
    daysOfWeek: Optional[list[int]] = None

    @field_validator("daysOfWeek")
    @classmethod
    def check_days(cls, v):
        if v is not None and any(d < 0 or d > 6 for d in v):
            raise ValueError("daysOfWeek values must be between 0 (Sunday) and 6 (Saturday)")
        return v

    def to_storage(self) -> dict:
        return {
            "frequency": self.frequency.value,
            "interval": self.interval,
            "end_date": self.endDate.isoformat() if self.endDate else None,
            "days_of_week": self.daysOfWeek,
        }


# ============================================================================
# APPOINTMENTS
# ============================================================================


class AppointmentCreate(BaseModel):
    """Schema for creating an appointment"""

    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    type: AppointmentType
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    priority: AppointmentPriority = AppointmentPriority.MEDIUM
    startTime: datetime
    endTime: datetime
    timezone: Optional[str] = None
    location: Optional[str] = None
    meetingUrl: Optional[str] = Field(default=None, max_length=500)
    contactId: Optional[str] = None
    assignedToId: str = Field(min_length=1)
    propertyId: Optional[str] = None
    attendees: list[AttendeeSchema] = Field(default_factory=list)
    reminders: Optional[list[ReminderSchema]] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    recurringPattern: Optional[RecurrencePatternSchema] = None
    holdId: Optional[str] = None

    @field_validator("startTime", "endTime")
    @classmethod
    def normalize_utc(cls, v):
        return to_utc(v)

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v):
        if v:
            return validate_timezone(v)
        return v

    @field_validator("status")
    @classmethod
    def check_initial_status(cls, v):
        if v not in (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED):
            raise ValueError("New appointments must start as 'scheduled' or 'confirmed'")
        return v

    @model_validator(mode="after")
    def check_window(self):
        if self.endTime <= self.startTime:
            raise ValueError("endTime must be after startTime")
        return self


class AppointmentUpdate(BaseModel):
    """Schema for updating an appointment; version is the caller's last seen version"""

    version: int = Field(ge=1)
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    type: Optional[AppointmentType] = None
    status: Optional[AppointmentStatus] = None
    priority: Optional[AppointmentPriority] = None
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    timezone: Optional[str] = None
    location: Optional[str] = None
    meetingUrl: Optional[str] = Field(default=None, max_length=500)
    contactId: Optional[str] = None
    assignedToId: Optional[str] = None
    propertyId: Optional[str] = None
    attendees: Optional[list[AttendeeSchema]] = None
    reminders: Optional[list[ReminderSchema]] = None
    metadata: Optional[dict[str, Any]] = None
    recurringPattern: Optional[RecurrencePatternSchema] = None

    @field_validator("startTime", "endTime")
    @classmethod
    def normalize_utc(cls, v):
        if v is not None:
            return to_utc(v)
        return v

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v):
        if v:
            return validate_timezone(v)
        return v

    @model_validator(mode="after")
    def check_window(self):
        if self.startTime and self.endTime and self.endTime <= self.startTime:
            raise ValueError("endTime must be after startTime")
        return self


class AppointmentResponse(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    type: AppointmentType
    status: AppointmentStatus
    priority: AppointmentPriority
    startTime: datetime
    endTime: datetime
    timezone: Optional[str] = None
    location: Optional[str] = None
    meetingUrl: Optional[str] = None
    contactId: Optional[str] = None
    assignedToId: str
    propertyId: Optional[str] = None
    attendees: list[AttendeeSchema] = Field(default_factory=list)
    reminders: list[ReminderSchema] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    recurringPattern: Optional[RecurrencePatternSchema] = None
    version: int
    createdAt: datetime
    updatedAt: datetime

    @classmethod
    def from_model(cls, appointment) -> "AppointmentResponse":
        pattern = appointment.recurring_pattern
        return cls(
            id=appointment.id,
            title=appointment.title,
            description=appointment.description,
            type=appointment.type,
            status=appointment.status,
            priority=appointment.priority,
            startTime=appointment.start_time,
            endTime=appointment.end_time,
            timezone=appointment.timezone,
            location=appointment.location,
            meetingUrl=appointment.meeting_url,
            contactId=appointment.contact_id,
            assignedToId=appointment.assigned_to_id,
            propertyId=appointment.property_id,
            attendees=appointment.attendees or [],
            reminders=[
                {"type": r["type"], "minutesBefore": r["minutes_before"], "sent": r.get("sent", False)}
                for r in (appointment.reminders or [])
            ],
            metadata=appointment.extra_metadata or {},
            recurringPattern=(
                {
                    "frequency": pattern["frequency"],
                    "interval": pattern.get("interval", 1),
                    "endDate": pattern.get("end_date"),
                    "daysOfWeek": pattern.get("days_of_week"),
                }
                if pattern
                else None
            ),
            version=appointment.version,
            createdAt=appointment.created_at,
            updatedAt=appointment.updated_at,
        )


class AppointmentListResponse(BaseModel):
    items: list[AppointmentResponse]
    count: int


class BulkUpdateItem(AppointmentUpdate):
    id: str


class BulkUpdateRequest(BaseModel):
    items: list[BulkUpdateItem]


class BulkDeleteRequest(BaseModel):
    appointmentIds: list[str]
    hard: bool = False


class BulkFailure(BaseModel):
    id: str
    reason: str
    code: str


class BulkResult(BaseModel):
    succeeded: list[str] = Field(default_factory=list)
    failed: list[BulkFailure] = Field(default_factory=list)


# ============================================================================
# AVAILABILITY
# ============================================================================


class AvailabilityEntrySchema(BaseModel):
    """A recurring weekly window or a date-specific exception"""

    id: Optional[str] = None
    kind: AvailabilityKind = AvailabilityKind.AVAILABLE
    isRecurring: bool = False
    dayOfWeek: Optional[int] = Field(default=None, ge=0, le=6)
    date: Optional[date_type] = None
    recurringPattern: Optional[RecurrencePatternSchema] = None
    effectiveFrom: Optional[date_type] = None
    startTime: time
    endTime: time
    timezone: str = "UTC"
    notes: Optional[str] = None

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v):
        return validate_timezone(v)

    @model_validator(mode="after")
    def check_shape(self):
        if self.endTime <= self.startTime:
            raise ValueError("endTime must be after startTime")
        if self.isRecurring:
            has_days = self.dayOfWeek is not None or (
                self.recurringPattern is not None
                and (
                    self.recurringPattern.daysOfWeek
                    or self.recurringPattern.frequency == RecurrenceFrequency.DAILY
                )
            )
            if not has_days:
                raise ValueError("Recurring entries need dayOfWeek or a recurringPattern")
        elif self.date is None:
            raise ValueError("Non-recurring entries need a date")
        return self


class AvailabilityUpsertRequest(BaseModel):
    entries: list[AvailabilityEntrySchema]
    replace: bool = False


class AvailabilityEntryResponse(BaseModel):
    id: str
    userId: str
    kind: AvailabilityKind
    isRecurring: bool
    dayOfWeek: Optional[int] = None
    date: Optional[date_type] = None
    recurringPattern: Optional[dict] = None
    effectiveFrom: Optional[date_type] = None
    startTime: time
    endTime: time
    timezone: str
    notes: Optional[str] = None

    @classmethod
    def from_model(cls, entry) -> "AvailabilityEntryResponse":
        return cls(
            id=entry.id,
            userId=entry.user_id,
            kind=entry.kind,
            isRecurring=entry.is_recurring,
            dayOfWeek=entry.day_of_week,
            date=entry.date,
            recurringPattern=entry.recurring_pattern,
            effectiveFrom=entry.effective_from,
            startTime=entry.start_time,
            endTime=entry.end_time,
            timezone=entry.timezone,
            notes=entry.notes,
        )


class ResolvedIntervalResponse(BaseModel):
    start: datetime
    end: datetime
    state: IntervalState


# ============================================================================
# SLOTS, CONFLICTS, HOLDS
# ============================================================================


class TimeSlotSchema(BaseModel):
    startTime: datetime
    endTime: datetime
    duration: int
    available: bool
    conflictReason: Optional[str] = None

    @classmethod
    def from_slot(cls, slot) -> "TimeSlotSchema":
        return cls(
            startTime=slot.start,
            endTime=slot.end,
            duration=slot.duration,
            available=slot.available,
            conflictReason=slot.conflict_reason,
        )


class ConflictCheckRequest(BaseModel):
    agentId: str
    startTime: datetime
    endTime: datetime
    excludeAppointmentId: Optional[str] = None

    @field_validator("startTime", "endTime")
    @classmethod
    def normalize_utc(cls, v):
        return to_utc(v)


class ConflictCheckResponse(BaseModel):
    hasConflicts: bool
    conflicts: list[AppointmentResponse]
    suggestions: list[TimeSlotSchema]


class HoldCreate(BaseModel):
    agentId: str
    startTime: datetime
    endTime: datetime
    ttlMinutes: Optional[int] = Field(default=None, ge=1, le=120)

    @field_validator("startTime", "endTime")
    @classmethod
    def normalize_utc(cls, v):
        return to_utc(v)


class HoldResponse(BaseModel):
    id: str
    agentId: str
    startTime: datetime
    endTime: datetime
    expiresAt: datetime

    @classmethod
    def from_model(cls, hold) -> "HoldResponse":
        return cls(
            id=hold.id,
            agentId=hold.agent_id,
            startTime=hold.start_time,
            endTime=hold.end_time,
            expiresAt=hold.expires_at,
        )


# ============================================================================
# SMART SCHEDULING
# ============================================================================


class SchedulingRequirements(BaseModel):
    location: Optional[str] = None
    meetingUrl: Optional[bool] = None
    attendees: Optional[list[AttendeeSchema]] = None


class SmartScheduleRequest(BaseModel):
    """Required fields are checked by the scheduler so they surface as invalid_request"""

    contactId: Optional[str] = None
    type: Optional[AppointmentType] = None
    duration: int = 60
    priority: AppointmentPriority = AppointmentPriority.MEDIUM
    assignedToId: Optional[str] = None
    propertyId: Optional[str] = None
    preferredDates: Optional[list[date]] = None
    requirements: Optional[SchedulingRequirements] = None
    title: Optional[str] = None
    timeoutSeconds: Optional[float] = Field(default=None, gt=0)


class Recommendation(BaseModel):
    priority: AppointmentPriority
    reason: str
    suggestedPreparation: list[str]


class SmartScheduleResponse(BaseModel):
    appointment: AppointmentResponse
    recommendation: Recommendation
