"""Calendar router - FastAPI endpoints for scheduling and availability"""

import logging
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query, Response
from sqlalchemy.orm import Session

from ...auth import RequestContext, get_request_context
from ...cache import invalidate_workspace_analytics
from ...database import get_db, utcnow
from ...enums import AppointmentPriority, AppointmentStatus, AppointmentType
from ...services.calendar_sync import busy_entries_from_events, fetch_events, push_event
from ...services.reminder_service import ReminderService, log_dispatcher
from .analytics_service import AnalyticsService
from .appointment_service import AppointmentService
from .availability_service import AvailabilityService
from .conflict_service import ConflictService
from .errors import ValidationError
from .schemas import (
    AppointmentCreate,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentUpdate,
    AvailabilityEntryResponse,
    AvailabilityUpsertRequest,
    BulkDeleteRequest,
    BulkResult,
    BulkUpdateRequest,
    ConflictCheckRequest,
    ConflictCheckResponse,
    HoldCreate,
    HoldResponse,
    ResolvedIntervalResponse,
    SmartScheduleRequest,
    SmartScheduleResponse,
    TimeSlotSchema,
)
from .slot_service import SlotService
from .smart_scheduler import SmartScheduler
from .time_calculator import get_timezone

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendar", tags=["Calendar"])


def get_appointment_service(db: Session = Depends(get_db)) -> AppointmentService:
    """Dependency injection for AppointmentService"""
    return AppointmentService(db)


def get_availability_service(db: Session = Depends(get_db)) -> AvailabilityService:
    return AvailabilityService(db)


def get_slot_service(db: Session = Depends(get_db)) -> SlotService:
    return SlotService(db)


def get_conflict_service(db: Session = Depends(get_db)) -> ConflictService:
    return ConflictService(db)


def get_smart_scheduler(db: Session = Depends(get_db)) -> SmartScheduler:
    return SmartScheduler(db)


def get_analytics_service(db: Session = Depends(get_db)) -> AnalyticsService:
    return AnalyticsService(db)


def get_reminder_service(db: Session = Depends(get_db)) -> ReminderService:
    return ReminderService(db)


def _commit_hooks(
    ctx: RequestContext,
    background_tasks: BackgroundTasks,
    calendar_token: Optional[str],
    calendar_id: Optional[str],
) -> list:
    """Post-commit work: drop cached analytics, push to the caller's calendar"""

    def refresh_analytics(_appointment):
        invalidate_workspace_analytics(ctx.workspace_id)

    hooks = [refresh_analytics]
    if calendar_token:

        def sync_calendar(appointment):
            background_tasks.add_task(push_event, calendar_token, calendar_id, appointment)

        hooks.append(sync_calendar)
    return hooks


# ============================================================================
# APPOINTMENTS
# ============================================================================


@router.post("/appointments", response_model=AppointmentResponse, status_code=201)
def create_appointment(
    data: AppointmentCreate,
    background_tasks: BackgroundTasks,
    ctx: RequestContext = Depends(get_request_context),
    service: AppointmentService = Depends(get_appointment_service),
    x_calendar_token: Optional[str] = Header(None),
    x_calendar_id: Optional[str] = Header(None),
):
    """Book an appointment; 409 with suggestions when the time is taken"""
    appointment = service.create(
        ctx, data, on_commit=_commit_hooks(ctx, background_tasks, x_calendar_token, x_calendar_id)
    )
    return AppointmentResponse.from_model(appointment)


@router.get("/appointments", response_model=AppointmentListResponse)
def list_appointments(
    ctx: RequestContext = Depends(get_request_context),
    service: AppointmentService = Depends(get_appointment_service),
    startDate: Optional[datetime] = Query(None),
    endDate: Optional[datetime] = Query(None),
    type: Optional[list[AppointmentType]] = Query(None),
    status: Optional[list[AppointmentStatus]] = Query(None),
    priority: Optional[list[AppointmentPriority]] = Query(None),
    contactId: Optional[str] = Query(None),
    agentId: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: Optional[int] = Query(None, ge=1, le=500),
):
    """List appointments ordered by start time"""
    items, count = service.list_appointments(
        ctx,
        start=startDate,
        end=endDate,
        types=type,
        statuses=status,
        priorities=priority,
        contact_id=contactId,
        agent_id=agentId,
        skip=skip,
        limit=limit,
    )
    return AppointmentListResponse(
        items=[AppointmentResponse.from_model(a) for a in items], count=count
    )


@router.post("/appointments/bulk-update", response_model=BulkResult)
def bulk_update_appointments(
    data: BulkUpdateRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Update many appointments; each item succeeds or fails on its own"""
    result = service.bulk_update(ctx, data.items)
    if result["succeeded"]:
        invalidate_workspace_analytics(ctx.workspace_id)
    return result


@router.post("/appointments/bulk-delete", response_model=BulkResult)
def bulk_delete_appointments(
    data: BulkDeleteRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: AppointmentService = Depends(get_appointment_service),
):
    result = service.bulk_delete(ctx, data.appointmentIds, hard=data.hard)
    if result["succeeded"]:
        invalidate_workspace_analytics(ctx.workspace_id)
    return result


@router.get("/appointments/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: str,
    ctx: RequestContext = Depends(get_request_context),
    service: AppointmentService = Depends(get_appointment_service),
):
    return AppointmentResponse.from_model(service.get(ctx, appointment_id))


@router.patch("/appointments/{appointment_id}", response_model=AppointmentResponse)
def update_appointment(
    appointment_id: str,
    data: AppointmentUpdate,
    background_tasks: BackgroundTasks,
    ctx: RequestContext = Depends(get_request_context),
    service: AppointmentService = Depends(get_appointment_service),
    x_calendar_token: Optional[str] = Header(None),
    x_calendar_id: Optional[str] = Header(None),
):
    """Partial update; the body's version must match the stored one"""
    appointment = service.update(
        ctx,
        appointment_id,
        data,
        on_commit=_commit_hooks(ctx, background_tasks, x_calendar_token, x_calendar_id),
    )
    return AppointmentResponse.from_model(appointment)


@router.delete("/appointments/{appointment_id}", status_code=204)
def delete_appointment(
    appointment_id: str,
    hard: bool = Query(False),
    ctx: RequestContext = Depends(get_request_context),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Cancel an appointment, or remove it with ?hard=true (admins only)"""
    service.delete(ctx, appointment_id, hard=hard)
    invalidate_workspace_analytics(ctx.workspace_id)
    return Response(status_code=204)


# ============================================================================
# SMART SCHEDULING, SLOTS, CONFLICTS
# ============================================================================


@router.post("/smart-schedule", response_model=SmartScheduleResponse)
def smart_schedule(
    data: SmartScheduleRequest,
    background_tasks: BackgroundTasks,
    ctx: RequestContext = Depends(get_request_context),
    scheduler: SmartScheduler = Depends(get_smart_scheduler),
    x_calendar_token: Optional[str] = Header(None),
    x_calendar_id: Optional[str] = Header(None),
):
    """Pick the best slot for a request and book it"""
    result = scheduler.schedule(
        ctx, data, on_commit=_commit_hooks(ctx, background_tasks, x_calendar_token, x_calendar_id)
    )
    return SmartScheduleResponse(
        appointment=AppointmentResponse.from_model(result["appointment"]),
        recommendation=result["recommendation"],
    )


@router.get("/available-slots", response_model=list[TimeSlotSchema])
def get_available_slots(
    agentId: str = Query(...),
    startDate: datetime = Query(...),
    endDate: datetime = Query(...),
    duration: int = Query(60),
    bufferMinutes: Optional[int] = Query(None),
    stepMinutes: Optional[int] = Query(None),
    includeUnavailable: bool = Query(False),
    ctx: RequestContext = Depends(get_request_context),
    service: SlotService = Depends(get_slot_service),
):
    """Bookable slots for an agent within a date range"""
    slots = service.get_available_slots(
        ctx,
        agentId,
        startDate,
        endDate,
        duration,
        buffer_minutes=bufferMinutes,
        step_minutes=stepMinutes,
        include_unavailable=includeUnavailable,
    )
    return [TimeSlotSchema.from_slot(s) for s in slots]


@router.post("/conflicts", response_model=ConflictCheckResponse)
def check_conflicts(
    data: ConflictCheckRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: ConflictService = Depends(get_conflict_service),
):
    result = service.check(
        ctx,
        data.agentId,
        data.startTime,
        data.endTime,
        exclude_appointment_id=data.excludeAppointmentId,
    )
    return ConflictCheckResponse(
        hasConflicts=result.has_conflicts,
        conflicts=[AppointmentResponse.from_model(a) for a in result.conflicts],
        suggestions=[TimeSlotSchema.from_slot(s) for s in result.suggestions],
    )


# ============================================================================
# AVAILABILITY
# ============================================================================


@router.put("/availability/{agent_id}", status_code=204)
def upsert_availability(
    agent_id: str,
    data: AvailabilityUpsertRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: AvailabilityService = Depends(get_availability_service),
):
    service.upsert_entries(ctx, agent_id, data.entries, replace=data.replace)
    return Response(status_code=204)


@router.get("/availability/{agent_id}", response_model=list[ResolvedIntervalResponse])
def get_availability(
    agent_id: str,
    startDate: datetime = Query(...),
    endDate: datetime = Query(...),
    ctx: RequestContext = Depends(get_request_context),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Resolved available / unavailable intervals covering the range"""
    resolved = service.resolve(ctx, agent_id, startDate, endDate)
    return [ResolvedIntervalResponse(start=r.start, end=r.end, state=r.state) for r in resolved]


@router.get("/availability/{agent_id}/entries", response_model=list[AvailabilityEntryResponse])
def get_availability_entries(
    agent_id: str,
    ctx: RequestContext = Depends(get_request_context),
    service: AvailabilityService = Depends(get_availability_service),
):
    return [AvailabilityEntryResponse.from_model(e) for e in service.get_entries(ctx, agent_id)]


@router.delete("/availability/entries/{entry_id}", status_code=204)
def delete_availability_entry(
    entry_id: str,
    ctx: RequestContext = Depends(get_request_context),
    service: AvailabilityService = Depends(get_availability_service),
):
    service.delete_entry(ctx, entry_id)
    return Response(status_code=204)


@router.post("/availability/{agent_id}/import", response_model=list[AvailabilityEntryResponse])
def import_external_busy_time(
    agent_id: str,
    startDate: datetime = Query(...),
    endDate: datetime = Query(...),
    timezone: Optional[str] = Query(None),
    x_calendar_token: Optional[str] = Header(None),
    x_calendar_id: Optional[str] = Header(None),
    ctx: RequestContext = Depends(get_request_context),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Copy the agent's external calendar events in as busy entries"""
    if not x_calendar_token:
        raise ValidationError("X-Calendar-Token header is required", field="X-Calendar-Token")
    if endDate <= startDate:
        raise ValidationError("endDate must be after startDate", field="endDate")
    try:
        get_timezone(timezone)
    except ValueError as e:
        raise ValidationError(str(e), field="timezone") from None

    events = fetch_events(x_calendar_token, x_calendar_id, startDate, endDate)
    entries = busy_entries_from_events(events, agent_id, timezone)
    saved = service.upsert_entries(ctx, agent_id, entries) if entries else []
    return [AvailabilityEntryResponse.from_model(e) for e in saved]


# ============================================================================
# HOLDS
# ============================================================================


@router.post("/holds", response_model=HoldResponse, status_code=201)
def create_hold(
    data: HoldCreate,
    ctx: RequestContext = Depends(get_request_context),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Reserve a slot briefly while the booking form is completed"""
    hold = service.hold_slot(ctx, data.agentId, data.startTime, data.endTime, ttl_minutes=data.ttlMinutes)
    return HoldResponse.from_model(hold)


@router.delete("/holds/{hold_id}", status_code=204)
def release_hold(
    hold_id: str,
    ctx: RequestContext = Depends(get_request_context),
    service: AppointmentService = Depends(get_appointment_service),
):
    service.release_hold(ctx, hold_id)
    return Response(status_code=204)


# ============================================================================
# ANALYTICS, AGENDA, REMINDERS
# ============================================================================


@router.get("/analytics")
def get_analytics(
    startDate: datetime = Query(...),
    endDate: datetime = Query(...),
    groupBy: Optional[str] = Query(None),
    agentId: Optional[str] = Query(None),
    topN: int = Query(3),
    ctx: RequestContext = Depends(get_request_context),
    service: AnalyticsService = Depends(get_analytics_service),
):
    return service.get_analytics(
        ctx, startDate, endDate, group_by=groupBy, agent_id=agentId, top_n=topN
    )


@router.get("/agenda/{agent_id}")
def get_daily_agenda(
    agent_id: str,
    day: Optional[date] = Query(None, alias="date"),
    ctx: RequestContext = Depends(get_request_context),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """The agent's appointments for one UTC day with workload insights"""
    day = day or utcnow().date()
    agenda = service.get_daily_agenda(ctx, agent_id, day)
    agenda["appointments"] = [
        AppointmentResponse.from_model(a).model_dump(mode="json") for a in agenda["appointments"]
    ]
    return agenda


@router.post("/reminders/dispatch")
def dispatch_reminders(
    horizonMinutes: int = Query(120, ge=1, le=1440),
    ctx: RequestContext = Depends(get_request_context),
    service: ReminderService = Depends(get_reminder_service),
):
    """Mark due reminders as sent; delivery at this edge is log-only"""
    return service.dispatch_due(ctx, log_dispatcher, horizon_minutes=horizonMinutes)
