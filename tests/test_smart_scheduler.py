"""Tests for smart scheduling"""

import time as monotonic_clock
from collections import Counter
from datetime import datetime, time, timedelta, timezone

import pytest

from crm_calendar.domain.scheduling import smart_scheduler
from crm_calendar.domain.scheduling.appointment_service import AppointmentService
from crm_calendar.domain.scheduling.errors import (
    ConflictError,
    InvalidRequestError,
    NoAvailabilityError,
    SchedulingTimeoutError,
)
from crm_calendar.domain.scheduling.schemas import (
    AppointmentUpdate,
    AvailabilityEntrySchema,
    SchedulingRequirements,
    SmartScheduleRequest,
)
from crm_calendar.domain.scheduling.slot_service import SlotService, TimeSlot
from crm_calendar.domain.scheduling.smart_scheduler import (
    SmartScheduler,
    build_reason,
    rank_slots,
    score_slot,
)
from crm_calendar.enums import AppointmentPriority, AppointmentStatus, AppointmentType

from .conftest import AGENT, MONDAY, utc

# The Wednesday before MONDAY
NOW = datetime(2030, 1, 2, 12, tzinfo=timezone.utc)


def make_request(**overrides):
    fields = {
        "contactId": "contact-1",
        "type": AppointmentType.VIEWING,
        "duration": 30,
        "priority": AppointmentPriority.MEDIUM,
        "assignedToId": AGENT,
    }
    fields.update(overrides)
    return SmartScheduleRequest(**fields)


def test_urgent_request_takes_first_slot_on_preferred_date(db, ctx, weekday_hours):
    weekday_hours()
    request = make_request(priority=AppointmentPriority.URGENT, preferredDates=[MONDAY])
    earliest = SlotService(db).get_available_slots(
        ctx, AGENT, utc(MONDAY, 0), utc(MONDAY, 23), 30, now=NOW
    )[0]

    result = SmartScheduler(db).schedule(ctx, request, now=NOW)

    appointment = result["appointment"]
    assert appointment.start_time == earliest.start == utc(MONDAY, 9)
    assert appointment.end_time - appointment.start_time == timedelta(minutes=30)

    recommendation = result["recommendation"]
    assert recommendation["priority"] == AppointmentPriority.URGENT
    assert "Urgent" in recommendation["reason"]
    assert "preferred" in recommendation["reason"]
    assert recommendation["suggestedPreparation"]


def test_booked_appointment_carries_scheduling_metadata(db, ctx, weekday_hours):
    weekday_hours()
    request = make_request(
        preferredDates=[MONDAY],
        requirements=SchedulingRequirements(location="Showroom", meetingUrl=True),
    )

    appointment = SmartScheduler(db).schedule(ctx, request, now=NOW)["appointment"]

    assert appointment.location == "Showroom"
    assert appointment.contact_id == "contact-1"
    assert appointment.extra_metadata["source"] == "smart_schedule"
    assert appointment.extra_metadata["estimatedDuration"] == 30
    assert appointment.extra_metadata["meetingUrlRequired"] is True


def test_never_books_in_the_past(db, ctx, weekday_hours):
    weekday_hours()

    appointment = SmartScheduler(db).schedule(ctx, make_request(), now=utc(MONDAY, 13, 5))[
        "appointment"
    ]

    assert appointment.start_time >= utc(MONDAY, 13, 5)


def test_booked_time_is_skipped(db, ctx, weekday_hours, book):
    weekday_hours()
    book(utc(MONDAY, 9), utc(MONDAY, 12))
    request = make_request(priority=AppointmentPriority.URGENT, preferredDates=[MONDAY])

    appointment = SmartScheduler(db).schedule(ctx, request, now=NOW)["appointment"]

    # The trailing 15-minute buffer of the existing booking is respected
    assert appointment.start_time == utc(MONDAY, 12, 15)


@pytest.mark.parametrize(
    "overrides",
    [
        {"contactId": None},
        {"assignedToId": None},
        {"type": None},
        {"duration": 0},
    ],
)
def test_incomplete_requests_are_rejected(db, ctx, overrides):
    with pytest.raises(InvalidRequestError) as exc_info:
        SmartScheduler(db).schedule(ctx, make_request(**overrides), now=NOW)

    assert exc_info.value.code == "invalid_request"


def test_no_availability_suggests_later_dates(db, ctx, set_availability):
    later = MONDAY + timedelta(days=20)
    set_availability([AvailabilityEntrySchema(date=later, startTime=time(9), endTime=time(12))])

    with pytest.raises(NoAvailabilityError) as exc_info:
        SmartScheduler(db).schedule(ctx, make_request(preferredDates=[MONDAY]), now=NOW)

    assert exc_info.value.alternative_dates == [later]


def test_expired_deadline_books_nothing(db, ctx, weekday_hours):
    weekday_hours()

    with pytest.raises(SchedulingTimeoutError):
        SmartScheduler(db).schedule(
            ctx, make_request(), now=NOW, deadline=monotonic_clock.monotonic() - 1
        )

    assert AppointmentService(db).list_appointments(ctx)[1] == 0


def test_lost_race_is_retried(db, ctx, weekday_hours):
    weekday_hours()
    scheduler = SmartScheduler(db)
    original_create = scheduler.appointments.create
    calls = []

    def flaky_create(context, data, on_commit=None):
        calls.append(data.startTime)
        if len(calls) == 1:
            raise ConflictError("taken by a concurrent booking")
        return original_create(context, data, on_commit=on_commit)

    scheduler.appointments.create = flaky_create

    result = scheduler.schedule(ctx, make_request(preferredDates=[MONDAY]), now=NOW)

    assert len(calls) == 2
    assert result["appointment"].id


def test_gives_up_after_repeated_losses(db, ctx, weekday_hours):
    weekday_hours()
    scheduler = SmartScheduler(db)

    def always_taken(context, data, on_commit=None):
        raise ConflictError("taken by a concurrent booking")

    scheduler.appointments.create = always_taken

    with pytest.raises(ConflictError):
        scheduler.schedule(ctx, make_request(preferredDates=[MONDAY]), now=NOW)


def test_zero_retry_setting_still_makes_one_attempt(db, ctx, weekday_hours, monkeypatch):
    weekday_hours()
    monkeypatch.setattr(smart_scheduler, "SMART_SCHEDULE_MAX_RETRIES", 0)

    result = SmartScheduler(db).schedule(ctx, make_request(preferredDates=[MONDAY]), now=NOW)

    assert result["appointment"].start_time.date() == MONDAY


def test_weak_completion_hour_is_avoided(db, ctx, weekday_hours, book):
    """Past no-shows at 09:00 push a low-priority request to a later hour"""
    weekday_hours()
    service = AppointmentService(db)
    past_monday = MONDAY - timedelta(days=7)
    for week in range(3):
        day = past_monday - timedelta(days=7 * week)
        missed = book(utc(day, 9), utc(day, 10))
        service.update(ctx, missed.id, AppointmentUpdate(version=1, status=AppointmentStatus.NO_SHOW))
        done = book(utc(day, 14), utc(day, 15))
        service.update(ctx, done.id, AppointmentUpdate(version=1, status=AppointmentStatus.CONFIRMED))
        service.update(ctx, done.id, AppointmentUpdate(version=2, status=AppointmentStatus.COMPLETED))

    request = make_request(priority=AppointmentPriority.LOW, preferredDates=[MONDAY])
    result = SmartScheduler(db).schedule(ctx, request, now=NOW)

    assert result["appointment"].start_time == utc(MONDAY, 10)


def test_score_prefers_nearer_preferred_date():
    window_start, window_end = utc(MONDAY, 0), utc(MONDAY, 0) + timedelta(days=14)
    on_day = TimeSlot(utc(MONDAY, 9), utc(MONDAY, 9, 30), 30)
    day_after = TimeSlot(utc(MONDAY + timedelta(days=1), 9), utc(MONDAY + timedelta(days=1), 9, 30), 30)

    ranked = rank_slots(
        [
            score_slot(s, window_start, window_end, AppointmentPriority.LOW, [MONDAY], Counter())
            for s in (day_after, on_day)
        ]
    )

    assert ranked[0].slot == on_day
    assert ranked[0].preferred_distance == 0


def test_score_balances_agent_load():
    window_start, window_end = utc(MONDAY, 0), utc(MONDAY, 0) + timedelta(days=14)
    busy_day = TimeSlot(utc(MONDAY, 9), utc(MONDAY, 9, 30), 30)
    quiet_day = TimeSlot(utc(MONDAY + timedelta(days=1), 9), utc(MONDAY + timedelta(days=1), 9, 30), 30)
    load = Counter({MONDAY: 4})

    scores = {
        s.slot: s.score
        for s in (
            score_slot(slot, window_start, window_end, AppointmentPriority.LOW, [], load)
            for slot in (busy_day, quiet_day)
        )
    }

    assert scores[quiet_day] > scores[busy_day]


def test_equal_scores_fall_back_to_earliest():
    window_start, window_end = utc(MONDAY, 0), utc(MONDAY, 0) + timedelta(days=14)
    early = TimeSlot(utc(MONDAY, 9), utc(MONDAY, 9, 30), 30)
    late = TimeSlot(utc(MONDAY, 10), utc(MONDAY, 10, 30), 30)

    scored = [
        score_slot(s, window_start, window_end, AppointmentPriority.LOW, [], Counter())
        for s in (late, early)
    ]

    assert rank_slots(scored)[0].slot == early


def test_reason_mentions_distance_when_preferred_date_is_missed():
    window_start, window_end = utc(MONDAY, 0), utc(MONDAY, 0) + timedelta(days=14)
    slot = TimeSlot(utc(MONDAY + timedelta(days=2), 9), utc(MONDAY + timedelta(days=2), 9, 30), 30)
    best = score_slot(slot, window_start, window_end, AppointmentPriority.HIGH, [MONDAY], Counter())

    reason = build_reason(best, AppointmentPriority.HIGH, True, None)

    assert "High priority" in reason
    assert "2 days away" in reason
