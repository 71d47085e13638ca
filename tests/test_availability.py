"""Tests for availability resolution"""

from datetime import time, timedelta

import pytest

from crm_calendar.domain.scheduling.availability_service import (
    AvailabilityService,
    resolve_availability,
)
from crm_calendar.domain.scheduling.errors import NotFoundError, ValidationError
from crm_calendar.domain.scheduling.schemas import (
    AvailabilityEntrySchema,
    RecurrencePatternSchema,
)
from crm_calendar.domain.scheduling.time_calculator import Interval
from crm_calendar.enums import AvailabilityKind, IntervalState, RecurrenceFrequency
from crm_calendar.services.calendar_sync import busy_entries_from_events

from .conftest import AGENT, MONDAY, utc


def available(resolved):
    return [(r.start, r.end) for r in resolved if r.state == IntervalState.AVAILABLE]


def assert_well_formed(resolved, start, end):
    assert resolved[0].start == start
    assert resolved[-1].end == end
    for current, following in zip(resolved, resolved[1:]):
        assert current.end == following.start
        assert current.start < current.end


def test_recurring_weekday_window(db, ctx, weekday_hours):
    """Mon-Fri 09:00-17:00 gives one window per weekday"""
    weekday_hours()
    start, end = utc(MONDAY, 0), utc(MONDAY + timedelta(days=7), 0)

    resolved = AvailabilityService(db).resolve(ctx, AGENT, start, end)

    assert_well_formed(resolved, start, end)
    windows = available(resolved)
    assert len(windows) == 5
    assert windows[0] == (utc(MONDAY, 9), utc(MONDAY, 17))


def test_explicit_date_replaces_recurring(db, ctx, weekday_hours, set_availability):
    weekday_hours()
    set_availability(
        [AvailabilityEntrySchema(date=MONDAY, startTime=time(13), endTime=time(15))]
    )

    resolved = AvailabilityService(db).resolve(ctx, AGENT, utc(MONDAY, 0), utc(MONDAY, 23))

    assert available(resolved) == [(utc(MONDAY, 13), utc(MONDAY, 15))]


def test_explicit_date_override_spans_timezones(db, ctx, weekday_hours, set_availability):
    """A UTC exception replaces New York weekday hours on the same date"""
    weekday_hours(tz="America/New_York")
    set_availability(
        [AvailabilityEntrySchema(date=MONDAY, startTime=time(13), endTime=time(14), timezone="UTC")]
    )

    resolved = AvailabilityService(db).resolve(ctx, AGENT, utc(MONDAY, 0), utc(MONDAY, 23))

    assert available(resolved) == [(utc(MONDAY, 13), utc(MONDAY, 14))]


def test_imported_busy_event_only_blocks_its_own_hours(db, ctx, weekday_hours, set_availability):
    weekday_hours()
    events = [
        {
            "summary": "Dentist",
            "start": {"dateTime": "2030-01-07T10:00:00Z"},
            "end": {"dateTime": "2030-01-07T11:00:00Z"},
        }
    ]
    set_availability(busy_entries_from_events(events, AGENT))

    service = AvailabilityService(db)

    assert service.available_intervals(ctx, AGENT, utc(MONDAY, 0), utc(MONDAY, 23)) == [
        Interval(utc(MONDAY, 9), utc(MONDAY, 10)),
        Interval(utc(MONDAY, 11), utc(MONDAY, 17)),
    ]


def test_vacation_blocks_recurring_hours(db, ctx, weekday_hours, set_availability):
    weekday_hours()
    set_availability(
        [
            AvailabilityEntrySchema(
                kind=AvailabilityKind.BREAK,
                isRecurring=True,
                dayOfWeek=1,
                startTime=time(12),
                endTime=time(13),
            ),
        ]
    )

    resolved = AvailabilityService(db).resolve(ctx, AGENT, utc(MONDAY, 0), utc(MONDAY, 23))

    assert available(resolved) == [
        (utc(MONDAY, 9), utc(MONDAY, 12)),
        (utc(MONDAY, 13), utc(MONDAY, 17)),
    ]


def test_local_hours_convert_to_utc_across_dst(db, ctx, weekday_hours):
    """09:00 New York is 14:00 UTC in winter and 13:00 UTC in summer"""
    weekday_hours(tz="America/New_York")
    service = AvailabilityService(db)

    winter = available(service.resolve(ctx, AGENT, utc(MONDAY, 0), utc(MONDAY + timedelta(days=1), 0)))
    summer_monday = MONDAY.replace(month=7, day=8)
    summer = available(
        service.resolve(ctx, AGENT, utc(summer_monday, 0), utc(summer_monday + timedelta(days=1), 0))
    )

    assert winter[0] == (utc(MONDAY, 14), utc(MONDAY, 22))
    assert summer[0] == (utc(summer_monday, 13), utc(summer_monday, 21))


def test_biweekly_pattern(db, ctx, set_availability):
    set_availability(
        [
            AvailabilityEntrySchema(
                isRecurring=True,
                recurringPattern=RecurrencePatternSchema(
                    frequency=RecurrenceFrequency.WEEKLY, interval=2, daysOfWeek=[1]
                ),
                effectiveFrom=MONDAY,
                startTime=time(9),
                endTime=time(12),
            )
        ]
    )

    resolved = AvailabilityService(db).resolve(
        ctx, AGENT, utc(MONDAY, 0), utc(MONDAY + timedelta(days=21), 0)
    )

    assert [w[0].date() for w in available(resolved)] == [MONDAY, MONDAY + timedelta(days=14)]


def test_no_entries_means_fully_unavailable(db, ctx):
    start, end = utc(MONDAY, 0), utc(MONDAY, 12)
    resolved = AvailabilityService(db).resolve(ctx, AGENT, start, end)

    assert len(resolved) == 1
    assert resolved[0].state == IntervalState.UNAVAILABLE


def test_resolution_is_deterministic(db, ctx, weekday_hours):
    entries = weekday_hours()
    start, end = utc(MONDAY, 0), utc(MONDAY + timedelta(days=7), 0)

    assert resolve_availability(entries, start, end) == resolve_availability(
        list(reversed(entries)), start, end
    )


def test_range_is_clipped(db, ctx, weekday_hours):
    weekday_hours()
    start, end = utc(MONDAY, 10), utc(MONDAY, 11, 30)

    resolved = AvailabilityService(db).resolve(ctx, AGENT, start, end)

    assert available(resolved) == [(start, end)]


def test_inverted_range_is_rejected(db, ctx):
    with pytest.raises(ValidationError):
        AvailabilityService(db).resolve(ctx, AGENT, utc(MONDAY, 12), utc(MONDAY, 9))


def test_other_workspaces_are_invisible(db, ctx, weekday_hours):
    weekday_hours()
    other = type(ctx)(workspace_id="ws-2", user_id="user-9")

    assert AvailabilityService(db).get_entries(other, AGENT) == []


def test_upsert_updates_and_replaces(db, ctx, weekday_hours):
    service = AvailabilityService(db)
    monday_entry = weekday_hours()[0]

    service.upsert_entries(
        ctx,
        AGENT,
        [
            AvailabilityEntrySchema(
                id=monday_entry.id,
                isRecurring=True,
                dayOfWeek=1,
                startTime=time(10),
                endTime=time(14),
            )
        ],
        replace=True,
    )

    entries = service.get_entries(ctx, AGENT)
    assert len(entries) == 1
    assert entries[0].start_time == time(10)


def test_delete_missing_entry(db, ctx):
    with pytest.raises(NotFoundError):
        AvailabilityService(db).delete_entry(ctx, "nope")
