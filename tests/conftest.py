"""
Shared fixtures for the calendar test suite.

Every test gets its own file-backed SQLite database so threads can share it
through separate sessions, the way request handlers do.
"""

import os
import tempfile
from datetime import date, datetime, time, timezone

# Point the application engine at a throwaway file before anything imports it
os.environ["DATABASE_URL"] = f"sqlite:///{tempfile.mkdtemp()}/app.db"
os.environ.pop("REDIS_URL", None)

import pytest  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from crm_calendar.auth import RequestContext  # noqa: E402
from crm_calendar.database import Base, build_engine  # noqa: E402
from crm_calendar.domain.scheduling.appointment_service import AppointmentService  # noqa: E402
from crm_calendar.domain.scheduling.availability_service import AvailabilityService  # noqa: E402
from crm_calendar.domain.scheduling.schemas import (  # noqa: E402
    AppointmentCreate,
    AvailabilityEntrySchema,
)
from crm_calendar.enums import AppointmentType, AvailabilityKind  # noqa: E402

AGENT = "agent-1"
WORKSPACE = "ws-1"

# 2030-01-07 is a Monday
MONDAY = date(2030, 1, 7)


def utc(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=timezone.utc)


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'calendar.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def ctx():
    return RequestContext(workspace_id=WORKSPACE, user_id="user-1", role="agent")


@pytest.fixture
def admin_ctx():
    return RequestContext(workspace_id=WORKSPACE, user_id="admin-1", role="admin")


@pytest.fixture
def set_availability(db, ctx):
    """Store availability entries for an agent"""

    def _set(entries, agent_id=AGENT):
        return AvailabilityService(db).upsert_entries(ctx, agent_id, entries)

    return _set


@pytest.fixture
def weekday_hours(set_availability):
    """Monday to Friday, 09:00-17:00 UTC"""

    def _weekdays(agent_id=AGENT, start=time(9), end=time(17), tz="UTC"):
        return set_availability(
            [
                AvailabilityEntrySchema(
                    kind=AvailabilityKind.AVAILABLE,
                    isRecurring=True,
                    dayOfWeek=day,
                    startTime=start,
                    endTime=end,
                    timezone=tz,
                )
                for day in range(1, 6)
            ],
            agent_id=agent_id,
        )

    return _weekdays


@pytest.fixture
def book(db, ctx):
    """Create an appointment through the store"""

    def _book(start, end, agent_id=AGENT, context=None, **fields):
        data = AppointmentCreate(
            title=fields.pop("title", "Property viewing"),
            type=fields.pop("type", AppointmentType.VIEWING),
            startTime=start,
            endTime=end,
            assignedToId=agent_id,
            **fields,
        )
        return AppointmentService(db).create(context or ctx, data)

    return _book
