"""
Calendar Analytics Service

Read-only reductions over the appointment store:
- Summary counts, conversion rate and breakdowns for a date range
- Weekday / hour-of-day trends
- Per-hour completion rates feeding the smart scheduler
- An agent's daily agenda
"""

import logging
import math
from collections import Counter, defaultdict
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ...auth import RequestContext
from ...cache import build_analytics_key, cache
from ...config import ANALYTICS_CACHE_TTL, HOUR_AVOIDANCE_MIN_SAMPLES
from ...database import utcnow
from ...enums import (
    NON_BLOCKING_STATUSES,
    AppointmentPriority,
    AppointmentStatus,
)
from .errors import ValidationError
from .repository import AppointmentRepository
from .time_calculator import day_bounds, js_weekday, to_utc

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

WORKDAY_MINUTES = 8 * 60

# group_by value -> appointment attribute
GROUP_FIELDS = {
    "type": "type",
    "status": "status",
    "priority": "priority",
    "agent": "assigned_to_id",
    "contact": "contact_id",
}

# Statuses whose outcome is known, used for completion rates
_FINISHED_STATUSES = (
    AppointmentStatus.COMPLETED,
    AppointmentStatus.NO_SHOW,
    AppointmentStatus.CANCELLED,
)


def _value(v):
    return getattr(v, "value", v)


def _status_counts(appointments) -> dict:
    statuses = Counter(a.status for a in appointments)
    return {
        "totalAppointments": len(appointments),
        "completedAppointments": statuses[AppointmentStatus.COMPLETED],
        "cancelledAppointments": statuses[AppointmentStatus.CANCELLED],
        "noShowAppointments": statuses[AppointmentStatus.NO_SHOW],
    }


def _top(counter: Counter, top_n: int, order_key) -> list:
    # Highest count first; ties keep calendar order
    return sorted(counter.items(), key=lambda kv: (-kv[1], order_key(kv[0])))[:top_n]


def summarize(
    appointments: list, start: datetime, end: datetime, group_by: Optional[str] = None, top_n: int = 3
) -> dict:
    """Pure reduction of a list of appointments into the analytics payload"""
    summary = _status_counts(appointments)
    total = summary["totalAppointments"]
    completed = summary["completedAppointments"]

    days = max(1, math.ceil((end - start).total_seconds() / 86400))
    weekday_counts = Counter(js_weekday(a.start_time.date()) for a in appointments)
    hour_counts = Counter(a.start_time.hour for a in appointments)

    analytics = {
        "summary": summary,
        "byType": dict(Counter(_value(a.type) for a in appointments)),
        "byPriority": dict(Counter(_value(a.priority) for a in appointments)),
        "conversionRate": {
            "total": total,
            "completed": completed,
            "rate": round(completed / total, 4) if total else 0.0,
        },
        "trends": {
            "dailyAverage": round(total / days, 2),
            "peakDays": [
                {"day": WEEKDAY_NAMES[day], "count": count}
                for day, count in _top(weekday_counts, top_n, lambda d: d)
            ],
            "peakHours": [
                {"hour": hour, "count": count}
                for hour, count in _top(hour_counts, top_n, lambda h: h)
            ],
        },
    }

    if group_by:
        attr = GROUP_FIELDS[group_by]
        grouped = defaultdict(list)
        for appointment in appointments:
            grouped[str(_value(getattr(appointment, attr)))].append(appointment)
        analytics["groups"] = {key: _status_counts(items) for key, items in grouped.items()}

    return analytics


class AnalyticsService:
    """Service layer for calendar analytics"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = AppointmentRepository()

    def get_analytics(
        self,
        ctx: RequestContext,
        start: datetime,
        end: datetime,
        group_by: Optional[str] = None,
        agent_id: Optional[str] = None,
        top_n: int = 3,
        use_cache: bool = True,
    ) -> dict:
        start = to_utc(start)
        end = to_utc(end)
        if end <= start:
            raise ValidationError("endDate must be after startDate", field="endDate")
        if group_by and group_by not in GROUP_FIELDS:
            raise ValidationError(
                f"groupBy must be one of: {', '.join(GROUP_FIELDS)}", field="groupBy"
            )
        if top_n < 1:
            raise ValidationError("topN must be at least 1", field="topN")

        cache_key = build_analytics_key(
            ctx.workspace_id, start.isoformat(), end.isoformat(), group_by, agent_id
        )
        if use_cache:
            cached_value = cache.get(f"{cache_key}:{top_n}")
            if cached_value is not None:
                return cached_value

        appointments, _ = self.repo.search(
            self.db, ctx.workspace_id, start=start, end=end, agent_id=agent_id
        )
        analytics = summarize(appointments, start, end, group_by=group_by, top_n=top_n)

        if use_cache:
            cache.set(f"{cache_key}:{top_n}", analytics, ANALYTICS_CACHE_TTL)
        logger.info(
            f"📊 Analytics for workspace {ctx.workspace_id}: "
            f"{analytics['summary']['totalAppointments']} appointments"
        )
        return analytics

    def completion_rate_by_hour(
        self, ctx: RequestContext, agent_id: str, now: Optional[datetime] = None
    ) -> dict[int, dict]:
        """Completion rate per UTC start hour over the agent's finished appointments"""
        now = now or utcnow()
        appointments, _ = self.repo.search(
            self.db, ctx.workspace_id, end=now, statuses=_FINISHED_STATUSES, agent_id=agent_id
        )

        buckets: dict[int, dict] = {}
        for appointment in appointments:
            bucket = buckets.setdefault(appointment.start_time.hour, {"completed": 0, "total": 0})
            bucket["total"] += 1
            if appointment.status == AppointmentStatus.COMPLETED:
                bucket["completed"] += 1

        for bucket in buckets.values():
            bucket["rate"] = bucket["completed"] / bucket["total"]
        return buckets

    def lowest_completion_hour(
        self,
        ctx: RequestContext,
        agent_id: str,
        now: Optional[datetime] = None,
        min_samples: int = HOUR_AVOIDANCE_MIN_SAMPLES,
    ) -> Optional[int]:
        """
        The hour the agent completes the smallest share of appointments.

        Only buckets with at least ``min_samples`` finished appointments count,
        and None is returned when every qualifying hour has the same rate.
        """
        buckets = {
            hour: b
            for hour, b in self.completion_rate_by_hour(ctx, agent_id, now).items()
            if b["total"] >= min_samples
        }
        if not buckets:
            return None

        worst = min(buckets, key=lambda h: (buckets[h]["rate"], h))
        best_rate = max(b["rate"] for b in buckets.values())
        if buckets[worst]["rate"] >= best_rate:
            return None
        return worst

    def get_daily_agenda(self, ctx: RequestContext, agent_id: str, day: date) -> dict:
        """The agent's appointments for a UTC day with workload insights"""
        start, end = day_bounds(day)
        appointments, _ = self.repo.search(
            self.db, ctx.workspace_id, start=start, end=end, agent_id=agent_id
        )

        booked = [a for a in appointments if a.status not in NON_BLOCKING_STATUSES]
        booked_minutes = sum((a.end_time - a.start_time) / timedelta(minutes=1) for a in booked)

        return {
            "date": day.isoformat(),
            "appointments": appointments,
            "summary": {
                "total": len(appointments),
                "byType": dict(Counter(_value(a.type) for a in appointments)),
                "byPriority": dict(Counter(_value(a.priority) for a in appointments)),
            },
            "insights": {
                "busyPercentage": round(booked_minutes / WORKDAY_MINUTES * 100),
                "highPriorityCount": sum(
                    1
                    for a in appointments
                    if a.priority in (AppointmentPriority.URGENT, AppointmentPriority.HIGH)
                ),
                "preparationRequired": sum(
                    1 for a in appointments if (a.extra_metadata or {}).get("preparationNotes")
                ),
            },
        }
