"""
Google Calendar Sync
Pushes committed appointments to an external calendar and turns external
events into busy availability entries. Every call is best effort: failures
are logged and reported as None / empty results, never raised.
"""
import logging
from datetime import datetime, time, timedelta
from typing import Optional

import httpx

from ..config import CALENDAR_SYNC_TIMEOUT, GOOGLE_CALENDAR_API
from ..domain.scheduling.schemas import AvailabilityEntrySchema
from ..domain.scheduling.time_calculator import get_timezone
from ..enums import AvailabilityKind
from ..models import Appointment

logger = logging.getLogger(__name__)


def build_google_event(appointment: Appointment) -> dict:
    """Google Calendar event payload for an appointment"""
    event_data = {
        "summary": appointment.title,
        "description": appointment.description or f"{appointment.type.value.capitalize()} appointment",
        "start": {"dateTime": appointment.start_time.isoformat(), "timeZone": "UTC"},
        "end": {"dateTime": appointment.end_time.isoformat(), "timeZone": "UTC"},
        "extendedProperties": {"private": {"crmAppointmentId": appointment.id}},
    }

    # Add location if available
    if appointment.location:
        event_data["location"] = appointment.location

    if appointment.meeting_url:
        event_data["description"] += f"\n\nJoin: {appointment.meeting_url}"

    attendees = [{"email": a["email"]} for a in (appointment.attendees or []) if a.get("email")]
    if attendees:
        event_data["attendees"] = attendees

    return event_data


def push_event(
    access_token: str,
    calendar_id: str,
    appointment: Appointment,
    client: Optional[httpx.Client] = None,
) -> Optional[str]:
    """
    Create the Google Calendar event for an appointment
    Returns the Google Calendar event ID if successful, None otherwise
    """
    owns_client = client is None
    client = client or httpx.Client(timeout=CALENDAR_SYNC_TIMEOUT)
    try:
        response = client.post(
            f"{GOOGLE_CALENDAR_API}/calendars/{calendar_id or 'primary'}/events",
            headers={"Authorization": f"Bearer {access_token}"},
            json=build_google_event(appointment),
        )

        if response.status_code not in [200, 201]:
            logger.error(f"❌ Failed to create calendar event: {response.text}")
            return None

        event_id = response.json().get("id")
        logger.info(f"✅ Google Calendar event created: {event_id}")
        return event_id

    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"❌ Error creating calendar event: {str(e)}")
        return None
    finally:
        if owns_client:
            client.close()


def fetch_events(
    access_token: str,
    calendar_id: str,
    start: datetime,
    end: datetime,
    client: Optional[httpx.Client] = None,
) -> list[dict]:
    """List external events in [start, end); empty on any failure"""
    owns_client = client is None
    client = client or httpx.Client(timeout=CALENDAR_SYNC_TIMEOUT)
    try:
        response = client.get(
            f"{GOOGLE_CALENDAR_API}/calendars/{calendar_id or 'primary'}/events",
            headers={"Authorization": f"Bearer {access_token}"},
            params={
                "timeMin": start.isoformat(),
                "timeMax": end.isoformat(),
                "singleEvents": "true",
                "orderBy": "startTime",
            },
        )

        if response.status_code != 200:
            logger.error(f"❌ Failed to fetch calendar events: {response.text}")
            return []

        return response.json().get("items", [])

    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"❌ Error fetching calendar events: {str(e)}")
        return []
    finally:
        if owns_client:
            client.close()


def _parse_event_time(value: dict, tz) -> Optional[datetime]:
    if value.get("dateTime"):
        parsed = datetime.fromisoformat(value["dateTime"].replace("Z", "+00:00"))
        return parsed.astimezone(tz)
    if value.get("date"):
        # All-day events are bounded by local midnights
        day = datetime.fromisoformat(value["date"]).date()
        return tz.localize(datetime.combine(day, time.min))
    return None


def busy_entries_from_events(
    events: list[dict], agent_id: str, tz_name: Optional[str] = None
) -> list[AvailabilityEntrySchema]:
    """
    Convert external events into explicit-date busy entries.

    Events are split at local midnight so every entry covers a single date;
    cancelled and transparent ("free") events are skipped.
    """
    tz = get_timezone(tz_name)
    entries = []

    for event in events:
        if event.get("status") == "cancelled" or event.get("transparency") == "transparent":
            continue
        start = _parse_event_time(event.get("start", {}), tz)
        end = _parse_event_time(event.get("end", {}), tz)
        if not start or not end or end <= start:
            continue

        cursor = start
        while cursor < end:
            next_midnight = tz.localize(
                datetime.combine(cursor.date() + timedelta(days=1), time.min)
            )
            segment_end = min(end, next_midnight)
            end_time = time.max if segment_end == next_midnight else segment_end.time()
            if end_time > cursor.time():
                entries.append(
                    AvailabilityEntrySchema(
                        kind=AvailabilityKind.BUSY,
                        isRecurring=False,
                        date=cursor.date(),
                        startTime=cursor.time().replace(tzinfo=None),
                        endTime=end_time.replace(tzinfo=None),
                        timezone=tz.zone,
                        notes=f"Imported: {event.get('summary', 'busy')}",
                    )
                )
            cursor = segment_end

    logger.info(f"📅 Imported {len(entries)} busy entries for agent {agent_id} from {len(events)} events")
    return entries
