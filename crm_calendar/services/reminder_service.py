"""
Appointment Reminder Dispatch
Finds upcoming appointments whose reminders are due, hands each reminder to
an external dispatcher (email / SMS / push), and marks delivered ones as sent
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..auth import RequestContext
from ..database import utcnow
from ..enums import ACTIVE_STATUSES
from ..models import Appointment

logger = logging.getLogger(__name__)

Dispatcher = Callable[[Appointment, dict], None]


def log_dispatcher(appointment: Appointment, reminder: dict) -> None:
    """Dispatcher used at the HTTP edge when no delivery channel is wired"""
    logger.info(
        f"📧 Sending {reminder['type']} reminder for appointment {appointment.id} "
        f"({reminder['minutes_before']} min before)"
    )


def due_reminders(appointment: Appointment, now: datetime) -> list[int]:
    """Indexes of unsent reminders whose send time has arrived"""
    due = []
    for index, reminder in enumerate(appointment.reminders or []):
        send_at = appointment.start_time - timedelta(minutes=reminder["minutes_before"])
        if not reminder.get("sent") and now >= send_at:
            due.append(index)
    return due


class ReminderService:
    def __init__(self, db: Session):
        self.db = db

    def dispatch_due(
        self,
        ctx: RequestContext,
        dispatcher: Dispatcher,
        now: Optional[datetime] = None,
        horizon_minutes: int = 120,
    ) -> dict:
        """
        Send every due reminder for appointments starting within the horizon

        Returns:
            Dict with the number of reminders sent and appointments scanned
        """
        now = now or utcnow()
        appointments = (
            self.db.query(Appointment)
            .filter(
                Appointment.workspace_id == ctx.workspace_id,
                Appointment.status.in_(list(ACTIVE_STATUSES)),
                Appointment.start_time >= now,
                Appointment.start_time <= now + timedelta(minutes=horizon_minutes),
            )
            .order_by(Appointment.start_time.asc())
            .all()
        )

        sent = 0
        for appointment in appointments:
            indexes = due_reminders(appointment, now)
            if not indexes:
                continue

            reminders = [dict(r) for r in appointment.reminders]
            delivered = 0
            for index in indexes:
                try:
                    dispatcher(appointment, reminders[index])
                except Exception as e:
                    logger.error(
                        f"❌ Failed to send {reminders[index]['type']} reminder "
                        f"for appointment {appointment.id}: {e}"
                    )
                    continue
                reminders[index]["sent"] = True
                delivered += 1

            if not delivered:
                continue

            # Reassign so the JSON column is flagged dirty
            appointment.reminders = reminders
            try:
                self.db.commit()
                sent += delivered
            except StaleDataError:
                self.db.rollback()
                logger.warning(
                    f"⚠️ Appointment {appointment.id} changed while sending reminders; "
                    "sent flags not saved"
                )

        logger.info(f"✅ Sent {sent} reminders across {len(appointments)} upcoming appointments")
        return {"sent": sent, "total": len(appointments)}
