"""
Time-window push reminder dispatcher.

Invoked every 5 minutes (cron -> POST /api/jobs/process-push-reminders).
For each horizon, confirmed appointments whose start_at falls inside the
horizon window get a push notification through the push collaborator:

    reminder_30min: [now,       now + 30m]
    reminder_2h:    [now + 2h,  now + 2h + 5m]
    reminder_24h:   [now + 24h, now + 24h + 5m]

The 2h and 24h windows only catch appointments newly entering the horizon
since the previous run. There is no durable "already sent" marker, so
cadence drift can cause duplicate or missed pushes.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from database.repository import SqlAlchemyStore
from lifecycle.workers.results import HorizonSummary
from shared.errors import TransportFailureError
from shared.notification_client import NotificationClient

logger = logging.getLogger(__name__)

HORIZON_WINDOW = timedelta(minutes=5)


@dataclass(frozen=True)
class ReminderHorizon:
    kind: str
    lead_time: timedelta
    # True: window is [now, now + lead_time]; False: [now + lead, now + lead + 5m]
    covers_full_lead: bool = False

    def window(self, now: datetime) -> tuple[datetime, datetime]:
        if self.covers_full_lead:
            return now, now + self.lead_time
        start = now + self.lead_time
        return start, start + HORIZON_WINDOW


REMINDER_HORIZONS = (
    ReminderHorizon("reminder_30min", timedelta(minutes=30), covers_full_lead=True),
    ReminderHorizon("reminder_2h", timedelta(hours=2)),
    ReminderHorizon("reminder_24h", timedelta(hours=24)),
)


async def process_horizon(
    horizon: ReminderHorizon,
    store: SqlAlchemyStore,
    notifier: NotificationClient,
    now: datetime,
) -> HorizonSummary:
    """Send pushes for one horizon; never raises for a single appointment."""
    summary = HorizonSummary()
    window_start, window_end = horizon.window(now)

    try:
        appointments = await store.find_confirmed_appointments_between(window_start, window_end)
    except Exception as e:
        logger.error(f"Error fetching appointments for {horizon.kind}: {e}", exc_info=True)
        summary.errors.append(f"Error fetching appointments: {e}")
        return summary

    for appointment in appointments:
        try:
            await notifier.send_push(horizon.kind, appointment.id)
            summary.processed += 1
        except TransportFailureError as e:
            summary.errors.append(f"Appointment {appointment.id}: {e.message}")
        except Exception as e:
            logger.error(
                f"Unexpected error sending {horizon.kind} push: {e}",
                exc_info=True,
                extra={"appointment_id": appointment.id},
            )
            summary.errors.append(f"Appointment {appointment.id}: {e}")

    return summary


async def dispatch_push_reminders(
    store: SqlAlchemyStore,
    notifier: NotificationClient,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Run every horizon once.

    Returns:
        {"success": True, "results": {kind: {processed, errors}}, "timestamp": iso}
    """
    now = now or datetime.now(UTC)
    results: dict[str, Any] = {}

    for horizon in REMINDER_HORIZONS:
        summary = await process_horizon(horizon, store, notifier, now)
        results[horizon.kind] = summary.to_dict()

    logger.info(f"Push reminders processed: {results}", extra={"job_name": "process_push_reminders"})

    return {
        "success": True,
        "results": results,
        "timestamp": now.isoformat(),
    }
