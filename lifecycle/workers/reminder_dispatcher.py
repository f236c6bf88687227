"""
Queue-driven reminder dispatcher - sends due reminder emails.

Invoked every 5-10 minutes (cron -> POST /api/jobs/process-reminders).

Each run:
1. Re-queues failed entries whose retry time has come (retry sweep)
2. Selects up to REMINDER_BATCH_SIZE pending entries due now, oldest first
3. For each entry: takes a dispatch lease, asks the email collaborator to
   send {type: "reminder", appointmentId}, then records the outcome:
   - success: status=sent, sent_at=now, attempts+1, last_error cleared
   - failure: status=error, attempts+1, last_error=<transport message>,
     next_retry_at from the backoff policy (None once the cap is reached)

A failing entry never stops the rest of the batch. Only storage failures
while selecting the batch abort the run.
"""

import logging
from datetime import UTC, datetime, timedelta

from database.models import ReminderQueueEntry
from database.repository import SqlAlchemyStore
from lifecycle.workers.results import BatchSummary, ItemOutcome
from shared.config import Settings, get_settings
from shared.errors import TransportFailureError
from shared.notification_client import NotificationClient

logger = logging.getLogger(__name__)

REMINDER_EMAIL_TYPE = "reminder"


def compute_next_retry_at(
    attempts: int, now: datetime, settings: Settings
) -> datetime | None:
    """
    Backoff for a failed reminder.

    Args:
        attempts: Attempts made so far, including the one that just failed
        now: Failure instant
        settings: Retry policy configuration

    Returns:
        When the entry becomes eligible again, or None if it must stay in
        error (cap reached or automatic retry disabled)
    """
    if attempts >= settings.REMINDER_MAX_ATTEMPTS:
        return None

    delay_minutes = settings.REMINDER_RETRY_BASE_MINUTES * (2 ** max(attempts - 1, 0))
    delay_minutes = min(delay_minutes, settings.REMINDER_RETRY_MAX_MINUTES)
    return now + timedelta(minutes=delay_minutes)


async def dispatch_reminder(
    entry: ReminderQueueEntry,
    store: SqlAlchemyStore,
    notifier: NotificationClient,
    settings: Settings,
    now: datetime,
) -> ItemOutcome | None:
    """
    Send one reminder and record the outcome.

    Returns:
        ItemOutcome, or None if another run holds or already finished the entry
    """
    lease_until = now + timedelta(seconds=settings.REMINDER_CLAIM_LEASE_SECONDS)
    if not await store.claim_reminder(entry.id, now, lease_until):
        logger.info(
            f"Reminder {entry.id} claimed by another run, skipping",
            extra={"reminder_id": entry.id},
        )
        return None

    try:
        await notifier.send_email(REMINDER_EMAIL_TYPE, entry.appointment_id)
    except Exception as e:
        error_message = e.message if isinstance(e, TransportFailureError) else (str(e) or "unknown error")
        attempts = (entry.attempts or 0) + 1
        next_retry_at = compute_next_retry_at(attempts, now, settings)

        logger.error(
            f"Failed to send reminder {entry.id} (attempt {attempts}): {error_message}",
            extra={"reminder_id": entry.id, "appointment_id": entry.appointment_id},
        )
        if not await store.mark_reminder_failed(entry.id, error_message, next_retry_at):
            logger.warning(
                f"Reminder {entry.id} was finished by another run after its lease expired",
                extra={"reminder_id": entry.id},
            )
            return None
        return ItemOutcome.failure(entry.id, error_message)

    if not await store.mark_reminder_sent(entry.id, now):
        logger.warning(
            f"Reminder {entry.id} was finished by another run after its lease expired",
            extra={"reminder_id": entry.id},
        )
        return None
    logger.info(
        f"Sent reminder {entry.id} for appointment {entry.appointment_id}",
        extra={"reminder_id": entry.id, "appointment_id": entry.appointment_id},
    )
    return ItemOutcome.success(entry.id)


async def dispatch_queued_reminders(
    store: SqlAlchemyStore,
    notifier: NotificationClient,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> BatchSummary:
    """
    Process one batch of due reminders.

    Returns:
        BatchSummary with processed (sent), failed and per-entry errors
    """
    settings = settings or get_settings()
    now = now or datetime.now(UTC)
    summary = BatchSummary()

    logger.info(f"Starting reminder dispatch at {now.isoformat()}", extra={"job_name": "process_reminders"})

    if settings.REMINDER_MAX_ATTEMPTS > 0:
        requeued = await store.requeue_failed_reminders(now)
        if requeued:
            logger.info(f"Re-queued {requeued} failed reminder(s) for retry")

    entries = await store.fetch_due_reminders(now, settings.REMINDER_BATCH_SIZE)
    if not entries:
        logger.info("No reminders due")
        return summary

    logger.info(f"Found {len(entries)} due reminder(s)")

    for entry in entries:
        try:
            outcome = await dispatch_reminder(entry, store, notifier, settings, now)
        except Exception as e:
            logger.error(
                f"Error processing reminder {entry.id}: {e}",
                exc_info=True,
                extra={"reminder_id": entry.id},
            )
            outcome = ItemOutcome.failure(entry.id, str(e) or "unknown error")

        if outcome is not None:
            summary.add(outcome)

    logger.info(
        f"Completed reminder dispatch: sent={summary.processed}, errors={summary.failed}",
        extra={"job_name": "process_reminders"},
    )
    return summary
