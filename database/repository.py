"""
Storage operations used by the lifecycle services and workers.

Every mutating method is a conditional (compare-and-set) UPDATE so that
overlapping invocations cannot both win:
- appointment transitions only from status = 'pending'
- link consumption only where used_at IS NULL
- reminder claims only on pending rows without a live lease
- reminder completion only from status = 'pending'

Each method runs in its own short transaction; nothing is cached between
calls, so callers always act on the authoritative row.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert

from database.connection import Database
from database.models import (
    Appointment,
    AppointmentLink,
    AppointmentStatus,
    BillingWebhookEvent,
    LinkPurpose,
    ReminderQueueEntry,
    ReminderStatus,
    Subscription,
    SubscriptionStatus,
    WebhookEventStatus,
)

logger = logging.getLogger(__name__)

# Subscription statuses re-checked against the billing provider
SYNCABLE_SUBSCRIPTION_STATUSES = (
    SubscriptionStatus.TRIAL,
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.PAST_DUE,
)

TRIAL_EXPIRED_PAYMENT_STATUS = "TRIAL_EXPIRED"


class LinkActionOutcome(str, Enum):
    """Result of the atomic transition + link consumption unit of work."""

    APPLIED = "applied"
    LINK_ALREADY_USED = "link_already_used"
    APPOINTMENT_NOT_PENDING = "appointment_not_pending"


class SqlAlchemyStore:
    """PostgreSQL-backed storage for appointments, links, reminders and subscriptions."""

    def __init__(self, database: Database):
        self.database = database

    # =========================================================================
    # Appointments & action links
    # =========================================================================

    async def get_link_by_token(self, token: str) -> AppointmentLink | None:
        async with self.database.session() as session:
            result = await session.execute(
                select(AppointmentLink).where(AppointmentLink.token == token)
            )
            return result.scalar_one_or_none()

    async def get_appointment(self, appointment_id: UUID) -> Appointment | None:
        async with self.database.session() as session:
            return await session.get(Appointment, appointment_id)

    async def apply_link_action(
        self,
        link_id: UUID,
        appointment_id: UUID,
        new_status: AppointmentStatus,
        now: datetime,
    ) -> LinkActionOutcome:
        """
        Transition the appointment and consume the link and its siblings.

        The appointment row is updated first so concurrent resolutions for
        the same appointment serialize on its row lock.
        """
        async with self.database.session() as session:
            appointment_result = await session.execute(
                update(Appointment)
                .where(
                    Appointment.id == appointment_id,
                    Appointment.status == AppointmentStatus.PENDING,
                )
                .values(status=new_status, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if appointment_result.rowcount == 0:
                await session.rollback()
                return LinkActionOutcome.APPOINTMENT_NOT_PENDING

            link_result = await session.execute(
                update(AppointmentLink)
                .where(
                    AppointmentLink.id == link_id,
                    AppointmentLink.used_at.is_(None),
                )
                .values(used_at=now)
                .execution_options(synchronize_session=False)
            )
            if link_result.rowcount == 0:
                await session.rollback()
                return LinkActionOutcome.LINK_ALREADY_USED

            siblings_result = await session.execute(
                update(AppointmentLink)
                .where(
                    AppointmentLink.appointment_id == appointment_id,
                    AppointmentLink.purpose.in_([LinkPurpose.CONFIRM, LinkPurpose.CANCEL]),
                    AppointmentLink.used_at.is_(None),
                )
                .values(used_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        logger.debug(
            f"Consumed link {link_id} and {siblings_result.rowcount} sibling link(s)",
            extra={"appointment_id": appointment_id},
        )
        return LinkActionOutcome.APPLIED

    async def find_confirmed_appointments_between(
        self, window_start: datetime, window_end: datetime
    ) -> list[Appointment]:
        """Confirmed appointments with window_start <= start_at <= window_end."""
        async with self.database.session() as session:
            result = await session.execute(
                select(Appointment)
                .where(
                    Appointment.status == AppointmentStatus.CONFIRMED,
                    Appointment.start_at >= window_start,
                    Appointment.start_at <= window_end,
                )
                .order_by(Appointment.start_at.asc())
            )
            return list(result.scalars().all())

    # =========================================================================
    # Reminder queue
    # =========================================================================

    async def requeue_failed_reminders(self, now: datetime) -> int:
        """Move errored entries whose retry time has come back to pending."""
        async with self.database.session() as session:
            result = await session.execute(
                update(ReminderQueueEntry)
                .where(
                    ReminderQueueEntry.status == ReminderStatus.ERROR,
                    ReminderQueueEntry.next_retry_at.is_not(None),
                    ReminderQueueEntry.next_retry_at <= now,
                )
                .values(
                    status=ReminderStatus.PENDING,
                    scheduled_for=ReminderQueueEntry.next_retry_at,
                    next_retry_at=None,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount

    async def fetch_due_reminders(self, now: datetime, limit: int) -> list[ReminderQueueEntry]:
        """Oldest-first pending reminders due at or before now and not leased."""
        async with self.database.session() as session:
            result = await session.execute(
                select(ReminderQueueEntry)
                .where(
                    ReminderQueueEntry.status == ReminderStatus.PENDING,
                    ReminderQueueEntry.scheduled_for <= now,
                    or_(
                        ReminderQueueEntry.claimed_until.is_(None),
                        ReminderQueueEntry.claimed_until < now,
                    ),
                )
                .order_by(ReminderQueueEntry.scheduled_for.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def claim_reminder(
        self, reminder_id: UUID, now: datetime, lease_until: datetime
    ) -> bool:
        """Take a dispatch lease on a pending entry. False if another run holds it."""
        async with self.database.session() as session:
            result = await session.execute(
                update(ReminderQueueEntry)
                .where(
                    ReminderQueueEntry.id == reminder_id,
                    ReminderQueueEntry.status == ReminderStatus.PENDING,
                    or_(
                        ReminderQueueEntry.claimed_until.is_(None),
                        ReminderQueueEntry.claimed_until < now,
                    ),
                )
                .values(claimed_until=lease_until)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def mark_reminder_sent(self, reminder_id: UUID, now: datetime) -> bool:
        async with self.database.session() as session:
            result = await session.execute(
                update(ReminderQueueEntry)
                .where(
                    ReminderQueueEntry.id == reminder_id,
                    ReminderQueueEntry.status == ReminderStatus.PENDING,
                )
                .values(
                    status=ReminderStatus.SENT,
                    sent_at=now,
                    attempts=ReminderQueueEntry.attempts + 1,
                    last_error=None,
                    next_retry_at=None,
                    claimed_until=None,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def mark_reminder_failed(
        self,
        reminder_id: UUID,
        error_message: str,
        next_retry_at: datetime | None,
    ) -> bool:
        async with self.database.session() as session:
            result = await session.execute(
                update(ReminderQueueEntry)
                .where(
                    ReminderQueueEntry.id == reminder_id,
                    ReminderQueueEntry.status == ReminderStatus.PENDING,
                )
                .values(
                    status=ReminderStatus.ERROR,
                    attempts=ReminderQueueEntry.attempts + 1,
                    last_error=error_message,
                    next_retry_at=next_retry_at,
                    claimed_until=None,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    # =========================================================================
    # Subscriptions
    # =========================================================================

    async def expire_trials(self, now: datetime) -> int:
        """Bulk-move trials whose trial_ends_at has passed to past_due."""
        async with self.database.session() as session:
            result = await session.execute(
                update(Subscription)
                .where(
                    Subscription.status == SubscriptionStatus.TRIAL,
                    Subscription.trial_ends_at.is_not(None),
                    Subscription.trial_ends_at < now,
                )
                .values(
                    status=SubscriptionStatus.PAST_DUE,
                    last_payment_status=TRIAL_EXPIRED_PAYMENT_STATUS,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount

    async def list_syncable_subscriptions(self) -> list[Subscription]:
        async with self.database.session() as session:
            result = await session.execute(
                select(Subscription).where(
                    Subscription.status.in_(SYNCABLE_SUBSCRIPTION_STATUSES),
                    Subscription.external_subscription_id.is_not(None),
                )
            )
            return list(result.scalars().all())

    async def get_subscription_by_barbershop(self, barbershop_id: UUID) -> Subscription | None:
        async with self.database.session() as session:
            result = await session.execute(
                select(Subscription).where(Subscription.barbershop_id == barbershop_id)
            )
            return result.scalar_one_or_none()

    async def get_subscription_by_external_id(self, external_id: str) -> Subscription | None:
        async with self.database.session() as session:
            result = await session.execute(
                select(Subscription).where(
                    Subscription.external_subscription_id == external_id
                )
            )
            return result.scalar_one_or_none()

    async def update_subscription(self, subscription_id: UUID, values: dict[str, Any]) -> None:
        async with self.database.session() as session:
            await session.execute(
                update(Subscription)
                .where(Subscription.id == subscription_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    # =========================================================================
    # Billing webhook events
    # =========================================================================

    async def record_webhook_event(
        self, event_id: str, event_type: str, payload: dict[str, Any]
    ) -> UUID | None:
        """
        Claim the event for processing.

        A new event_id is inserted as pending. A redelivery of an event that
        previously failed is reset to pending and claimed again. Returns None
        when the event is already processed or still in flight.
        """
        statement = pg_insert(BillingWebhookEvent).values(
            event_id=event_id,
            event_type=event_type,
            payload=payload,
            status=WebhookEventStatus.PENDING,
        )
        statement = statement.on_conflict_do_update(
            index_elements=["event_id"],
            set_={
                "status": WebhookEventStatus.PENDING,
                "payload": statement.excluded.payload,
                "processed_at": None,
            },
            where=BillingWebhookEvent.status == WebhookEventStatus.FAILED,
        ).returning(BillingWebhookEvent.id)

        async with self.database.session() as session:
            result = await session.execute(statement)
            row_id = result.scalar_one_or_none()
            await session.commit()
            return row_id

    async def mark_webhook_event(
        self, row_id: UUID, status: WebhookEventStatus, now: datetime
    ) -> None:
        async with self.database.session() as session:
            await session.execute(
                update(BillingWebhookEvent)
                .where(BillingWebhookEvent.id == row_id)
                .values(status=status, processed_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
