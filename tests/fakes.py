"""
In-memory stand-in for SqlAlchemyStore.

Holds ORM instances in dicts and applies the same conditional updates the
SQL store performs, so services and workers can be exercised without
PostgreSQL. Helpers (add_*) build rows with explicit defaults since no
session flush runs here.
"""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

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
from database.repository import (
    SYNCABLE_SUBSCRIPTION_STATUSES,
    TRIAL_EXPIRED_PAYMENT_STATUS,
    LinkActionOutcome,
)


class InMemoryStore:
    def __init__(self):
        self.appointments: dict[UUID, Appointment] = {}
        self.links: dict[UUID, AppointmentLink] = {}
        self.reminders: dict[UUID, ReminderQueueEntry] = {}
        self.subscriptions: dict[UUID, Subscription] = {}
        self.webhook_events: dict[UUID, BillingWebhookEvent] = {}

    # ------------------------------------------------------------------
    # Fixture helpers
    # ------------------------------------------------------------------

    def add_appointment(
        self,
        start_at: datetime,
        status: AppointmentStatus = AppointmentStatus.PENDING,
        **fields: Any,
    ) -> Appointment:
        appointment = Appointment(
            id=fields.pop("id", uuid4()),
            barbershop_id=fields.pop("barbershop_id", uuid4()),
            start_at=start_at,
            status=status,
            **fields,
        )
        self.appointments[appointment.id] = appointment
        return appointment

    def add_link(
        self,
        appointment: Appointment,
        token: str,
        purpose: LinkPurpose,
        expires_at: datetime,
        used_at: datetime | None = None,
    ) -> AppointmentLink:
        link = AppointmentLink(
            id=uuid4(),
            appointment_id=appointment.id,
            token=token,
            purpose=purpose,
            expires_at=expires_at,
            used_at=used_at,
        )
        self.links[link.id] = link
        return link

    def add_reminder(
        self,
        appointment_id: UUID,
        scheduled_for: datetime,
        status: ReminderStatus = ReminderStatus.PENDING,
        attempts: int = 0,
        **fields: Any,
    ) -> ReminderQueueEntry:
        entry = ReminderQueueEntry(
            id=uuid4(),
            appointment_id=appointment_id,
            reminder_type=fields.pop("reminder_type", "reminder"),
            status=status,
            scheduled_for=scheduled_for,
            attempts=attempts,
            **fields,
        )
        self.reminders[entry.id] = entry
        return entry

    def add_subscription(
        self,
        status: SubscriptionStatus,
        **fields: Any,
    ) -> Subscription:
        subscription = Subscription(
            id=uuid4(),
            barbershop_id=fields.pop("barbershop_id", uuid4()),
            status=status,
            **fields,
        )
        self.subscriptions[subscription.id] = subscription
        return subscription

    # ------------------------------------------------------------------
    # Appointments & action links
    # ------------------------------------------------------------------

    async def get_link_by_token(self, token: str) -> AppointmentLink | None:
        return next((link for link in self.links.values() if link.token == token), None)

    async def get_appointment(self, appointment_id: UUID) -> Appointment | None:
        return self.appointments.get(appointment_id)

    async def apply_link_action(
        self,
        link_id: UUID,
        appointment_id: UUID,
        new_status: AppointmentStatus,
        now: datetime,
    ) -> LinkActionOutcome:
        appointment = self.appointments.get(appointment_id)
        if appointment is None or appointment.status != AppointmentStatus.PENDING:
            return LinkActionOutcome.APPOINTMENT_NOT_PENDING

        link = self.links[link_id]
        if link.used_at is not None:
            return LinkActionOutcome.LINK_ALREADY_USED

        appointment.status = new_status
        appointment.updated_at = now
        for sibling in self.links.values():
            if sibling.appointment_id == appointment_id and sibling.used_at is None:
                sibling.used_at = now
        return LinkActionOutcome.APPLIED

    async def find_confirmed_appointments_between(
        self, window_start: datetime, window_end: datetime
    ) -> list[Appointment]:
        return sorted(
            (
                a for a in self.appointments.values()
                if a.status == AppointmentStatus.CONFIRMED
                and window_start <= a.start_at <= window_end
            ),
            key=lambda a: a.start_at,
        )

    # ------------------------------------------------------------------
    # Reminder queue
    # ------------------------------------------------------------------

    async def requeue_failed_reminders(self, now: datetime) -> int:
        count = 0
        for entry in self.reminders.values():
            if (
                entry.status == ReminderStatus.ERROR
                and entry.next_retry_at is not None
                and entry.next_retry_at <= now
            ):
                entry.status = ReminderStatus.PENDING
                entry.scheduled_for = entry.next_retry_at
                entry.next_retry_at = None
                count += 1
        return count

    @staticmethod
    def _unleased(entry: ReminderQueueEntry, now: datetime) -> bool:
        return entry.claimed_until is None or entry.claimed_until < now

    async def fetch_due_reminders(self, now: datetime, limit: int) -> list[ReminderQueueEntry]:
        due = [
            entry for entry in self.reminders.values()
            if entry.status == ReminderStatus.PENDING
            and entry.scheduled_for <= now
            and self._unleased(entry, now)
        ]
        return sorted(due, key=lambda e: e.scheduled_for)[:limit]

    async def claim_reminder(
        self, reminder_id: UUID, now: datetime, lease_until: datetime
    ) -> bool:
        entry = self.reminders[reminder_id]
        if entry.status != ReminderStatus.PENDING or not self._unleased(entry, now):
            return False
        entry.claimed_until = lease_until
        return True

    async def mark_reminder_sent(self, reminder_id: UUID, now: datetime) -> bool:
        entry = self.reminders[reminder_id]
        if entry.status != ReminderStatus.PENDING:
            return False
        entry.status = ReminderStatus.SENT
        entry.sent_at = now
        entry.attempts += 1
        entry.last_error = None
        entry.next_retry_at = None
        entry.claimed_until = None
        return True

    async def mark_reminder_failed(
        self,
        reminder_id: UUID,
        error_message: str,
        next_retry_at: datetime | None,
    ) -> bool:
        entry = self.reminders[reminder_id]
        if entry.status != ReminderStatus.PENDING:
            return False
        entry.status = ReminderStatus.ERROR
        entry.attempts += 1
        entry.last_error = error_message
        entry.next_retry_at = next_retry_at
        entry.claimed_until = None
        return True

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def expire_trials(self, now: datetime) -> int:
        count = 0
        for subscription in self.subscriptions.values():
            if (
                subscription.status == SubscriptionStatus.TRIAL
                and subscription.trial_ends_at is not None
                and subscription.trial_ends_at < now
            ):
                subscription.status = SubscriptionStatus.PAST_DUE
                subscription.last_payment_status = TRIAL_EXPIRED_PAYMENT_STATUS
                subscription.updated_at = now
                count += 1
        return count

    async def list_syncable_subscriptions(self) -> list[Subscription]:
        return [
            s for s in self.subscriptions.values()
            if s.status in SYNCABLE_SUBSCRIPTION_STATUSES and s.external_subscription_id
        ]

    async def get_subscription_by_barbershop(self, barbershop_id: UUID) -> Subscription | None:
        return next(
            (s for s in self.subscriptions.values() if s.barbershop_id == barbershop_id),
            None,
        )

    async def get_subscription_by_external_id(self, external_id: str) -> Subscription | None:
        return next(
            (
                s for s in self.subscriptions.values()
                if s.external_subscription_id == external_id
            ),
            None,
        )

    async def update_subscription(self, subscription_id: UUID, values: dict[str, Any]) -> None:
        subscription = self.subscriptions[subscription_id]
        for key, value in values.items():
            setattr(subscription, key, value)

    # ------------------------------------------------------------------
    # Billing webhook events
    # ------------------------------------------------------------------

    async def record_webhook_event(
        self, event_id: str, event_type: str, payload: dict[str, Any]
    ) -> UUID | None:
        existing = next(
            (e for e in self.webhook_events.values() if e.event_id == event_id), None
        )
        if existing is not None:
            if existing.status != WebhookEventStatus.FAILED:
                return None
            existing.status = WebhookEventStatus.PENDING
            existing.payload = payload
            existing.processed_at = None
            return existing.id
        event = BillingWebhookEvent(
            id=uuid4(),
            event_id=event_id,
            event_type=event_type,
            payload=payload,
            status=WebhookEventStatus.PENDING,
        )
        self.webhook_events[event.id] = event
        return event.id

    async def mark_webhook_event(
        self, row_id: UUID, status: WebhookEventStatus, now: datetime
    ) -> None:
        event = self.webhook_events[row_id]
        event.status = status
        event.processed_at = now
