"""
SQLAlchemy ORM models for the appointment lifecycle and subscription core.

This module defines the tables this core reads and writes:
- appointments: Bookings created by the booking flow in pending state
- appointment_links: Single-use confirm/cancel tokens bound to an appointment
- reminder_queue: Durable queue of due reminder notifications
- subscriptions: Tenant billing state reconciled against PayPal
- billing_webhook_events: Idempotency log for PayPal webhook deliveries

All models use:
- UUID primary keys (auto-generated)
- TIMESTAMP WITH TIME ZONE for datetime fields
- Enum columns stored by value ("pending", not "PENDING")
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    TIMESTAMP,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy import (
    Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(UTC)


def _enum_column(enum_cls: type[PyEnum], name: str) -> SQLEnum:
    # values_callable stores .value ("pending") instead of .name ("PENDING")
    return SQLEnum(
        enum_cls,
        name=name,
        create_type=False,
        values_callable=lambda x: [e.value for e in x],
    )


# ============================================================================
# Base Class
# ============================================================================


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


# ============================================================================
# Enums
# ============================================================================


class AppointmentStatus(str, PyEnum):
    """Appointment lifecycle status."""

    PENDING = "pending"        # Created by the booking flow, awaiting the client
    CONFIRMED = "confirmed"    # Client confirmed through the action link
    CANCELED = "canceled"      # Client canceled through the action link

    def __str__(self):
        return self.value


class LinkPurpose(str, PyEnum):
    """Purpose an action token was issued for."""

    CONFIRM = "confirm"
    CANCEL = "cancel"


class ReminderStatus(str, PyEnum):
    """Delivery status of a reminder queue entry."""

    PENDING = "pending"
    SENT = "sent"
    ERROR = "error"


class SubscriptionStatus(str, PyEnum):
    """Tenant subscription status vocabulary shared by reconciler and webhooks."""

    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INACTIVE = "inactive"


class WebhookEventStatus(str, PyEnum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


# ============================================================================
# Core Models
# ============================================================================


class Appointment(Base):
    """
    Appointment model - only the lifecycle fields this core needs.

    Services, client data and pricing belong to the booking flow and are
    not mapped here. Status is mutated only through the state machine.
    """

    __tablename__ = "appointments"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    barbershop_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), nullable=False, index=True
    )
    staff_user_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True), nullable=True
    )

    start_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, index=True
    )
    status: Mapped[AppointmentStatus] = mapped_column(
        _enum_column(AppointmentStatus, "appointment_status"),
        default=AppointmentStatus.PENDING,
        nullable=False,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    links: Mapped[list["AppointmentLink"]] = relationship(
        "AppointmentLink", back_populates="appointment"
    )

    __table_args__ = (
        # Push reminder horizon queries filter by status and start_at range
        Index("idx_appointments_status_start_at", "status", "start_at"),
    )

    def __repr__(self) -> str:
        return f"<Appointment(id={self.id}, status='{self.status.value}')>"


class AppointmentLink(Base):
    """
    Single-use action token bound to one appointment and one purpose.

    used_at goes from NULL to a timestamp exactly once. Consuming any link
    of an appointment consumes its confirm/cancel siblings too.
    """

    __tablename__ = "appointment_links"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    appointment_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    purpose: Mapped[LinkPurpose] = mapped_column(
        _enum_column(LinkPurpose, "link_purpose"), nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False
    )
    used_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    appointment: Mapped["Appointment"] = relationship(
        "Appointment", back_populates="links"
    )

    def __repr__(self) -> str:
        return (
            f"<AppointmentLink(id={self.id}, appointment_id={self.appointment_id}, "
            f"purpose='{self.purpose.value}', used={self.used_at is not None})>"
        )


class ReminderQueueEntry(Base):
    """
    Durable reminder queue entry, created when an appointment is confirmed.

    attempts only increases. status moves pending -> sent (terminal) or
    pending -> error; the retry sweep moves error -> pending while
    attempts stay under REMINDER_MAX_ATTEMPTS.
    """

    __tablename__ = "reminder_queue"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    appointment_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    reminder_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[ReminderStatus] = mapped_column(
        _enum_column(ReminderStatus, "reminder_status"),
        default=ReminderStatus.PENDING,
        nullable=False,
    )
    scheduled_for: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False
    )
    attempts: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    # Retry and dispatch lease bookkeeping
    next_retry_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    claimed_until: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint("attempts >= 0", name="check_reminder_attempts_non_negative"),
        Index(
            "idx_reminder_queue_due",
            "scheduled_for",
            postgresql_where=text("status = 'pending'"),
        ),
        Index(
            "idx_reminder_queue_retry",
            "next_retry_at",
            postgresql_where=text("status = 'error'"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<ReminderQueueEntry(id={self.id}, type='{self.reminder_type}', "
            f"status='{self.status.value}', attempts={self.attempts})>"
        )


class Subscription(Base):
    """
    Subscription model - one per barbershop (tenant).

    Written only by the subscription reconciler and the PayPal webhook,
    both using SubscriptionStatus.
    """

    __tablename__ = "subscriptions"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    barbershop_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), unique=True, nullable=False, index=True
    )
    status: Mapped[SubscriptionStatus] = mapped_column(
        _enum_column(SubscriptionStatus, "subscription_status"),
        default=SubscriptionStatus.TRIAL,
        nullable=False,
        index=True,
    )
    trial_ends_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    current_period_end: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    external_subscription_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, index=True
    )
    last_payment_status: Mapped[str | None] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, barbershop_id={self.barbershop_id}, "
            f"status='{self.status.value}')>"
        )


class BillingWebhookEvent(Base):
    """Received PayPal webhook events, unique by provider event id."""

    __tablename__ = "billing_webhook_events"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    event_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict, nullable=False)
    status: Mapped[WebhookEventStatus] = mapped_column(
        _enum_column(WebhookEventStatus, "webhook_event_status"),
        default=WebhookEventStatus.PENDING,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, nullable=False
    )
    processed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<BillingWebhookEvent(event_id='{self.event_id}', status='{self.status.value}')>"
