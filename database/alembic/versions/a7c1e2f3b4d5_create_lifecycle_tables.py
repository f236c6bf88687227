"""create appointment lifecycle and subscription tables

Revision ID: a7c1e2f3b4d5
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'a7c1e2f3b4d5'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENUMS = {
    'appointment_status': ('pending', 'confirmed', 'canceled'),
    'link_purpose': ('confirm', 'cancel'),
    'reminder_status': ('pending', 'sent', 'error'),
    'subscription_status': ('trial', 'active', 'past_due', 'canceled', 'inactive'),
    'webhook_event_status': ('pending', 'processed', 'failed'),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    for name in ENUMS:
        _enum(name).create(op.get_bind(), checkfirst=True)

    # Appointments (lifecycle fields only)
    op.create_table(
        'appointments',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('barbershop_id', sa.UUID(), nullable=False),
        sa.Column('staff_user_id', sa.UUID(), nullable=True),
        sa.Column('start_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('status', _enum('appointment_status'), nullable=False,
                  server_default='pending'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_appointments_barbershop_id', 'appointments', ['barbershop_id'])
    op.create_index('ix_appointments_start_at', 'appointments', ['start_at'])
    op.create_index('ix_appointments_status', 'appointments', ['status'])
    op.create_index('idx_appointments_status_start_at', 'appointments', ['status', 'start_at'])

    # Single-use action tokens
    op.create_table(
        'appointment_links',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('appointment_id', sa.UUID(), nullable=False),
        sa.Column('token', sa.String(128), nullable=False),
        sa.Column('purpose', _enum('link_purpose'), nullable=False),
        sa.Column('expires_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('used_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token'),
    )
    op.create_index('ix_appointment_links_appointment_id', 'appointment_links',
                    ['appointment_id'])

    # Reminder queue with retry and dispatch lease bookkeeping
    op.create_table(
        'reminder_queue',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('appointment_id', sa.UUID(), nullable=False),
        sa.Column('reminder_type', sa.String(50), nullable=False),
        sa.Column('status', _enum('reminder_status'), nullable=False,
                  server_default='pending'),
        sa.Column('scheduled_for', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('sent_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('next_retry_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('claimed_until', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint('attempts >= 0', name='check_reminder_attempts_non_negative'),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_reminder_queue_appointment_id', 'reminder_queue', ['appointment_id'])
    op.create_index('idx_reminder_queue_due', 'reminder_queue', ['scheduled_for'],
                    postgresql_where=sa.text("status = 'pending'"))
    op.create_index('idx_reminder_queue_retry', 'reminder_queue', ['next_retry_at'],
                    postgresql_where=sa.text("status = 'error'"))

    # One subscription per barbershop
    op.create_table(
        'subscriptions',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('barbershop_id', sa.UUID(), nullable=False),
        sa.Column('status', _enum('subscription_status'), nullable=False,
                  server_default='trial'),
        sa.Column('trial_ends_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('current_period_end', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('external_subscription_id', sa.String(64), nullable=True),
        sa.Column('last_payment_status', sa.String(50), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_subscriptions_barbershop_id', 'subscriptions', ['barbershop_id'],
                    unique=True)
    op.create_index('ix_subscriptions_status', 'subscriptions', ['status'])
    op.create_index('ix_subscriptions_external_subscription_id', 'subscriptions',
                    ['external_subscription_id'])

    # PayPal webhook idempotency log
    op.create_table(
        'billing_webhook_events',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('event_id', sa.String(128), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('payload', postgresql.JSONB(), nullable=False,
                  server_default=sa.text("'{}'::jsonb")),
        sa.Column('status', _enum('webhook_event_status'), nullable=False,
                  server_default='pending'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('processed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id'),
    )


def downgrade() -> None:
    op.drop_table('billing_webhook_events')
    op.drop_index('ix_subscriptions_external_subscription_id', table_name='subscriptions')
    op.drop_index('ix_subscriptions_status', table_name='subscriptions')
    op.drop_index('ix_subscriptions_barbershop_id', table_name='subscriptions')
    op.drop_table('subscriptions')
    op.drop_index('idx_reminder_queue_retry', table_name='reminder_queue')
    op.drop_index('idx_reminder_queue_due', table_name='reminder_queue')
    op.drop_index('ix_reminder_queue_appointment_id', table_name='reminder_queue')
    op.drop_table('reminder_queue')
    op.drop_index('ix_appointment_links_appointment_id', table_name='appointment_links')
    op.drop_table('appointment_links')
    op.drop_index('idx_appointments_status_start_at', table_name='appointments')
    op.drop_index('ix_appointments_status', table_name='appointments')
    op.drop_index('ix_appointments_start_at', table_name='appointments')
    op.drop_index('ix_appointments_barbershop_id', table_name='appointments')
    op.drop_table('appointments')
    for name in reversed(list(ENUMS)):
        op.execute(f'DROP TYPE IF EXISTS {name}')
