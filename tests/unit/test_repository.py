"""
Tests for SqlAlchemyStore using a mocked AsyncSession.

The SQL each method issues is compiled with the PostgreSQL dialect so the
conditional (compare-and-set) predicates can be asserted without a database.
"""

from contextlib import asynccontextmanager
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.dialects import postgresql

from database.models import AppointmentStatus, ReminderStatus, WebhookEventStatus
from database.repository import LinkActionOutcome, SqlAlchemyStore


def compiled(statement) -> str:
    return str(statement.compile(dialect=postgresql.dialect()))


def result_with_rowcount(rowcount: int) -> MagicMock:
    result = MagicMock()
    result.rowcount = rowcount
    return result


class FakeDatabase:
    """Database double whose session() yields one shared AsyncMock session."""

    def __init__(self):
        self.session_mock = AsyncMock()

    @asynccontextmanager
    async def session(self):
        yield self.session_mock


@pytest.fixture
def database():
    return FakeDatabase()


@pytest.fixture
def sql_store(database):
    return SqlAlchemyStore(database)


def executed_sql(database) -> list[str]:
    return [compiled(c.args[0]) for c in database.session_mock.execute.await_args_list]


class TestApplyLinkAction:
    async def test_applied_updates_appointment_then_links(self, sql_store, database, now):
        database.session_mock.execute.side_effect = [
            result_with_rowcount(1),
            result_with_rowcount(1),
            result_with_rowcount(1),
        ]

        outcome = await sql_store.apply_link_action(
            uuid4(), uuid4(), AppointmentStatus.CONFIRMED, now
        )

        assert outcome == LinkActionOutcome.APPLIED
        statements = executed_sql(database)
        assert statements[0].startswith("UPDATE appointments")
        assert "appointments.status = %(status_1)s" in statements[0]
        assert statements[1].startswith("UPDATE appointment_links")
        assert "appointment_links.used_at IS NULL" in statements[1]
        assert "appointment_links.appointment_id" in statements[2]
        database.session_mock.commit.assert_awaited_once()

    async def test_appointment_not_pending_rolls_back(self, sql_store, database, now):
        database.session_mock.execute.return_value = result_with_rowcount(0)

        outcome = await sql_store.apply_link_action(
            uuid4(), uuid4(), AppointmentStatus.CANCELED, now
        )

        assert outcome == LinkActionOutcome.APPOINTMENT_NOT_PENDING
        assert database.session_mock.execute.await_count == 1
        database.session_mock.rollback.assert_awaited_once()
        database.session_mock.commit.assert_not_awaited()

    async def test_link_used_rolls_back_transition(self, sql_store, database, now):
        database.session_mock.execute.side_effect = [
            result_with_rowcount(1),
            result_with_rowcount(0),
        ]

        outcome = await sql_store.apply_link_action(
            uuid4(), uuid4(), AppointmentStatus.CONFIRMED, now
        )

        assert outcome == LinkActionOutcome.LINK_ALREADY_USED
        database.session_mock.rollback.assert_awaited_once()
        database.session_mock.commit.assert_not_awaited()


class TestReminderQueue:
    async def test_claim_requires_pending_and_free_lease(self, sql_store, database, now):
        database.session_mock.execute.return_value = result_with_rowcount(1)

        claimed = await sql_store.claim_reminder(uuid4(), now, now + timedelta(minutes=5))

        assert claimed is True
        sql = executed_sql(database)[0]
        assert "reminder_queue.status = %(status_1)s" in sql
        assert "reminder_queue.claimed_until IS NULL OR reminder_queue.claimed_until <" in sql

    async def test_claim_lost(self, sql_store, database, now):
        database.session_mock.execute.return_value = result_with_rowcount(0)

        assert await sql_store.claim_reminder(uuid4(), now, now) is False

    async def test_mark_failed_increments_attempts(self, sql_store, database, now):
        database.session_mock.execute.return_value = result_with_rowcount(1)

        await sql_store.mark_reminder_failed(uuid4(), "timeout", None)

        sql = executed_sql(database)[0]
        assert "attempts=(reminder_queue.attempts + %(attempts_1)s)" in sql
        statement = database.session_mock.execute.await_args.args[0]
        params = statement.compile(dialect=postgresql.dialect()).params
        assert params["status"] == ReminderStatus.ERROR
        assert params["last_error"] == "timeout"

    async def test_fetch_due_orders_and_limits(self, sql_store, database, now):
        result = MagicMock()
        result.scalars.return_value.all.return_value = []
        database.session_mock.execute.return_value = result

        await sql_store.fetch_due_reminders(now, 25)

        sql = executed_sql(database)[0]
        assert "ORDER BY reminder_queue.scheduled_for ASC" in sql
        assert "LIMIT" in sql


class TestSubscriptions:
    async def test_expire_trials_strictly_before_now(self, sql_store, database, now):
        database.session_mock.execute.return_value = result_with_rowcount(2)

        assert await sql_store.expire_trials(now) == 2

        sql = executed_sql(database)[0]
        assert "subscriptions.trial_ends_at < %(trial_ends_at_1)s" in sql

    async def test_record_webhook_event_reclaims_only_failed(self, sql_store, database):
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        database.session_mock.execute.return_value = result

        row_id = await sql_store.record_webhook_event("WH-1", "X", {"id": "WH-1"})

        assert row_id is None
        sql = executed_sql(database)[0]
        assert "ON CONFLICT (event_id) DO UPDATE SET status = " in sql
        assert "payload = excluded.payload" in sql
        assert "WHERE billing_webhook_events.status = " in sql
        assert "RETURNING billing_webhook_events.id" in sql
        params = database.session_mock.execute.await_args.args[0].compile(
            dialect=postgresql.dialect()
        ).params
        assert WebhookEventStatus.FAILED in params.values()
