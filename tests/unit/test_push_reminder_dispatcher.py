"""Tests for the time-window push reminder dispatcher."""

from datetime import timedelta
from unittest.mock import AsyncMock

from database.models import AppointmentStatus
from lifecycle.workers.push_reminder_dispatcher import (
    REMINDER_HORIZONS,
    ReminderHorizon,
    dispatch_push_reminders,
)
from shared.errors import TransportFailureError


class TestReminderHorizon:
    def test_thirty_minute_window_covers_full_lead(self, now):
        horizon = ReminderHorizon("reminder_30min", timedelta(minutes=30), covers_full_lead=True)

        assert horizon.window(now) == (now, now + timedelta(minutes=30))

    def test_two_hour_window_is_five_minutes_wide(self, now):
        horizon = ReminderHorizon("reminder_2h", timedelta(hours=2))

        assert horizon.window(now) == (
            now + timedelta(hours=2),
            now + timedelta(hours=2, minutes=5),
        )

    def test_horizon_kinds(self):
        assert [h.kind for h in REMINDER_HORIZONS] == [
            "reminder_30min",
            "reminder_2h",
            "reminder_24h",
        ]


class TestDispatchPushReminders:
    async def test_sends_push_per_horizon(self, store, notifier, now):
        soon = store.add_appointment(now + timedelta(minutes=10), AppointmentStatus.CONFIRMED)
        in_two_hours = store.add_appointment(
            now + timedelta(hours=2, minutes=3), AppointmentStatus.CONFIRMED
        )
        tomorrow = store.add_appointment(now + timedelta(hours=24), AppointmentStatus.CONFIRMED)

        body = await dispatch_push_reminders(store, notifier, now=now)

        assert body["success"] is True
        assert body["timestamp"] == now.isoformat()
        assert body["results"] == {
            "reminder_30min": {"processed": 1, "errors": []},
            "reminder_2h": {"processed": 1, "errors": []},
            "reminder_24h": {"processed": 1, "errors": []},
        }
        notifier.send_push.assert_any_await("reminder_30min", soon.id)
        notifier.send_push.assert_any_await("reminder_2h", in_two_hours.id)
        notifier.send_push.assert_any_await("reminder_24h", tomorrow.id)

    async def test_window_bounds_inclusive(self, store, notifier, now):
        store.add_appointment(now + timedelta(hours=2, minutes=5), AppointmentStatus.CONFIRMED)
        store.add_appointment(now + timedelta(hours=2, minutes=6), AppointmentStatus.CONFIRMED)

        body = await dispatch_push_reminders(store, notifier, now=now)

        assert body["results"]["reminder_2h"]["processed"] == 1

    async def test_only_confirmed_appointments(self, store, notifier, now):
        store.add_appointment(now + timedelta(minutes=10), AppointmentStatus.PENDING)
        store.add_appointment(now + timedelta(minutes=15), AppointmentStatus.CANCELED)

        body = await dispatch_push_reminders(store, notifier, now=now)

        assert body["results"]["reminder_30min"]["processed"] == 0
        notifier.send_push.assert_not_awaited()

    async def test_send_failure_is_reported_per_appointment(self, store, notifier, now):
        failing = store.add_appointment(now + timedelta(minutes=5), AppointmentStatus.CONFIRMED)
        store.add_appointment(now + timedelta(minutes=20), AppointmentStatus.CONFIRMED)

        async def send(kind, appointment_id):
            if appointment_id == failing.id:
                raise TransportFailureError("No device tokens")
            return {"success": True}

        notifier.send_push.side_effect = send

        body = await dispatch_push_reminders(store, notifier, now=now)

        assert body["results"]["reminder_30min"] == {
            "processed": 1,
            "errors": [f"Appointment {failing.id}: No device tokens"],
        }

    async def test_fetch_failure_isolated_to_horizon(self, store, notifier, now):
        store.add_appointment(now + timedelta(hours=24, minutes=1), AppointmentStatus.CONFIRMED)
        real_query = store.find_confirmed_appointments_between

        async def flaky(window_start, window_end):
            if window_start == now:
                raise ConnectionError("db down")
            return await real_query(window_start, window_end)

        store.find_confirmed_appointments_between = AsyncMock(side_effect=flaky)

        body = await dispatch_push_reminders(store, notifier, now=now)

        assert body["results"]["reminder_30min"] == {
            "processed": 0,
            "errors": ["Error fetching appointments: db down"],
        }
        assert body["results"]["reminder_24h"]["processed"] == 1
