"""
Tests for the subscription audit worker.

Coverage:
- Local trial expiry pass
- PayPal status mapping (trial phase, active, cancelled, suspended, unknown)
- Per-tenant failure isolation and run-level token failure
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from database.models import SubscriptionStatus
from lifecycle.workers.subscription_audit import (
    map_provider_subscription,
    parse_provider_time,
    reconcile_subscriptions,
)
from shared.errors import BillingProviderError, ServerError


def provider_payload(status, next_billing_time=None, last_payment_time=None):
    billing_info = {}
    if next_billing_time:
        billing_info["next_billing_time"] = next_billing_time
    if last_payment_time:
        billing_info["last_payment"] = {"time": last_payment_time}
    return {"id": "I-SUB", "status": status, "billing_info": billing_info}


class TestParseProviderTime:
    def test_parses_zulu(self):
        assert parse_provider_time("2025-04-01T10:00:00Z") == datetime(2025, 4, 1, 10, tzinfo=UTC)

    def test_naive_is_utc(self):
        assert parse_provider_time("2025-04-01T10:00:00").tzinfo == UTC

    def test_empty(self):
        assert parse_provider_time(None) is None
        assert parse_provider_time("") is None


class TestMapProviderSubscription:
    def test_active_in_trial_phase(self, now):
        values = map_provider_subscription(
            provider_payload("ACTIVE", next_billing_time="2025-03-20T00:00:00Z"), now
        )

        assert values["status"] == SubscriptionStatus.TRIAL
        assert values["trial_ends_at"] == datetime(2025, 3, 20, tzinfo=UTC)
        assert values["current_period_end"] == datetime(2025, 3, 20, tzinfo=UTC)
        assert values["last_payment_status"] == "ACTIVE"

    def test_active_after_payment(self, now):
        values = map_provider_subscription(
            provider_payload(
                "ACTIVE",
                next_billing_time="2025-04-10T00:00:00Z",
                last_payment_time="2025-03-10T00:00:00Z",
            ),
            now,
        )

        assert values["status"] == SubscriptionStatus.ACTIVE
        assert "trial_ends_at" not in values

    @pytest.mark.parametrize(
        ("provider_status", "expected"),
        [
            ("CANCELLED", SubscriptionStatus.CANCELED),
            ("EXPIRED", SubscriptionStatus.CANCELED),
            ("SUSPENDED", SubscriptionStatus.PAST_DUE),
            ("APPROVAL_PENDING", SubscriptionStatus.TRIAL),
        ],
    )
    def test_other_statuses(self, now, provider_status, expected):
        values = map_provider_subscription(provider_payload(provider_status), now)

        assert values["status"] == expected
        assert values["last_payment_status"] == provider_status
        assert values["current_period_end"] is None


class TestReconcileSubscriptions:
    async def test_expired_trial_without_provider_id(self, store, paypal, now):
        subscription = store.add_subscription(
            SubscriptionStatus.TRIAL, trial_ends_at=now - timedelta(days=1)
        )
        paypal.get_subscription = AsyncMock()

        summary = await reconcile_subscriptions(store, paypal, now=now)

        assert subscription.status == SubscriptionStatus.PAST_DUE
        assert subscription.last_payment_status == "TRIAL_EXPIRED"
        assert summary.expired_trials == 1
        assert summary.synced == 0
        paypal.get_subscription.assert_not_awaited()

    async def test_trial_ending_later_is_untouched(self, store, paypal, now):
        subscription = store.add_subscription(
            SubscriptionStatus.TRIAL, trial_ends_at=now + timedelta(hours=1)
        )

        summary = await reconcile_subscriptions(store, paypal, now=now)

        assert subscription.status == SubscriptionStatus.TRIAL
        assert summary.expired_trials == 0

    async def test_syncs_with_provider(self, store, paypal, now):
        subscription = store.add_subscription(
            SubscriptionStatus.TRIAL, external_subscription_id="I-ACTIVE"
        )
        paypal.get_subscription = AsyncMock(
            return_value=provider_payload(
                "ACTIVE",
                next_billing_time="2025-04-10T00:00:00Z",
                last_payment_time="2025-03-10T00:00:00Z",
            )
        )

        summary = await reconcile_subscriptions(store, paypal, now=now)

        assert summary.to_dict() == {"expired_trials": 0, "synced": 1, "failed": 0, "errors": []}
        paypal.get_access_token.assert_awaited_once()
        paypal.get_subscription.assert_awaited_once_with("A21-token", "I-ACTIVE")
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.current_period_end == datetime(2025, 4, 10, tzinfo=UTC)

    async def test_canceled_subscriptions_are_not_synced(self, store, paypal, now):
        store.add_subscription(SubscriptionStatus.CANCELED, external_subscription_id="I-OLD")
        paypal.get_subscription = AsyncMock()

        summary = await reconcile_subscriptions(store, paypal, now=now)

        assert summary.synced == 0
        paypal.get_subscription.assert_not_awaited()

    async def test_one_failing_tenant_does_not_stop_others(self, store, paypal, now):
        broken = store.add_subscription(
            SubscriptionStatus.ACTIVE, external_subscription_id="I-BROKEN"
        )
        healthy = store.add_subscription(
            SubscriptionStatus.ACTIVE, external_subscription_id="I-OK"
        )

        async def get_subscription(token, subscription_id):
            if subscription_id == "I-BROKEN":
                raise BillingProviderError("Failed to fetch PayPal subscription I-BROKEN: 404")
            return provider_payload("SUSPENDED")

        paypal.get_subscription = AsyncMock(side_effect=get_subscription)

        summary = await reconcile_subscriptions(store, paypal, now=now)

        assert summary.synced == 1
        assert summary.failed == 1
        assert summary.errors == [
            f"Subscription {broken.id}: Failed to fetch PayPal subscription I-BROKEN: 404"
        ]
        assert broken.status == SubscriptionStatus.ACTIVE
        assert healthy.status == SubscriptionStatus.PAST_DUE

    async def test_token_failure_aborts_run(self, store, paypal, now):
        store.add_subscription(SubscriptionStatus.ACTIVE, external_subscription_id="I-1")
        paypal.get_access_token = AsyncMock(side_effect=ServerError("PayPal auth failed: 401"))

        with pytest.raises(ServerError):
            await reconcile_subscriptions(store, paypal, now=now)

    async def test_unconfigured_paypal_only_expires_trials(self, store, paypal, now):
        store.add_subscription(SubscriptionStatus.TRIAL, trial_ends_at=now - timedelta(days=1))
        store.add_subscription(SubscriptionStatus.ACTIVE, external_subscription_id="I-1")
        paypal.is_configured = False

        summary = await reconcile_subscriptions(store, paypal, now=now)

        assert summary.expired_trials == 1
        paypal.get_access_token.assert_not_awaited()
