"""
Subscription audit worker - keeps tenant subscriptions consistent with trial
rules and with PayPal.

Invoked daily (cron -> POST /api/jobs/subscription-audit).

Pass 1 (local): trials whose trial_ends_at has passed become past_due with
last_payment_status = TRIAL_EXPIRED. No external call.

Pass 2 (PayPal): for every trial/active/past_due subscription that has a
PayPal subscription id, fetch the provider state and remap it. Runs only when
PayPal credentials are configured. One access token per run; a token failure
aborts the run, a single tenant failure is logged and skipped.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from dateutil.parser import isoparse

from database.models import Subscription, SubscriptionStatus
from database.repository import SqlAlchemyStore
from lifecycle.workers.results import ItemOutcome, ReconciliationSummary
from shared.paypal_client import PayPalClient

logger = logging.getLogger(__name__)

PROVIDER_STATUS_MAP = {
    "CANCELLED": SubscriptionStatus.CANCELED,
    "EXPIRED": SubscriptionStatus.CANCELED,
    "SUSPENDED": SubscriptionStatus.PAST_DUE,
}


def parse_provider_time(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = isoparse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def map_provider_subscription(provider: dict[str, Any], now: datetime) -> dict[str, Any]:
    """
    Translate a PayPal subscription payload into local column values.

    ACTIVE maps to trial while still in the trial phase (no payment recorded
    yet and next billing time in the future), otherwise active. Unknown
    provider statuses fall back to trial. trial_ends_at is only included
    when the subscription is in its trial phase.
    """
    provider_status = provider.get("status")
    billing_info = provider.get("billing_info") or {}
    next_billing_time = parse_provider_time(billing_info.get("next_billing_time"))
    last_payment_time = (billing_info.get("last_payment") or {}).get("time")

    is_trial_phase = (
        not last_payment_time
        and next_billing_time is not None
        and next_billing_time > now
    )

    if provider_status == "ACTIVE":
        status = SubscriptionStatus.TRIAL if is_trial_phase else SubscriptionStatus.ACTIVE
    else:
        status = PROVIDER_STATUS_MAP.get(provider_status, SubscriptionStatus.TRIAL)

    values: dict[str, Any] = {
        "status": status,
        "current_period_end": next_billing_time,
        "last_payment_status": provider_status,
        "updated_at": now,
    }
    if is_trial_phase:
        values["trial_ends_at"] = next_billing_time

    return values


async def sync_subscription(
    subscription: Subscription,
    store: SqlAlchemyStore,
    paypal: PayPalClient,
    access_token: str,
    now: datetime,
) -> ItemOutcome:
    try:
        provider = await paypal.get_subscription(
            access_token, subscription.external_subscription_id
        )
        values = map_provider_subscription(provider, now)
        await store.update_subscription(subscription.id, values)
    except Exception as e:
        logger.error(
            f"Failed to sync subscription {subscription.id}: {e}",
            extra={"subscription_id": subscription.id},
        )
        return ItemOutcome.failure(subscription.id, str(e))

    logger.info(
        f"Synced subscription {subscription.id}: status={values['status'].value}, "
        f"paypal_status={values['last_payment_status']}",
        extra={"subscription_id": subscription.id},
    )
    return ItemOutcome.success(subscription.id)


async def reconcile_subscriptions(
    store: SqlAlchemyStore,
    paypal: PayPalClient,
    now: datetime | None = None,
) -> ReconciliationSummary:
    """
    Run both reconciliation passes.

    Raises:
        ServerError: If the PayPal access token cannot be obtained
    """
    now = now or datetime.now(UTC)
    summary = ReconciliationSummary()

    logger.info(f"Starting subscription audit at {now.isoformat()}", extra={"job_name": "subscription_audit"})

    summary.expired_trials = await store.expire_trials(now)
    if summary.expired_trials:
        logger.info(f"Expired {summary.expired_trials} trial subscription(s)")

    if not paypal.is_configured:
        logger.warning("PayPal credentials not configured, skipping external reconciliation")
        return summary

    access_token = await paypal.get_access_token()
    subscriptions = await store.list_syncable_subscriptions()
    logger.info(f"Reconciling {len(subscriptions)} subscription(s) with PayPal")

    for subscription in subscriptions:
        outcome = await sync_subscription(subscription, store, paypal, access_token, now)
        summary.add(outcome)

    logger.info(
        f"Completed subscription audit: expired_trials={summary.expired_trials}, "
        f"synced={summary.synced}, failed={summary.failed}",
        extra={"job_name": "subscription_audit"},
    )
    return summary
