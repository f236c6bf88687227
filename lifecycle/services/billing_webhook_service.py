"""
PayPal webhook processing - applies billing events to tenant subscriptions
using the same status vocabulary as the subscription audit.

Events are recorded by PayPal event id first. A redelivered event is
acknowledged without being applied again, unless its earlier attempt failed.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from dateutil.relativedelta import relativedelta

from database.models import SubscriptionStatus, WebhookEventStatus
from database.repository import SqlAlchemyStore
from lifecycle.workers.subscription_audit import parse_provider_time
from shared.paypal_client import PayPalClient

logger = logging.getLogger(__name__)

ACTIVATION_EVENTS = {"BILLING.SUBSCRIPTION.ACTIVATED", "BILLING.SUBSCRIPTION.CREATED"}
CANCELLATION_EVENTS = {"BILLING.SUBSCRIPTION.CANCELLED", "BILLING.SUBSCRIPTION.EXPIRED"}
SUSPENSION_EVENTS = {"BILLING.SUBSCRIPTION.SUSPENDED"}
PAYMENT_COMPLETED_EVENTS = {"PAYMENT.SALE.COMPLETED"}
PAYMENT_FAILED_EVENTS = {"PAYMENT.SALE.DENIED", "PAYMENT.SALE.REFUNDED"}


def one_month_after(moment: datetime) -> datetime:
    return moment + relativedelta(months=1)


def extract_subscription_id(event_type: str, resource: dict[str, Any]) -> str | None:
    """
    PayPal subscription id referenced by an event.

    Sale events carry the sale id in resource.id and the subscription in
    resource.billing_agreement_id; subscription events carry it in resource.id.
    """
    if event_type.startswith("PAYMENT.SALE."):
        return resource.get("billing_agreement_id") or resource.get("id")
    return resource.get("id") or resource.get("billing_agreement_id")


class BillingWebhookService:
    """Applies PayPal webhook events to subscriptions."""

    def __init__(self, store: SqlAlchemyStore, paypal: PayPalClient):
        self.store = store
        self.paypal = paypal

    async def process_event(
        self, event: dict[str, Any], now: datetime | None = None
    ) -> dict[str, Any]:
        """
        Record and apply one webhook event.

        Returns:
            Response body: message, event_id, event_type and processed flag
        """
        now = now or datetime.now(UTC)
        event_id = event["id"]
        event_type = event["event_type"]

        row_id = await self.store.record_webhook_event(event_id, event_type, event)
        if row_id is None:
            logger.info(f"PayPal event {event_id} already processed or in flight, skipping")
            return {"message": "Event already processed", "event_id": event_id}

        try:
            processed = await self._apply(event_type, event.get("resource") or {}, now)
        except Exception:
            await self.store.mark_webhook_event(row_id, WebhookEventStatus.FAILED, now)
            raise

        await self.store.mark_webhook_event(
            row_id,
            WebhookEventStatus.PROCESSED if processed else WebhookEventStatus.FAILED,
            now,
        )

        return {
            "message": "Webhook processed",
            "event_id": event_id,
            "event_type": event_type,
            "processed": processed,
        }

    async def _apply(self, event_type: str, resource: dict[str, Any], now: datetime) -> bool:
        external_id = extract_subscription_id(event_type, resource)
        if not external_id:
            logger.warning(f"PayPal event {event_type} without subscription reference")
            return False

        subscription = await self.store.get_subscription_by_external_id(external_id)
        if subscription is None:
            logger.warning(f"No subscription found for PayPal id {external_id}")
            return False

        if event_type in ACTIVATION_EVENTS:
            billing_info = resource.get("billing_info") or {}
            period_end = parse_provider_time(billing_info.get("next_billing_time"))
            if period_end is None:
                start_time = parse_provider_time(resource.get("start_time"))
                period_end = one_month_after(start_time or now)
            values = {
                "status": SubscriptionStatus.ACTIVE,
                "current_period_end": period_end,
                "last_payment_status": "ACTIVE",
            }
        elif event_type in CANCELLATION_EVENTS:
            values = {
                "status": SubscriptionStatus.CANCELED,
                "last_payment_status": "CANCELLED",
            }
        elif event_type in SUSPENSION_EVENTS:
            values = {
                "status": SubscriptionStatus.PAST_DUE,
                "last_payment_status": "SUSPENDED",
            }
        elif event_type in PAYMENT_COMPLETED_EVENTS:
            values = {
                "status": SubscriptionStatus.ACTIVE,
                "current_period_end": await self._next_billing_time(external_id, now),
                "last_payment_status": "COMPLETED",
            }
        elif event_type in PAYMENT_FAILED_EVENTS:
            values = {
                "status": SubscriptionStatus.PAST_DUE,
                "last_payment_status": "DENIED" if "DENIED" in event_type else "REFUNDED",
            }
        else:
            logger.info(f"Unhandled PayPal event type: {event_type}")
            return False

        values["updated_at"] = now
        await self.store.update_subscription(subscription.id, values)
        logger.info(
            f"Applied {event_type} to subscription {subscription.id}: {values['status'].value}",
            extra={"subscription_id": subscription.id},
        )
        return True

    async def _next_billing_time(self, external_id: str, now: datetime) -> datetime:
        """Provider's next billing time, or one month from now if unavailable."""
        if self.paypal.is_configured:
            try:
                access_token = await self.paypal.get_access_token()
                provider = await self.paypal.get_subscription(access_token, external_id)
                billing_info = provider.get("billing_info") or {}
                next_billing_time = parse_provider_time(billing_info.get("next_billing_time"))
                if next_billing_time is not None:
                    return next_billing_time
            except Exception as e:
                logger.error(f"Error getting PayPal subscription {external_id} for payment: {e}")

        return one_month_after(now)
