"""
Lifecycle services module.

Provides the business logic invoked by the API routes and workers.

Services:
- appointment_state: pending -> confirmed | canceled transitions
- token_service: Single-use confirm/cancel link resolution
- subscription_access: Access decision derived from a subscription
- billing_webhook_service: PayPal webhook events applied to subscriptions
"""

from lifecycle.services.appointment_state import (
    AppointmentAction,
    is_terminal,
    transition,
)
from lifecycle.services.billing_webhook_service import BillingWebhookService
from lifecycle.services.subscription_access import (
    SubscriptionAccess,
    evaluate_subscription_access,
)
from lifecycle.services.token_service import ResolutionResult, TokenService

__all__ = [
    # Appointment state machine
    "AppointmentAction",
    "is_terminal",
    "transition",
    # Token resolution
    "ResolutionResult",
    "TokenService",
    # Subscription access
    "SubscriptionAccess",
    "evaluate_subscription_access",
    # Billing webhooks
    "BillingWebhookService",
]
