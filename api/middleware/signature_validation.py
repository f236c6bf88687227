"""Webhook payload and signature validation for PayPal deliveries."""

import json
import logging
from typing import Any

from fastapi import HTTPException, Request
from pydantic import ValidationError

from api.models.paypal_webhook import PayPalWebhookEvent
from shared.paypal_client import PayPalClient

logger = logging.getLogger(__name__)


async def validate_paypal_webhook(request: Request) -> dict[str, Any]:
    """
    Parse the PayPal event and verify its signature.

    Signature verification runs only when PAYPAL_WEBHOOK_ID is configured.

    Args:
        request: FastAPI request object

    Returns:
        Raw event dict (validated against PayPalWebhookEvent)

    Raises:
        HTTPException: 400 if the body is not a valid event, 401 if the
            signature verification fails
    """
    body = await request.body()

    try:
        event = json.loads(body)
        PayPalWebhookEvent.model_validate(event)
    except (ValueError, ValidationError) as e:
        logger.warning(f"Invalid PayPal webhook payload: {e}")
        raise HTTPException(status_code=400, detail="Invalid webhook event") from e

    paypal: PayPalClient = request.app.state.paypal
    if not paypal.webhook_id:
        logger.debug("PAYPAL_WEBHOOK_ID not set, skipping signature verification")
        return event

    if not await paypal.verify_webhook_signature(dict(request.headers), event):
        logger.warning(f"PayPal signature verification failed: event_id={event.get('id')}")
        raise HTTPException(status_code=401, detail="Invalid PayPal signature")

    logger.debug(f"PayPal signature validated: event_type={event['event_type']}")
    return event
