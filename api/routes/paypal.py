"""PayPal webhook route handler."""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.dependencies import get_paypal, get_store
from api.middleware.signature_validation import validate_paypal_webhook
from database.repository import SqlAlchemyStore
from lifecycle.services.billing_webhook_service import BillingWebhookService
from shared.paypal_client import PayPalClient

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/paypal")
async def receive_paypal_webhook(
    event: dict[str, Any] = Depends(validate_paypal_webhook),
    store: SqlAlchemyStore = Depends(get_store),
    paypal: PayPalClient = Depends(get_paypal),
) -> JSONResponse:
    """
    Receive PayPal billing events and apply them to the tenant subscription.

    Returns:
        200 {message, event_id, event_type, processed} (also for duplicates)
        500 {error} if the event could not be applied
    """
    try:
        body = await BillingWebhookService(store, paypal).process_event(event)
    except Exception as e:
        logger.exception(f"Error in paypal-webhook: {e}")
        return JSONResponse(status_code=500, content={"error": str(e) or "Internal server error"})

    logger.info(
        f"PayPal event handled: type={event['event_type']}, processed={body.get('processed')}"
    )
    return JSONResponse(status_code=200, content=body)
