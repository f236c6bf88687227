"""
Cron-invoked job endpoints.

Provides:
- POST /api/jobs/process-reminders - Queue-driven reminder emails
- POST /api/jobs/process-push-reminders - 30min/2h/24h push reminders
- POST /api/jobs/subscription-audit - Trial expiry + PayPal reconciliation

All require `Authorization: Bearer <JOBS_API_TOKEN>`. Per-item failures are
reported in the 200 summary; only run-level failures return 500.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.dependencies import get_notifier, get_paypal, get_store, verify_jobs_token
from database.repository import SqlAlchemyStore
from lifecycle.workers.push_reminder_dispatcher import dispatch_push_reminders
from lifecycle.workers.reminder_dispatcher import dispatch_queued_reminders
from lifecycle.workers.subscription_audit import reconcile_subscriptions
from shared.errors import LifecycleError
from shared.notification_client import NotificationClient
from shared.paypal_client import PayPalClient

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/jobs",
    tags=["jobs"],
    dependencies=[Depends(verify_jobs_token)],
)


def run_failed(job_name: str, exc: Exception) -> JSONResponse:
    message = exc.message if isinstance(exc, LifecycleError) else (str(exc) or "unknown error")
    logger.exception(f"{job_name} error: {message}", extra={"job_name": job_name})
    return JSONResponse(status_code=500, content={"error": message})


@router.post("/process-reminders")
async def process_reminders(
    store: SqlAlchemyStore = Depends(get_store),
    notifier: NotificationClient = Depends(get_notifier),
) -> JSONResponse:
    """Send due reminder emails from the queue."""
    try:
        summary = await dispatch_queued_reminders(store, notifier)
    except Exception as e:
        return run_failed("process_reminders", e)

    return JSONResponse(status_code=200, content=summary.to_dict())


@router.post("/process-push-reminders")
async def process_push_reminders(
    store: SqlAlchemyStore = Depends(get_store),
    notifier: NotificationClient = Depends(get_notifier),
) -> JSONResponse:
    """Send push reminders for appointments entering each horizon."""
    try:
        body = await dispatch_push_reminders(store, notifier)
    except Exception as e:
        return run_failed("process_push_reminders", e)

    return JSONResponse(status_code=200, content=body)


@router.post("/subscription-audit")
async def subscription_audit(
    store: SqlAlchemyStore = Depends(get_store),
    paypal: PayPalClient = Depends(get_paypal),
) -> JSONResponse:
    """Expire stale trials and re-sync subscriptions with PayPal."""
    try:
        summary = await reconcile_subscriptions(store, paypal)
    except Exception as e:
        return run_failed("subscription_audit", e)

    return JSONResponse(status_code=200, content={"success": True, **summary.to_dict()})
