"""
FastAPI dependencies exposing the per-process components built in the
application lifespan (see api.main.lifespan).
"""

import hmac
import logging

from fastapi import HTTPException, Request

from database.repository import SqlAlchemyStore
from shared.config import get_settings
from shared.notification_client import NotificationClient
from shared.paypal_client import PayPalClient

logger = logging.getLogger(__name__)


def get_store(request: Request) -> SqlAlchemyStore:
    return request.app.state.store


def get_notifier(request: Request) -> NotificationClient:
    return request.app.state.notifier


def get_paypal(request: Request) -> PayPalClient:
    return request.app.state.paypal


async def verify_jobs_token(request: Request) -> None:
    """
    Require `Authorization: Bearer <JOBS_API_TOKEN>` on cron-invoked job routes.

    Raises:
        HTTPException 401: Missing or invalid token
    """
    settings = get_settings()
    auth_header = request.headers.get("authorization", "")
    scheme, _, token = auth_header.partition(" ")

    # Validate token using timing-safe comparison
    if scheme.lower() != "bearer" or not hmac.compare_digest(
        token.encode(), settings.JOBS_API_TOKEN.encode()
    ):
        client_ip = request.client.host if request.client else "unknown"
        logger.warning(
            f"Invalid jobs token attempted from IP: {client_ip}",
            extra={"request_path": request.url.path},
        )
        raise HTTPException(status_code=401, detail="Invalid token")
