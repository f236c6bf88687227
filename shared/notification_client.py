"""
Client for the notification collaborators (email and push senders).

Both collaborators are black boxes reached over HTTP: they receive
{type, appointmentId}, resolve recipients and content themselves, and
answer 2xx on success. Any other outcome becomes a TransportFailureError,
which batch jobs record per item.
"""

import logging
from typing import Any
from uuid import UUID

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shared.config import Settings, get_settings
from shared.errors import TransportFailureError

logger = logging.getLogger(__name__)


class NotificationClient:
    """
    Sends reminder emails and push notifications through the collaborator
    endpoints configured in settings.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = settings or get_settings()
        self.email_url = settings.EMAIL_FUNCTION_URL
        self.push_url = settings.PUSH_FUNCTION_URL
        self.timeout = settings.NOTIFICATION_TIMEOUT_SECONDS
        self.transport = transport
        self.headers = {
            "Authorization": f"Bearer {settings.NOTIFICATIONS_API_KEY}",
            "Content-Type": "application/json",
        }

    async def send_email(self, email_type: str, appointment_id: UUID) -> dict[str, Any]:
        """
        Ask the email collaborator to send `email_type` for an appointment.

        Returns:
            Collaborator response body (includes the provider message id)

        Raises:
            TransportFailureError: If the email could not be sent
        """
        return await self._deliver(self.email_url, email_type, appointment_id)

    async def send_push(self, notification_type: str, appointment_id: UUID) -> dict[str, Any]:
        """
        Ask the push collaborator to notify staff devices about an appointment.

        Raises:
            TransportFailureError: If the push could not be sent
        """
        return await self._deliver(self.push_url, notification_type, appointment_id)

    async def _deliver(self, url: str, kind: str, appointment_id: UUID) -> dict[str, Any]:
        payload = {"type": kind, "appointmentId": str(appointment_id)}
        try:
            response = await self._post(url, payload)
        except httpx.HTTPError as e:
            logger.error(
                f"HTTP error sending {kind} notification: {e}",
                extra={"appointment_id": appointment_id},
            )
            raise TransportFailureError(str(e) or type(e).__name__) from e

        if not response.is_success:
            error_text = response.text or f"HTTP {response.status_code}"
            logger.warning(
                f"Notification collaborator rejected {kind}: {response.status_code} {error_text}",
                extra={"appointment_id": appointment_id},
            )
            raise TransportFailureError(error_text, http_status=response.status_code)

        logger.debug(f"Sent {kind} notification", extra={"appointment_id": appointment_id})
        try:
            return response.json()
        except ValueError:
            return {}

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post(self, url: str, payload: dict[str, Any]) -> httpx.Response:
        async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
            return await client.post(url, json=payload, headers=self.headers)
