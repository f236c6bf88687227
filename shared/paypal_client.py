"""
PayPal REST client for subscription billing.

Only the calls the subscription core needs:
- OAuth client-credentials exchange for a short-lived bearer token
- Subscription details (status, billing_info)
- Webhook signature verification

One access token is fetched per reconciliation run and reused for every
tenant in that run.
"""

import logging
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shared.config import Settings, get_settings
from shared.errors import BillingProviderError, ServerError

logger = logging.getLogger(__name__)

PAYPAL_API_BASES = {
    "live": "https://api-m.paypal.com",
    "sandbox": "https://api-m.sandbox.paypal.com",
}

# Headers PayPal sends with every webhook delivery
WEBHOOK_SIGNATURE_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


class PayPalClient:
    """Thin async client over the PayPal REST API."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = settings or get_settings()
        self.client_id = settings.PAYPAL_CLIENT_ID
        self.client_secret = settings.PAYPAL_CLIENT_SECRET
        self.webhook_id = settings.PAYPAL_WEBHOOK_ID
        mode = "live" if settings.PAYPAL_MODE == "live" else "sandbox"
        self.api_base = PAYPAL_API_BASES[mode]
        self.transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    async def get_access_token(self) -> str:
        """
        Exchange client credentials for a bearer token.

        Raises:
            ServerError: If PayPal rejects the credentials or is unreachable
        """
        try:
            response = await self._request(
                "POST",
                "/v1/oauth2/token",
                auth=(self.client_id, self.client_secret),
                data={"grant_type": "client_credentials"},
            )
        except httpx.HTTPError as e:
            raise ServerError(f"PayPal auth failed: {e}") from e

        if not response.is_success:
            raise ServerError(f"PayPal auth failed: {response.text}")

        return response.json()["access_token"]

    async def get_subscription(self, access_token: str, subscription_id: str) -> dict[str, Any]:
        """
        Fetch a subscription's authoritative state.

        Raises:
            BillingProviderError: If the subscription cannot be fetched
        """
        try:
            response = await self._request(
                "GET",
                f"/v1/billing/subscriptions/{subscription_id}",
                headers=self._bearer(access_token),
            )
        except httpx.HTTPError as e:
            raise BillingProviderError(
                f"Failed to fetch PayPal subscription {subscription_id}: {e}"
            ) from e

        if not response.is_success:
            raise BillingProviderError(
                f"Failed to fetch PayPal subscription {subscription_id}: {response.text}"
            )

        return response.json()

    async def verify_webhook_signature(
        self, headers: dict[str, str], event: dict[str, Any]
    ) -> bool:
        """
        Ask PayPal to verify a webhook delivery against PAYPAL_WEBHOOK_ID.

        Returns:
            True if PayPal reports verification_status == SUCCESS
        """
        lowered = {k.lower(): v for k, v in headers.items()}
        body: dict[str, Any] = {
            field: lowered.get(header, "")
            for field, header in WEBHOOK_SIGNATURE_HEADERS.items()
        }
        body["webhook_id"] = self.webhook_id
        body["webhook_event"] = event

        try:
            access_token = await self.get_access_token()
            response = await self._request(
                "POST",
                "/v1/notifications/verify-webhook-signature",
                headers=self._bearer(access_token),
                json=body,
            )
        except (httpx.HTTPError, ServerError) as e:
            logger.warning(f"PayPal webhook verification call failed: {e}")
            return False

        if not response.is_success:
            logger.warning(f"PayPal webhook verification rejected: {response.text}")
            return False

        return response.json().get("verification_status") == "SUCCESS"

    @staticmethod
    def _bearer(access_token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        async with httpx.AsyncClient(transport=self.transport, timeout=15.0) as client:
            return await client.request(method, f"{self.api_base}{path}", **kwargs)
