"""Pydantic models for PayPal webhook payloads."""

from typing import Any

from pydantic import BaseModel, ConfigDict


class PayPalWebhookEvent(BaseModel):
    """PayPal webhook event envelope; resource shape depends on event_type."""
    model_config = ConfigDict(extra="allow")

    id: str
    event_type: str
    resource_type: str | None = None
    summary: str | None = None
    resource: dict[str, Any] = {}
    create_time: str | None = None
