"""Subscription access route used by the dashboard banner and write gating."""

from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends

from api.dependencies import get_store
from database.repository import SqlAlchemyStore
from lifecycle.services.subscription_access import evaluate_subscription_access
from shared.config import get_settings

router = APIRouter(tags=["subscriptions"])


@router.get("/api/barbershops/{barbershop_id}/subscription-access")
async def get_subscription_access(
    barbershop_id: UUID,
    store: SqlAlchemyStore = Depends(get_store),
) -> dict:
    """Access decision for the barbershop's stored subscription."""
    subscription = await store.get_subscription_by_barbershop(barbershop_id)
    access = evaluate_subscription_access(
        subscription,
        now=datetime.now(UTC),
        tz=get_settings().TIMEZONE,
    )
    return {
        "barbershop_id": str(barbershop_id),
        "status": subscription.status.value if subscription else None,
        **access.to_dict(),
    }
