"""
Subscription access evaluation.

Maps a stored subscription to the access decision used by the dashboard
(banner, payment wall) and by write gating. Pure and deterministic: the
result depends only on the persisted fields and the supplied clock.
"""

import math
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Any, Protocol
from zoneinfo import ZoneInfo

from database.models import SubscriptionStatus

DAY = timedelta(days=1)


class SubscriptionLike(Protocol):
    status: SubscriptionStatus
    trial_ends_at: datetime | None
    current_period_end: datetime | None


@dataclass(frozen=True)
class SubscriptionAccess:
    is_active: bool
    is_trial: bool
    is_trial_expired: bool
    is_trial_ending_today: bool
    is_payment_required: bool
    can_write: bool
    trial_days_remaining: int | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


NO_SUBSCRIPTION_ACCESS = SubscriptionAccess(
    is_active=False,
    is_trial=False,
    is_trial_expired=False,
    is_trial_ending_today=False,
    is_payment_required=True,
    can_write=False,
    trial_days_remaining=None,
)


def evaluate_subscription_access(
    subscription: SubscriptionLike | None,
    now: datetime,
    tz: tzinfo | str | None = None,
) -> SubscriptionAccess:
    """
    Derive the access decision for a subscription at instant `now`.

    Args:
        subscription: Stored subscription, or None if the tenant has none
        now: Timezone-aware current instant
        tz: Timezone for the "trial ends today" calendar comparison.
            Defaults to now's own timezone.

    Returns:
        SubscriptionAccess decision
    """
    if subscription is None:
        return NO_SUBSCRIPTION_ACCESS

    if isinstance(tz, str):
        tz = ZoneInfo(tz)
    local_tz = tz or now.tzinfo

    status = SubscriptionStatus(subscription.status)
    trial_ends_at = subscription.trial_ends_at
    current_period_end = subscription.current_period_end

    is_trial = status == SubscriptionStatus.TRIAL
    is_trial_expired = bool(is_trial and trial_ends_at and trial_ends_at <= now)
    is_trial_ending_today = bool(
        is_trial
        and trial_ends_at
        and trial_ends_at.astimezone(local_tz).date() == now.astimezone(local_tz).date()
    )

    trial_days_remaining = None
    if trial_ends_at is not None:
        trial_days_remaining = max(0, math.ceil((trial_ends_at - now) / DAY))

    is_within_paid_period = bool(current_period_end and current_period_end > now)

    is_active = status == SubscriptionStatus.ACTIVE or (
        status == SubscriptionStatus.CANCELED and is_within_paid_period
    )

    is_payment_required = (
        status in (SubscriptionStatus.PAST_DUE, SubscriptionStatus.INACTIVE)
        or (status == SubscriptionStatus.CANCELED and not is_within_paid_period)
        or is_trial_expired
    )

    can_write = is_active or (is_trial and not is_trial_expired)

    return SubscriptionAccess(
        is_active=is_active,
        is_trial=is_trial,
        is_trial_expired=is_trial_expired,
        is_trial_ending_today=is_trial_ending_today,
        is_payment_required=is_payment_required,
        can_write=can_write,
        trial_days_remaining=trial_days_remaining,
    )
