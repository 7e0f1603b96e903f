"""Subscription Resolver - derive the effective plan from a stored subscription.

Pure computation over an already-fetched subscription record:
- actual_tier: the stored tier while the record is active (drives the premium badge)
- effective_tier_for_limits: the tier whose limits apply right now
- in_grace_period / days_left_in_grace_period: the warning window after a
  premium plan expires, before the user is treated as fully free

Dates are compared on whole calendar days (UTC). A plan expiring today is
already expired; the seventh day after expiry is the last day of grace.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Optional, Union

from models import PlanLimits, SubscriptionStatus, SubscriptionTier, UserSubscription
from services.plan_registry import GRACE_PERIOD_DAYS, get_limits_for_tier


@dataclass(frozen=True)
class SubscriptionView:
    actual_tier: SubscriptionTier
    effective_tier_for_limits: SubscriptionTier
    limits: PlanLimits
    in_grace_period: bool
    days_left_in_grace_period: Optional[int]
    is_privileged: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "actual_tier": self.actual_tier.value,
            "effective_tier_for_limits": self.effective_tier_for_limits.value,
            "limits": self.limits.model_dump(),
            "in_grace_period": self.in_grace_period,
            "days_left_in_grace_period": self.days_left_in_grace_period,
            "is_privileged": self.is_privileged,
        }


def _calendar_day(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def resolve(
    record: Optional[UserSubscription],
    now: Union[date, datetime],
    is_privileged: bool = False,
) -> SubscriptionView:
    """Resolve tier, limits and grace window for a subscription record."""
    actual_tier = SubscriptionTier.FREE
    effective_tier = SubscriptionTier.FREE
    in_grace = False
    days_left = None

    if record is not None and record.status == SubscriptionStatus.ACTIVE:
        if record.tier == SubscriptionTier.PREMIUM:
            actual_tier = SubscriptionTier.PREMIUM
            today = _calendar_day(now)
            expiry = record.plan_expiry_date

            if expiry is None or _calendar_day(expiry) > today:
                effective_tier = SubscriptionTier.PREMIUM
            else:
                grace_end = _calendar_day(expiry) + timedelta(days=GRACE_PERIOD_DAYS)
                if today <= grace_end:
                    in_grace = True
                    days_left = max(0, (grace_end - today).days)

    return SubscriptionView(
        actual_tier=actual_tier,
        effective_tier_for_limits=effective_tier,
        limits=get_limits_for_tier(effective_tier, is_privileged),
        in_grace_period=in_grace,
        days_left_in_grace_period=days_left,
        is_privileged=is_privileged,
    )
