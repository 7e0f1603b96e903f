"""Canonical Plan Registry - Single Source of Truth for plans and usage limits.

This is the AUTHORITATIVE source for:
- Subscription tiers and their usage limits
- The grace period applied after a premium plan expires
- The purchasable plan catalogue (pricing, duration, discounts)
- Limit checks for companies, contacts and job openings

Plan Structure:
- free: 30 companies / 30 contacts / 30 job openings
- premium: 100 companies / 100 contacts / 100 job openings
  sold as 1, 6 or 12 month purchases
"""
from typing import Dict, List, Optional, Tuple, Any
from models import SubscriptionTier, PlanLimits, PlanFeature, AvailablePlan
import logging

logger = logging.getLogger(__name__)


GRACE_PERIOD_DAYS = 7

# Resource keys as they appear in PlanLimits, mapped to their collections
LIMITED_RESOURCES = {
    "companies": "companies",
    "contacts": "contacts",
    "jobOpenings": "job_openings",
}

RESOURCE_LABELS = {
    "companies": "companies",
    "contacts": "contacts",
    "jobOpenings": "job openings",
}


# ============================================================================
# PLAN LIMITS - What each tier may store
# ============================================================================
PLAN_LIMITS: Dict[SubscriptionTier, PlanLimits] = {
    SubscriptionTier.FREE: PlanLimits(companies=30, contacts=30, jobOpenings=30),
    SubscriptionTier.PREMIUM: PlanLimits(companies=100, contacts=100, jobOpenings=100),
}

UNBOUNDED_LIMITS = PlanLimits(companies=None, contacts=None, jobOpenings=None)


def get_limits_for_tier(tier: Any, is_privileged: bool = False) -> PlanLimits:
    """Limits for a tier; privileged users are never capped. Unknown tiers fall back to free."""
    if is_privileged:
        return UNBOUNDED_LIMITS.model_copy()
    try:
        tier = SubscriptionTier(tier)
    except ValueError:
        tier = SubscriptionTier.FREE
    return PLAN_LIMITS[tier].model_copy()


# ============================================================================
# PLAN CATALOGUE - Purchase options shown on pricing and billing pages
# ============================================================================
_COMMON_FEATURES = [
    "Automated follow-up reminders",
    "Centralized dashboard overview",
    "Full access to our insightful blogs",
    "Integrated contact and company management",
    "Save your favorite mail templates",
]


def _features_for(tier: SubscriptionTier) -> List[PlanFeature]:
    limits = PLAN_LIMITS[tier]
    lines = [
        f"Track up to {limits.jobOpenings} job openings",
        f"Manage up to {limits.contacts} contacts",
        f"Store up to {limits.companies} companies",
        *_COMMON_FEATURES,
    ]
    return [PlanFeature(text=line) for line in lines]


ALL_AVAILABLE_PLANS: List[AvailablePlan] = [
    AvailablePlan(
        id="free",
        databaseTier=SubscriptionTier.FREE,
        name="Free Tier",
        displayNameLines=["Free Tier", "Forever!"],
        priceMonthly=0,
        durationMonths=12 * 99,
        description="No credit card, no catch. Just pure job-hunting awesomeness.",
        features=_features_for(SubscriptionTier.FREE),
        publicCtaText="Get started for Free",
    ),
    AvailablePlan(
        id="premium-1m",
        databaseTier=SubscriptionTier.PREMIUM,
        name="Premium - 1 Month",
        displayNameLines=["Premium", "1 Month"],
        priceMonthly=59,
        durationMonths=1,
        description="Test the waters freely with full access and total flexibility.",
        features=_features_for(SubscriptionTier.PREMIUM),
        publicCtaText="Where premium meets affordable",
    ),
    AvailablePlan(
        id="premium-6m",
        databaseTier=SubscriptionTier.PREMIUM,
        name="Premium - 6 Months",
        displayNameLines=["Premium", "6 Months"],
        priceMonthly=58,
        durationMonths=6,
        discountPercentage=15,
        description="Perfect if you're seriously in it for the long job-hunt haul.",
        features=_features_for(SubscriptionTier.PREMIUM),
        isPopular=True,
        publicCtaText="Lock in the savings!",
    ),
    AvailablePlan(
        id="premium-12m",
        databaseTier=SubscriptionTier.PREMIUM,
        name="Premium - 12 Months",
        displayNameLines=["Premium", "12 Months"],
        priceMonthly=59,
        durationMonths=12,
        discountPercentage=25,
        description="One-time easy commit. One year of focused job-win progress.",
        features=_features_for(SubscriptionTier.PREMIUM),
        publicCtaText="Your wallet will thank you!",
    ),
]

_PLANS_BY_ID = {plan.id: plan for plan in ALL_AVAILABLE_PLANS}


# ============================================================================
# PLAN REGISTRY SERVICE
# ============================================================================
class PlanRegistryService:
    """Central service for plan catalogue, pricing and limit checks."""

    # -------------------------------------------------------------------------
    # Plan Information
    # -------------------------------------------------------------------------

    def get_plan(self, plan_id: str) -> Optional[AvailablePlan]:
        """Get a purchase option by id."""
        return _PLANS_BY_ID.get(plan_id)

    def get_all_plans(self) -> List[Dict[str, Any]]:
        """Get all plans with computed pricing for display."""
        return [
            {**plan.model_dump(mode="json"), "price": self.calculate_plan_price(plan)}
            for plan in ALL_AVAILABLE_PLANS
        ]

    def calculate_plan_price(self, plan: AvailablePlan) -> Dict[str, Any]:
        """
        Compute the amount charged for a purchase option.

        Totals are whole rupees. Discounted plans also report the
        undiscounted total and the effective monthly price.
        """
        if plan.databaseTier == SubscriptionTier.FREE:
            return {
                "is_free": True,
                "is_discounted": False,
                "final_total_price": 0,
                "duration_months": plan.durationMonths,
            }

        original_total = plan.priceMonthly * plan.durationMonths

        if plan.discountPercentage and plan.discountPercentage > 0:
            final_total = original_total - original_total * (plan.discountPercentage / 100)
            return {
                "is_free": False,
                "is_discounted": True,
                "original_total_price": round(original_total),
                "discounted_price_per_month": round(final_total / plan.durationMonths),
                "final_total_price": round(final_total),
                "duration_months": plan.durationMonths,
                "discount_percentage": plan.discountPercentage,
            }

        return {
            "is_free": False,
            "is_discounted": False,
            "price_monthly_direct": plan.priceMonthly,
            "final_total_price": round(original_total),
            "duration_months": plan.durationMonths,
        }

    # -------------------------------------------------------------------------
    # Limit Checks
    # -------------------------------------------------------------------------

    def check_usage_limit(
        self,
        limits: PlanLimits,
        resource: str,
        current_count: int
    ) -> Tuple[bool, Optional[str], Optional[Dict]]:
        """
        Check whether one more entry of a resource may be created.

        Returns:
            (is_allowed, error_message, error_details)
        """
        if resource not in LIMITED_RESOURCES:
            raise ValueError(f"Unknown limited resource: {resource}")

        limit = getattr(limits, resource)
        if limit is None or current_count < limit:
            return True, None, None

        label = RESOURCE_LABELS[resource]
        return False, f"You've reached the maximum of {limit} {label} for your plan", {
            "error_code": "USAGE_LIMIT_REACHED",
            "resource": resource,
            "current_limit": limit,
            "current_count": current_count,
            "upgrade_required": True,
            "upgrade_path": "/settings/billing",
        }


# Singleton instance
plan_registry = PlanRegistryService()
