"""Subscription Routes - effective plan, catalogue and usage.

Endpoints:
- GET /api/subscription - Resolved subscription for the current user
- GET /api/subscription/plans - Public plan catalogue with computed prices
- GET /api/subscription/usage - Usage counts against effective limits
"""
from fastapi import APIRouter, Request
from services.plan_registry import plan_registry
from services.subscription_service import subscription_service
from middleware import require_auth
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/subscription", tags=["subscription"])


@router.get("")
async def get_subscription(request: Request):
    """
    Current user's subscription as the rest of the app should see it.

    A missing or unreadable subscription row resolves to the free tier.
    """
    user = await require_auth(request)
    record, view = await subscription_service.get_subscription_view(user["user_id"], user.get("email"))

    return {
        "subscription": record.model_dump(mode="json") if record else None,
        **view.to_dict(),
    }


@router.get("/plans")
async def list_plans():
    """Plan catalogue. No auth required (pricing page)."""
    return {"plans": plan_registry.get_all_plans()}


@router.get("/usage")
async def get_usage(request: Request):
    user = await require_auth(request)
    return await subscription_service.get_usage(user["user_id"], user.get("email"))
