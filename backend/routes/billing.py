"""Billing Routes - Plan selection and Razorpay payment confirmation.

Endpoints:
- POST /api/billing/select-plan - Activate free plan, or create a Razorpay order for premium
- POST /api/billing/verify - Verify checkout signature against the stored order and apply its premium period
- GET /api/billing/invoices - Billing history for the current user
"""
from fastapi import APIRouter, HTTPException, Request, status
from models import SelectPlanRequest, PaymentConfirmation, SubscriptionTier
from services.subscription_service import (
    subscription_service,
    PlanAlreadyActiveError,
    UnknownPlanError,
    PaymentOrderNotFoundError,
    PaymentOrderOwnershipError,
    PaymentAlreadyUsedError,
)
from services.razorpay_service import PaymentGatewayError, PaymentVerificationError
from middleware import require_auth
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/billing", tags=["billing"])


@router.post("/select-plan")
async def select_plan(request: Request, body: SelectPlanRequest):
    """
    Select a plan.

    Free plan is applied immediately. Premium plans return the order the
    frontend opens the Razorpay checkout widget with; the subscription only
    changes after /verify succeeds.
    """
    user = await require_auth(request)

    try:
        plan = subscription_service.get_plan_or_raise(body.plan_id)
        if plan.databaseTier == SubscriptionTier.FREE:
            result = await subscription_service.activate_free_plan(user["user_id"], user.get("email"))
            return {"success": True, "requires_payment": False, **result}

        order = await subscription_service.create_payment_order(
            user["user_id"], user.get("email"), plan.id
        )
        return {"success": True, "requires_payment": True, **order}

    except UnknownPlanError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except PlanAlreadyActiveError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e)
        )
    except PaymentGatewayError as e:
        logger.error(f"Order creation failed for user {user['user_id']}: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(e)
        )


@router.post("/verify")
async def verify_payment(request: Request, body: PaymentConfirmation):
    """
    Verify the checkout confirmation and upgrade the subscription.

    400 bad signature, 404 unknown order, 403 another user's order,
    409 order or payment already settled by a different payment.
    """
    user = await require_auth(request)

    try:
        result = await subscription_service.apply_payment_confirmation(
            user["user_id"], user.get("email"), body
        )
    except UnknownPlanError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except PaymentVerificationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except PaymentOrderNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e)
        )
    except PaymentOrderOwnershipError as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(e)
        )
    except PaymentAlreadyUsedError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e)
        )

    return {"success": True, **result}


@router.get("/invoices")
async def list_invoices(request: Request):
    user = await require_auth(request)
    invoices = await subscription_service.list_invoices(user["user_id"])
    return {"invoices": invoices, "total": len(invoices)}
