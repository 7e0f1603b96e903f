"""Subscription Service - reads and writes a user's subscription against the data store.

This service handles:
- Fetching the subscription row and resolving the effective plan
- Privileged (allow-listed) users who are exempt from limits
- Free plan activation and premium checkout orders
- Applying a verified payment confirmation (new period + invoice record)

Key Principles:
- The resolver is pure; everything here feeds it already-fetched data
- A failed or empty fetch means "no subscription" (free tier), never an error
- After any write the record is re-read before resolving, so limits are never stale
"""
import calendar
import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError

from database import database
from models import (
    AuditAction,
    AvailablePlan,
    InvoiceRecord,
    PaymentConfirmation,
    PaymentOrder,
    PaymentOrderStatus,
    SubscriptionStatus,
    SubscriptionTier,
    UserSubscription,
)
from services.plan_registry import LIMITED_RESOURCES, plan_registry
from services.razorpay_service import PaymentVerificationError, razorpay_service
from services.subscription_resolver import SubscriptionView, resolve
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

OWNER_EMAIL = (os.getenv("OWNER_EMAIL") or "").strip().lower()
PAYMENT_CURRENCY = "INR"


class UnknownPlanError(ValueError):
    """plan_id is not in the catalogue."""


class PlanAlreadyActiveError(Exception):
    """User selected the plan they are already effectively on."""


class PaymentOrderNotFoundError(Exception):
    """Confirmation references an order this service never created."""


class PaymentOrderOwnershipError(Exception):
    """Confirmation references another user's order."""


class PaymentAlreadyUsedError(Exception):
    """Order already settled by a different payment, or payment id already consumed."""


def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the end of the target month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


class SubscriptionService:
    """Subscription reads, plan changes and payment application."""

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def fetch_subscription(self, user_id: str) -> Optional[UserSubscription]:
        """Fetch the stored subscription; None when absent or unavailable."""
        try:
            db = database.get_db()
            doc = await db.user_subscriptions.find_one({"user_id": user_id}, {"_id": 0})
        except Exception as e:
            logger.error(f"Error fetching subscription for user {user_id}: {e}")
            return None

        if not doc:
            return None
        try:
            return UserSubscription(**doc)
        except ValidationError as e:
            logger.error(f"Unreadable subscription row for user {user_id}: {e}")
            return None

    async def is_privileged(self, email: Optional[str]) -> bool:
        """Owner and allow-listed emails are exempt from plan limits."""
        if not email:
            return False
        email = email.strip().lower()
        if OWNER_EMAIL and email == OWNER_EMAIL:
            return True
        try:
            db = database.get_db()
            entry = await db.privileged_emails.find_one({"email": email}, {"_id": 0, "email": 1})
        except Exception as e:
            logger.warning(f"Privileged email lookup failed: {e}")
            return False
        return entry is not None

    async def get_subscription_view(
        self,
        user_id: str,
        email: Optional[str],
        now: Optional[datetime] = None,
    ) -> Tuple[Optional[UserSubscription], SubscriptionView]:
        """Fetch and resolve in one step."""
        now = now or datetime.now(timezone.utc)
        record = await self.fetch_subscription(user_id)
        privileged = await self.is_privileged(email)
        return record, resolve(record, now, privileged)

    # -------------------------------------------------------------------------
    # Plan changes
    # -------------------------------------------------------------------------

    def get_plan_or_raise(self, plan_id: str) -> AvailablePlan:
        plan = plan_registry.get_plan(plan_id)
        if plan is None:
            raise UnknownPlanError(f"Invalid plan id: {plan_id}")
        return plan

    def compute_new_period(
        self,
        plan: AvailablePlan,
        record: Optional[UserSubscription],
        view: SubscriptionView,
        now: datetime,
    ) -> Tuple[datetime, datetime]:
        """
        Start and expiry for a purchase.

        Buying premium while an unexpired premium is running extends it:
        the start date is kept and the duration is added to the current
        expiry. Anything else starts a fresh period now.
        """
        extending = (
            plan.databaseTier == SubscriptionTier.PREMIUM
            and view.effective_tier_for_limits == SubscriptionTier.PREMIUM
            and record is not None
            and record.plan_start_date is not None
            and record.plan_expiry_date is not None
            and record.plan_expiry_date > now
        )
        if extending:
            return record.plan_start_date, add_months(record.plan_expiry_date, plan.durationMonths)
        return now, add_months(now, plan.durationMonths)

    async def _write_subscription(self, user_id: str, fields: Dict[str, Any]) -> Optional[UserSubscription]:
        """Upsert by user_id, then read back what the store now holds."""
        db = database.get_db()
        fields = {**fields, "user_id": user_id, "updated_at": datetime.now(timezone.utc)}
        await db.user_subscriptions.update_one(
            {"user_id": user_id},
            {"$set": fields},
            upsert=True
        )
        return await self.fetch_subscription(user_id)

    async def activate_free_plan(
        self,
        user_id: str,
        email: Optional[str],
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Switch the user to the free tier."""
        now = now or datetime.now(timezone.utc)
        plan = self.get_plan_or_raise("free")
        record, view = await self.get_subscription_view(user_id, email, now)

        if view.effective_tier_for_limits == SubscriptionTier.FREE and not view.in_grace_period:
            raise PlanAlreadyActiveError(f"You are already on the {plan.name}.")

        start, expiry = self.compute_new_period(plan, record, view, now)
        updated = await self._write_subscription(user_id, {
            "tier": SubscriptionTier.FREE.value,
            "status": SubscriptionStatus.ACTIVE.value,
            "plan_start_date": start,
            "plan_expiry_date": expiry,
            "razorpay_order_id": None,
            "razorpay_payment_id": None,
        })

        await create_audit_log(
            action=AuditAction.PLAN_SELECTED,
            actor_id=user_id,
            resource_type="subscription",
            resource_id=user_id,
            metadata={"plan_id": plan.id},
        )
        logger.info(f"Free plan activated for user {user_id}")

        _, fresh_view = await self.get_subscription_view(user_id, email, now)
        return {"subscription": _dump(updated), **fresh_view.to_dict()}

    async def create_payment_order(
        self,
        user_id: str,
        email: Optional[str],
        plan_id: str,
    ) -> Dict[str, Any]:
        """
        Create the order descriptor the checkout widget is opened with.

        The order is stored against the user; verification later takes the
        plan and amount from this row, not from the client.
        """
        plan = self.get_plan_or_raise(plan_id)
        if plan.databaseTier != SubscriptionTier.PREMIUM:
            raise UnknownPlanError(f"Plan {plan_id} does not require payment")

        price = plan_registry.calculate_plan_price(plan)
        amount = round(price["final_total_price"] * 100)
        order = await razorpay_service.create_order(
            amount=amount,
            currency=PAYMENT_CURRENCY,
            receipt=f"pf_{plan.id}_{int(time.time() * 1000)}",
            notes={
                "purchaseOptionId": plan.id,
                "mapsToDbTier": plan.databaseTier.value,
                "userId": user_id,
                "userEmail": email or "N/A",
                "durationMonths": plan.durationMonths,
            },
        )

        payment_order = PaymentOrder(
            order_id=order["order_id"],
            user_id=user_id,
            plan_id=plan.id,
            amount=order["amount"],
            currency=order["currency"],
        )
        db = database.get_db()
        await db.payment_orders.insert_one(payment_order.model_dump())

        await create_audit_log(
            action=AuditAction.PAYMENT_ORDER_CREATED,
            actor_id=user_id,
            resource_type="payment_order",
            resource_id=order["order_id"],
            metadata={"plan_id": plan.id, "amount": order["amount"]},
        )

        return {
            "key_id": razorpay_service.key_id,
            "order_id": order["order_id"],
            "amount": order["amount"],
            "currency": order["currency"],
            "plan_id": plan.id,
            "plan_name": plan.name,
        }

    async def _reject_payment(self, user_id: str, confirmation: PaymentConfirmation, reason: str) -> None:
        await create_audit_log(
            action=AuditAction.PAYMENT_REJECTED,
            actor_id=user_id,
            resource_type="payment_order",
            resource_id=confirmation.razorpay_order_id,
            metadata={"payment_id": confirmation.razorpay_payment_id, "reason": reason},
        )
        logger.warning(
            "Payment rejected (%s) user=%s order=%s payment=%s",
            reason, user_id, confirmation.razorpay_order_id, confirmation.razorpay_payment_id
        )

    async def _load_payment_order(self, user_id: str, confirmation: PaymentConfirmation) -> PaymentOrder:
        """Stored order for the confirmation; must exist and belong to user_id."""
        db = database.get_db()
        doc = await db.payment_orders.find_one({"order_id": confirmation.razorpay_order_id}, {"_id": 0})
        if not doc:
            await self._reject_payment(user_id, confirmation, "order_not_found")
            raise PaymentOrderNotFoundError("Payment order not found.")

        order = PaymentOrder(**doc)
        if order.user_id != user_id:
            await self._reject_payment(user_id, confirmation, "order_owner_mismatch")
            raise PaymentOrderOwnershipError("This payment order belongs to a different user.")
        return order

    async def _claim_payment_order(self, order: PaymentOrder, payment_id: str, now: datetime) -> bool:
        """
        Mark the order paid with payment_id in one conditional write.

        Returns False when the order was already settled by this same payment
        (replay); raises PaymentAlreadyUsedError when it was settled by another
        payment or the payment id already settled another order.
        """
        db = database.get_db()
        if order.status == PaymentOrderStatus.PAID:
            if order.razorpay_payment_id == payment_id:
                return False
            raise PaymentAlreadyUsedError("Payment already verified with a different payment id.")

        other = await db.payment_orders.find_one(
            {"razorpay_payment_id": payment_id, "order_id": {"$ne": order.order_id}},
            {"_id": 0, "order_id": 1}
        )
        if other:
            raise PaymentAlreadyUsedError("This payment id is already consumed.")

        try:
            result = await db.payment_orders.update_one(
                {"order_id": order.order_id, "user_id": order.user_id, "status": PaymentOrderStatus.CREATED.value},
                {"$set": {
                    "status": PaymentOrderStatus.PAID.value,
                    "razorpay_payment_id": payment_id,
                    "paid_at": now,
                }}
            )
        except DuplicateKeyError:
            raise PaymentAlreadyUsedError("This payment id is already consumed.")

        if result.modified_count == 1:
            return True

        # Lost a race with a concurrent verification of the same order
        current = await db.payment_orders.find_one({"order_id": order.order_id}, {"_id": 0})
        if current and current.get("razorpay_payment_id") == payment_id:
            return False
        raise PaymentAlreadyUsedError("Payment already verified with a different payment id.")

    async def _release_payment_order(self, order: PaymentOrder, payment_id: str) -> None:
        """Undo a claim when the subscription write failed, so the user can retry."""
        try:
            db = database.get_db()
            await db.payment_orders.update_one(
                {"order_id": order.order_id, "razorpay_payment_id": payment_id},
                {"$set": {"status": PaymentOrderStatus.CREATED.value, "paid_at": None},
                 "$unset": {"razorpay_payment_id": ""}}
            )
        except Exception as e:
            logger.error(f"Failed to release payment order {order.order_id}: {e}")

    async def apply_payment_confirmation(
        self,
        user_id: str,
        email: Optional[str],
        confirmation: PaymentConfirmation,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Apply a signed checkout confirmation.

        Order of checks: signature, stored order exists and belongs to the
        user, order not yet settled (by another payment). Plan and amount
        come from the stored order. Replaying an applied confirmation
        returns the current state without extending the plan again.
        """
        now = now or datetime.now(timezone.utc)

        if not razorpay_service.verify_payment_signature(
            confirmation.razorpay_order_id,
            confirmation.razorpay_payment_id,
            confirmation.razorpay_signature,
        ):
            await create_audit_log(
                action=AuditAction.PAYMENT_VERIFICATION_FAILED,
                actor_id=user_id,
                resource_type="payment_order",
                resource_id=confirmation.razorpay_order_id,
                metadata={"payment_id": confirmation.razorpay_payment_id},
            )
            logger.warning(
                "Payment signature mismatch user=%s order=%s payment=%s",
                user_id, confirmation.razorpay_order_id, confirmation.razorpay_payment_id
            )
            raise PaymentVerificationError("Payment verification failed. Please contact support.")

        order = await self._load_payment_order(user_id, confirmation)
        plan = self.get_plan_or_raise(order.plan_id)

        try:
            claimed = await self._claim_payment_order(order, confirmation.razorpay_payment_id, now)
        except PaymentAlreadyUsedError:
            await self._reject_payment(user_id, confirmation, "payment_already_used")
            raise

        if not claimed:
            logger.info(f"Payment {confirmation.razorpay_payment_id} already applied for user {user_id}")
            record, view = await self.get_subscription_view(user_id, email, now)
            return {"subscription": _dump(record), "invoice": None, "already_applied": True, **view.to_dict()}

        record, view = await self.get_subscription_view(user_id, email, now)
        start, expiry = self.compute_new_period(plan, record, view, now)
        before = _dump(record)
        try:
            updated = await self._write_subscription(user_id, {
                "tier": SubscriptionTier.PREMIUM.value,
                "status": SubscriptionStatus.ACTIVE.value,
                "plan_start_date": start,
                "plan_expiry_date": expiry,
                "razorpay_order_id": order.order_id,
                "razorpay_payment_id": confirmation.razorpay_payment_id,
            })
        except Exception:
            await self._release_payment_order(order, confirmation.razorpay_payment_id)
            raise

        await create_audit_log(
            action=AuditAction.PAYMENT_VERIFIED,
            actor_id=user_id,
            resource_type="subscription",
            resource_id=user_id,
            before_state=before,
            after_state=_dump(updated),
            metadata={"plan_id": plan.id, "order_id": order.order_id},
        )
        logger.info(f"Premium plan {plan.id} applied for user {user_id}, expires {expiry.isoformat()}")

        amount_paid = round(order.amount / 100)
        invoice = await self.record_invoice(user_id, plan, confirmation, amount_paid, now)

        _, fresh_view = await self.get_subscription_view(user_id, email, now)
        return {"subscription": _dump(updated), "invoice": invoice, "already_applied": False, **fresh_view.to_dict()}

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    async def record_invoice(
        self,
        user_id: str,
        plan: AvailablePlan,
        confirmation: PaymentConfirmation,
        amount_paid: int,
        now: datetime,
    ) -> Optional[Dict[str, Any]]:
        """Save the invoice record. Failure is logged; the subscription stays applied."""
        invoice = InvoiceRecord(
            user_id=user_id,
            invoice_number=f"INV-{now.strftime('%Y%m%d')}-{confirmation.razorpay_order_id[-6:]}",
            plan_id=plan.id,
            plan_name=plan.name,
            amount_paid=amount_paid,
            currency=PAYMENT_CURRENCY,
            razorpay_payment_id=confirmation.razorpay_payment_id,
            razorpay_order_id=confirmation.razorpay_order_id,
            invoice_date=now.strftime("%Y-%m-%d"),
        )
        try:
            db = database.get_db()
            await db.invoices.insert_one(invoice.model_dump())
        except Exception as e:
            logger.error(f"Failed to save invoice record for user {user_id}: {e}")
            return None

        await create_audit_log(
            action=AuditAction.INVOICE_RECORDED,
            actor_id=user_id,
            resource_type="invoice",
            resource_id=invoice.invoice_number,
        )
        return invoice.model_dump(mode="json")

    async def list_invoices(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        db = database.get_db()
        cursor = db.invoices.find({"user_id": user_id}, {"_id": 0}).sort("created_at", -1).limit(limit)
        return await cursor.to_list(length=limit)

    # -------------------------------------------------------------------------
    # Usage
    # -------------------------------------------------------------------------

    async def get_usage(self, user_id: str, email: Optional[str]) -> Dict[str, Any]:
        """Entries created per limited resource against the effective limits."""
        _, view = await self.get_subscription_view(user_id, email)
        db = database.get_db()

        usage = {}
        for resource, collection in LIMITED_RESOURCES.items():
            used = await db[collection].count_documents({"user_id": user_id})
            limit = getattr(view.limits, resource)
            allowed, message, _ = plan_registry.check_usage_limit(view.limits, resource, used)
            usage[resource] = {
                "used": used,
                "limit": limit,
                "remaining": None if limit is None else max(0, limit - used),
                "can_create": allowed,
                "message": message,
            }

        return {"usage": usage, **view.to_dict()}


def _dump(record: Optional[UserSubscription]) -> Optional[Dict[str, Any]]:
    return record.model_dump(mode="json") if record else None


# Singleton instance
subscription_service = SubscriptionService()
