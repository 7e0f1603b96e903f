"""Razorpay Service - order creation and payment signature verification.

Checkout flow:
1. Backend creates an order (amount in paise) and returns it to the frontend
2. Frontend opens the Razorpay checkout widget with the order id
3. Widget returns payment_id, order_id and signature
4. Backend verifies the signature before touching the subscription

The signature is HMAC-SHA256("{order_id}|{payment_id}") keyed with the
account's key secret.
"""
import hashlib
import hmac
import logging
import os
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

RAZORPAY_API_BASE = "https://api.razorpay.com/v1"


class PaymentGatewayError(Exception):
    """Razorpay unreachable, misconfigured, or rejected the request."""


class PaymentVerificationError(Exception):
    """Checkout confirmation whose signature does not match."""


class RazorpayService:
    """Thin client around the Razorpay Orders API."""

    def __init__(self, key_id: Optional[str] = None, key_secret: Optional[str] = None):
        self.key_id = (key_id if key_id is not None else os.getenv("RAZORPAY_KEY_ID", "")).strip()
        self.key_secret = (key_secret if key_secret is not None else os.getenv("RAZORPAY_KEY_SECRET", "")).strip()
        self.base_url = RAZORPAY_API_BASE

    @property
    def is_configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Create a Razorpay order.

        Args:
            amount: Amount in the currency's smallest unit (paise for INR)
            currency: ISO currency code
            receipt: Merchant receipt reference
            notes: Free-form metadata echoed back on the payment

        Returns:
            Dict with order_id, amount and currency
        """
        if not self.is_configured:
            raise PaymentGatewayError("RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET are not set. Payment cannot proceed.")

        payload = {
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": {k: str(v) for k, v in (notes or {}).items()},
        }

        try:
            async with httpx.AsyncClient(auth=(self.key_id, self.key_secret)) as client:
                response = await client.post(f"{self.base_url}/orders", json=payload, timeout=20.0)
        except httpx.TimeoutException as e:
            logger.error("Razorpay timeout creating order receipt=%s", receipt)
            raise PaymentGatewayError("Razorpay timed out. Please retry.") from e
        except httpx.HTTPError as e:
            logger.error(f"Razorpay network error: {e}")
            raise PaymentGatewayError("Unable to reach Razorpay right now. Please retry.") from e

        if response.status_code >= 400:
            logger.error(
                "Razorpay rejected order receipt=%s status=%s body=%s",
                receipt, response.status_code, response.text[:220]
            )
            raise PaymentGatewayError("Razorpay rejected checkout request.")

        order = response.json()
        logger.info(f"Razorpay order created: {order.get('id')}")
        return {
            "order_id": order["id"],
            "amount": order.get("amount", amount),
            "currency": order.get("currency", currency),
        }

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Constant-time check of the checkout widget's signature."""
        if not self.key_secret:
            logger.error("RAZORPAY_KEY_SECRET is not set; cannot verify payment signature")
            return False
        message = f"{order_id}|{payment_id}"
        expected = hmac.new(
            self.key_secret.encode("utf-8"),
            message.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected, signature or "")


# Singleton instance
razorpay_service = RazorpayService()
