from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Dict, Any, List
from datetime import datetime, date, timezone
from enum import Enum
import uuid

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class SubscriptionTier(str, Enum):
    FREE = "free"
    PREMIUM = "premium"

class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

class PaymentOrderStatus(str, Enum):
    CREATED = "created"
    PAID = "paid"

class TutorialStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    FINISHED = "finished"

class AuditAction(str, Enum):
    # Billing
    PLAN_SELECTED = "PLAN_SELECTED"
    PAYMENT_ORDER_CREATED = "PAYMENT_ORDER_CREATED"
    PAYMENT_VERIFIED = "PAYMENT_VERIFIED"
    PAYMENT_VERIFICATION_FAILED = "PAYMENT_VERIFICATION_FAILED"
    PAYMENT_REJECTED = "PAYMENT_REJECTED"
    INVOICE_RECORDED = "INVOICE_RECORDED"

    # Onboarding
    ONBOARDING_COMPLETED = "ONBOARDING_COMPLETED"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Coerce a stored date value to an aware datetime.

    Malformed or empty values come back as None instead of raising.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None

# ============================================================================
# MODELS
# ============================================================================

class UserSubscription(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str
    tier: SubscriptionTier = SubscriptionTier.FREE
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    plan_start_date: Optional[datetime] = None
    plan_expiry_date: Optional[datetime] = None
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    updated_at: Optional[datetime] = None

    @field_validator("plan_start_date", "plan_expiry_date", "updated_at", mode="before")
    @classmethod
    def _tolerate_bad_dates(cls, value):
        return parse_timestamp(value)

class UserSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str
    onboarding_complete: bool = False
    updated_at: Optional[datetime] = None

class PlanLimits(BaseModel):
    """Per-resource caps. None means unbounded."""
    companies: Optional[int] = None
    contacts: Optional[int] = None
    jobOpenings: Optional[int] = None

    @property
    def is_unbounded(self) -> bool:
        return self.companies is None and self.contacts is None and self.jobOpenings is None

class PlanFeature(BaseModel):
    text: str
    included: bool = True

class AvailablePlan(BaseModel):
    id: str
    databaseTier: SubscriptionTier
    name: str
    displayNameLines: List[str]
    priceMonthly: int
    durationMonths: int
    discountPercentage: Optional[int] = None
    description: str
    features: List[PlanFeature]
    isPopular: bool = False
    publicCtaText: str

class InvoiceRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    invoice_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    invoice_number: str
    plan_id: str
    plan_name: str
    amount_paid: int
    currency: str = "INR"
    razorpay_payment_id: str
    razorpay_order_id: str
    invoice_date: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class PaymentOrder(BaseModel):
    """Gateway order as created for a user; the only source of plan and amount at verification."""
    model_config = ConfigDict(extra="ignore")

    order_id: str
    user_id: str
    plan_id: str
    amount: int  # paise
    currency: str = "INR"
    status: PaymentOrderStatus = PaymentOrderStatus.CREATED
    razorpay_payment_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    paid_at: Optional[datetime] = None

class AuditLog(BaseModel):
    model_config = ConfigDict(extra="ignore")

    audit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: AuditAction
    actor_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

# ============================================================================
# REQUEST BODIES
# ============================================================================

class SelectPlanRequest(BaseModel):
    plan_id: str

class PaymentConfirmation(BaseModel):
    """Signed confirmation returned by the checkout widget.

    Plan and amount are taken from the stored order, never from the client.
    """
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str

class TutorialStartRequest(BaseModel):
    set_key: str = "dashboard"
    at_index: int = 0
    current_path: Optional[str] = None

class TutorialTargetRequest(BaseModel):
    next_set_key: Optional[str] = None
    next_index: int = 0

class PageChangedRequest(BaseModel):
    path: str
