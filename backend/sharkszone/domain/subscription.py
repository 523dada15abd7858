"""
Subscription Domain Models

Enums, request DTOs and result models for the subscription bounded context.
Request bodies keep the camelCase field names the web client already sends.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, StrictBool


class PlanName(str, Enum):
    """Plan tiers."""
    FREE = "free"
    PRO = "pro"


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle status."""
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class CancellationSource(str, Enum):
    """Who or what initiated a downgrade."""
    USER_CANCEL_BUTTON = "user_cancel_button"
    USER_SWITCH_FORM = "user_switch_form"
    PAYPAL_WEBHOOK = "paypal_webhook"
    PAYPAL_SYNC = "paypal_sync"
    CHECKOUT = "checkout"


class ManageAction(str, Enum):
    """Actions accepted by the unified manage endpoint."""
    CANCEL = "cancel"
    SWITCH_TO_FREE = "switch_to_free"
    SYNC_WITH_PAYPAL = "sync_with_paypal"
    VALIDATE_PAYPAL = "validate_paypal"


# Remote PayPal status -> (local status, restricted). None means "not settled yet".
PAYPAL_STATUS_MAP: dict[str, Optional[tuple[SubscriptionStatus, bool]]] = {
    "ACTIVE": (SubscriptionStatus.ACTIVE, False),
    "SUSPENDED": (SubscriptionStatus.ACTIVE, True),
    "CANCELLED": (SubscriptionStatus.CANCELLED, False),
    "EXPIRED": (SubscriptionStatus.EXPIRED, False),
    "APPROVAL_PENDING": None,
    "APPROVED": None,
}


# =============================================================================
# Request DTOs
# =============================================================================

class _CamelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CancelSubscriptionRequest(_CamelRequest):
    """Request DTO for the cancel button."""
    reason: Optional[str] = Field(default=None, max_length=500)
    should_cancel_paypal: bool = Field(default=True, alias="shouldCancelPayPal")
    metadata: dict[str, Any] = Field(default_factory=dict)


class SwitchToFreeRequest(_CamelRequest):
    """Request DTO for the switch-to-free form."""
    confirm_cancellation: Optional[StrictBool] = Field(default=None, alias="confirmCancellation")
    reason: Optional[str] = Field(default=None, max_length=500)
    should_cancel_paypal: bool = Field(default=True, alias="shouldCancelPayPal")
    metadata: dict[str, Any] = Field(default_factory=dict)


class ValidateSubscriptionRequest(_CamelRequest):
    subscription_id: Optional[str] = Field(default=None, alias="subscriptionId")


class ManageSubscriptionRequest(_CamelRequest):
    """Unified management body; extra fields depend on the action."""
    action: Optional[str] = None
    reason: Optional[str] = Field(default=None, max_length=500)
    confirm_cancellation: Optional[StrictBool] = Field(default=None, alias="confirmCancellation")
    should_cancel_paypal: bool = Field(default=True, alias="shouldCancelPayPal")
    subscription_id: Optional[str] = Field(default=None, alias="subscriptionId")
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConfirmCheckoutRequest(_CamelRequest):
    order_id: Optional[str] = Field(default=None, alias="orderId")
    capture_id: Optional[str] = Field(default=None, alias="captureId")
    # Validated against the Pro price by the checkout service
    amount: Any = None


class CaptureOrderRequest(_CamelRequest):
    order_id: Optional[str] = Field(default=None, alias="orderId")


class CaptureAuthorizationRequest(_CamelRequest):
    authorization_id: Optional[str] = Field(default=None, alias="authorizationId")


# =============================================================================
# Results
# =============================================================================

class CancellationResult(BaseModel):
    """Outcome of a downgrade to the free plan."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    already_free: bool = Field(default=False, alias="alreadyFree")
    subscription_id: Optional[str] = None
    previous_plan: Optional[str] = None
    new_plan: str = PlanName.FREE.value
    cancelled_at: Optional[datetime] = None
    paypal_cancelled: bool = False
    source: Optional[CancellationSource] = None
    warnings: list[dict[str, Any]] = Field(default_factory=list)


class SyncResult(BaseModel):
    """Outcome of reconciling the local record with PayPal."""
    model_config = ConfigDict(populate_by_name=True)

    synced: bool
    changed: bool = False
    reason: Optional[str] = None
    from_status: Optional[str] = Field(default=None, alias="from")
    to_status: Optional[str] = Field(default=None, alias="to")
    restricted: Optional[bool] = None
    remote_status: Optional[str] = None


class ValidationResult(BaseModel):
    valid: bool
    status: str


class SubscriptionInfo(BaseModel):
    """Current plan and remaining quotas for a user."""
    user_id: str
    plan_name: str
    plan_display_name: str
    status: Optional[str] = None
    restricted: bool = False
    price_check_limit: int
    post_creation_limit: int
    price_checks_used: int = 0
    posts_created: int = 0
    price_checks_remaining: int
    posts_remaining: int
    external_subscription_id: Optional[str] = None
    started_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_materialized: bool = Field(
        default=True,
        description="False when the user has no row and the free default is reported",
    )


class CheckoutResult(BaseModel):
    subscription_id: str
    transaction_id: str
    plan: str = PlanName.PRO.value
    expires_at: Optional[datetime] = None
    previous_subscription_cancelled: bool = False
    already_confirmed: bool = False


class CaptureResult(BaseModel):
    """Normalized PayPal capture outcome."""
    id: str
    status: str
    capture_id: Optional[str] = None
    amount: Optional[str] = None
    currency: Optional[str] = None
    custom_id: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class RemoteSubscription(BaseModel):
    """PayPal's view of a billing subscription."""
    id: str
    status: str
    plan_id: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)
