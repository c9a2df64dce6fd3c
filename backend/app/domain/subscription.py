"""
Subscription Domain Models

Domain models for subscription management following Clean Architecture.
Enums, DTOs, and domain entities for the subscription bounded context.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class PlanId(str, Enum):
    """Closed set of plan identifiers."""
    TRIAL = "trial"
    BASIC = "basic"
    STARTER = "starter"
    PROFESSIONAL = "professional"
    UNLIMITED = "unlimited"
    WORKSHOP = "workshop"  # legacy alias of unlimited


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle status."""
    PENDING = "pending"
    INCOMPLETE = "incomplete"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


# Statuses that make a row the user's "current" subscription. Also the set
# the access gate accepts: pending/incomplete cover the window between the
# checkout redirect and the provider's webhook.
CURRENT_STATUSES = frozenset({
    SubscriptionStatus.PENDING,
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.INCOMPLETE,
})

# Current statuses that block starting another checkout. pending/incomplete
# rows are reused when the user retries checkout.
CHECKOUT_BLOCKING_STATUSES = frozenset({
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIALING,
})

# Provider statuses outside our closed set, folded onto the nearest state.
_PROVIDER_STATUS_ALIASES = {
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "paused": SubscriptionStatus.PAST_DUE,
}


def status_from_provider(raw: Optional[str]) -> Optional[SubscriptionStatus]:
    """
    Map a payment-provider status string onto SubscriptionStatus.

    Returns None for missing or unknown values so callers can leave the
    stored status untouched.
    """
    if not raw:
        return None
    value = str(raw).strip().lower()
    try:
        return SubscriptionStatus(value)
    except ValueError:
        return _PROVIDER_STATUS_ALIASES.get(value)


# =============================================================================
# Domain Entities
# =============================================================================

class Subscription(BaseModel):
    """Core subscription domain entity."""
    id: Optional[str] = None
    user_id: str
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    plan_id: PlanId
    status: SubscriptionStatus = SubscriptionStatus.PENDING
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_current(self) -> bool:
        return self.status in CURRENT_STATUSES


class SubscriptionFields(BaseModel):
    """
    Partial set of subscription fields carried by a provider event.

    A field left as None is not written, so an unparseable period bound
    never blocks a status change.
    """
    stripe_subscription_id: Optional[str] = None
    plan_id: Optional[PlanId] = None
    status: Optional[SubscriptionStatus] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: Optional[bool] = None

    def changes(self) -> dict:
        """Fields that should be written."""
        return self.model_dump(exclude_none=True)


def has_access(subscription: Optional[Subscription]) -> bool:
    """Access-gate rule: a current subscription must exist."""
    return subscription is not None and subscription.is_current


# =============================================================================
# Request/Response DTOs
# =============================================================================

class CreateCheckoutRequest(BaseModel):
    """Request DTO for creating a checkout session."""
    plan_id: Optional[str] = Field(
        default=None,
        alias="planId",
        description="Plan to purchase",
    )

    model_config = ConfigDict(populate_by_name=True)


class CheckoutResponse(BaseModel):
    """Response DTO for checkout session creation."""
    checkout_url: str = Field(serialization_alias="checkoutUrl")
    session_id: str = Field(serialization_alias="sessionId")


class PortalResponse(BaseModel):
    """Response DTO for portal session creation."""
    portal_url: str = Field(serialization_alias="portalUrl")


class SubscriptionSummary(BaseModel):
    id: Optional[str] = None
    plan_id: PlanId
    status: SubscriptionStatus
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False


class SubscriptionStatusResponse(BaseModel):
    """Response DTO for subscription status."""
    subscription: SubscriptionSummary

    @classmethod
    def from_subscription(cls, subscription: Subscription) -> "SubscriptionStatusResponse":
        return cls(
            subscription=SubscriptionSummary(
                id=subscription.id,
                plan_id=subscription.plan_id,
                status=subscription.status,
                current_period_start=subscription.current_period_start,
                current_period_end=subscription.current_period_end,
                cancel_at_period_end=subscription.cancel_at_period_end,
            )
        )
