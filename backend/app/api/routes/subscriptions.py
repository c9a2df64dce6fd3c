"""
Subscription API Routes

REST API endpoints for subscription status, checkout, billing portal and
the public plan list. Errors are raised as MechanicAPIError subclasses and
rendered by the application's exception handler.
"""

import logging

from fastapi import APIRouter, Request

from app.config.settings import get_settings
from app.domain.plans import PlanSummary, PlansResponse, get_plan_catalog
from app.domain.subscription import (
    CheckoutResponse,
    CreateCheckoutRequest,
    PortalResponse,
    SubscriptionStatusResponse,
)
from app.infrastructure.exceptions import NotFoundError
from app.api.dependencies import (
    CheckoutServiceDep,
    CurrentUserDep,
    IdentityServiceDep,
    SubscriptionRepoDep,
)


logger = logging.getLogger(__name__)

router = APIRouter()


def _request_origin(request: Request) -> str:
    """Origin for redirect URLs: the caller's Origin header or FRONTEND_URL."""
    return request.headers.get("origin") or get_settings().frontend_url


# =============================================================================
# Subscription Status Endpoints
# =============================================================================

@router.get("/subscriptions/status", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    user: CurrentUserDep,
    repo: SubscriptionRepoDep,
):
    """
    Get the current user's subscription.

    Returns 404 when the user has no current subscription.
    """
    subscription = await repo.get_current_subscription(user.id)
    if subscription is None:
        raise NotFoundError("No subscription found", table="subscriptions")

    return SubscriptionStatusResponse.from_subscription(subscription)


@router.get("/subscriptions/plans", response_model=PlansResponse)
async def list_plans():
    """Public list of purchasable plans."""
    catalog = get_plan_catalog()
    return PlansResponse(
        plans=[PlanSummary.from_definition(plan) for plan in catalog.purchasable()]
    )


# =============================================================================
# Checkout & Portal
# =============================================================================

@router.post("/subscriptions/create-checkout", response_model=CheckoutResponse)
async def create_checkout_session(
    body: CreateCheckoutRequest,
    request: Request,
    user: CurrentUserDep,
    checkout: CheckoutServiceDep,
    identity: IdentityServiceDep,
):
    """
    Start a Stripe Checkout for the requested plan.

    Errors:
        400 INVALID_PLAN / ALREADY_SUBSCRIBED / TRIAL_LIMIT_EXCEEDED
        500 CHECKOUT_FAILED
    """
    email = user.email or await identity.get_user_email(user.id)

    return await checkout.start_checkout(
        user_id=user.id,
        email=email,
        plan_id=body.plan_id,
        origin=_request_origin(request),
    )


@router.post("/subscriptions/create-portal", response_model=PortalResponse)
async def create_portal_session(
    request: Request,
    user: CurrentUserDep,
    checkout: CheckoutServiceDep,
):
    """Open the Stripe Billing Portal; 404 if no customer is on file."""
    return await checkout.create_portal(user.id, _request_origin(request))
