"""
Checkout Service

Starts a subscription purchase: validates the plan and the user's billing
history, makes sure a Stripe customer and a backing pending row exist, then
opens a hosted Checkout Session. Also opens Billing Portal sessions.
"""

import logging
from typing import Optional

from app.config.settings import get_settings
from app.domain.plans import PlanCatalog, get_plan_catalog
from app.domain.subscription import (
    CHECKOUT_BLOCKING_STATUSES,
    CheckoutResponse,
    PlanId,
    PortalResponse,
)
from app.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
    get_subscription_repository,
)
from app.infrastructure.exceptions import (
    AlreadySubscribedError,
    CheckoutCreationFailedError,
    InvalidPlanError,
    NotFoundError,
    TrialLimitExceededError,
)
from app.infrastructure.payments.stripe_service import (
    StripeService,
    StripeServiceError,
    get_stripe_service,
)
from app.infrastructure.services.audit_logger import AuditLogger, get_audit_logger


logger = logging.getLogger(__name__)

SUCCESS_PATH = "/loading.html?success=true"
CANCEL_PATH = "/pricing.html?canceled=true"
PORTAL_RETURN_PATH = "/dashboard.html"


class CheckoutService:
    """Checkout and billing-portal orchestration."""

    def __init__(
        self,
        subscription_repo: SubscriptionRepository,
        stripe_service: StripeService,
        catalog: PlanCatalog,
        audit: AuditLogger,
        trial_max_uses: int = 2,
    ):
        self._subscription_repo = subscription_repo
        self._stripe = stripe_service
        self._catalog = catalog
        self._audit = audit
        self._trial_max_uses = trial_max_uses

    async def start_checkout(
        self,
        user_id: str,
        email: Optional[str],
        plan_id: Optional[str],
        origin: str,
    ) -> CheckoutResponse:
        """
        Create a Checkout Session for the requested plan.

        Raises:
            InvalidPlanError: plan unknown or without a configured price
            AlreadySubscribedError: user already has an active or trialing subscription
            TrialLimitExceededError: trial bought too many times
            PersistenceError: the pending row could not be written
            CheckoutCreationFailedError: Stripe rejected the customer or session
        """
        plan = self._catalog.get(plan_id) if plan_id else None
        if plan is None or not plan.price_id:
            raise InvalidPlanError(plan_id)

        current = await self._subscription_repo.get_current_subscription(user_id)
        if current is not None and current.status in CHECKOUT_BLOCKING_STATUSES:
            raise AlreadySubscribedError(current.status.value)

        if plan.plan_id == PlanId.TRIAL:
            used = await self._subscription_repo.count_by_plan(user_id, PlanId.TRIAL)
            if used >= self._trial_max_uses:
                raise TrialLimitExceededError(used, self._trial_max_uses)

        customer_id = await self._ensure_customer(user_id, email, plan.plan_id)

        try:
            session = await self._stripe.create_checkout_session(
                customer_id=customer_id,
                price_id=plan.price_id,
                user_id=user_id,
                plan_id=plan.plan_id.value,
                success_url=f"{origin}{SUCCESS_PATH}",
                cancel_url=f"{origin}{CANCEL_PATH}",
            )
        except StripeServiceError as e:
            self._audit.log_payment(
                "checkout_failed",
                user_id=user_id,
                success=False,
                message=str(e),
                metadata={"plan_id": plan.plan_id.value},
            )
            raise CheckoutCreationFailedError(original_error=e) from e

        self._audit.log_payment(
            "checkout_created",
            user_id=user_id,
            message=f"Checkout session created for {plan.plan_id.value}",
            metadata={"plan_id": plan.plan_id.value, "session_id": session.id},
        )
        return CheckoutResponse(checkout_url=session.url, session_id=session.id)

    async def _ensure_customer(self, user_id: str, email: Optional[str], plan_id: PlanId) -> str:
        """Reuse the customer of the latest non-canceled row, or create one plus a pending row."""
        existing = await self._subscription_repo.get_latest_open(user_id)
        if existing is not None and existing.stripe_customer_id:
            logger.info(
                f"Reusing Stripe customer {existing.stripe_customer_id} for user {user_id}"
            )
            return existing.stripe_customer_id

        try:
            customer_id = await self._stripe.create_customer(user_id, email)
        except StripeServiceError as e:
            self._audit.log_payment(
                "checkout_failed",
                user_id=user_id,
                success=False,
                message=str(e),
                metadata={"plan_id": plan_id.value, "step": "create_customer"},
            )
            raise CheckoutCreationFailedError(original_error=e) from e

        await self._subscription_repo.create_pending(user_id, customer_id, plan_id)
        return customer_id

    async def create_portal(self, user_id: str, origin: str) -> PortalResponse:
        """
        Open the Stripe Billing Portal for the user's customer.

        Raises:
            NotFoundError: no Stripe customer on file
        """
        subscription = await self._subscription_repo.get_latest_with_customer(user_id)
        if subscription is None:
            raise NotFoundError("No subscription found", table="subscriptions")

        try:
            session = await self._stripe.create_portal_session(
                customer_id=subscription.stripe_customer_id,
                return_url=f"{origin}{PORTAL_RETURN_PATH}",
            )
        except StripeServiceError as e:
            self._audit.log_payment(
                "portal_failed",
                user_id=user_id,
                success=False,
                message=str(e),
            )
            raise

        self._audit.log_payment("portal_created", user_id=user_id, message="Portal session created")
        return PortalResponse(portal_url=session.url)


def get_checkout_service() -> CheckoutService:
    """Build the checkout service from shared singletons."""
    return CheckoutService(
        subscription_repo=get_subscription_repository(),
        stripe_service=get_stripe_service(),
        catalog=get_plan_catalog(),
        audit=get_audit_logger(),
        trial_max_uses=get_settings().trial_plan_max_uses,
    )
