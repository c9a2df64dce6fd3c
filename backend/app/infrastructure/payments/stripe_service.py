"""
Stripe Payment Service

Infrastructure service for Stripe payment processing.
Handles customers, checkout sessions, the billing portal and webhook
signature verification. The Stripe SDK is synchronous, so every network
call runs in a worker thread.
"""

import asyncio
import json
import logging
from functools import lru_cache
from typing import Any, Optional

import stripe

from app.config.settings import get_settings
from app.infrastructure.exceptions import PaymentProviderError


logger = logging.getLogger(__name__)

# Customer metadata key holding our user ID; the webhook reconciler reads it back.
USER_ID_METADATA_KEY = "supabase_user_id"


class StripeServiceError(PaymentProviderError):
    """Raised when a Stripe API call fails."""
    pass


class WebhookSignatureError(Exception):
    """Raised when a webhook payload or signature does not verify."""
    pass


class StripeService:
    """
    Stripe payment processing service.

    All methods are stateless; IDs and URLs are passed in by the caller.
    """

    def __init__(self):
        """Initialize Stripe with API key from settings."""
        settings = get_settings()
        self._api_key = settings.stripe_secret_key
        self._webhook_secret = settings.stripe_webhook_secret

        if self._api_key:
            stripe.api_key = self._api_key

    # =========================================================================
    # Customer Management
    # =========================================================================

    async def create_customer(self, user_id: str, email: Optional[str]) -> str:
        """
        Create a Stripe customer tagged with our user ID.

        Returns:
            The new Stripe customer ID
        """
        try:
            customer = await asyncio.to_thread(
                stripe.Customer.create,
                email=email,
                metadata={USER_ID_METADATA_KEY: user_id},
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to create Stripe customer for user {user_id}: {e}")
            raise StripeServiceError(
                "Failed to create customer",
                original_error=e,
            ) from e

        logger.info(f"Created Stripe customer {customer.id} for user {user_id}")
        return customer.id

    async def get_customer_user_id(self, customer_id: str) -> Optional[str]:
        """
        Resolve our user ID from a customer's metadata.

        Returns None for deleted customers or customers without the tag.
        """
        customer = await asyncio.to_thread(stripe.Customer.retrieve, customer_id)
        if getattr(customer, "deleted", False):
            logger.warning(f"Stripe customer {customer_id} is deleted")
            return None

        metadata = getattr(customer, "metadata", None)
        if not metadata:
            return None

        # Customers created before the rename carry "user_id"
        for key in (USER_ID_METADATA_KEY, "user_id"):
            try:
                value = metadata[key]
            except KeyError:
                continue
            if value:
                return value
        return None

    # =========================================================================
    # Checkout & Portal
    # =========================================================================

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        user_id: str,
        plan_id: str,
        success_url: str,
        cancel_url: str,
    ) -> Any:
        """
        Create a hosted Checkout Session in subscription mode.

        The plan ID is stamped on both the session and the subscription
        metadata so subscription webhooks can resolve the plan directly.

        Returns:
            stripe.checkout.Session with `id` and `url`
        """
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                customer=customer_id,
                payment_method_types=["card"],
                line_items=[{"price": price_id, "quantity": 1}],
                mode="subscription",
                success_url=success_url,
                cancel_url=cancel_url,
                metadata={"user_id": user_id, "plan_id": plan_id},
                subscription_data={
                    "metadata": {"user_id": user_id, "plan_id": plan_id},
                },
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to create checkout session for user {user_id}: {e}")
            raise StripeServiceError(
                "Failed to create checkout session",
                original_error=e,
            ) from e

        logger.info(f"Created checkout session {session.id} for user {user_id}, plan={plan_id}")
        return session

    async def create_portal_session(self, customer_id: str, return_url: str) -> Any:
        """
        Create a Billing Portal session for self-service management.

        Returns:
            stripe.billing_portal.Session with portal `url`
        """
        try:
            session = await asyncio.to_thread(
                stripe.billing_portal.Session.create,
                customer=customer_id,
                return_url=return_url,
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to create portal session for {customer_id}: {e}")
            raise StripeServiceError(
                "Failed to create portal session",
                original_error=e,
            ) from e

        logger.info(f"Created portal session for customer {customer_id}")
        return session

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> dict:
        """
        Verify the Stripe-Signature header against the raw body.

        Args:
            payload: Raw request body, exactly as received
            signature: Stripe-Signature header

        Returns:
            The event as a plain dict

        Raises:
            WebhookSignatureError: missing secret/header, bad payload or signature
        """
        if not self._webhook_secret:
            raise WebhookSignatureError("Webhook secret is not configured")
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header")

        try:
            stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except ValueError as e:
            raise WebhookSignatureError(f"Invalid payload: {e}") from e
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(f"Invalid signature: {e}") from e

        return json.loads(payload)


@lru_cache
def get_stripe_service() -> StripeService:
    """Get cached Stripe service instance."""
    return StripeService()
