"""
Payments Infrastructure Module

Stripe customers, checkout, billing portal and webhook verification.
"""

from app.infrastructure.payments.stripe_service import (
    StripeService,
    StripeServiceError,
    WebhookSignatureError,
    get_stripe_service,
)

__all__ = [
    "StripeService",
    "StripeServiceError",
    "WebhookSignatureError",
    "get_stripe_service",
]
