"""
Stripe Webhook Handler

Receives Stripe events and hands them to the WebhookReconciler. The body
is read as raw bytes: signature verification needs it exactly as sent.

Responses:
- 200 {"received": true} on success or duplicate delivery
- 400 on a bad signature (not retried by Stripe)
- 500 when handling fails (Stripe retries)
"""

import logging

from fastapi import APIRouter, Request

from app.api.dependencies import WebhookReconcilerDep


logger = logging.getLogger(__name__)

router = APIRouter()


async def _receive(request: Request, reconciler) -> dict:
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    duplicate = await reconciler.handle(payload, signature)
    if duplicate:
        return {"received": True, "duplicate": True}
    return {"received": True}


@router.post("/subscriptions/webhook")
async def subscription_webhook(request: Request, reconciler: WebhookReconcilerDep):
    """Stripe webhook endpoint."""
    return await _receive(request, reconciler)


@router.post("/webhooks/stripe", include_in_schema=False)
async def stripe_webhook(request: Request, reconciler: WebhookReconcilerDep):
    """Alias kept for webhook endpoints registered under the older path."""
    return await _receive(request, reconciler)
