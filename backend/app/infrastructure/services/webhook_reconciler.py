"""
Webhook Reconciler

Applies Stripe billing events to the subscriptions table.

Protocol for each delivery:
  1. verify the signature (bad signature: 400, nothing recorded)
  2. skip events the ledger already marks processed
  3. apply the event's transition
  4. record the outcome in the ledger (a failed write is only logged)
  5. if step 3 raised, record "failed" and answer 500 so Stripe retries

Every transition is idempotent at the state level, so a duplicate that
slips past the ledger check re-applies to the same end state.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from app.domain.billing_events import (
    BillingEvent,
    IgnoredEvent,
    InvoicePaymentFailed,
    InvoicePaymentSucceeded,
    SubscriptionChanged,
    SubscriptionDeleted,
    parse_billing_event,
)
from app.domain.plans import PlanCatalog, get_plan_catalog
from app.domain.subscription import (
    PlanId,
    SubscriptionFields,
    SubscriptionStatus,
    status_from_provider,
)
from app.infrastructure.db.models.webhook_event import WebhookEventStatus
from app.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
    get_subscription_repository,
)
from app.infrastructure.db.repositories.webhook_event_repository import (
    WebhookEventRepository,
    get_webhook_event_repository,
)
from app.infrastructure.exceptions import (
    InvalidWebhookSignatureError,
    WebhookProcessingError,
)
from app.infrastructure.payments.stripe_service import (
    StripeService,
    WebhookSignatureError,
    get_stripe_service,
)
from app.infrastructure.services.audit_logger import AuditLogger, get_audit_logger


logger = logging.getLogger(__name__)


class WebhookReconciler:
    """State machine from Stripe events to subscription rows."""

    def __init__(
        self,
        subscription_repo: SubscriptionRepository,
        ledger: WebhookEventRepository,
        stripe_service: StripeService,
        catalog: PlanCatalog,
        audit: AuditLogger,
    ):
        self._subscription_repo = subscription_repo
        self._ledger = ledger
        self._stripe = stripe_service
        self._catalog = catalog
        self._audit = audit

        self._handlers: Dict[type, Callable[[Any], Awaitable[None]]] = {
            SubscriptionChanged: self._on_subscription_changed,
            SubscriptionDeleted: self._on_subscription_deleted,
            InvoicePaymentSucceeded: self._on_payment_succeeded,
            InvoicePaymentFailed: self._on_payment_failed,
            IgnoredEvent: self._on_ignored,
        }

    # =========================================================================
    # Entry point
    # =========================================================================

    async def handle(self, payload: bytes, signature: Optional[str]) -> bool:
        """
        Process one webhook delivery.

        Returns:
            True if the event had already been processed (duplicate)

        Raises:
            InvalidWebhookSignatureError: signature or payload did not verify
            WebhookProcessingError: the transition failed; Stripe should retry
        """
        try:
            raw_event = self._stripe.verify_webhook_signature(payload, signature)
        except WebhookSignatureError as e:
            logger.warning(f"Rejected webhook: {e}")
            raise InvalidWebhookSignatureError(original_error=e) from e

        event_id = raw_event.get("id") or ""
        event_type = raw_event.get("type") or ""

        if await self._already_processed(event_id):
            logger.info(f"Duplicate webhook {event_id} ({event_type}), skipping")
            return True

        try:
            await self.apply(parse_billing_event(raw_event))
        except Exception as e:
            logger.error(f"Webhook {event_id} ({event_type}) failed: {e}")
            await self._record(event_id, event_type, raw_event, WebhookEventStatus.FAILED)
            self._audit.log_error(
                "webhook_failed",
                message=str(e),
                metadata={"event_id": event_id, "event_type": event_type},
            )
            raise WebhookProcessingError(
                "Webhook handler failed",
                details={"event_id": event_id},
                original_error=e,
            ) from e

        await self._record(event_id, event_type, raw_event, WebhookEventStatus.PROCESSED)
        return False

    async def apply(self, event: BillingEvent) -> None:
        """Run the transition for one typed event."""
        handler = self._handlers[type(event)]
        await handler(event)

    async def _already_processed(self, event_id: str) -> bool:
        # An unreadable ledger means "unknown": process anyway.
        try:
            return await self._ledger.has_been_processed(event_id)
        except Exception as e:
            logger.warning(f"Ledger lookup failed for {event_id}, processing anyway: {e}")
            return False

    async def _record(
        self,
        event_id: str,
        event_type: str,
        raw_event: dict,
        status: WebhookEventStatus,
    ) -> None:
        try:
            await self._ledger.record_outcome(
                event_id,
                event_type,
                raw_event,
                status,
            )
        except Exception as e:
            logger.error(f"Failed to record webhook {event_id} as {status.value}: {e}")

    # =========================================================================
    # Transitions
    # =========================================================================

    def resolve_plan(self, event: SubscriptionChanged) -> PlanId:
        """Plan from metadata, then from the line-item price, then the default."""
        plan = self._catalog.get(event.plan_hint) if event.plan_hint else None
        if plan is not None:
            return plan.plan_id

        by_price = self._catalog.plan_for_price(event.price_id)
        if by_price is not None:
            return by_price

        logger.warning(
            f"Could not resolve plan for subscription {event.subscription_id} "
            f"(price {event.price_id}), using {self._catalog.default_plan_id.value}"
        )
        return self._catalog.default_plan_id

    async def _on_subscription_changed(self, event: SubscriptionChanged) -> None:
        if not event.customer_id:
            logger.error(f"Subscription event {event.event_id} has no customer")
            return

        user_id = await self._stripe.get_customer_user_id(event.customer_id)
        if not user_id:
            user_id = event.user_hint
        if not user_id:
            logger.error(f"No user ID in metadata for customer {event.customer_id}")
            return

        status = status_from_provider(event.status)
        if event.status and status is None:
            logger.warning(f"Unknown subscription status '{event.status}', leaving status unchanged")

        fields = SubscriptionFields(
            stripe_subscription_id=event.subscription_id or None,
            plan_id=self.resolve_plan(event),
            status=status,
            current_period_start=event.current_period_start,
            current_period_end=event.current_period_end,
            cancel_at_period_end=event.cancel_at_period_end,
        )
        subscription = await self._subscription_repo.upsert_from_provider_event(
            user_id,
            event.customer_id,
            fields,
        )

        logger.info(
            f"Subscription {event.subscription_id} for user {user_id} "
            f"is now {subscription.status.value} ({subscription.plan_id.value})"
        )
        self._audit.log_subscription(
            "subscription_updated",
            user_id=user_id,
            message=f"Subscription {subscription.status.value}",
            metadata={
                "event_type": event.event_type,
                "subscription_id": event.subscription_id,
                "plan_id": subscription.plan_id.value,
                "status": subscription.status.value,
            },
        )

    async def _set_status(
        self,
        event: BillingEvent,
        subscription_id: Optional[str],
        status: SubscriptionStatus,
    ) -> int:
        if not subscription_id:
            logger.warning(f"{event.event_type} {event.event_id} has no subscription ID")
            return 0

        updated = await self._subscription_repo.mark_status(subscription_id, status)
        if updated == 0:
            logger.warning(
                f"{event.event_type}: no subscription row for {subscription_id} "
                f"(unknown or already canceled)"
            )
        else:
            logger.info(f"Subscription {subscription_id} marked {status.value}")
        return updated

    async def _on_subscription_deleted(self, event: SubscriptionDeleted) -> None:
        if await self._set_status(event, event.subscription_id, SubscriptionStatus.CANCELED):
            self._audit.log_subscription(
                "subscription_deleted",
                message="Subscription canceled",
                metadata={"subscription_id": event.subscription_id},
            )

    async def _on_payment_succeeded(self, event: InvoicePaymentSucceeded) -> None:
        if await self._set_status(event, event.subscription_id, SubscriptionStatus.ACTIVE):
            self._audit.log_payment(
                "payment_succeeded",
                message="Invoice paid",
                metadata={
                    "subscription_id": event.subscription_id,
                    "amount_paid": event.amount_paid,
                },
            )

    async def _on_payment_failed(self, event: InvoicePaymentFailed) -> None:
        if await self._set_status(event, event.subscription_id, SubscriptionStatus.PAST_DUE):
            self._audit.log_payment(
                "payment_failed",
                success=False,
                message=event.failure_message or "Invoice payment failed",
                metadata={
                    "subscription_id": event.subscription_id,
                    "amount_due": event.amount_due,
                },
            )

    async def _on_ignored(self, event: IgnoredEvent) -> None:
        logger.debug(f"Ignoring webhook event type {event.event_type}")


def get_webhook_reconciler() -> WebhookReconciler:
    """Build the reconciler from shared singletons."""
    return WebhookReconciler(
        subscription_repo=get_subscription_repository(),
        ledger=get_webhook_event_repository(),
        stripe_service=get_stripe_service(),
        catalog=get_plan_catalog(),
        audit=get_audit_logger(),
    )
