"""
Billing Event Variants

Typed view over Stripe webhook events. Each handled event type gets its own
model; everything else becomes IgnoredEvent so new provider event types are
acknowledged without error.
"""

from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel


SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


class _BaseEvent(BaseModel):
    event_id: str
    event_type: str


class SubscriptionChanged(_BaseEvent):
    """customer.subscription.created / customer.subscription.updated"""
    subscription_id: str
    customer_id: Optional[str] = None
    status: Optional[str] = None
    plan_hint: Optional[str] = None
    user_hint: Optional[str] = None
    price_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False


class SubscriptionDeleted(_BaseEvent):
    subscription_id: Optional[str] = None


class InvoicePaymentSucceeded(_BaseEvent):
    subscription_id: Optional[str] = None
    amount_paid: int = 0


class InvoicePaymentFailed(_BaseEvent):
    subscription_id: Optional[str] = None
    amount_due: int = 0
    failure_message: Optional[str] = None


class IgnoredEvent(_BaseEvent):
    pass


BillingEvent = Union[
    SubscriptionChanged,
    SubscriptionDeleted,
    InvoicePaymentSucceeded,
    InvoicePaymentFailed,
    IgnoredEvent,
]


def parse_provider_timestamp(value: Any) -> Optional[datetime]:
    """
    Convert a Stripe epoch-seconds (or ISO string) timestamp to UTC datetime.

    Unparseable values return None instead of raising.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, tz=timezone.utc)
        if isinstance(value, str):
            text = value.strip()
            if text.isdigit():
                return datetime.fromtimestamp(int(text), tz=timezone.utc)
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            parsed = datetime.fromisoformat(text)
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed
    except (ValueError, OverflowError, OSError):
        return None
    return None


def _first_item(obj: Mapping) -> Mapping:
    try:
        return obj["items"]["data"][0] or {}
    except (KeyError, TypeError, IndexError):
        return {}


def _period_value(obj: Mapping, key: str) -> Any:
    """
    Read a period bound, handling Stripe API version differences.

    Newer API versions moved the period fields onto items.data[0].
    """
    if obj.get(key) is not None:
        return obj.get(key)
    return _first_item(obj).get(key)


def _invoice_subscription_id(invoice: Mapping) -> Optional[str]:
    subscription = invoice.get("subscription")
    if isinstance(subscription, Mapping):
        subscription = subscription.get("id")
    if subscription:
        return subscription

    # 2025+ API versions nest it under parent.subscription_details
    try:
        return invoice["parent"]["subscription_details"]["subscription"]
    except (KeyError, TypeError):
        return None


def _customer_id(obj: Mapping) -> Optional[str]:
    customer = obj.get("customer")
    if isinstance(customer, Mapping):
        return customer.get("id")
    return customer


def parse_billing_event(event: Mapping) -> BillingEvent:
    """Build the typed variant for a verified webhook event payload."""
    event_id = event.get("id") or ""
    event_type = event.get("type") or ""
    obj = (event.get("data") or {}).get("object") or {}

    if event_type in (SUBSCRIPTION_CREATED, SUBSCRIPTION_UPDATED):
        metadata = obj.get("metadata") or {}
        price = _first_item(obj).get("price") or {}
        return SubscriptionChanged(
            event_id=event_id,
            event_type=event_type,
            subscription_id=obj.get("id") or "",
            customer_id=_customer_id(obj),
            status=obj.get("status"),
            plan_hint=metadata.get("plan_id"),
            user_hint=metadata.get("user_id"),
            price_id=price.get("id") if isinstance(price, Mapping) else price,
            current_period_start=parse_provider_timestamp(
                _period_value(obj, "current_period_start")
            ),
            current_period_end=parse_provider_timestamp(
                _period_value(obj, "current_period_end")
            ),
            cancel_at_period_end=bool(obj.get("cancel_at_period_end") or False),
        )

    if event_type == SUBSCRIPTION_DELETED:
        return SubscriptionDeleted(
            event_id=event_id,
            event_type=event_type,
            subscription_id=obj.get("id"),
        )

    if event_type == INVOICE_PAYMENT_SUCCEEDED:
        return InvoicePaymentSucceeded(
            event_id=event_id,
            event_type=event_type,
            subscription_id=_invoice_subscription_id(obj),
            amount_paid=obj.get("amount_paid") or 0,
        )

    if event_type == INVOICE_PAYMENT_FAILED:
        last_error = obj.get("last_payment_error") or {}
        return InvoicePaymentFailed(
            event_id=event_id,
            event_type=event_type,
            subscription_id=_invoice_subscription_id(obj),
            amount_due=obj.get("amount_due") or 0,
            failure_message=last_error.get("message") if isinstance(last_error, Mapping) else None,
        )

    return IgnoredEvent(event_id=event_id, event_type=event_type)
