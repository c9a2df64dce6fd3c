"""
Unit tests for StripeService.

The Stripe SDK is patched at its module-level entry points; signature
verification runs for real against the test webhook secret.
"""

import json
import time
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from app.infrastructure.payments.stripe_service import (
    USER_ID_METADATA_KEY,
    StripeService,
    StripeServiceError,
    WebhookSignatureError,
)


@pytest.fixture
def service() -> StripeService:
    return StripeService()


class TestVerifyWebhookSignature:

    def test_valid_signature_returns_plain_dict(self, service, stripe_signature):
        body = json.dumps({"id": "evt_1", "type": "invoice.paid", "data": {"object": {}}}).encode()

        event = service.verify_webhook_signature(body, stripe_signature(body))

        assert isinstance(event, dict)
        assert event["id"] == "evt_1"

    def test_missing_header(self, service):
        with pytest.raises(WebhookSignatureError, match="Missing"):
            service.verify_webhook_signature(b"{}", None)

    def test_wrong_secret(self, service, stripe_signature):
        body = b'{"id": "evt_1"}'
        with pytest.raises(WebhookSignatureError, match="Invalid signature"):
            service.verify_webhook_signature(body, stripe_signature(body, secret="whsec_other"))

    def test_stale_timestamp(self, service, stripe_signature):
        body = b'{"id": "evt_1"}'
        old = int(time.time()) - 3600
        with pytest.raises(WebhookSignatureError):
            service.verify_webhook_signature(body, stripe_signature(body, timestamp=old))

    def test_missing_secret(self, stripe_signature):
        service = StripeService()
        service._webhook_secret = None
        body = b'{"id": "evt_1"}'

        with pytest.raises(WebhookSignatureError, match="not configured"):
            service.verify_webhook_signature(body, stripe_signature(body))


class TestCustomers:

    async def test_create_customer_tags_user(self, service):
        with patch.object(stripe.Customer, "create", return_value=SimpleNamespace(id="cus_new")) as create:
            customer_id = await service.create_customer("user-1", "driver@example.co.uk")

        assert customer_id == "cus_new"
        create.assert_called_once_with(
            email="driver@example.co.uk",
            metadata={USER_ID_METADATA_KEY: "user-1"},
        )

    async def test_create_customer_failure(self, service):
        with patch.object(stripe.Customer, "create", side_effect=stripe.APIConnectionError("down")):
            with pytest.raises(StripeServiceError):
                await service.create_customer("user-1", None)

    @pytest.mark.parametrize(
        "metadata,expected",
        [
            ({USER_ID_METADATA_KEY: "user-1"}, "user-1"),
            ({"user_id": "user-legacy"}, "user-legacy"),
            ({}, None),
            (None, None),
        ],
    )
    async def test_customer_user_id(self, service, metadata, expected):
        customer = SimpleNamespace(id="cus_1", metadata=metadata)
        with patch.object(stripe.Customer, "retrieve", return_value=customer):
            assert await service.get_customer_user_id("cus_1") == expected

    async def test_deleted_customer(self, service):
        customer = SimpleNamespace(id="cus_1", deleted=True)
        with patch.object(stripe.Customer, "retrieve", return_value=customer):
            assert await service.get_customer_user_id("cus_1") is None


class TestSessions:

    async def test_checkout_session_metadata(self, service):
        session = SimpleNamespace(id="cs_1", url="https://checkout.stripe.test/cs_1")
        with patch.object(stripe.checkout.Session, "create", return_value=session) as create:
            result = await service.create_checkout_session(
                customer_id="cus_1",
                price_id="price_starter",
                user_id="user-1",
                plan_id="starter",
                success_url="https://app.test/ok",
                cancel_url="https://app.test/cancel",
            )

        assert result is session
        kwargs = create.call_args.kwargs
        assert kwargs["mode"] == "subscription"
        assert kwargs["line_items"] == [{"price": "price_starter", "quantity": 1}]
        assert kwargs["subscription_data"]["metadata"] == {"user_id": "user-1", "plan_id": "starter"}

    async def test_portal_failure(self, service):
        with patch.object(
            stripe.billing_portal.Session,
            "create",
            side_effect=stripe.InvalidRequestError("No such customer", param="customer"),
        ):
            with pytest.raises(StripeServiceError):
                await service.create_portal_session("cus_gone", "https://app.test/dashboard.html")
