"""
Integration tests for the API endpoints.

Tests the full request/response cycle: health, plans, and the subscription
lifecycle from checkout through webhooks to the chat access gate.
"""

import json

from fastapi.testclient import TestClient

from app.domain.subscription import SubscriptionStatus
from app.infrastructure.db.repositories.subscription_repository import SubscriptionRepository
from app.infrastructure.payments.stripe_service import StripeServiceError


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_root_endpoint(self, client: TestClient):
        """Root endpoint should return welcome message."""
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert "message" in data

    def test_health_endpoint(self, client: TestClient):
        """Health endpoint should return healthy status."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"

    def test_api_health_endpoint(self, client: TestClient):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestPlanEndpoints:
    """Tests for the public plan list."""

    def test_lists_purchasable_plans(self, client: TestClient):
        response = client.get("/api/subscriptions/plans")
        assert response.status_code == 200

        plans = {p["plan_id"]: p for p in response.json()["plans"]}
        assert set(plans) == {"trial", "basic", "starter", "professional", "unlimited"}
        assert plans["starter"]["message_limit"] == 50
        assert plans["unlimited"]["message_limit"] == -1
        assert plans["starter"]["currency"] == "GBP"


class TestCheckoutEndpoints:
    """Tests for checkout and portal creation."""

    async def test_checkout_returns_url(self, api, async_client, auth_headers, fake_stripe):
        response = await async_client.post(
            "/api/subscriptions/create-checkout",
            json={"planId": "professional"},
            headers={**auth_headers, "Origin": "https://app.mymechanic.test"},
        )

        assert response.status_code == 200
        assert response.json() == {
            "checkoutUrl": "https://checkout.stripe.test/cs_test_1",
            "sessionId": "cs_test_1",
        }
        kwargs = fake_stripe.create_checkout_session.await_args.kwargs
        assert kwargs["success_url"] == "https://app.mymechanic.test/loading.html?success=true"

    async def test_checkout_uses_token_email(self, api, async_client, auth_headers, fake_stripe, identity, mock_user_id):
        await async_client.post(
            "/api/subscriptions/create-checkout",
            json={"planId": "starter"},
            headers=auth_headers,
        )

        fake_stripe.create_customer.assert_awaited_once_with(mock_user_id, "driver@example.co.uk")
        identity.get_user_email.assert_not_called()

    async def test_checkout_looks_up_missing_email(
        self, api, async_client, token_factory, fake_stripe, identity, mock_user_id
    ):
        identity.get_user_email.return_value = "lookup@example.co.uk"
        headers = {"Authorization": f"Bearer {token_factory(email=None)}"}

        await async_client.post(
            "/api/subscriptions/create-checkout",
            json={"planId": "starter"},
            headers=headers,
        )

        identity.get_user_email.assert_awaited_once_with(mock_user_id)
        fake_stripe.create_customer.assert_awaited_once_with(mock_user_id, "lookup@example.co.uk")

    async def test_checkout_invalid_plan(self, api, async_client, auth_headers):
        response = await async_client.post(
            "/api/subscriptions/create-checkout",
            json={"planId": "platinum"},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_PLAN"

    async def test_checkout_missing_plan(self, api, async_client, auth_headers):
        response = await async_client.post(
            "/api/subscriptions/create-checkout",
            json={},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_PLAN"

    async def test_checkout_provider_failure_hides_detail(self, api, async_client, auth_headers, fake_stripe):
        fake_stripe.create_checkout_session.side_effect = StripeServiceError("No such price: price_x")

        response = await async_client.post(
            "/api/subscriptions/create-checkout",
            json={"planId": "starter"},
            headers=auth_headers,
        )

        assert response.status_code == 500
        assert response.json()["message"] == "Error creating checkout session"
        assert "price_x" not in response.text

    async def test_portal_without_customer(self, api, async_client, auth_headers):
        response = await async_client.post("/api/subscriptions/create-portal", headers=auth_headers)
        assert response.status_code == 404

    async def test_portal_after_checkout(self, api, async_client, auth_headers):
        await async_client.post(
            "/api/subscriptions/create-checkout",
            json={"planId": "starter"},
            headers=auth_headers,
        )

        response = await async_client.post("/api/subscriptions/create-portal", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"portalUrl": "https://billing.stripe.test/session"}


class TestSubscriptionLifecycle:
    """Checkout, webhook activation, payment failure and the access gate end to end."""

    async def _deliver(self, client, event: dict, sign) -> dict:
        body = json.dumps(event).encode()
        response = await client.post(
            "/api/subscriptions/webhook",
            content=body,
            headers={"stripe-signature": sign(body)},
        )
        assert response.status_code == 200
        return response.json()

    async def test_full_lifecycle(
        self,
        api,
        async_client,
        auth_headers,
        mock_user_id,
        subscription_event,
        invoice_event,
        stripe_signature,
    ):
        # 1. No subscription yet
        response = await async_client.get("/api/subscriptions/status", headers=auth_headers)
        assert response.status_code == 404

        # 2. Checkout leaves a pending row
        response = await async_client.post(
            "/api/subscriptions/create-checkout",
            json={"planId": "starter"},
            headers=auth_headers,
        )
        assert response.status_code == 200

        response = await async_client.get("/api/subscriptions/status", headers=auth_headers)
        assert response.json()["subscription"]["status"] == "pending"

        # 3. Stripe confirms the subscription
        result = await self._deliver(async_client, subscription_event(), stripe_signature)
        assert result == {"received": True}

        response = await async_client.get("/api/subscriptions/status", headers=auth_headers)
        subscription = response.json()["subscription"]
        assert subscription["status"] == "active"
        assert subscription["plan_id"] == "starter"
        assert subscription["current_period_start"].startswith("2026-01-01T00:00:00")
        assert subscription["current_period_end"].startswith("2026-02-01T00:00:00")

        # 4. A second checkout is refused while active
        response = await async_client.post(
            "/api/subscriptions/create-checkout",
            json={"planId": "professional"},
            headers=auth_headers,
        )
        assert response.status_code == 400
        assert response.json()["code"] == "ALREADY_SUBSCRIBED"

        # 5. Duplicate delivery changes nothing
        before = await SubscriptionRepository().list_for_user(mock_user_id)
        result = await self._deliver(async_client, subscription_event(), stripe_signature)
        assert result == {"received": True, "duplicate": True}
        assert await SubscriptionRepository().list_for_user(mock_user_id) == before

        # 6. Chat works while active
        response = await async_client.post(
            "/api/chat",
            json={"message": "Why do my brakes squeal?"},
            headers=auth_headers,
        )
        assert response.status_code == 200

        # 7. Failed payment closes the gate
        await self._deliver(
            async_client,
            invoice_event(event_type="invoice.payment_failed"),
            stripe_signature,
        )
        rows = await SubscriptionRepository().list_for_user(mock_user_id)
        assert [r.status for r in rows] == [SubscriptionStatus.PAST_DUE]

        response = await async_client.get("/api/subscriptions/status", headers=auth_headers)
        assert response.status_code == 404

        response = await async_client.post(
            "/api/chat",
            json={"message": "Still squealing"},
            headers=auth_headers,
        )
        assert response.status_code == 403
        body = response.json()
        assert body["needsSubscription"] is True
        assert body["details"] == {"status": "past_due"}

        # 8. Payment recovers and access returns
        await self._deliver(
            async_client,
            invoice_event(event_id="evt_inv_2"),
            stripe_signature,
        )
        response = await async_client.post(
            "/api/chat",
            json={"message": "Fixed now?"},
            headers=auth_headers,
        )
        assert response.status_code == 200

        # 9. Cancellation closes it for good
        await self._deliver(
            async_client,
            subscription_event(
                event_id="evt_sub_del",
                event_type="customer.subscription.deleted",
                status="canceled",
            ),
            stripe_signature,
        )
        response = await async_client.post(
            "/api/chat",
            json={"message": "Hello?"},
            headers=auth_headers,
        )
        assert response.status_code == 403
        assert response.json()["details"] == {}
