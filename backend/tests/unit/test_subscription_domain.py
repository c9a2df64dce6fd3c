"""
Unit tests for subscription status rules and error payloads.
"""

import pytest

from app.domain.subscription import (
    PlanId,
    Subscription,
    SubscriptionStatus,
    has_access,
    status_from_provider,
)
from app.infrastructure.exceptions import (
    AIServiceError,
    QuotaExceededError,
    SubscriptionRequiredError,
)


class TestAccessRule:

    @pytest.mark.parametrize(
        "status,allowed",
        [
            (SubscriptionStatus.PENDING, True),
            (SubscriptionStatus.INCOMPLETE, True),
            (SubscriptionStatus.TRIALING, True),
            (SubscriptionStatus.ACTIVE, True),
            (SubscriptionStatus.PAST_DUE, False),
            (SubscriptionStatus.CANCELED, False),
        ],
    )
    def test_has_access(self, status, allowed):
        sub = Subscription(user_id="u1", plan_id=PlanId.STARTER, status=status)
        assert has_access(sub) is allowed

    def test_no_subscription_has_no_access(self):
        assert has_access(None) is False


class TestStatusFromProvider:

    def test_known_statuses(self):
        assert status_from_provider("active") == SubscriptionStatus.ACTIVE
        assert status_from_provider("TRIALING") == SubscriptionStatus.TRIALING

    def test_aliases(self):
        assert status_from_provider("incomplete_expired") == SubscriptionStatus.CANCELED
        assert status_from_provider("unpaid") == SubscriptionStatus.PAST_DUE
        assert status_from_provider("paused") == SubscriptionStatus.PAST_DUE

    def test_unknown_and_missing(self):
        assert status_from_provider("mystery") is None
        assert status_from_provider(None) is None
        assert status_from_provider("") is None


class TestErrorPayloads:

    def test_subscription_required(self):
        body = SubscriptionRequiredError("past_due").to_dict()

        assert body["code"] == "SUBSCRIPTION_REQUIRED"
        assert body["needsSubscription"] is True
        assert body["details"] == {"status": "past_due"}

    def test_quota_exceeded(self):
        err = QuotaExceededError(limit=50, used=50)
        body = err.to_dict()

        assert err.status_code == 429
        assert body["quota"] == {"limit": 50, "used": 50, "remaining": 0}
        assert body["needsUpgrade"] is True

    def test_server_errors_hide_provider_detail(self):
        err = AIServiceError("upstream said: key sk-123 invalid", model="gemini")
        body = err.to_dict()

        assert err.status_code == 500
        assert "sk-123" not in body["message"]
        assert body["details"] == {}
