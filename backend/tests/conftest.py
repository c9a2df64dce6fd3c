"""
Test configuration and fixtures for My Mechanic API.

Provides shared fixtures for unit and integration tests: the app and its
clients, an in-memory SQLite database, signed tokens and Stripe fakes.
"""

import hashlib
import hmac
import json
import os
import time
from types import SimpleNamespace
from typing import AsyncGenerator, Optional
from unittest.mock import AsyncMock, MagicMock, patch

# Settings are read at import time, so the environment comes first.
os.environ.setdefault("SUPABASE_URL", "https://testproject.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "service-role-test-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret-with-enough-length-1234")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("STRIPE_PRICE_TRIAL", "price_trial")
os.environ.setdefault("STRIPE_PRICE_BASIC", "price_basic")
os.environ.setdefault("STRIPE_PRICE_STARTER", "price_starter")
os.environ.setdefault("STRIPE_PRICE_PROFESSIONAL", "price_professional")
os.environ.setdefault("STRIPE_PRICE_UNLIMITED", "price_unlimited")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("GOOGLE_API_KEY", "test-google-key")

import jwt
import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from app.config.settings import get_settings
from app.domain.chat import AssistantReply
from app.domain.plans import PlanCatalog
from app.infrastructure.ai.gemini_service import get_gemini_service
from app.infrastructure.db.database import get_db_manager
from app.infrastructure.db.repositories.message_usage_repository import MessageUsageRepository
from app.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
    get_subscription_repository,
)
from app.infrastructure.db.repositories.webhook_event_repository import WebhookEventRepository
from app.infrastructure.payments.stripe_service import StripeService
from app.infrastructure.services.audit_logger import AuditLogger, get_audit_logger
from app.infrastructure.services.checkout_service import CheckoutService, get_checkout_service
from app.infrastructure.services.identity_service import get_identity_service
from app.infrastructure.services.quota_service import QuotaService, get_quota_service
from app.infrastructure.services.webhook_reconciler import WebhookReconciler, get_webhook_reconciler


TEST_USER_ID = "11111111-2222-3333-4444-555555555555"
TEST_USER_EMAIL = "driver@example.co.uk"
WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]


# =============================================================================
# App Fixtures
# =============================================================================

@pytest.fixture
def app():
    """Get the FastAPI application (dependency overrides reset afterwards)."""
    from app.main import app
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Get synchronous test client."""
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Get async test client (same event loop as the database fixture)."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture(autouse=True)
def no_jwks():
    """Tokens are verified with the HS256 secret; never fetch JWKS in tests."""
    with patch(
        "app.api.dependencies._decode_with_jwks",
        side_effect=jwt.InvalidTokenError("JWKS disabled in tests"),
    ):
        yield


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
async def db():
    """Fresh in-memory SQLite database with all tables."""
    manager = get_db_manager()
    manager.configure("sqlite+aiosqlite:///:memory:")
    await manager.create_tables()
    yield manager
    await manager.close()


# =============================================================================
# Auth
# =============================================================================

def make_token(
    user_id: str = TEST_USER_ID,
    email: Optional[str] = TEST_USER_EMAIL,
    expires_in: int = 3600,
) -> str:
    settings = get_settings()
    payload = {
        "sub": user_id,
        "aud": "authenticated",
        "iss": f"{settings.supabase_url}/auth/v1",
        "exp": int(time.time()) + expires_in,
    }
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.supabase_jwt_secret, algorithm="HS256")


@pytest.fixture
def mock_user_id() -> str:
    return TEST_USER_ID


@pytest.fixture
def auth_headers() -> dict:
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def token_factory():
    return make_token


# =============================================================================
# Domain / service fakes
# =============================================================================

@pytest.fixture
def catalog() -> PlanCatalog:
    return PlanCatalog.from_settings(get_settings())


@pytest.fixture
def audit() -> AuditLogger:
    """Audit logger that is never started; records stay queued for inspection."""
    return AuditLogger(max_queue_size=100, batch_size=10, flush_interval=60)


@pytest.fixture
def fake_stripe():
    """Stripe service double with the real service's async surface."""
    mock = MagicMock()
    mock.create_customer = AsyncMock(return_value="cus_test_1")
    mock.get_customer_user_id = AsyncMock(return_value=TEST_USER_ID)
    mock.create_checkout_session = AsyncMock(
        return_value=SimpleNamespace(id="cs_test_1", url="https://checkout.stripe.test/cs_test_1")
    )
    mock.create_portal_session = AsyncMock(
        return_value=SimpleNamespace(url="https://billing.stripe.test/session")
    )
    mock.verify_webhook_signature = MagicMock(
        side_effect=lambda payload, signature: json.loads(payload)
    )
    return mock


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header for a payload."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def stripe_signature():
    return sign_payload


# =============================================================================
# Sample Events
# =============================================================================

@pytest.fixture
def subscription_event():
    """Factory for customer.subscription.* event payloads."""

    def build(
        event_id: str = "evt_sub_1",
        event_type: str = "customer.subscription.updated",
        status: str = "active",
        subscription_id: str = "sub_test_1",
        customer_id: str = "cus_test_1",
        plan_id: Optional[str] = "starter",
        price_id: str = "price_starter",
        period_start=1767225600,  # 2026-01-01T00:00:00Z
        period_end=1769904000,  # 2026-02-01T00:00:00Z
        cancel_at_period_end: bool = False,
    ) -> dict:
        metadata = {"user_id": TEST_USER_ID}
        if plan_id:
            metadata["plan_id"] = plan_id
        return {
            "id": event_id,
            "type": event_type,
            "data": {
                "object": {
                    "id": subscription_id,
                    "object": "subscription",
                    "customer": customer_id,
                    "status": status,
                    "metadata": metadata,
                    "cancel_at_period_end": cancel_at_period_end,
                    "current_period_start": period_start,
                    "current_period_end": period_end,
                    "items": {"data": [{"price": {"id": price_id}}]},
                }
            },
        }

    return build


@pytest.fixture
def invoice_event():
    """Factory for invoice.payment_* event payloads."""

    def build(
        event_id: str = "evt_inv_1",
        event_type: str = "invoice.payment_succeeded",
        subscription_id: str = "sub_test_1",
    ) -> dict:
        return {
            "id": event_id,
            "type": event_type,
            "data": {
                "object": {
                    "id": "in_test_1",
                    "object": "invoice",
                    "subscription": subscription_id,
                    "amount_paid": 499,
                    "amount_due": 499,
                }
            },
        }

    return build


# =============================================================================
# Wired application
# =============================================================================

@pytest.fixture
def identity():
    """Supabase admin lookup double; tokens normally carry the email."""
    mock = MagicMock()
    mock.get_user_email = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def gemini():
    """Gemini service double returning a fixed reply."""
    mock = MagicMock()
    mock.model = "gemini-2.5-flash"
    mock.generate_reply = AsyncMock(
        return_value=AssistantReply(
            text="Worn brake pads are the usual cause. Have them checked soon.",
            input_tokens=120,
            output_tokens=40,
        )
    )
    return mock


@pytest.fixture
def api(app, db, fake_stripe, catalog, audit, identity, gemini):
    """
    App wired to the in-memory database.

    Stripe API calls, Supabase and Gemini are faked; webhook signatures
    are verified for real against the test secret.
    """
    subscriptions = SubscriptionRepository()
    ledger = WebhookEventRepository()
    fake_stripe.verify_webhook_signature = MagicMock(
        side_effect=StripeService().verify_webhook_signature
    )

    app.dependency_overrides[get_subscription_repository] = lambda: subscriptions
    app.dependency_overrides[get_checkout_service] = lambda: CheckoutService(
        subscriptions, fake_stripe, catalog, audit
    )
    app.dependency_overrides[get_webhook_reconciler] = lambda: WebhookReconciler(
        subscriptions, ledger, fake_stripe, catalog, audit
    )
    app.dependency_overrides[get_quota_service] = lambda: QuotaService(
        MessageUsageRepository(), catalog
    )
    app.dependency_overrides[get_audit_logger] = lambda: audit
    app.dependency_overrides[get_identity_service] = lambda: identity
    app.dependency_overrides[get_gemini_service] = lambda: gemini
    return app
