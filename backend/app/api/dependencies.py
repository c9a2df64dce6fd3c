"""
API Dependencies

FastAPI dependency injection for authentication, the subscription access
gate and the application services.

Security: JWT tokens are verified cryptographically using Supabase JWKS (ES256)
with HS256 fallback via the JWT secret. Never decode without verification.
"""

import logging
from typing import Annotated, Optional

import jwt
from jwt import PyJWKClient
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from app.config.settings import get_settings
from app.domain.subscription import Subscription, has_access
from app.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
    get_subscription_repository,
)
from app.infrastructure.exceptions import SubscriptionRequiredError
from app.infrastructure.services.checkout_service import (
    CheckoutService,
    get_checkout_service,
)
from app.infrastructure.services.quota_service import QuotaService, get_quota_service
from app.infrastructure.services.webhook_reconciler import (
    WebhookReconciler,
    get_webhook_reconciler,
)
from app.infrastructure.services.audit_logger import AuditLogger, get_audit_logger
from app.infrastructure.services.identity_service import (
    IdentityService,
    get_identity_service,
)
from app.infrastructure.ai.gemini_service import GeminiService, get_gemini_service


logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

# Cached JWKS client; PyJWKClient caches keys internally and refreshes ~every 10 min.
_jwks_client: Optional[PyJWKClient] = None


class AuthenticatedUser(BaseModel):
    """Identity taken from a verified access token."""
    id: str
    email: Optional[str] = None


def _get_jwks_client() -> PyJWKClient:
    """Return a singleton PyJWKClient for the Supabase JWKS endpoint."""
    global _jwks_client
    if _jwks_client is None:
        settings = get_settings()
        jwks_url = f"{settings.supabase_url}/auth/v1/.well-known/jwks.json"
        _jwks_client = PyJWKClient(jwks_url, cache_keys=True)
    return _jwks_client


def _decode_with_jwks(token: str, issuer: str) -> dict:
    """Verify JWT using Supabase JWKS endpoint (ES256 asymmetric keys)."""
    client = _get_jwks_client()
    signing_key = client.get_signing_key_from_jwt(token)
    return jwt.decode(
        token,
        signing_key.key,
        algorithms=["ES256"],
        issuer=issuer,
        audience="authenticated",
        options={"require": ["exp", "sub", "iss"]},
    )


def _decode_with_secret(token: str, secret: str, issuer: str) -> dict:
    """Verify JWT using HS256 symmetric secret (legacy Supabase signing)."""
    return jwt.decode(
        token,
        secret,
        algorithms=["HS256"],
        issuer=issuer,
        audience="authenticated",
        options={"require": ["exp", "sub", "iss"]},
    )


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthenticatedUser:
    """
    Verify a Supabase JWT and return the caller's identity.

    Verification strategy (in order):
      1. JWKS (ES256), which supports key rotation automatically.
      2. HS256 with ``SUPABASE_JWT_SECRET`` for legacy signing.

    Raises:
        HTTPException 401: token missing, expired, or invalid.
    """
    if not credentials:
        raise _unauthorized("Missing authorization token")

    token = credentials.credentials
    settings = get_settings()
    issuer = f"{settings.supabase_url}/auth/v1"

    payload: Optional[dict] = None

    # --- Strategy 1: JWKS (ES256) ---
    try:
        payload = _decode_with_jwks(token, issuer)
    except (jwt.exceptions.PyJWKClientError, jwt.InvalidTokenError) as jwks_err:
        logger.debug("JWKS verification failed, trying HS256 fallback: %s", jwks_err)

    # --- Strategy 2: HS256 fallback ---
    if payload is None and settings.supabase_jwt_secret:
        try:
            payload = _decode_with_secret(
                token, settings.supabase_jwt_secret, issuer
            )
        except jwt.ExpiredSignatureError:
            raise _unauthorized("Token has expired")
        except jwt.InvalidTokenError as e:
            logger.warning("HS256 JWT verification also failed: %s", e)

    if payload is None:
        raise _unauthorized("Invalid or unverifiable token")

    user_id = payload.get("sub")
    if not user_id:
        raise _unauthorized("Invalid token: missing user ID")

    return AuthenticatedUser(id=user_id, email=payload.get("email"))


async def get_current_user_id(
    user: AuthenticatedUser = Depends(get_current_user),
) -> str:
    """Authenticated user ID (``sub`` claim)."""
    return user.id


CurrentUserDep = Annotated[AuthenticatedUser, Depends(get_current_user)]


# =============================================================================
# Service providers (overridable via app.dependency_overrides)
# =============================================================================

SubscriptionRepoDep = Annotated[SubscriptionRepository, Depends(get_subscription_repository)]
CheckoutServiceDep = Annotated[CheckoutService, Depends(get_checkout_service)]
QuotaServiceDep = Annotated[QuotaService, Depends(get_quota_service)]
WebhookReconcilerDep = Annotated[WebhookReconciler, Depends(get_webhook_reconciler)]
AuditLoggerDep = Annotated[AuditLogger, Depends(get_audit_logger)]
IdentityServiceDep = Annotated[IdentityService, Depends(get_identity_service)]
GeminiServiceDep = Annotated[GeminiService, Depends(get_gemini_service)]


# =============================================================================
# Access gate
# =============================================================================

async def require_subscription(
    user: CurrentUserDep,
    subscription_repo: SubscriptionRepoDep,
) -> Subscription:
    """
    Allow the request only with a current subscription.

    pending and incomplete count as current so access does not flicker
    between the checkout redirect and Stripe's webhook.

    Raises:
        SubscriptionRequiredError: 403 with ``needsSubscription``
    """
    subscription = await subscription_repo.get_current_subscription(user.id)
    if has_access(subscription):
        return subscription

    latest = await subscription_repo.get_latest_open(user.id)
    logger.info(f"Access denied for user {user.id}: no current subscription")
    raise SubscriptionRequiredError(latest.status.value if latest else None)


ActiveSubscriptionDep = Annotated[Subscription, Depends(require_subscription)]
