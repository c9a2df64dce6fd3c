"""
Custom Exceptions for My Mechanic API

Hierarchical exception classes for proper error handling across layers.
Each class carries the HTTP status and machine-readable code the API
returns, so clients route on `code`/flags rather than on prose.
"""

from typing import Optional, Dict, Any


class MechanicAPIError(Exception):
    """Base exception for all My Mechanic API errors."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    # Shown instead of `message` for 5xx responses; provider detail stays in logs.
    public_message: str = "Internal server error"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def extra_fields(self) -> Dict[str, Any]:
        """Top-level routing flags merged into the response body."""
        return {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        server_side = self.status_code >= 500
        return {
            "error": self.__class__.__name__,
            "code": self.code,
            "message": self.public_message if server_side else self.message,
            "details": {} if server_side else self.details,
            **self.extra_fields(),
        }


# =============================================================================
# Client input errors (400)
# =============================================================================

class ValidationError(MechanicAPIError):
    """Raised when input validation fails."""
    status_code = 400
    code = "VALIDATION_ERROR"


class InvalidPlanError(ValidationError):
    """Raised when a plan ID is not in the catalog or has no price."""
    code = "INVALID_PLAN"

    def __init__(self, plan_id: Optional[str]):
        super().__init__("Invalid plan selected", details={"plan_id": plan_id})


class AlreadySubscribedError(ValidationError):
    """Raised when the user already holds an active subscription."""
    code = "ALREADY_SUBSCRIBED"

    def __init__(self, status: str):
        super().__init__(
            "You already have an active subscription",
            details={"status": status},
        )


class TrialLimitExceededError(ValidationError):
    """Raised when the user has used up their trial purchases."""
    code = "TRIAL_LIMIT_EXCEEDED"

    def __init__(self, used: int, limit: int):
        super().__init__(
            "Trial plan limit reached",
            details={"used": used, "limit": limit},
        )


class InvalidWebhookSignatureError(ValidationError):
    """Raised when a webhook body fails signature verification."""
    code = "INVALID_SIGNATURE"

    def __init__(self, original_error: Optional[Exception] = None):
        super().__init__("Webhook signature verification failed", original_error=original_error)


# =============================================================================
# Authorization errors (403 / 429)
# =============================================================================

class SubscriptionRequiredError(MechanicAPIError):
    """Raised by the access gate when no current subscription exists."""
    status_code = 403
    code = "SUBSCRIPTION_REQUIRED"

    def __init__(self, status: Optional[str] = None):
        details = {"status": status} if status else {}
        super().__init__("Active subscription required", details=details)

    def extra_fields(self) -> Dict[str, Any]:
        return {"needsSubscription": True}


class QuotaExceededError(MechanicAPIError):
    """Raised when the monthly message quota is used up."""
    status_code = 429
    code = "QUOTA_EXCEEDED"

    def __init__(self, limit: int, used: int):
        super().__init__("Monthly message quota exceeded")
        self.limit = limit
        self.used = used

    def extra_fields(self) -> Dict[str, Any]:
        return {
            "quota": {"limit": self.limit, "used": self.used, "remaining": 0},
            "needsUpgrade": True,
        }


# =============================================================================
# Persistence errors
# =============================================================================

class DatabaseError(MechanicAPIError):
    """Raised when database operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table
        super().__init__(message, details, original_error)


class PersistenceError(DatabaseError):
    """Raised when a write or read against the store itself fails."""
    code = "PERSISTENCE_ERROR"


class NotFoundError(DatabaseError):
    """Raised when a requested resource is not found."""
    status_code = 404
    code = "NOT_FOUND"


# =============================================================================
# External provider errors (500-class)
# =============================================================================

class PaymentProviderError(MechanicAPIError):
    """Raised when a payment-provider call fails."""
    code = "PAYMENT_PROVIDER_ERROR"
    public_message = "Payment provider error. Please try again."


class CheckoutCreationFailedError(PaymentProviderError):
    """Raised when the provider checkout session cannot be created."""
    code = "CHECKOUT_FAILED"
    public_message = "Error creating checkout session"

    def __init__(self, original_error: Optional[Exception] = None):
        super().__init__(
            "Error creating checkout session",
            original_error=original_error,
        )


class WebhookProcessingError(MechanicAPIError):
    """Raised when applying a webhook event fails; the provider should retry."""
    code = "WEBHOOK_FAILED"
    public_message = "Webhook handler failed"


class AIServiceError(MechanicAPIError):
    """Raised when language-model operations fail."""
    code = "AI_SERVICE_ERROR"
    public_message = "Failed to get response from AI assistant. Please try again."

    def __init__(
        self,
        message: str,
        model: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if model:
            details["model"] = model
        if operation:
            details["operation"] = operation
        super().__init__(message, details, original_error)


class ConfigurationError(MechanicAPIError):
    """Raised when configuration is missing or invalid."""
    code = "CONFIGURATION_ERROR"

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(message, details, original_error)
