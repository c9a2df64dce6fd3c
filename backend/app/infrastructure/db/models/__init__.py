"""
SQLModel ORM Models for My Mechanic API

Exports all database models for Alembic autogenerate and application use.
Import models here to register them with SQLModel.metadata.
"""

from app.infrastructure.db.models.base import (
    TimestampMixin,
    UUIDMixin,
)
from app.infrastructure.db.models.subscription import SubscriptionModel
from app.infrastructure.db.models.webhook_event import (
    WebhookEventModel,
    WebhookEventStatus,
)
from app.infrastructure.db.models.message_usage import MessageUsageModel
from app.infrastructure.db.models.audit_log import (
    AuditCategory,
    AuditLog,
    AuditLogCreate,
)


__all__ = [
    # Base
    "TimestampMixin",
    "UUIDMixin",
    # Billing
    "SubscriptionModel",
    "WebhookEventModel",
    "WebhookEventStatus",
    # Usage
    "MessageUsageModel",
    # Audit
    "AuditCategory",
    "AuditLog",
    "AuditLogCreate",
]
