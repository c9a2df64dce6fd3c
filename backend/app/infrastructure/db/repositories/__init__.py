"""
Repository Layer for My Mechanic API

Exports all repository classes for dependency injection.
"""

from app.infrastructure.db.repositories.base_repository import BaseRepository
from app.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
    get_subscription_repository,
)
from app.infrastructure.db.repositories.webhook_event_repository import (
    WebhookEventRepository,
    get_webhook_event_repository,
)
from app.infrastructure.db.repositories.message_usage_repository import (
    MessageUsageRepository,
    get_message_usage_repository,
)
from app.infrastructure.db.repositories.audit_log_repository import (
    AuditLogRepository,
)


__all__ = [
    # Base
    "BaseRepository",
    # Repositories
    "SubscriptionRepository",
    "WebhookEventRepository",
    "MessageUsageRepository",
    "AuditLogRepository",
    # Singletons
    "get_subscription_repository",
    "get_webhook_event_repository",
    "get_message_usage_repository",
]
