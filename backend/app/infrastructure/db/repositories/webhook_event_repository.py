"""
Webhook Event Repository

Ledger of Stripe event handling attempts. An event counts as handled only
once a row with status "processed" exists; failed attempts are recorded
but do not block the provider's retry.
"""

import logging
from typing import Any, Optional

from sqlmodel import select

from app.infrastructure.db.database import persistence_scope
from app.infrastructure.db.models.webhook_event import (
    WebhookEventModel,
    WebhookEventStatus,
)


logger = logging.getLogger(__name__)

_TABLE = "webhook_events"


class WebhookEventRepository:
    """Repository for the webhook event ledger."""

    async def has_been_processed(self, event_id: str) -> bool:
        """True if a processed row exists for this provider event ID."""
        async with persistence_scope("select", _TABLE) as session:
            statement = (
                select(WebhookEventModel.id)
                .where(
                    WebhookEventModel.event_id == event_id,
                    WebhookEventModel.status == WebhookEventStatus.PROCESSED.value,
                )
                .limit(1)
            )
            result = await session.execute(statement)
            return result.first() is not None

    async def record_outcome(
        self,
        event_id: str,
        event_type: str,
        payload: Optional[dict[str, Any]],
        status: WebhookEventStatus,
    ) -> None:
        """Append one ledger row for a handling attempt."""
        async with persistence_scope("insert", _TABLE) as session:
            session.add(
                WebhookEventModel(
                    event_id=event_id,
                    event_type=event_type,
                    data=payload,
                    status=status.value,
                )
            )

        logger.debug(f"Recorded webhook {event_id} ({event_type}) as {status.value}")

    async def list_for_event(self, event_id: str) -> list[WebhookEventModel]:
        """All attempts recorded for an event, oldest first."""
        async with persistence_scope("select", _TABLE) as session:
            statement = (
                select(WebhookEventModel)
                .where(WebhookEventModel.event_id == event_id)
                .order_by(WebhookEventModel.created_at)
            )
            result = await session.execute(statement)
            return list(result.scalars().all())


_webhook_event_repo_instance: Optional[WebhookEventRepository] = None


def get_webhook_event_repository() -> WebhookEventRepository:
    """Get or create webhook event repository singleton."""
    global _webhook_event_repo_instance

    if _webhook_event_repo_instance is None:
        _webhook_event_repo_instance = WebhookEventRepository()

    return _webhook_event_repo_instance
