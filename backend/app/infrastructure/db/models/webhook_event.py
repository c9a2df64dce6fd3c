"""
Webhook Event Database Model

Append-only ledger of Stripe events, used for idempotency and diagnostics.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from app.infrastructure.db.models.base import utc_now


class WebhookEventStatus(str, Enum):
    PROCESSED = "processed"
    FAILED = "failed"


class WebhookEventModel(SQLModel, table=True):
    """
    One row per handling attempt of a provider event.

    event_id is not unique: a failed attempt followed by a successful retry
    leaves two rows, and concurrent duplicate deliveries may do the same.
    """

    __tablename__ = "webhook_events"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    event_id: str = Field(max_length=255, index=True, nullable=False)
    event_type: str = Field(max_length=100, nullable=False)
    data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    status: str = Field(max_length=20, nullable=False)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_type=DateTime(timezone=True),
        nullable=False,
    )
