"""
Subscription Database Model

SQLModel table for subscription data persistence.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index
from sqlmodel import Field

from app.infrastructure.db.models.base import TimestampMixin, UUIDMixin


class SubscriptionModel(UUIDMixin, TimestampMixin, table=True):
    """
    Subscription table for storing user subscription data.

    Several historical rows may exist per user; canceled rows are kept.
    The current row is selected by SubscriptionRepository.get_current_subscription.
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        Index("ix_subscriptions_user_id_status", "user_id", "status"),
    )

    user_id: str = Field(max_length=64, index=True, nullable=False)

    # Stripe IDs
    stripe_customer_id: Optional[str] = Field(default=None, max_length=255, index=True)
    stripe_subscription_id: Optional[str] = Field(default=None, max_length=255, index=True)

    # Subscription details
    plan_id: str = Field(max_length=32, nullable=False)
    status: str = Field(default="pending", max_length=20, nullable=False)

    # Billing period dates
    current_period_start: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    current_period_end: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    cancel_at_period_end: bool = Field(default=False)
