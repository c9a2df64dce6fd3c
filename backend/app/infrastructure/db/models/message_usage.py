"""
Message Usage Database Model

Per-user monthly message counter backing the chat quota.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from app.infrastructure.db.models.base import utc_now


class MessageUsageModel(SQLModel, table=True):
    __tablename__ = "message_usage"

    user_id: str = Field(primary_key=True, max_length=64)
    message_count: int = Field(default=0, nullable=False)
    month: str = Field(max_length=7, nullable=False)  # YYYY-MM
    last_reset: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
