"""
Audit Log Model

Best-effort trail of payment, subscription and chat events.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime, Text
from sqlmodel import Field, SQLModel

from app.infrastructure.db.models.base import utc_now


class AuditCategory(str, Enum):
    PAYMENT = "payment"
    SUBSCRIPTION = "subscription"
    CHAT = "chat"
    ERROR = "error"


class AuditLog(SQLModel, table=True):
    """Audit trail row written by the buffered AuditLogger."""

    __tablename__ = "audit_logs"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    category: str = Field(max_length=20, index=True, nullable=False)
    event_type: str = Field(max_length=100, nullable=False)
    user_id: Optional[str] = Field(default=None, max_length=64, index=True)
    success: bool = Field(default=True)
    message: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    details: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_type=DateTime(timezone=True),
        nullable=False,
    )


class AuditLogCreate(SQLModel):
    """Schema for queuing an audit record."""
    category: str  # AuditCategory value
    event_type: str
    user_id: Optional[str] = None
    success: bool = True
    message: str = ""
    details: Optional[dict] = None
    created_at: datetime = Field(default_factory=utc_now)
