"""
Message Usage Domain Models

Monthly quota counter and the result of a quota check.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel


def current_month(now: Optional[datetime] = None) -> str:
    """Billing month token in YYYY-MM form (UTC)."""
    now = now or datetime.now(timezone.utc)
    return f"{now.year:04d}-{now.month:02d}"


class MessageUsage(BaseModel):
    """Per-user monthly message counter."""
    user_id: str
    message_count: int = 0
    month: str
    last_reset: Optional[datetime] = None


class QuotaCheck(BaseModel):
    """Outcome of a quota check. remaining and limit are -1 when unlimited."""
    allowed: bool
    remaining: int
    limit: int
    used: int = 0

    @property
    def is_unlimited(self) -> bool:
        return self.limit == -1

    def after_commit(self) -> "QuotaCheck":
        """Counters as they will read once this request is counted."""
        if self.is_unlimited:
            return self.model_copy(update={"used": self.used + 1})
        return self.model_copy(update={
            "used": self.used + 1,
            "remaining": max(0, self.remaining - 1),
        })
