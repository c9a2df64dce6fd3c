"""
Audit Log Repository

Extends BaseRepository with audit-specific queries.
"""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.infrastructure.db.repositories.base_repository import BaseRepository
from app.infrastructure.db.models.audit_log import (
    AuditCategory,
    AuditLog,
    AuditLogCreate,
)


class AuditLogRepository(BaseRepository[AuditLog, AuditLogCreate]):
    """Repository for audit trail records."""

    def __init__(self, session: AsyncSession):
        super().__init__(AuditLog, session)

    async def get_by_user(
        self,
        user_id: str,
        category: Optional[AuditCategory] = None,
        limit: int = 100,
    ) -> List[AuditLog]:
        """Get audit records for a user, newest first."""
        stmt = select(AuditLog).where(AuditLog.user_id == user_id)
        if category is not None:
            stmt = stmt.where(AuditLog.category == category.value)
        stmt = stmt.order_by(AuditLog.created_at.desc()).limit(limit)

        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_by_event_type(self, event_type: str, limit: int = 100) -> List[AuditLog]:
        stmt = (
            select(AuditLog)
            .where(AuditLog.event_type == event_type)
            .order_by(AuditLog.created_at.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
