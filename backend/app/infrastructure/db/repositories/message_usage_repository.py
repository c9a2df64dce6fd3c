"""
Message Usage Repository

Data access for the per-user monthly message counter.
"""

import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from app.domain.usage import MessageUsage
from app.infrastructure.db.database import persistence_scope
from app.infrastructure.db.models.base import as_utc, utc_now
from app.infrastructure.db.models.message_usage import MessageUsageModel
from app.infrastructure.exceptions import PersistenceError


logger = logging.getLogger(__name__)

_TABLE = "message_usage"


class MessageUsageRepository:
    """Repository for the quota counter (one row per user)."""

    async def get(self, user_id: str) -> Optional[MessageUsage]:
        async with persistence_scope("select", _TABLE) as session:
            model = await session.get(MessageUsageModel, user_id)
            return self._to_domain(model) if model else None

    async def create(self, user_id: str, month: str) -> MessageUsage:
        """Insert a zeroed counter for the given month."""
        async with persistence_scope("insert", _TABLE) as session:
            model = MessageUsageModel(
                user_id=user_id,
                message_count=0,
                month=month,
                last_reset=utc_now(),
            )
            session.add(model)
            await session.flush()
            return self._to_domain(model)

    async def get_or_create(self, user_id: str, month: str) -> MessageUsage:
        """
        Return the user's counter, inserting a zeroed one if it is missing.

        Two first requests can race to insert; the loser re-reads the row.
        """
        usage = await self.get(user_id)
        if usage is not None:
            return usage

        try:
            return await self.create(user_id, month)
        except PersistenceError as e:
            if not isinstance(e.original_error, IntegrityError):
                raise

        logger.debug(f"Usage row for {user_id} created concurrently, re-reading")
        usage = await self.get(user_id)
        if usage is None:
            raise PersistenceError(
                f"Usage row for {user_id} vanished after insert conflict",
                operation="select",
                table=_TABLE,
            )
        return usage

    async def reset_month(self, user_id: str, month: str) -> MessageUsage:
        """Zero the counter and move it to a new month."""
        now = utc_now()
        async with persistence_scope("update", _TABLE) as session:
            await session.execute(
                update(MessageUsageModel)
                .where(MessageUsageModel.user_id == user_id)
                .values(message_count=0, month=month, last_reset=now, updated_at=now)
            )

        logger.info(f"Reset message usage for user {user_id} to {month}")
        return MessageUsage(user_id=user_id, message_count=0, month=month, last_reset=now)

    async def increment(
        self,
        user_id: str,
        month: str,
        limit: Optional[int] = None,
    ) -> bool:
        """
        Add one message to the user's counter.

        The increment is a single UPDATE (count = count + 1) so concurrent
        commits never lose a message. With a limit the UPDATE also requires
        count < limit, so the counter never passes it. A missing row is
        created with a count of 1; if a concurrent request inserted it first
        the UPDATE is retried.

        Returns:
            True if the message was counted, False if the limit was reached
        """
        if await self._increment_existing(user_id, limit):
            return True

        try:
            async with persistence_scope("insert", _TABLE) as session:
                now = utc_now()
                session.add(
                    MessageUsageModel(
                        user_id=user_id,
                        message_count=1,
                        month=month,
                        last_reset=now,
                    )
                )
        except PersistenceError as e:
            if not isinstance(e.original_error, IntegrityError):
                raise
            logger.debug(f"Usage row for {user_id} already exists, retrying update")
            return await self._increment_existing(user_id, limit)
        return True

    async def _increment_existing(self, user_id: str, limit: Optional[int]) -> bool:
        statement = update(MessageUsageModel).where(MessageUsageModel.user_id == user_id)
        if limit is not None:
            statement = statement.where(MessageUsageModel.message_count < limit)

        async with persistence_scope("update", _TABLE) as session:
            result = await session.execute(
                statement.values(
                    message_count=MessageUsageModel.message_count + 1,
                    updated_at=utc_now(),
                )
            )
            return (result.rowcount or 0) > 0

    def _to_domain(self, model: MessageUsageModel) -> MessageUsage:
        return MessageUsage(
            user_id=model.user_id,
            message_count=model.message_count,
            month=model.month,
            last_reset=as_utc(model.last_reset),
        )


_message_usage_repo_instance: Optional[MessageUsageRepository] = None


def get_message_usage_repository() -> MessageUsageRepository:
    """Get or create message usage repository singleton."""
    global _message_usage_repo_instance

    if _message_usage_repo_instance is None:
        _message_usage_repo_instance = MessageUsageRepository()

    return _message_usage_repo_instance
