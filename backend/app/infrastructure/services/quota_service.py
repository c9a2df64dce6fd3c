"""
Quota Service

Monthly message quota around each chat request:

    check = await quota.check_and_reserve(user_id, plan_id)   # before the model call
    ...
    await quota.commit(user_id, plan_id)                       # after it succeeds

Two concurrent requests can both pass the check before either commits.
The commit is an atomic conditional increment (count < limit), so the
stored counter never exceeds the plan limit.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from app.domain.plans import PlanCatalog, UNLIMITED, get_plan_catalog
from app.domain.subscription import PlanId
from app.domain.usage import QuotaCheck, current_month
from app.infrastructure.db.repositories.message_usage_repository import (
    MessageUsageRepository,
    get_message_usage_repository,
)


logger = logging.getLogger(__name__)


class QuotaService:
    """Chat quota gate over the message_usage counter."""

    def __init__(
        self,
        usage_repo: MessageUsageRepository,
        catalog: PlanCatalog,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._usage_repo = usage_repo
        self._catalog = catalog
        self._clock = clock

    def _month(self) -> str:
        return current_month(self._clock() if self._clock else None)

    async def check_and_reserve(self, user_id: str, plan_id: PlanId) -> QuotaCheck:
        """
        Decide whether the user may send another message this month.

        Creates the counter lazily and rolls it over when the stored month
        is stale. Unlimited plans are always allowed.
        """
        limit = self._catalog.message_limit(plan_id)
        month = self._month()

        usage = await self._usage_repo.get_or_create(user_id, month)
        if usage.month != month:
            logger.info(f"Monthly rollover for user {user_id}: {usage.month} -> {month}")
            usage = await self._usage_repo.reset_month(user_id, month)

        used = usage.message_count

        if limit == UNLIMITED:
            return QuotaCheck(allowed=True, remaining=UNLIMITED, limit=UNLIMITED, used=used)

        remaining = limit - used
        return QuotaCheck(
            allowed=remaining > 0,
            remaining=max(0, remaining),
            limit=limit,
            used=used,
        )

    async def commit(self, user_id: str, plan_id: Optional[PlanId] = None) -> bool:
        """
        Count one message against the current month.

        With a plan the increment is capped at its limit. Returns False when
        a concurrent request already used the last message.
        """
        limit = self._catalog.message_limit(plan_id) if plan_id is not None else UNLIMITED
        counted = await self._usage_repo.increment(
            user_id,
            self._month(),
            limit=None if limit == UNLIMITED else limit,
        )
        if not counted:
            logger.warning(f"Quota limit {limit} reached for user {user_id}, message not counted")
        return counted

    async def commit_quietly(self, user_id: str, plan_id: Optional[PlanId] = None) -> None:
        """commit() for background use; failures are logged, never raised."""
        try:
            await self.commit(user_id, plan_id)
        except Exception as e:
            logger.error(f"Error incrementing quota for user {user_id}: {e}")


def get_quota_service() -> QuotaService:
    """Build the quota service from the shared repository and catalog."""
    return QuotaService(get_message_usage_repository(), get_plan_catalog())
