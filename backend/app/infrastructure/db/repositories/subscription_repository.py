"""
Subscription Repository

Data access layer for subscription persistence.
All "current subscription" selection lives here so every caller applies
the same policy.
"""

import logging
from typing import Optional

from sqlmodel import select
from sqlalchemy import func, update

from app.infrastructure.db.database import persistence_scope
from app.infrastructure.db.models.base import as_utc, utc_now
from app.infrastructure.db.models.subscription import SubscriptionModel
from app.domain.subscription import (
    CURRENT_STATUSES,
    PlanId,
    Subscription,
    SubscriptionFields,
    SubscriptionStatus,
)


logger = logging.getLogger(__name__)

_TABLE = "subscriptions"


class SubscriptionRepository:
    """
    Repository for subscription data access.

    Implements queries and commands with domain model mapping.
    Uses async SQLModel for database operations.
    """

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get_current_subscription(self, user_id: str) -> Optional[Subscription]:
        """
        Get the user's current subscription.

        The most recently created row whose status is pending, active,
        trialing or incomplete.

        Args:
            user_id: Identity-provider user ID

        Returns:
            Subscription domain model or None
        """
        async with persistence_scope("select", _TABLE) as session:
            statement = (
                select(SubscriptionModel)
                .where(
                    SubscriptionModel.user_id == user_id,
                    SubscriptionModel.status.in_([s.value for s in CURRENT_STATUSES]),
                )
                .order_by(SubscriptionModel.created_at.desc())
                .limit(1)
            )
            result = await session.execute(statement)
            model = result.scalars().first()

            return self._to_domain(model) if model else None

    async def get_latest_open(self, user_id: str) -> Optional[Subscription]:
        """
        Get the most recent non-canceled row (any status but canceled).

        Used by checkout to reuse an existing Stripe customer.
        """
        async with persistence_scope("select", _TABLE) as session:
            statement = (
                select(SubscriptionModel)
                .where(
                    SubscriptionModel.user_id == user_id,
                    SubscriptionModel.status != SubscriptionStatus.CANCELED.value,
                )
                .order_by(SubscriptionModel.created_at.desc())
                .limit(1)
            )
            result = await session.execute(statement)
            model = result.scalars().first()

            return self._to_domain(model) if model else None

    async def get_latest_with_customer(self, user_id: str) -> Optional[Subscription]:
        """Most recent row (any status) that carries a Stripe customer ID."""
        async with persistence_scope("select", _TABLE) as session:
            statement = (
                select(SubscriptionModel)
                .where(
                    SubscriptionModel.user_id == user_id,
                    SubscriptionModel.stripe_customer_id.is_not(None),
                )
                .order_by(SubscriptionModel.created_at.desc())
                .limit(1)
            )
            result = await session.execute(statement)
            model = result.scalars().first()

            return self._to_domain(model) if model else None

    async def get_by_stripe_subscription_id(
        self,
        stripe_subscription_id: str,
    ) -> Optional[Subscription]:
        """
        Get subscription by Stripe subscription ID.

        Args:
            stripe_subscription_id: Stripe subscription ID

        Returns:
            Subscription domain model or None
        """
        async with persistence_scope("select", _TABLE) as session:
            statement = (
                select(SubscriptionModel)
                .where(SubscriptionModel.stripe_subscription_id == stripe_subscription_id)
                .order_by(SubscriptionModel.created_at.desc())
                .limit(1)
            )
            result = await session.execute(statement)
            model = result.scalars().first()

            return self._to_domain(model) if model else None

    async def count_by_plan(self, user_id: str, plan_id: PlanId) -> int:
        """Count every row the user ever had on a plan, whatever its status."""
        async with persistence_scope("count", _TABLE) as session:
            statement = select(func.count()).select_from(SubscriptionModel).where(
                SubscriptionModel.user_id == user_id,
                SubscriptionModel.plan_id == plan_id.value,
            )
            result = await session.execute(statement)
            return result.scalar_one()

    async def list_for_user(self, user_id: str) -> list[Subscription]:
        """All rows for a user, newest first."""
        async with persistence_scope("select", _TABLE) as session:
            statement = (
                select(SubscriptionModel)
                .where(SubscriptionModel.user_id == user_id)
                .order_by(SubscriptionModel.created_at.desc())
            )
            result = await session.execute(statement)
            return [self._to_domain(m) for m in result.scalars().all()]

    # =========================================================================
    # Command Methods
    # =========================================================================

    async def create_pending(
        self,
        user_id: str,
        stripe_customer_id: str,
        plan_id: PlanId,
    ) -> Subscription:
        """
        Insert a new pending subscription ahead of checkout.

        Raises:
            PersistenceError: if the insert fails. Checkout must not
            continue without this row, since webhooks locate it by
            (user_id, stripe_customer_id).
        """
        async with persistence_scope("insert", _TABLE) as session:
            model = SubscriptionModel(
                user_id=user_id,
                stripe_customer_id=stripe_customer_id,
                plan_id=plan_id.value,
                status=SubscriptionStatus.PENDING.value,
            )
            session.add(model)
            await session.flush()
            await session.refresh(model)

            logger.info(f"Created pending subscription {model.id} for user {user_id}")
            return self._to_domain(model)

    async def upsert_from_provider_event(
        self,
        user_id: str,
        stripe_customer_id: str,
        fields: SubscriptionFields,
    ) -> Subscription:
        """
        Apply provider fields to the row matched by (user_id, stripe_customer_id).

        Inserts a new row when none matches. Fields left as None are not
        written, so a missing or malformed period bound leaves the stored
        value in place while the status still updates.

        A canceled row keeps its status. An event for a different Stripe
        subscription on the same customer inserts a new row instead.
        """
        changes = fields.changes()
        if "plan_id" in changes:
            changes["plan_id"] = changes["plan_id"].value
        if "status" in changes:
            changes["status"] = changes["status"].value

        async with persistence_scope("upsert", _TABLE) as session:
            statement = (
                select(SubscriptionModel)
                .where(
                    SubscriptionModel.user_id == user_id,
                    SubscriptionModel.stripe_customer_id == stripe_customer_id,
                )
                .order_by(SubscriptionModel.created_at.desc())
                .limit(1)
            )
            result = await session.execute(statement)
            model = result.scalars().first()

            if model is not None and model.status == SubscriptionStatus.CANCELED.value:
                incoming_id = changes.get("stripe_subscription_id")
                if incoming_id and incoming_id != model.stripe_subscription_id:
                    # Another Stripe subscription on the same customer gets its own row
                    model = None
                elif changes.pop("status", SubscriptionStatus.CANCELED.value) != SubscriptionStatus.CANCELED.value:
                    logger.warning(
                        f"Ignoring status change on canceled subscription {model.stripe_subscription_id}"
                    )

            if model is None:
                model = SubscriptionModel(
                    user_id=user_id,
                    stripe_customer_id=stripe_customer_id,
                    plan_id=changes.pop("plan_id", PlanId.STARTER.value),
                    status=changes.pop("status", SubscriptionStatus.INCOMPLETE.value),
                )
                session.add(model)
                logger.info(
                    f"No subscription row for user {user_id} / {stripe_customer_id}, inserting"
                )

            for field, value in changes.items():
                setattr(model, field, value)
            model.updated_at = utc_now()

            await session.flush()
            await session.refresh(model)
            return self._to_domain(model)

    async def mark_status(
        self,
        stripe_subscription_id: str,
        status: SubscriptionStatus,
    ) -> int:
        """
        Set status on every row carrying the Stripe subscription ID.

        Canceled rows are never moved out of canceled.

        Returns:
            Number of rows updated (0 when the subscription is unknown or canceled)
        """
        async with persistence_scope("update", _TABLE) as session:
            statement = (
                update(SubscriptionModel)
                .where(
                    SubscriptionModel.stripe_subscription_id == stripe_subscription_id,
                    SubscriptionModel.status != SubscriptionStatus.CANCELED.value,
                )
                .values(status=status.value, updated_at=utc_now())
            )
            result = await session.execute(statement)
            return result.rowcount or 0

    # =========================================================================
    # Mapping Methods
    # =========================================================================

    def _to_domain(self, model: SubscriptionModel) -> Subscription:
        """Convert database model to domain entity."""
        return Subscription(
            id=str(model.id),
            user_id=model.user_id,
            stripe_customer_id=model.stripe_customer_id,
            stripe_subscription_id=model.stripe_subscription_id,
            plan_id=PlanId(model.plan_id),
            status=SubscriptionStatus(model.status),
            current_period_start=as_utc(model.current_period_start),
            current_period_end=as_utc(model.current_period_end),
            cancel_at_period_end=model.cancel_at_period_end or False,
            created_at=as_utc(model.created_at),
            updated_at=as_utc(model.updated_at),
        )


# =============================================================================
# Singleton Instance
# =============================================================================

_subscription_repo_instance: Optional[SubscriptionRepository] = None


def get_subscription_repository() -> SubscriptionRepository:
    """Get or create subscription repository singleton."""
    global _subscription_repo_instance

    if _subscription_repo_instance is None:
        _subscription_repo_instance = SubscriptionRepository()

    return _subscription_repo_instance
