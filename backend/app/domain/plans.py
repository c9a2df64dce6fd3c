"""
Plan Catalog

Static reference data joining plan IDs to Stripe prices, monthly message
limits and display text. Price IDs come from the environment; everything
else is fixed here.
"""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel

from app.config.settings import Settings, get_settings
from app.domain.subscription import PlanId


logger = logging.getLogger(__name__)


UNLIMITED = -1


class PlanDefinition(BaseModel):
    """A single catalog entry."""
    plan_id: PlanId
    name: str
    monthly_price: float  # GBP
    message_limit: int  # -1 = unlimited
    saved_chats_limit: int
    description: str
    price_setting: str
    price_id: Optional[str] = None
    legacy: bool = False

    @property
    def is_unlimited(self) -> bool:
        return self.message_limit == UNLIMITED


_PLAN_TABLE = [
    # plan, name, price, messages, saved chats, description, price env var
    (PlanId.TRIAL, "Trial", 0.00, 5, 0,
     "Try My Mechanic before you subscribe", "stripe_price_trial"),
    (PlanId.BASIC, "Basic", 1.99, 10, 0,
     "Essential for basic car queries", "stripe_price_basic"),
    (PlanId.STARTER, "Starter", 4.99, 50, 2,
     "Perfect for car owners", "stripe_price_starter"),
    (PlanId.PROFESSIONAL, "Professional", 14.99, 200, 5,
     "For enthusiasts and mechanics", "stripe_price_professional"),
    (PlanId.UNLIMITED, "Unlimited", 39.99, UNLIMITED, 10,
     "For professional workshops", "stripe_price_unlimited"),
]

# Required for a complete catalog; trial is optional.
_REQUIRED_PRICE_SETTINGS = (
    "stripe_price_basic",
    "stripe_price_starter",
    "stripe_price_professional",
    "stripe_price_unlimited",
)


class PlanCatalog:
    """Read-only lookup over the configured plans."""

    def __init__(self, plans: list[PlanDefinition], default_plan_id: PlanId):
        self._plans = {plan.plan_id: plan for plan in plans}
        self._default_plan_id = default_plan_id

    @classmethod
    def from_settings(cls, settings: Settings) -> "PlanCatalog":
        plans = [
            PlanDefinition(
                plan_id=plan_id,
                name=name,
                monthly_price=price,
                message_limit=limit,
                saved_chats_limit=saved,
                description=description,
                price_setting=setting,
                price_id=getattr(settings, setting),
            )
            for plan_id, name, price, limit, saved, description, setting in _PLAN_TABLE
        ]

        unlimited = next(p for p in plans if p.plan_id == PlanId.UNLIMITED)
        plans.append(
            unlimited.model_copy(update={
                "plan_id": PlanId.WORKSHOP,
                "name": "Workshop",
                "price_setting": "stripe_price_workshop",
                "price_id": settings.stripe_price_unlimited or settings.stripe_price_workshop,
                "legacy": True,
            })
        )

        try:
            default_plan = PlanId(settings.default_plan_id)
        except ValueError:
            logger.warning(
                f"Unknown DEFAULT_PLAN_ID '{settings.default_plan_id}', using starter"
            )
            default_plan = PlanId.STARTER

        return cls(plans, default_plan)

    @property
    def default_plan_id(self) -> PlanId:
        return self._default_plan_id

    def get(self, plan_id) -> Optional[PlanDefinition]:
        """Look up a plan by ID; unknown IDs return None."""
        try:
            return self._plans.get(PlanId(plan_id))
        except ValueError:
            return None

    def price_id_for(self, plan_id) -> Optional[str]:
        plan = self.get(plan_id)
        return plan.price_id if plan else None

    def plan_for_price(self, price_id: Optional[str]) -> Optional[PlanId]:
        """Reverse lookup by Stripe price; first catalog match wins."""
        if not price_id:
            return None
        for plan in self._plans.values():
            if plan.price_id == price_id:
                return plan.plan_id
        return None

    def message_limit(self, plan_id) -> int:
        """Monthly message limit; unknown plans fall back to the default plan."""
        plan = self.get(plan_id) or self._plans[self._default_plan_id]
        return plan.message_limit

    def purchasable(self) -> list[PlanDefinition]:
        """Plans that can be sold today (priced and not legacy)."""
        return [p for p in self._plans.values() if p.price_id and not p.legacy]

    def missing_price_settings(self) -> list[str]:
        missing = []
        for plan in self._plans.values():
            if plan.price_setting in _REQUIRED_PRICE_SETTINGS and not plan.price_id:
                missing.append(plan.price_setting.upper())
        return missing

    def validate(self) -> bool:
        """Log a warning for each missing price; never fails."""
        missing = self.missing_price_settings()
        if missing:
            logger.warning(
                "Missing Stripe price IDs in environment: %s "
                "(legacy STRIPE_PRICE_WORKSHOP still supported)",
                ", ".join(missing),
            )
        return not missing


@lru_cache
def get_plan_catalog() -> PlanCatalog:
    """Get cached plan catalog built from settings."""
    return PlanCatalog.from_settings(get_settings())


# =============================================================================
# Response DTOs
# =============================================================================

class PlanSummary(BaseModel):
    """Public view of a purchasable plan."""
    plan_id: PlanId
    name: str
    monthly_price: float
    currency: str = "GBP"
    message_limit: int
    saved_chats_limit: int
    description: str

    @classmethod
    def from_definition(cls, plan: PlanDefinition) -> "PlanSummary":
        return cls(
            plan_id=plan.plan_id,
            name=plan.name,
            monthly_price=plan.monthly_price,
            message_limit=plan.message_limit,
            saved_chats_limit=plan.saved_chats_limit,
            description=plan.description,
        )


class PlansResponse(BaseModel):
    plans: list[PlanSummary]
