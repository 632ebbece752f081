from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

UNLIMITED = -1


class PlanTier(str, Enum):
    """Supported subscription plan tiers."""

    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(str, Enum):
    """Lifecycle state of a user's subscription as mirrored from Stripe."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    INCOMPLETE = "incomplete"
    CANCELED = "canceled"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SubscriptionSnapshot(CamelModel):
    """Plan and usage for one account, read fresh from the subscription store."""

    plan: str = PlanTier.FREE.value
    status: str = SubscriptionStatus.ACTIVE.value
    images_used_today: int = Field(default=0, ge=0)
    images_limit: int = Field(default=5, ge=UNLIMITED)
    current_period_end: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SubscriptionSnapshot":
        """Build a snapshot from a ``get_user_subscription`` result row."""

        return cls(
            plan=str(row.get("subscription_plan") or PlanTier.FREE.value).lower(),
            status=str(row.get("subscription_status") or "").lower(),
            images_used_today=int(row.get("images_used_today") or 0),
            images_limit=int(row.get("images_limit") if row.get("images_limit") is not None else 0),
            current_period_end=row.get("current_period_end"),
        )

    @property
    def is_unlimited(self) -> bool:
        return self.images_limit == UNLIMITED

    @property
    def can_generate(self) -> bool:
        if self.status != SubscriptionStatus.ACTIVE.value:
            return False
        return self.is_unlimited or self.images_used_today < self.images_limit

    @property
    def remaining_generations(self) -> int:
        """Generations left today; ``-1`` when the plan is unlimited."""

        if self.is_unlimited:
            return UNLIMITED
        return max(0, self.images_limit - self.images_used_today)


class SubscriptionSummary(CamelModel):
    plan: str
    status: str
    images_used_today: int
    images_limit: int
    current_period_end: Optional[datetime] = None
    can_generate: bool
    remaining_generations: int

    @classmethod
    def from_snapshot(cls, snapshot: SubscriptionSnapshot) -> "SubscriptionSummary":
        return cls(
            plan=snapshot.plan,
            status=snapshot.status,
            images_used_today=snapshot.images_used_today,
            images_limit=snapshot.images_limit,
            current_period_end=snapshot.current_period_end,
            can_generate=snapshot.can_generate,
            remaining_generations=snapshot.remaining_generations,
        )


class SubscriptionResponse(BaseModel):
    success: bool = True
    data: SubscriptionSummary


class PlanDefinition(CamelModel):
    """Static description of a plan tier shown on the pricing page."""

    tier: PlanTier
    name: str
    price_usd: int = Field(ge=0)
    images_per_day: int = Field(ge=UNLIMITED)
    max_resolution: str
    price_id: str = ""
    features: list[str] = Field(default_factory=list)


class PlanListResponse(BaseModel):
    success: bool = True
    data: list[PlanDefinition]


class CheckoutSessionRequest(CamelModel):
    price_id: str = Field(..., min_length=1)
    plan: str = Field(..., min_length=1)


class CheckoutSessionResponse(CamelModel):
    session_id: str
    url: Optional[str] = None


class PortalSessionResponse(BaseModel):
    url: str


class SubscriptionUpsert(BaseModel):
    """Row written to ``user_subscriptions`` when Stripe reports a change."""

    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    status: str
    plan: PlanTier
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None


class PaymentRecord(BaseModel):
    """Row written to ``payment_history`` for each invoice outcome."""

    stripe_payment_intent_id: Optional[str] = None
    amount: int = Field(ge=0)
    currency: str
    status: str
    plan: PlanTier
