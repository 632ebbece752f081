"""Subscription plan catalogue with Stripe price ids taken from configuration."""

from __future__ import annotations

from typing import Dict, List

from ..domain.billing import UNLIMITED, PlanDefinition, PlanTier
from .config import Settings, get_settings

_PLAN_PRICES_USD: Dict[PlanTier, int] = {
    PlanTier.FREE: 0,
    PlanTier.PRO: 19,
    PlanTier.ENTERPRISE: 99,
}

_PLAN_DAILY_IMAGES: Dict[PlanTier, int] = {
    PlanTier.FREE: 5,
    PlanTier.PRO: 100,
    PlanTier.ENTERPRISE: UNLIMITED,
}

_PLAN_RESOLUTIONS: Dict[PlanTier, str] = {
    PlanTier.FREE: "512x512",
    PlanTier.PRO: "1024x1024",
    PlanTier.ENTERPRISE: "2048x2048",
}

_PLAN_FEATURES: Dict[PlanTier, List[str]] = {
    PlanTier.FREE: [
        "5 image generations per day",
        "Standard resolution (512x512)",
        "Community support",
        "Watermarked images",
    ],
    PlanTier.PRO: [
        "100 image generations per day",
        "High resolution (1024x1024)",
        "Priority support",
        "No watermark",
        "Batch download",
    ],
    PlanTier.ENTERPRISE: [
        "Unlimited image generations",
        "Ultra high resolution (2048x2048)",
        "Dedicated support",
        "No watermark",
        "Batch download",
        "API access",
        "Custom models",
    ],
}


def _plan_price_ids(settings: Settings) -> Dict[PlanTier, str]:
    return {
        PlanTier.FREE: "free",
        PlanTier.PRO: settings.stripe_pro_price_id,
        PlanTier.ENTERPRISE: settings.stripe_enterprise_price_id,
    }


def resolve_plan(name: str | None) -> PlanTier | None:
    """Map a case-insensitive plan name to its tier, or None when unknown."""

    if not name:
        return None
    try:
        return PlanTier(name.strip().lower())
    except ValueError:
        return None


def get_plan(plan: PlanTier, settings: Settings | None = None) -> PlanDefinition:
    settings = settings or get_settings()
    return PlanDefinition(
        tier=plan,
        name=plan.value.title(),
        price_usd=_PLAN_PRICES_USD[plan],
        images_per_day=_PLAN_DAILY_IMAGES[plan],
        max_resolution=_PLAN_RESOLUTIONS[plan],
        price_id=_plan_price_ids(settings)[plan],
        features=list(_PLAN_FEATURES[plan]),
    )


def list_plans(settings: Settings | None = None) -> List[PlanDefinition]:
    settings = settings or get_settings()
    return [get_plan(plan, settings) for plan in PlanTier]
