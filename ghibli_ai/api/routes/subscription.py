from __future__ import annotations

from fastapi import APIRouter, Depends

from ...core.config import Settings
from ...core.plans import list_plans
from ...domain.billing import PlanListResponse, SubscriptionResponse, SubscriptionSummary
from ...domain.users import AuthenticatedUser
from ...services.quota import QuotaGate
from ..dependencies import get_app_settings, get_current_user, get_quota_gate

router = APIRouter(tags=["subscription"])


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(
    current_user: AuthenticatedUser = Depends(get_current_user),
    quota: QuotaGate = Depends(get_quota_gate),
) -> SubscriptionResponse:
    snapshot = await quota.fetch(current_user.id)
    return SubscriptionResponse(data=SubscriptionSummary.from_snapshot(snapshot))


@router.get("/plans", response_model=PlanListResponse)
async def get_plans(settings: Settings = Depends(get_app_settings)) -> PlanListResponse:
    return PlanListResponse(data=list_plans(settings))
