from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Request

from ...core.config import Settings
from ...core.errors import ValidationError
from ...domain.generation import GenerateResponse
from ...domain.users import AuthenticatedUser
from ...repositories.rate_limits import RateLimitRepository
from ...services.generation import GenerationOrchestrator
from ...services.quota import QuotaGate
from ...services.usage import UsageRecorder
from ...services.validation import RequestValidator
from ..dependencies import (
    enforce_rate_limit,
    get_app_settings,
    get_client_ip,
    get_current_user,
    get_generation_orchestrator,
    get_quota_gate,
    get_rate_limit_repository,
    get_request_validator,
    get_usage_recorder,
)

router = APIRouter(tags=["generation"])


@router.post("/generate", response_model=GenerateResponse)
async def generate_image(
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: AuthenticatedUser = Depends(get_current_user),
    validator: RequestValidator = Depends(get_request_validator),
    quota: QuotaGate = Depends(get_quota_gate),
    rate_limits: RateLimitRepository = Depends(get_rate_limit_repository),
    orchestrator: GenerationOrchestrator = Depends(get_generation_orchestrator),
    usage: UsageRecorder = Depends(get_usage_recorder),
    settings: Settings = Depends(get_app_settings),
) -> GenerateResponse:
    try:
        body = await request.json()
    except ValueError as exc:
        raise ValidationError("Request body must be valid JSON") from exc

    generation_request = validator.validate(body)
    snapshot = await quota.check(current_user.id)
    await enforce_rate_limit(rate_limits, settings, "generate", get_client_ip(request))

    should_cancel = request.is_disconnected if settings.cancel_polling_on_disconnect else None
    result = await orchestrator.generate(generation_request, snapshot, should_cancel=should_cancel)

    background_tasks.add_task(usage.record, current_user.id)
    return GenerateResponse(image_url=result.image_url, stats=result.stats)
