from __future__ import annotations

import httpx
import structlog
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from ..core.config import Settings
from ..core.errors import ConfigurationError, RateLimited, Unauthenticated
from ..core.security import TokenConfigurationError, user_from_token
from ..domain.rate_limits import RateLimitStatus
from ..domain.users import AuthenticatedUser
from ..repositories.rate_limits import RateLimitRepository
from ..repositories.subscriptions import SubscriptionStore, SupabaseSubscriptionStore
from ..services.archiver import ResultArchiver
from ..services.downloads import ImageProxy
from ..services.generation import GenerationOrchestrator
from ..services.images import ImageUploader
from ..services.payments import StripeGateway, WebhookEventHandler
from ..services.poller import CompletionPoller
from ..services.providers import (
    IsmaqueProvider,
    PredictionProvider,
    ReplicateProvider,
    TextToImageProvider,
)
from ..services.quota import QuotaGate
from ..services.storage import ObjectStore
from ..services.usage import UsageRecorder
from ..services.validation import RequestValidator

logger = structlog.get_logger(__name__)

_http_bearer = HTTPBearer(auto_error=False)
_request_validator = RequestValidator()


async def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


async def get_rate_limit_repository(request: Request) -> RateLimitRepository:
    return request.app.state.rate_limiter


async def get_object_store(request: Request) -> ObjectStore | None:
    return request.app.state.object_store


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",", 1)[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"


def request_origin(request: Request, settings: Settings) -> str:
    """Origin used for checkout redirects: the browser's, else the configured one."""

    origin = request.headers.get("origin")
    if origin:
        return origin.rstrip("/")
    if settings.public_base_url:
        return settings.public_base_url.rstrip("/")
    return str(request.base_url).rstrip("/")


def callback_url(request: Request, settings: Settings) -> str:
    base = settings.public_base_url or str(request.base_url)
    return f"{base.rstrip('/')}{settings.api_prefix}/webhook-callback"


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_http_bearer),
    settings: Settings = Depends(get_app_settings),
) -> AuthenticatedUser:
    token = credentials.credentials if credentials is not None else None
    if not token:
        token = request.cookies.get(settings.auth_cookie_name)
    if not token:
        raise Unauthenticated()
    try:
        return user_from_token(token, settings)
    except TokenConfigurationError as exc:
        raise ConfigurationError("Authentication is not configured") from exc
    except JWTError as exc:
        logger.info("auth.invalid_token", error=str(exc))
        raise Unauthenticated("Invalid session, please sign in again") from exc


async def enforce_rate_limit(
    repo: RateLimitRepository, settings: Settings, scope: str, client_key: str
) -> RateLimitStatus:
    """Count one request for ``scope:client_key`` and raise when over the limit."""

    status = await repo.hit(
        f"{scope}:{client_key}",
        settings.rate_limit_max_requests,
        settings.rate_limit_window_ms,
    )
    if not status.allowed:
        logger.info("rate_limit.exceeded", scope=scope, client=client_key, limit=status.limit)
        raise RateLimited(headers=status.headers())
    return status


async def get_request_validator() -> RequestValidator:
    return _request_validator


async def get_subscription_store(
    client: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_app_settings),
) -> SubscriptionStore:
    if not settings.supabase_url or not settings.supabase_service_role_key:
        raise ConfigurationError("Missing Supabase configuration")
    return SupabaseSubscriptionStore(
        client=client,
        base_url=settings.supabase_url,
        service_role_key=settings.supabase_service_role_key,
    )


async def get_quota_gate(
    store: SubscriptionStore = Depends(get_subscription_store),
) -> QuotaGate:
    return QuotaGate(store)


async def get_usage_recorder(
    store: SubscriptionStore = Depends(get_subscription_store),
) -> UsageRecorder:
    return UsageRecorder(store)


async def get_image_uploader(
    storage: ObjectStore | None = Depends(get_object_store),
    settings: Settings = Depends(get_app_settings),
) -> ImageUploader:
    return ImageUploader(storage, max_bytes=settings.max_upload_image_bytes)


async def get_prediction_provider(
    client: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_app_settings),
) -> PredictionProvider:
    return ReplicateProvider(
        client=client,
        api_token=settings.replicate_api_token,
        base_url=settings.replicate_base_url,
        model=settings.replicate_model,
        timeout_seconds=settings.provider_timeout_seconds,
    )


async def get_text_provider(
    client: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_app_settings),
) -> TextToImageProvider:
    return IsmaqueProvider(
        client=client,
        api_key=settings.ismaque_api_key,
        base_url=settings.ismaque_base_url,
        model=settings.ismaque_model,
        timeout_seconds=settings.provider_timeout_seconds,
    )


async def get_result_archiver(
    client: httpx.AsyncClient = Depends(get_http_client),
    uploader: ImageUploader = Depends(get_image_uploader),
    settings: Settings = Depends(get_app_settings),
) -> ResultArchiver:
    return ResultArchiver(
        client=client,
        uploader=uploader,
        timeout_seconds=settings.image_download_timeout_seconds,
    )


async def get_generation_orchestrator(
    request: Request,
    image_provider: PredictionProvider = Depends(get_prediction_provider),
    text_provider: TextToImageProvider = Depends(get_text_provider),
    uploader: ImageUploader = Depends(get_image_uploader),
    archiver: ResultArchiver = Depends(get_result_archiver),
    settings: Settings = Depends(get_app_settings),
) -> GenerationOrchestrator:
    poller = CompletionPoller(
        image_provider,
        interval_seconds=settings.poll_interval_seconds,
        max_attempts=settings.poll_max_attempts,
    )
    return GenerationOrchestrator(
        image_provider=image_provider,
        text_provider=text_provider,
        poller=poller,
        uploader=uploader,
        archiver=archiver,
        callback_url=callback_url(request, settings),
    )


async def get_image_proxy(
    client: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_app_settings),
) -> ImageProxy:
    return ImageProxy(
        client=client,
        allowed_hosts=settings.download_allowed_hosts,
        timeout_seconds=settings.image_download_timeout_seconds,
        max_bytes=settings.max_download_image_bytes,
    )


async def get_stripe_gateway(settings: Settings = Depends(get_app_settings)) -> StripeGateway:
    return StripeGateway(settings.stripe_secret_key, settings.stripe_webhook_secret)


async def get_webhook_event_handler(
    gateway: StripeGateway = Depends(get_stripe_gateway),
    store: SubscriptionStore = Depends(get_subscription_store),
) -> WebhookEventHandler:
    return WebhookEventHandler(gateway, store)
