from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Request

from ...core.config import Settings
from ...core.errors import (
    AppError,
    ConfigurationError,
    NotFound,
    SubscriptionUnavailable,
    ValidationError,
)
from ...core.plans import get_plan, resolve_plan
from ...domain.billing import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    PlanTier,
    PortalSessionResponse,
)
from ...domain.users import AuthenticatedUser
from ...repositories.subscriptions import SubscriptionStore, SubscriptionStoreError
from ...services.payments import StripeGateway, WebhookEventHandler
from ..dependencies import (
    get_app_settings,
    get_current_user,
    get_stripe_gateway,
    get_subscription_store,
    get_webhook_event_handler,
    request_origin,
)

router = APIRouter(prefix="/stripe", tags=["stripe"])


@router.post("/create-checkout-session", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    payload: CheckoutSessionRequest,
    request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),
    store: SubscriptionStore = Depends(get_subscription_store),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    settings: Settings = Depends(get_app_settings),
) -> CheckoutSessionResponse:
    plan = resolve_plan(payload.plan)
    if plan is None or plan is PlanTier.FREE:
        raise ValidationError("Invalid subscription plan")
    price_id = get_plan(plan, settings).price_id
    if not price_id:
        raise ConfigurationError(f"Missing Stripe price for the {plan.value} plan")
    if payload.price_id != price_id:
        raise ValidationError("Price does not match the selected plan")

    try:
        snapshot = await store.get_snapshot(current_user.id)
    except SubscriptionStoreError as exc:
        raise SubscriptionUnavailable() from exc
    if snapshot is not None and snapshot.plan == plan.value:
        raise ValidationError("You are already subscribed to this plan")

    return await gateway.create_checkout_session(
        current_user,
        price_id=price_id,
        plan=plan,
        origin=request_origin(request, settings),
    )


@router.post("/customer-portal", response_model=PortalSessionResponse)
async def create_customer_portal(
    request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),
    store: SubscriptionStore = Depends(get_subscription_store),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    settings: Settings = Depends(get_app_settings),
) -> PortalSessionResponse:
    try:
        customer_id = await store.get_customer_id(current_user.id)
    except SubscriptionStoreError as exc:
        raise SubscriptionUnavailable() from exc
    if not customer_id:
        raise NotFound("No subscription found")

    url = await gateway.create_portal_session(customer_id, origin=request_origin(request, settings))
    return PortalSessionResponse(url=url)


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    handler: WebhookEventHandler = Depends(get_webhook_event_handler),
) -> dict[str, bool]:
    event = gateway.construct_event(await request.body(), stripe_signature)
    try:
        await handler.handle(event)
    except SubscriptionStoreError as exc:
        raise AppError("Webhook processing failed", code="WEBHOOK_FAILED") from exc
    return {"received": True}
