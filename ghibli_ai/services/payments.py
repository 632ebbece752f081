"""Stripe checkout, billing portal and webhook integration."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, Mapping, TypeVar

import stripe
import structlog
from anyio import to_thread

from ..core.errors import ConfigurationError, InvalidSignature, PaymentProviderError
from ..core.plans import resolve_plan
from ..domain.billing import (
    CheckoutSessionResponse,
    PaymentRecord,
    PlanTier,
    SubscriptionStatus,
    SubscriptionUpsert,
)
from ..domain.users import AuthenticatedUser
from ..repositories.subscriptions import SubscriptionStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SIGNATURE_TOLERANCE_SECONDS = 300


class StripeGateway:
    """Thin async wrapper over the blocking ``stripe`` SDK.

    Every call passes ``api_key`` explicitly so the module-level
    ``stripe.api_key`` is never mutated.
    """

    def __init__(self, secret_key: str | None, webhook_secret: str | None = None) -> None:
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret

    def _require_key(self) -> str:
        if not self._secret_key:
            raise ConfigurationError("Payments are not configured")
        return self._secret_key

    async def _call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        kwargs["api_key"] = self._require_key()
        try:
            return await to_thread.run_sync(partial(func, *args, **kwargs))
        except stripe.StripeError as exc:
            logger.error("stripe.api_error", operation=getattr(func, "__qualname__", str(func)), error=str(exc))
            raise PaymentProviderError() from exc

    async def find_or_create_customer(self, user: AuthenticatedUser) -> str:
        if user.email:
            existing = await self._call(stripe.Customer.list, email=user.email, limit=1)
            if existing.data:
                return existing.data[0].id
        customer = await self._call(
            stripe.Customer.create,
            email=user.email,
            metadata={"supabase_user_id": user.id},
        )
        logger.info("stripe.customer_created", user_id=user.id, customer_id=customer.id)
        return customer.id

    async def create_checkout_session(
        self,
        user: AuthenticatedUser,
        *,
        price_id: str,
        plan: PlanTier,
        origin: str,
    ) -> CheckoutSessionResponse:
        customer_id = await self.find_or_create_customer(user)
        metadata = {"user_id": user.id, "plan": plan.value}
        session = await self._call(
            stripe.checkout.Session.create,
            customer=customer_id,
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            mode="subscription",
            success_url=f"{origin}/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{origin}/pricing",
            metadata=metadata,
            subscription_data={"metadata": metadata},
            allow_promotion_codes=True,
            billing_address_collection="required",
        )
        logger.info("stripe.checkout_created", user_id=user.id, plan=plan.value, session_id=session.id)
        return CheckoutSessionResponse(session_id=session.id, url=session.url)

    async def create_portal_session(self, customer_id: str, *, origin: str) -> str:
        session = await self._call(
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=f"{origin}/dashboard",
        )
        return session.url

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        subscription = await self._call(stripe.Subscription.retrieve, subscription_id)
        return subscription.to_dict()

    def construct_event(self, payload: bytes | str, signature: str | None) -> dict[str, Any]:
        """Verify the ``Stripe-Signature`` header and return the decoded event."""

        if not self._webhook_secret:
            raise ConfigurationError("Webhook secret is not configured")
        if not signature:
            raise InvalidSignature()
        body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        try:
            stripe.WebhookSignature.verify_header(
                body, signature, self._webhook_secret, SIGNATURE_TOLERANCE_SECONDS
            )
            event = json.loads(body)
        except (stripe.SignatureVerificationError, ValueError) as exc:
            logger.warning("stripe.signature_rejected", error=str(exc))
            raise InvalidSignature() from exc
        if not isinstance(event, dict):
            raise InvalidSignature()
        return event


def _timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _period(subscription: Mapping[str, Any], field: str) -> datetime | None:
    # Newer API versions report the billing period per subscription item.
    value = subscription.get(field)
    if value is None:
        items = (subscription.get("items") or {}).get("data") or []
        if items:
            value = items[0].get(field)
    return _timestamp(value)


def _invoice_subscription_id(invoice: Mapping[str, Any]) -> str | None:
    subscription = invoice.get("subscription")
    if subscription is None:
        details = ((invoice.get("parent") or {}).get("subscription_details") or {})
        subscription = details.get("subscription")
    if isinstance(subscription, Mapping):
        return subscription.get("id")
    return subscription


def _object_id(value: Any) -> str | None:
    if isinstance(value, Mapping):
        return value.get("id")
    return value


class WebhookEventHandler:
    """Mirrors Stripe subscription lifecycle events into the subscription store.

    Events that lack the ``user_id`` metadata written at checkout are logged
    and skipped. Store and Stripe failures propagate so the delivery is
    answered with an error and retried by Stripe.
    """

    def __init__(self, gateway: StripeGateway, store: SubscriptionStore) -> None:
        self._gateway = gateway
        self._store = store
        self._handlers: dict[str, Callable[[dict[str, Any]], Any]] = {
            "checkout.session.completed": self._checkout_completed,
            "customer.subscription.created": self._subscription_created,
            "customer.subscription.updated": self._subscription_updated,
            "customer.subscription.deleted": self._subscription_deleted,
            "invoice.payment_succeeded": self._payment_succeeded,
            "invoice.payment_failed": self._payment_failed,
        }

    async def handle(self, event: Mapping[str, Any]) -> bool:
        """Dispatch one event; returns False for event types that are ignored."""

        event_type = event.get("type")
        handler = self._handlers.get(str(event_type))
        if handler is None:
            logger.info("stripe.event_ignored", event_type=event_type, event_id=event.get("id"))
            return False
        obj = (event.get("data") or {}).get("object") or {}
        logger.info("stripe.event_received", event_type=event_type, event_id=event.get("id"))
        await handler(obj)
        return True

    async def _checkout_completed(self, session: dict[str, Any]) -> None:
        metadata = session.get("metadata") or {}
        user_id, plan = metadata.get("user_id"), resolve_plan(metadata.get("plan"))
        if not user_id or plan is None or not session.get("subscription"):
            logger.warning("stripe.checkout_missing_metadata", session_id=session.get("id"))
            return
        subscription = await self._gateway.retrieve_subscription(_object_id(session["subscription"]))
        await self._upsert(
            user_id,
            subscription,
            plan=plan,
            customer_id=_object_id(session.get("customer")),
        )

    async def _subscription_created(self, subscription: dict[str, Any]) -> None:
        metadata = subscription.get("metadata") or {}
        user_id, plan = metadata.get("user_id"), resolve_plan(metadata.get("plan"))
        if not user_id or plan is None:
            logger.warning("stripe.subscription_missing_metadata", subscription_id=subscription.get("id"))
            return
        await self._upsert(user_id, subscription, plan=plan)

    async def _subscription_updated(self, subscription: dict[str, Any]) -> None:
        metadata = subscription.get("metadata") or {}
        user_id = metadata.get("user_id")
        if not user_id:
            logger.warning("stripe.subscription_missing_user", subscription_id=subscription.get("id"))
            return
        plan = resolve_plan(metadata.get("plan")) or PlanTier.PRO
        await self._upsert(user_id, subscription, plan=plan)

    async def _subscription_deleted(self, subscription: dict[str, Any]) -> None:
        user_id = (subscription.get("metadata") or {}).get("user_id")
        if not user_id:
            logger.warning("stripe.subscription_missing_user", subscription_id=subscription.get("id"))
            return
        await self._store.upsert_subscription(
            user_id,
            SubscriptionUpsert(
                stripe_customer_id=_object_id(subscription.get("customer")),
                stripe_subscription_id="",
                status=SubscriptionStatus.CANCELED.value,
                plan=PlanTier.FREE,
            ),
        )
        logger.info("stripe.subscription_cancelled", user_id=user_id)

    async def _payment_succeeded(self, invoice: dict[str, Any]) -> None:
        await self._record_payment(invoice, status="succeeded", amount=invoice.get("amount_paid"))

    async def _payment_failed(self, invoice: dict[str, Any]) -> None:
        await self._record_payment(invoice, status="failed", amount=invoice.get("amount_due"))

    async def _upsert(
        self,
        user_id: str,
        subscription: Mapping[str, Any],
        *,
        plan: PlanTier,
        customer_id: str | None = None,
    ) -> None:
        await self._store.upsert_subscription(
            user_id,
            SubscriptionUpsert(
                stripe_customer_id=customer_id or _object_id(subscription.get("customer")),
                stripe_subscription_id=subscription.get("id"),
                status=str(subscription.get("status") or SubscriptionStatus.INCOMPLETE.value),
                plan=plan,
                current_period_start=_period(subscription, "current_period_start"),
                current_period_end=_period(subscription, "current_period_end"),
            ),
        )
        logger.info(
            "stripe.subscription_synced",
            user_id=user_id,
            plan=plan.value,
            status=subscription.get("status"),
        )

    async def _record_payment(self, invoice: Mapping[str, Any], *, status: str, amount: Any) -> None:
        subscription_id = _invoice_subscription_id(invoice)
        if not subscription_id:
            logger.warning("stripe.invoice_without_subscription", invoice_id=invoice.get("id"))
            return
        subscription = await self._gateway.retrieve_subscription(subscription_id)
        metadata = subscription.get("metadata") or {}
        user_id, plan = metadata.get("user_id"), resolve_plan(metadata.get("plan"))
        if not user_id or plan is None:
            logger.warning("stripe.invoice_missing_metadata", invoice_id=invoice.get("id"))
            return
        await self._store.record_payment(
            user_id,
            PaymentRecord(
                stripe_payment_intent_id=_object_id(invoice.get("payment_intent")),
                amount=int(amount or 0),
                currency=str(invoice.get("currency") or "usd"),
                status=status,
                plan=plan,
            ),
        )
        logger.info("stripe.payment_recorded", user_id=user_id, status=status, amount=amount)
