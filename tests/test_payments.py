"""Stripe gateway and webhook event handling."""

import hashlib
import hmac
import json
import time
from types import SimpleNamespace

import pytest
import stripe

from conftest import FakeSubscriptionStore
from ghibli_ai.core.errors import ConfigurationError, InvalidSignature, PaymentProviderError
from ghibli_ai.domain.billing import PlanTier
from ghibli_ai.domain.users import AuthenticatedUser
from ghibli_ai.services.payments import StripeGateway, WebhookEventHandler

WEBHOOK_SECRET = "whsec_unit"


def sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    timestamp = timestamp or int(time.time())
    digest = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


class FakeGateway(StripeGateway):
    def __init__(self, subscriptions: dict[str, dict]) -> None:
        super().__init__("sk_test", WEBHOOK_SECRET)
        self.subscriptions = subscriptions

    async def retrieve_subscription(self, subscription_id: str) -> dict:
        return self.subscriptions[subscription_id]


def subscription(sub_id: str = "sub_1", plan: str | None = "pro", user_id: str | None = "user-1", **extra) -> dict:
    metadata = {}
    if plan:
        metadata["plan"] = plan
    if user_id:
        metadata["user_id"] = user_id
    return {
        "id": sub_id,
        "customer": "cus_1",
        "status": "active",
        "metadata": metadata,
        "current_period_start": 1_760_000_000,
        "current_period_end": 1_762_592_000,
        **extra,
    }


def event(event_type: str, obj: dict) -> dict:
    return {"id": "evt_1", "type": event_type, "data": {"object": obj}}


def test_valid_signature_returns_event():
    payload = json.dumps(event("customer.subscription.created", subscription()))

    parsed = StripeGateway("sk_test", WEBHOOK_SECRET).construct_event(payload.encode(), sign(payload))

    assert parsed["type"] == "customer.subscription.created"


@pytest.mark.parametrize(
    "header",
    [None, "", "t=1,v1=deadbeef", sign("{}", secret="whsec_other")],
)
def test_bad_signatures_are_rejected(header):
    payload = json.dumps(event("customer.subscription.created", subscription()))

    with pytest.raises(InvalidSignature) as exc_info:
        StripeGateway("sk_test", WEBHOOK_SECRET).construct_event(payload, header)

    assert exc_info.value.status_code == 400


def test_tampered_payload_is_rejected():
    payload = json.dumps(event("customer.subscription.created", subscription()))
    header = sign(payload)

    with pytest.raises(InvalidSignature):
        StripeGateway("sk_test", WEBHOOK_SECRET).construct_event(payload.replace("pro", "enterprise"), header)


def test_missing_webhook_secret_is_configuration_error():
    with pytest.raises(ConfigurationError):
        StripeGateway("sk_test", None).construct_event("{}", "t=1,v1=x")


@pytest.mark.asyncio
async def test_checkout_completed_upserts_subscription():
    store = FakeSubscriptionStore()
    handler = WebhookEventHandler(FakeGateway({"sub_1": subscription()}), store)
    session = {
        "id": "cs_1",
        "customer": "cus_1",
        "subscription": "sub_1",
        "metadata": {"user_id": "user-1", "plan": "pro"},
    }

    assert await handler.handle(event("checkout.session.completed", session)) is True

    [(user_id, upsert)] = store.upserts
    assert user_id == "user-1"
    assert upsert.plan is PlanTier.PRO
    assert upsert.stripe_subscription_id == "sub_1"
    assert upsert.stripe_customer_id == "cus_1"
    assert upsert.current_period_end is not None


@pytest.mark.asyncio
async def test_subscription_created_requires_metadata():
    store = FakeSubscriptionStore()
    handler = WebhookEventHandler(FakeGateway({}), store)

    await handler.handle(event("customer.subscription.created", subscription(plan=None)))

    assert store.upserts == []


@pytest.mark.asyncio
async def test_subscription_updated_defaults_to_pro():
    store = FakeSubscriptionStore()
    handler = WebhookEventHandler(FakeGateway({}), store)

    await handler.handle(event("customer.subscription.updated", subscription(plan=None, status="past_due")))

    [(_, upsert)] = store.upserts
    assert upsert.plan is PlanTier.PRO
    assert upsert.status == "past_due"


@pytest.mark.asyncio
async def test_period_is_read_from_items_when_missing_at_top_level():
    store = FakeSubscriptionStore()
    sub = subscription()
    sub.pop("current_period_start")
    sub.pop("current_period_end")
    sub["items"] = {"data": [{"current_period_start": 1_760_000_000, "current_period_end": 1_762_592_000}]}

    await WebhookEventHandler(FakeGateway({}), store).handle(event("customer.subscription.created", sub))

    [(_, upsert)] = store.upserts
    assert upsert.current_period_start is not None


@pytest.mark.asyncio
async def test_subscription_deleted_downgrades_to_free():
    store = FakeSubscriptionStore()

    await WebhookEventHandler(FakeGateway({}), store).handle(
        event("customer.subscription.deleted", subscription())
    )

    [(_, upsert)] = store.upserts
    assert upsert.plan is PlanTier.FREE
    assert upsert.status == "canceled"
    assert upsert.current_period_end is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("event_type", "amount_field", "status"),
    [("invoice.payment_succeeded", "amount_paid", "succeeded"), ("invoice.payment_failed", "amount_due", "failed")],
)
async def test_invoice_events_record_payments(event_type, amount_field, status):
    store = FakeSubscriptionStore()
    handler = WebhookEventHandler(FakeGateway({"sub_9": subscription("sub_9", plan="enterprise")}), store)
    invoice = {"id": "in_1", "subscription": "sub_9", "payment_intent": "pi_1", "currency": "usd", amount_field: 9900}

    await handler.handle(event(event_type, invoice))

    [(user_id, record)] = store.payments
    assert user_id == "user-1"
    assert record.amount == 9900
    assert record.status == status
    assert record.plan is PlanTier.ENTERPRISE
    assert record.stripe_payment_intent_id == "pi_1"


@pytest.mark.asyncio
async def test_unhandled_event_types_are_ignored():
    store = FakeSubscriptionStore()

    handled = await WebhookEventHandler(FakeGateway({}), store).handle(event("charge.refunded", {"id": "ch_1"}))

    assert handled is False
    assert store.upserts == [] and store.payments == []


@pytest.mark.asyncio
async def test_checkout_session_reuses_customer_and_sets_metadata(monkeypatch):
    captured: dict = {}

    def list_customers(**kwargs):
        captured["list"] = kwargs
        return SimpleNamespace(data=[SimpleNamespace(id="cus_existing")])

    def create_session(**kwargs):
        captured["session"] = kwargs
        return SimpleNamespace(id="cs_123", url="https://checkout.stripe.com/c/cs_123")

    monkeypatch.setattr(stripe.Customer, "list", list_customers)
    monkeypatch.setattr(stripe.checkout.Session, "create", create_session)
    user = AuthenticatedUser(id="user-1", email="chihiro@example.com")

    response = await StripeGateway("sk_test", WEBHOOK_SECRET).create_checkout_session(
        user, price_id="price_pro", plan=PlanTier.PRO, origin="https://ghibli.example"
    )

    assert response.session_id == "cs_123"
    assert captured["list"]["email"] == "chihiro@example.com"
    session = captured["session"]
    assert session["customer"] == "cus_existing"
    assert session["api_key"] == "sk_test"
    assert session["mode"] == "subscription"
    assert session["success_url"] == "https://ghibli.example/success?session_id={CHECKOUT_SESSION_ID}"
    assert session["cancel_url"] == "https://ghibli.example/pricing"
    assert session["metadata"] == {"user_id": "user-1", "plan": "pro"}
    assert session["subscription_data"] == {"metadata": {"user_id": "user-1", "plan": "pro"}}


@pytest.mark.asyncio
async def test_new_customer_carries_supabase_user_id(monkeypatch):
    created: dict = {}

    def create_customer(**kwargs):
        created.update(kwargs)
        return SimpleNamespace(id="cus_new")

    monkeypatch.setattr(stripe.Customer, "list", lambda **kwargs: SimpleNamespace(data=[]))
    monkeypatch.setattr(stripe.Customer, "create", create_customer)

    customer_id = await StripeGateway("sk_test").find_or_create_customer(
        AuthenticatedUser(id="user-1", email="sophie@example.com")
    )

    assert customer_id == "cus_new"
    assert created["metadata"] == {"supabase_user_id": "user-1"}


@pytest.mark.asyncio
async def test_stripe_errors_become_payment_errors(monkeypatch):
    def fail(**kwargs):
        raise stripe.APIConnectionError("network down")

    monkeypatch.setattr(stripe.billing_portal.Session, "create", fail)

    with pytest.raises(PaymentProviderError):
        await StripeGateway("sk_test").create_portal_session("cus_1", origin="https://ghibli.example")


@pytest.mark.asyncio
async def test_missing_secret_key_is_configuration_error():
    with pytest.raises(ConfigurationError):
        await StripeGateway(None).create_portal_session("cus_1", origin="https://ghibli.example")
