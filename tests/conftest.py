"""Pytest configuration, fakes and fixtures shared by the test suite."""

from __future__ import annotations

import base64
import time
from typing import Callable, Iterable

import httpx
import pytest
from fastapi.testclient import TestClient
from jose import jwt

from ghibli_ai.api import dependencies
from ghibli_ai.core.config import Settings
from ghibli_ai.domain.billing import PaymentRecord, SubscriptionSnapshot, SubscriptionUpsert
from ghibli_ai.domain.generation import GenerationRequest, ProviderPrediction
from ghibli_ai.main import create_app
from ghibli_ai.repositories.subscriptions import SubscriptionStore, SubscriptionStoreError
from ghibli_ai.services.providers import PredictionProvider, TextToImageProvider
from ghibli_ai.services.storage import ObjectStore

JWT_SECRET = "test-jwt-secret"
USER_ID = "4f9a1a3e-1111-2222-3333-444455556666"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")


class FakeSubscriptionStore(SubscriptionStore):
    """In-memory stand-in for the Supabase subscription store."""

    def __init__(
        self,
        snapshot: SubscriptionSnapshot | None = None,
        *,
        customer_id: str | None = None,
    ) -> None:
        self.snapshot = snapshot
        self.customer_id = customer_id
        self.fail_reads = False
        self.fail_increments = False
        self.increment_result = True
        self.increments: list[str] = []
        self.upserts: list[tuple[str, SubscriptionUpsert]] = []
        self.payments: list[tuple[str, PaymentRecord]] = []

    async def get_snapshot(self, user_id: str) -> SubscriptionSnapshot | None:
        if self.fail_reads:
            raise SubscriptionStoreError("store unavailable")
        return self.snapshot

    async def increment_usage(self, user_id: str, increment: int = 1) -> bool:
        if self.fail_increments:
            raise SubscriptionStoreError("store unavailable")
        self.increments.append(user_id)
        return self.increment_result

    async def get_customer_id(self, user_id: str) -> str | None:
        return self.customer_id

    async def upsert_subscription(self, user_id: str, payload: SubscriptionUpsert) -> None:
        self.upserts.append((user_id, payload))

    async def record_payment(self, user_id: str, payload: PaymentRecord) -> None:
        self.payments.append((user_id, payload))


class FakeObjectStore(ObjectStore):
    def __init__(self, base_url: str = "https://cdn.example.com") -> None:
        self.base_url = base_url
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.fail = False

    async def put(self, object_key: str, data: bytes, *, content_type: str) -> None:
        if self.fail:
            raise OSError("bucket unreachable")
        self.objects[object_key] = (data, content_type)

    def public_url(self, object_key: str) -> str:
        return f"{self.base_url}/{object_key}"


class FakePredictionProvider(PredictionProvider):
    model_label = "fake-kontext (Prediction)"

    def __init__(
        self,
        initial: ProviderPrediction | None = None,
        polls: Iterable[ProviderPrediction | None] = (),
        *,
        configured: bool = True,
    ) -> None:
        self.initial = initial or ProviderPrediction(id="pred-1", status="starting")
        self.polls = list(polls)
        self._configured = configured
        self.submissions: list[dict[str, str]] = []
        self.poll_count = 0

    @property
    def configured(self) -> bool:
        return self._configured

    async def submit(self, *, prompt: str, image_url: str) -> ProviderPrediction:
        self.submissions.append({"prompt": prompt, "image_url": image_url})
        return self.initial

    async def poll(self, prediction_id: str) -> ProviderPrediction | None:
        self.poll_count += 1
        if not self.polls:
            return ProviderPrediction(id=prediction_id, status="processing")
        return self.polls.pop(0)


class FakeTextProvider(TextToImageProvider):
    model_label = "fake-kontext (Text)"

    def __init__(self, result: str | None = "https://ismaque.org/files/result.png") -> None:
        self.result = result
        self.error: Exception | None = None
        self.calls: list[dict[str, object]] = []

    @property
    def configured(self) -> bool:
        return True

    async def generate(
        self,
        request: GenerationRequest,
        *,
        prompt: str,
        negative_prompt: str,
        callback_url: str | None,
    ) -> str | None:
        self.calls.append(
            {"request": request, "prompt": prompt, "negative_prompt": negative_prompt, "callback_url": callback_url}
        )
        if self.error is not None:
            raise self.error
        return self.result


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def image_handler(
    content: bytes = PNG_BYTES, content_type: str = "image/png", status_code: int = 200
) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, content=content, headers={"Content-Type": content_type})

    return handler


def make_token(user_id: str = USER_ID, email: str | None = "miyazaki@example.com", secret: str = JWT_SECRET) -> str:
    claims = {"sub": user_id, "aud": "authenticated", "role": "authenticated", "exp": int(time.time()) + 3600}
    if email:
        claims["email"] = email
    return jwt.encode(claims, secret, algorithm="HS256")


def free_snapshot(used: int = 0, limit: int = 5) -> SubscriptionSnapshot:
    return SubscriptionSnapshot(plan="free", status="active", images_used_today=used, images_limit=limit)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        SUPABASE_JWT_SECRET=JWT_SECRET,
        SUPABASE_URL="https://project.supabase.co",
        SUPABASE_SERVICE_ROLE_KEY="service-role",
        STRIPE_SECRET_KEY="sk_test_123",
        STRIPE_WEBHOOK_SECRET="whsec_test",
        STRIPE_PRO_PRICE_ID="price_pro",
        STRIPE_ENTERPRISE_PRICE_ID="price_enterprise",
        PUBLIC_BASE_URL="https://api.ghibli.example",
        R2_PUBLIC_URL_BASE="https://cdn.example.com",
        POLL_INTERVAL_SECONDS=0,
        RATE_LIMIT_MAX_REQUESTS=10,
        ENABLE_PROMETHEUS_METRICS=False,
    )


@pytest.fixture
def store() -> FakeSubscriptionStore:
    return FakeSubscriptionStore(free_snapshot())


@pytest.fixture
def object_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def text_provider() -> FakeTextProvider:
    return FakeTextProvider()


@pytest.fixture
def prediction_provider() -> FakePredictionProvider:
    return FakePredictionProvider(
        polls=[ProviderPrediction(id="pred-1", status="succeeded", output=["https://replicate.delivery/out.jpg"])]
    )


@pytest.fixture
def upstream() -> dict[str, Callable[[httpx.Request], httpx.Response]]:
    """Routes outbound HTTP made by the app; tests may replace ``handler``."""

    return {"handler": image_handler()}


@pytest.fixture
def app(settings, store, object_store, text_provider, prediction_provider, upstream):
    application = create_app(settings)
    mock_client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: upstream["handler"](request)))

    async def _client() -> httpx.AsyncClient:
        return mock_client

    async def _store() -> SubscriptionStore:
        return store

    async def _object_store() -> ObjectStore:
        return object_store

    async def _text_provider() -> TextToImageProvider:
        return text_provider

    async def _prediction_provider() -> PredictionProvider:
        return prediction_provider

    application.dependency_overrides[dependencies.get_http_client] = _client
    application.dependency_overrides[dependencies.get_subscription_store] = _store
    application.dependency_overrides[dependencies.get_object_store] = _object_store
    application.dependency_overrides[dependencies.get_text_provider] = _text_provider
    application.dependency_overrides[dependencies.get_prediction_provider] = _prediction_provider
    return application


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token()}"}
