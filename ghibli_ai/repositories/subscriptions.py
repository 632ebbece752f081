"""Subscription and usage persistence backed by Supabase."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog
from fastapi.encoders import jsonable_encoder

from ..domain.billing import PaymentRecord, SubscriptionSnapshot, SubscriptionUpsert

logger = structlog.get_logger(__name__)


class SubscriptionStoreError(RuntimeError):
    """Raised when the subscription store cannot be reached or rejects a call."""


class SubscriptionStore(ABC):
    """Interface for the external system of record for plans and usage."""

    @abstractmethod
    async def get_snapshot(self, user_id: str) -> SubscriptionSnapshot | None:
        """Return the user's plan and today's usage, or None if unknown."""

    @abstractmethod
    async def increment_usage(self, user_id: str, increment: int = 1) -> bool:
        """Add ``increment`` to today's usage counter."""

    @abstractmethod
    async def get_customer_id(self, user_id: str) -> str | None:
        """Return the Stripe customer id linked to the user, if any."""

    @abstractmethod
    async def upsert_subscription(self, user_id: str, payload: SubscriptionUpsert) -> None:
        """Create or update the user's subscription row."""

    @abstractmethod
    async def record_payment(self, user_id: str, payload: PaymentRecord) -> None:
        """Append an entry to the user's payment history."""


class SupabaseSubscriptionStore(SubscriptionStore):
    """Talks to Supabase PostgREST using the service-role key.

    ``get_user_subscription`` and ``increment_usage`` are remote procedures
    defined in the database; the two tables are written directly.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        base_url: str,
        service_role_key: str,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._client = client
        self._rest_url = f"{base_url.rstrip('/')}/rest/v1"
        self._timeout = httpx.Timeout(timeout_seconds)
        self._headers = {
            "apikey": service_role_key,
            "Authorization": f"Bearer {service_role_key}",
            "Content-Type": "application/json",
        }

    async def get_snapshot(self, user_id: str) -> SubscriptionSnapshot | None:
        rows = await self._rpc("get_user_subscription", {"user_uuid": user_id})
        if not rows:
            return None
        row = rows[0] if isinstance(rows, list) else rows
        try:
            return SubscriptionSnapshot.from_row(row)
        except (AttributeError, TypeError, ValueError) as exc:
            logger.warning("subscriptions.row_invalid", user_id=user_id, error=str(exc))
            raise SubscriptionStoreError("Supabase returned an unreadable subscription row") from exc

    async def increment_usage(self, user_id: str, increment: int = 1) -> bool:
        result = await self._rpc(
            "increment_usage", {"user_uuid": user_id, "increment_by": increment}
        )
        return result is True

    async def get_customer_id(self, user_id: str) -> str | None:
        rows = await self._request(
            "GET",
            "/user_subscriptions",
            params={"select": "stripe_customer_id", "user_id": f"eq.{user_id}", "limit": "1"},
        )
        if not rows or not isinstance(rows, list) or not isinstance(rows[0], dict):
            return None
        return rows[0].get("stripe_customer_id") or None

    async def upsert_subscription(self, user_id: str, payload: SubscriptionUpsert) -> None:
        body = {
            "user_id": user_id,
            **jsonable_encoder(payload),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        await self._request(
            "POST",
            "/user_subscriptions",
            params={"on_conflict": "user_id"},
            json=body,
            extra_headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )

    async def record_payment(self, user_id: str, payload: PaymentRecord) -> None:
        await self._request(
            "POST",
            "/payment_history",
            json={"user_id": user_id, **jsonable_encoder(payload)},
            extra_headers={"Prefer": "return=minimal"},
        )

    async def _rpc(self, name: str, params: dict[str, Any]) -> Any:
        return await self._request("POST", f"/rpc/{name}", json=params)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        extra_headers: dict[str, str] | None = None,
    ) -> Any:
        headers = dict(self._headers)
        if extra_headers:
            headers.update(extra_headers)
        try:
            response = await self._client.request(
                method,
                f"{self._rest_url}{path}",
                params=params,
                json=json,
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            logger.warning("subscriptions.request_failed", path=path, error=str(exc))
            raise SubscriptionStoreError(f"Supabase request to {path} failed") from exc

        if response.is_error:
            logger.warning(
                "subscriptions.request_rejected",
                path=path,
                status=response.status_code,
                body=response.text[:500],
            )
            raise SubscriptionStoreError(
                f"Supabase request to {path} returned {response.status_code}"
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            logger.warning("subscriptions.response_unreadable", path=path, body=response.text[:200])
            raise SubscriptionStoreError(f"Supabase request to {path} returned invalid JSON") from exc
