"""Per-account daily generation allowance checks."""

from __future__ import annotations

import structlog

from ..core.errors import QuotaExceeded, SubscriptionUnavailable, Unauthenticated
from ..domain.billing import SubscriptionSnapshot
from ..repositories.subscriptions import SubscriptionStore, SubscriptionStoreError

logger = structlog.get_logger(__name__)


class QuotaGate:
    """Reads a fresh subscription snapshot and rejects accounts over quota.

    The check is read-then-act against the external store, so two requests
    racing at the boundary can both be admitted; the store stays the system of
    record.
    """

    def __init__(self, store: SubscriptionStore) -> None:
        self._store = store

    async def fetch(self, user_id: str | None) -> SubscriptionSnapshot:
        if not user_id:
            raise Unauthenticated()
        try:
            snapshot = await self._store.get_snapshot(user_id)
        except SubscriptionStoreError as exc:
            raise SubscriptionUnavailable() from exc
        if snapshot is None:
            logger.warning("quota.snapshot_missing", user_id=user_id)
            raise SubscriptionUnavailable()
        return snapshot

    async def check(self, user_id: str | None) -> SubscriptionSnapshot:
        """Return the snapshot when the account may generate another image."""

        snapshot = await self.fetch(user_id)
        if not snapshot.can_generate:
            logger.info(
                "quota.exceeded",
                user_id=user_id,
                plan=snapshot.plan,
                status=snapshot.status,
                used=snapshot.images_used_today,
                limit=snapshot.images_limit,
            )
            raise QuotaExceeded(plan=snapshot.plan, limit=snapshot.images_limit)
        return snapshot
