"""Post-success usage accounting."""

from __future__ import annotations

import structlog

from ..repositories.subscriptions import SubscriptionStore, SubscriptionStoreError

logger = structlog.get_logger(__name__)


class UsageRecorder:
    """Increments the daily usage counter after a generation has been served.

    Runs after the response is sent; a failure here is logged and never
    reaches the caller, so a successful generation may go uncounted.
    """

    def __init__(self, store: SubscriptionStore) -> None:
        self._store = store

    async def record(self, user_id: str, increment: int = 1) -> bool:
        try:
            incremented = await self._store.increment_usage(user_id, increment)
        except SubscriptionStoreError as exc:
            logger.warning("usage.record_failed", user_id=user_id, error=str(exc))
            return False
        if not incremented:
            logger.warning("usage.increment_rejected", user_id=user_id)
            return False
        logger.info("usage.recorded", user_id=user_id, increment=increment)
        return True
