"""Bounded polling of a prediction until it reaches a terminal state."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

import structlog

from ..core.errors import GenerationCancelled, GenerationFailed, GenerationTimeout
from ..domain.generation import PredictionStatus
from .providers import PredictionProvider

logger = structlog.get_logger(__name__)

CancelCheck = Callable[[], Awaitable[bool]]


class CompletionPoller:
    """Sleeps ``interval_seconds`` before each of at most ``max_attempts`` polls.

    The overall bound is ``interval_seconds * max_attempts``. A failed poll
    request counts as an attempt and polling continues. When ``should_cancel``
    is supplied it is consulted between attempts, which lets a request stop
    polling once its client has gone away; without it the loop runs to
    completion or timeout.
    """

    def __init__(
        self,
        provider: PredictionProvider,
        *,
        interval_seconds: float = 2.0,
        max_attempts: int = 30,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._interval = interval_seconds
        self._max_attempts = max_attempts
        self._sleep = sleep

    async def wait_for_output(
        self, prediction_id: str, *, should_cancel: CancelCheck | None = None
    ) -> str:
        for attempt in range(1, self._max_attempts + 1):
            await self._sleep(self._interval)
            if should_cancel is not None and await should_cancel():
                logger.info("poller.cancelled", prediction_id=prediction_id, attempt=attempt)
                raise GenerationCancelled()

            prediction = await self._provider.poll(prediction_id)
            if prediction is None:
                continue
            if prediction.status is PredictionStatus.SUCCEEDED and prediction.output:
                logger.info("poller.succeeded", prediction_id=prediction_id, attempt=attempt)
                return prediction.output
            if prediction.status.is_failure:
                logger.warning(
                    "poller.failed",
                    prediction_id=prediction_id,
                    attempt=attempt,
                    status=prediction.status.value,
                    error=prediction.error,
                )
                raise GenerationFailed()

        logger.warning("poller.timeout", prediction_id=prediction_id, attempts=self._max_attempts)
        raise GenerationTimeout()
