"""Provider routing for ``POST /generate``.

Requests carrying a reference image are uploaded to storage and sent to the
prediction provider, whose result is polled; text-only requests go to the
text provider which answers in the response body. Either way the resulting
image is re-hosted by the archiver before the stats are assembled.
"""

from __future__ import annotations

import time
from typing import Callable

import structlog

from ..core.errors import GenerationFailed, ServiceUnavailable
from ..domain.billing import UNLIMITED, SubscriptionSnapshot
from ..domain.generation import (
    GenerationRequest,
    GenerationResult,
    GenerationStats,
    PredictionStatus,
)
from ..telemetry import track_generation
from .archiver import ResultArchiver
from .images import ImageUploader
from .poller import CancelCheck, CompletionPoller
from .providers import PredictionProvider, TextToImageProvider

logger = structlog.get_logger(__name__)

GHIBLI_STYLE = (
    "Studio Ghibli anime style, soft watercolor background, warm and muted color palette, "
    "gentle thin outlines, peaceful atmosphere, hand-drawn aesthetic with a vintage paper texture."
)
NEGATIVE_PROMPT = (
    "multiple women, multiple men, multiple people, duplicated characters, twins, "
    "two people, three people, ugly, deformed, noisy, blurry, low-contrast, grainy"
)


def compose_image_prompt(prompt: str) -> str:
    guidance = prompt.strip() or "the subject in the image"
    return (
        f"Redraw the entire image in the style of {GHIBLI_STYLE} "
        f"Maintain the original subject, colors, and composition. User guidance: '{guidance}'."
    )


def compose_text_prompt(prompt: str) -> str:
    return f"{prompt.strip()}, {GHIBLI_STYLE}"


def remaining_after_success(snapshot: SubscriptionSnapshot) -> int:
    """Generations left once the current one is counted; -1 for unlimited plans."""

    if snapshot.is_unlimited:
        return UNLIMITED
    return max(0, snapshot.images_limit - snapshot.images_used_today - 1)


class GenerationOrchestrator:
    def __init__(
        self,
        *,
        image_provider: PredictionProvider,
        text_provider: TextToImageProvider,
        poller: CompletionPoller,
        uploader: ImageUploader,
        archiver: ResultArchiver,
        callback_url: str | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._image_provider = image_provider
        self._text_provider = text_provider
        self._poller = poller
        self._uploader = uploader
        self._archiver = archiver
        self._callback_url = callback_url
        self._clock = clock

    async def generate(
        self,
        request: GenerationRequest,
        snapshot: SubscriptionSnapshot,
        *,
        should_cancel: CancelCheck | None = None,
    ) -> GenerationResult:
        started = self._clock()
        path = "image" if request.has_reference_image else "text"
        with track_generation(path):
            if request.input_image is not None:
                raw_url = await self._from_reference_image(request.input_image, request.prompt, should_cancel)
                model_used = self._image_provider.model_label
            else:
                raw_url = await self._from_text(request)
                model_used = self._text_provider.model_label
            if not raw_url:
                raise GenerationFailed("No image generated", code="NO_IMAGE_GENERATED")
            image_url = await self._archiver.archive(raw_url)
        elapsed = self._clock() - started

        stats = GenerationStats(
            total_time_ms=max(0, int(elapsed * 1000)),
            model_used=model_used,
            aspect_ratio=request.aspect_ratio,
            prompt_length=len(request.prompt),
            remaining_generations=remaining_after_success(snapshot),
        )
        logger.info(
            "generation.completed",
            path=path,
            model=model_used,
            total_time_ms=stats.total_time_ms,
            archived=image_url != raw_url,
        )
        return GenerationResult(image_url=image_url, stats=stats)

    async def _from_reference_image(
        self, input_image: str, prompt: str, should_cancel: CancelCheck | None
    ) -> str | None:
        if not self._image_provider.configured:
            raise ServiceUnavailable("Image generation service unavailable")

        reference_url = await self._uploader.upload_data_url(input_image, kind="uploaded")
        prediction = await self._image_provider.submit(
            prompt=compose_image_prompt(prompt), image_url=reference_url
        )

        if prediction.status is PredictionStatus.SUCCEEDED and prediction.output:
            return prediction.output
        if prediction.status.is_failure:
            logger.warning(
                "generation.prediction_failed",
                prediction_id=prediction.id,
                status=prediction.status.value,
                error=prediction.error,
            )
            raise GenerationFailed()
        return await self._poller.wait_for_output(prediction.id, should_cancel=should_cancel)

    async def _from_text(self, request: GenerationRequest) -> str | None:
        return await self._text_provider.generate(
            request,
            prompt=compose_text_prompt(request.prompt),
            negative_prompt=NEGATIVE_PROMPT,
            callback_url=self._callback_url,
        )
