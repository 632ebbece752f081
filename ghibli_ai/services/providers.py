"""Clients for the two external image-generation providers.

``ReplicateProvider`` is prediction based: a creation call returns an id and a
status that is then polled. ``IsmaqueProvider`` answers synchronously and
additionally accepts a callback URL for asynchronous delivery.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog

from ..core.errors import (
    GenerationFailed,
    ServiceAuthFailed,
    ServiceBusy,
    ServiceUnavailable,
    UpstreamTimeout,
)
from ..domain.generation import GenerationRequest, ProviderPrediction

logger = structlog.get_logger(__name__)


class PredictionProvider(ABC):
    """Image-conditioned generation tracked as a pollable prediction."""

    name: str = "prediction"
    model_label: str = "unknown"

    @property
    @abstractmethod
    def configured(self) -> bool:
        ...

    @abstractmethod
    async def submit(self, *, prompt: str, image_url: str) -> ProviderPrediction:
        """Create a prediction and return its initial state."""

    @abstractmethod
    async def poll(self, prediction_id: str) -> ProviderPrediction | None:
        """Return the prediction's current state, or None if the poll itself failed."""


class TextToImageProvider(ABC):
    """Text-conditioned generation answered in the response body."""

    name: str = "text"
    model_label: str = "unknown"

    @property
    @abstractmethod
    def configured(self) -> bool:
        ...

    @abstractmethod
    async def generate(
        self,
        request: GenerationRequest,
        *,
        prompt: str,
        negative_prompt: str,
        callback_url: str | None,
    ) -> str | None:
        """Return an image URL (or data URL), or None if the body held none."""


class ReplicateProvider(PredictionProvider):
    name = "replicate"

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        api_token: str | None,
        base_url: str = "https://api.replicate.com",
        model: str = "black-forest-labs/flux-kontext-pro",
        timeout_seconds: float = 60.0,
    ) -> None:
        self._client = client
        self._api_token = api_token
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout = httpx.Timeout(timeout_seconds)
        self.model_label = f"{model.rsplit('/', 1)[-1]} (Replicate)"

    @property
    def configured(self) -> bool:
        return bool(self._api_token)

    def _headers(self) -> dict[str, str]:
        if not self._api_token:
            raise ServiceUnavailable("Image generation service unavailable")
        return {"Authorization": f"Token {self._api_token}", "Content-Type": "application/json"}

    async def submit(self, *, prompt: str, image_url: str) -> ProviderPrediction:
        payload = {
            "input": {
                "prompt": prompt,
                "input_image": image_url,
                "aspect_ratio": "match_input_image",
                "output_format": "jpg",
                "safety_tolerance": 2,
            }
        }
        url = f"{self._base_url}/v1/models/{self._model}/predictions"
        try:
            response = await self._client.post(
                url, json=payload, headers=self._headers(), timeout=self._timeout
            )
        except httpx.TimeoutException as exc:
            raise UpstreamTimeout() from exc
        except httpx.HTTPError as exc:
            logger.error("replicate.submit_error", error=str(exc))
            raise GenerationFailed() from exc

        if response.is_error:
            logger.error(
                "replicate.submit_rejected",
                status=response.status_code,
                body=response.text[:1000],
            )
            raise GenerationFailed()

        prediction = _parse_prediction(response)
        logger.info("replicate.submitted", prediction_id=prediction.id, status=prediction.status.value)
        return prediction

    async def poll(self, prediction_id: str) -> ProviderPrediction | None:
        url = f"{self._base_url}/v1/predictions/{prediction_id}"
        try:
            response = await self._client.get(url, headers=self._headers(), timeout=self._timeout)
        except httpx.HTTPError as exc:
            logger.warning("replicate.poll_error", prediction_id=prediction_id, error=str(exc))
            return None
        if response.is_error:
            logger.warning(
                "replicate.poll_rejected", prediction_id=prediction_id, status=response.status_code
            )
            return None
        try:
            return _parse_prediction(response)
        except GenerationFailed:
            return None


def _parse_prediction(response: httpx.Response) -> ProviderPrediction:
    try:
        return ProviderPrediction.model_validate(response.json())
    except ValueError as exc:
        logger.error("replicate.unparseable_prediction", body=response.text[:500])
        raise GenerationFailed() from exc


class IsmaqueProvider(TextToImageProvider):
    name = "ismaque"

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        api_key: str | None,
        base_url: str = "https://ismaque.org",
        model: str = "flux-kontext-pro",
        timeout_seconds: float = 60.0,
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout = httpx.Timeout(timeout_seconds)
        self.model_label = f"{model} (Ismaque)"

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def generate(
        self,
        request: GenerationRequest,
        *,
        prompt: str,
        negative_prompt: str,
        callback_url: str | None,
    ) -> str | None:
        if not self._api_key:
            raise ServiceUnavailable("Text generation service unavailable")

        payload: dict[str, Any] = {
            "prompt": prompt,
            "negative_prompt": negative_prompt,
            "n": 1,
            "model": self._model,
            "aspect_ratio": request.aspect_ratio.value,
            "size": request.size,
            "quality": request.quality.value,
        }
        if callback_url:
            payload["webhook_url"] = callback_url

        try:
            response = await self._client.post(
                f"{self._base_url}/v1/images/generations",
                json=payload,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise UpstreamTimeout() from exc
        except httpx.HTTPError as exc:
            logger.error("ismaque.request_error", error=str(exc))
            raise GenerationFailed("Text generation failed") from exc

        if response.is_error:
            logger.error(
                "ismaque.request_rejected", status=response.status_code, body=response.text[:1000]
            )
            if response.status_code == 429:
                raise ServiceBusy()
            if response.status_code == 401:
                raise ServiceAuthFailed()
            raise GenerationFailed("Text generation failed")

        try:
            body = response.json()
        except ValueError as exc:
            logger.error("ismaque.unparseable_response", body=response.text[:500])
            raise GenerationFailed("Text generation failed") from exc
        return _extract_image(body)


def _extract_image(body: Any) -> str | None:
    data = body.get("data") if isinstance(body, dict) else None
    if not isinstance(data, list) or not data or not isinstance(data[0], dict):
        return None
    first = data[0]
    if first.get("url"):
        return str(first["url"])
    if first.get("b64_json"):
        return f"data:image/png;base64,{first['b64_json']}"
    return None
