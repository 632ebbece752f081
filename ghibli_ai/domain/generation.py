from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, AnyHttpUrl, BaseModel, Field, field_validator

from .billing import CamelModel

PROMPT_MAX_LENGTH = 500


class AspectRatio(str, Enum):
    SQUARE = "1:1"
    LANDSCAPE = "4:3"
    PORTRAIT = "3:4"
    WIDESCREEN = "16:9"
    VERTICAL = "9:16"


class Quality(str, Enum):
    STANDARD = "standard"
    HD = "hd"


ASPECT_RATIO_SIZES: dict[AspectRatio, str] = {
    AspectRatio.SQUARE: "1024x1024",
    AspectRatio.PORTRAIT: "1024x1536",
    AspectRatio.LANDSCAPE: "1536x1024",
    AspectRatio.WIDESCREEN: "1536x1024",
    AspectRatio.VERTICAL: "1024x1536",
}


def size_for_aspect_ratio(aspect_ratio: AspectRatio) -> str:
    """Return the provider pixel size (``WxH``) for an aspect ratio."""

    return ASPECT_RATIO_SIZES[aspect_ratio]


class GenerationRequest(CamelModel):
    """Normalised body of ``POST /generate``."""

    prompt: str = Field(..., min_length=1, max_length=PROMPT_MAX_LENGTH)
    aspect_ratio: AspectRatio = AspectRatio.SQUARE
    quality: Quality = Quality.STANDARD
    input_image: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("input_image", "inputImage", "referenceImage"),
        description="Reference image as a base64 data URL",
    )

    @field_validator("input_image")
    @classmethod
    def _blank_image_is_absent(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value

    @property
    def has_reference_image(self) -> bool:
        return self.input_image is not None

    @property
    def size(self) -> str:
        return size_for_aspect_ratio(self.aspect_ratio)


class PredictionStatus(str, Enum):
    STARTING = "starting"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_failure(self) -> bool:
        return self in (PredictionStatus.FAILED, PredictionStatus.CANCELED)


class ProviderPrediction(BaseModel):
    """A prediction tracked by the polling-style provider."""

    id: str
    status: PredictionStatus
    output: Optional[str] = None
    error: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.lower()
            if value == "aborted":
                return PredictionStatus.CANCELED
            if value not in PredictionStatus._value2member_map_:
                # queued and other provider-specific states are still in flight
                return PredictionStatus.PROCESSING
        return value

    @field_validator("output", mode="before")
    @classmethod
    def _first_output(cls, value: Any) -> Any:
        if isinstance(value, list):
            return value[0] if value else None
        return value


class GenerationStats(CamelModel):
    total_time_ms: int = Field(ge=0)
    model_used: str
    aspect_ratio: AspectRatio
    prompt_length: int = Field(ge=0)
    remaining_generations: int


class GenerationResult(CamelModel):
    image_url: str
    stats: GenerationStats


class GenerateResponse(CamelModel):
    success: bool = True
    image_url: str
    message: str = "Image generated successfully!"
    stats: GenerationStats


class DownloadRequest(CamelModel):
    image_url: AnyHttpUrl
    filename: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-zA-Z0-9\-_.]+$")


class WebhookAck(BaseModel):
    success: bool = True
    message: str = "Webhook callback received"
