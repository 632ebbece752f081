"""Validation of inbound generation requests."""

from __future__ import annotations

from typing import Any

import pydantic
import structlog

from ..core.errors import ValidationError
from ..domain.generation import GenerationRequest
from .content_filter import ContentClassifier, RegexDenylistClassifier

logger = structlog.get_logger(__name__)

_FIELD_MESSAGES = {
    "prompt": "Prompt must be between 1 and 500 characters",
    "aspect_ratio": "Aspect ratio must be one of 1:1, 4:3, 3:4, 16:9, 9:16",
    "quality": "Quality must be standard or hd",
    "input_image": "Reference image must be a base64 encoded string",
}


class RequestValidator:
    def __init__(self, classifier: ContentClassifier | None = None) -> None:
        self._classifier = classifier or RegexDenylistClassifier()

    def validate(self, raw: Any) -> GenerationRequest:
        """Parse ``raw`` into a :class:`GenerationRequest` with defaults applied."""

        if not isinstance(raw, dict):
            raise ValidationError("Request body must be a JSON object")
        try:
            request = GenerationRequest.model_validate(raw)
        except pydantic.ValidationError as exc:
            raise ValidationError(_first_message(exc)) from exc

        if self._classifier.is_unsafe(request.prompt):
            logger.info("validation.unsafe_prompt", prompt_length=len(request.prompt))
            raise ValidationError("Content contains inappropriate material")
        return request


def _first_message(exc: pydantic.ValidationError) -> str:
    for error in exc.errors():
        loc = error.get("loc") or ()
        field = str(loc[0]) if loc else ""
        for name, message in _FIELD_MESSAGES.items():
            if field in {name, _camel(name)}:
                return message
    return "Please check your input parameters"


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)
