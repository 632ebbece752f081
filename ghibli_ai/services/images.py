"""Inline image payload handling and uploads to object storage."""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass

import structlog

from ..core.errors import ConfigurationError, ImageTooLarge, UploadFailed, ValidationError
from .storage import ObjectStore, generate_object_key

logger = structlog.get_logger(__name__)

_DATA_URL_PREFIX = re.compile(r"^data:(?P<mime>image/[\w.+-]+)(?:;[^,;]*)*;base64,", re.IGNORECASE)
DEFAULT_CONTENT_TYPE = "image/png"


@dataclass(frozen=True)
class DecodedImage:
    data: bytes
    content_type: str


def extension_for(content_type: str) -> str:
    """``image/svg+xml`` -> ``svg``, ``image/jpeg`` -> ``jpeg``."""

    subtype = content_type.split(";", 1)[0].split("/", 1)[-1]
    return subtype.split("+", 1)[0].lower() or "png"


def is_data_url(value: str) -> bool:
    return value[:5].lower() == "data:"


def decode_data_url(value: str, *, max_bytes: int) -> DecodedImage:
    """Decode a base64 image, with or without a ``data:image/...`` prefix.

    Raises ``ImageTooLarge`` when the decoded payload exceeds ``max_bytes`` and
    ``ValidationError`` when it is not valid base64.
    """

    match = _DATA_URL_PREFIX.match(value)
    if match:
        content_type = match.group("mime").lower()
        encoded = value[match.end():]
    elif is_data_url(value):
        raise ValidationError("Unsupported image data")
    else:
        content_type = DEFAULT_CONTENT_TYPE
        encoded = value

    encoded = "".join(encoded.split())
    if len(encoded) * 3 // 4 > max_bytes + 3:
        raise ImageTooLarge()
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Invalid image data") from exc
    if not data:
        raise ValidationError("Invalid image data")
    if len(data) > max_bytes:
        raise ImageTooLarge()
    return DecodedImage(data=data, content_type=content_type)


class ImageUploader:
    """Stores image bytes in the application's bucket and returns public URLs."""

    def __init__(self, storage: ObjectStore | None, *, max_bytes: int) -> None:
        self._storage = storage
        self._max_bytes = max_bytes

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    async def upload_data_url(self, data_url: str, *, kind: str = "uploaded") -> str:
        image = decode_data_url(data_url, max_bytes=self._max_bytes)
        return await self.upload_bytes(image.data, image.content_type, kind=kind)

    async def upload_bytes(self, data: bytes, content_type: str, *, kind: str) -> str:
        if self._storage is None:
            raise ConfigurationError("Missing R2 configuration")
        if len(data) > self._max_bytes:
            raise ImageTooLarge()

        object_key = generate_object_key(kind, extension_for(content_type))
        try:
            await self._storage.put(object_key, data, content_type=content_type)
        except Exception as exc:
            logger.warning("storage.upload_failed", key=object_key, error=str(exc))
            raise UploadFailed() from exc
        logger.info("storage.uploaded", key=object_key, bytes=len(data), kind=kind)
        return self._storage.public_url(object_key)
