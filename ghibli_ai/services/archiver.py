"""Re-hosting of provider output in the application's own bucket."""

from __future__ import annotations

import httpx
import structlog

from .downloads import fetch_image
from .images import ImageUploader, decode_data_url, is_data_url

logger = structlog.get_logger(__name__)


class ResultArchiver:
    """Copies a generated image into object storage, best effort.

    Any failure while downloading or uploading is logged and the original
    URL is handed back unchanged.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        uploader: ImageUploader,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._client = client
        self._uploader = uploader
        self._timeout = timeout_seconds

    async def archive(self, image_url: str) -> str:
        try:
            if is_data_url(image_url):
                image = decode_data_url(image_url, max_bytes=self._uploader.max_bytes)
                data, content_type = image.data, image.content_type
            else:
                fetched = await fetch_image(
                    self._client,
                    image_url,
                    timeout_seconds=self._timeout,
                    max_bytes=self._uploader.max_bytes,
                )
                data, content_type = fetched.data, fetched.content_type
            stored_url = await self._uploader.upload_bytes(data, content_type, kind="generated")
        except Exception as exc:
            logger.warning(
                "archive.failed",
                source=image_url if not is_data_url(image_url) else "data-url",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return image_url

        logger.info("archive.stored", url=stored_url)
        return stored_url
