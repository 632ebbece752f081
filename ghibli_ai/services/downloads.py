"""Bounded image fetching and the allow-listed download proxy."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable
from urllib.parse import urlparse

import httpx
import structlog

from ..core.errors import (
    DownloadFailed,
    DownloadTimeout,
    ImageTooLarge,
    InvalidFileType,
    InvalidImageSource,
)

logger = structlog.get_logger(__name__)

USER_AGENT = "Ghibli-AI-Generator/1.8.0"


@dataclass(frozen=True)
class FetchedImage:
    data: bytes
    content_type: str


async def fetch_image(
    client: httpx.AsyncClient,
    url: str,
    *,
    timeout_seconds: float,
    max_bytes: int,
    default_content_type: str = "image/jpeg",
) -> FetchedImage:
    """GET ``url`` into memory, refusing bodies larger than ``max_bytes``.

    The size is checked against ``Content-Length`` up front and again while
    reading, so a missing or lying header cannot exceed the ceiling. Redirects
    are not followed.
    """

    try:
        async with client.stream(
            "GET",
            url,
            headers={"User-Agent": USER_AGENT},
            timeout=httpx.Timeout(timeout_seconds),
        ) as response:
            if not response.is_success:
                logger.warning("download.rejected", url=url, status=response.status_code)
                raise DownloadFailed()

            declared = response.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > max_bytes:
                raise ImageTooLarge("Image too large to download")

            buffer = bytearray()
            async for chunk in response.aiter_bytes():
                buffer.extend(chunk)
                if len(buffer) > max_bytes:
                    raise ImageTooLarge("Image too large to download")

            content_type = response.headers.get("content-type") or default_content_type
    except httpx.TimeoutException as exc:
        raise DownloadTimeout() from exc
    except httpx.HTTPError as exc:
        logger.warning("download.error", url=url, error=str(exc))
        raise DownloadFailed() from exc

    return FetchedImage(data=bytes(buffer), content_type=content_type)


def host_allowed(url: str, allowed_hosts: Iterable[str]) -> bool:
    """True when the URL's host is an allowed host or a subdomain of one."""

    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"}:
        return False
    host = (parsed.hostname or "").lower()
    if not host:
        return False
    return any(host == allowed or host.endswith(f".{allowed}") for allowed in allowed_hosts)


class ImageProxy:
    """Fetches generated images on behalf of the browser for download."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        allowed_hosts: Iterable[str],
        timeout_seconds: float = 30.0,
        max_bytes: int = 50 * 1024 * 1024,
    ) -> None:
        self._client = client
        self._allowed_hosts = [host.lower() for host in allowed_hosts]
        self._timeout = timeout_seconds
        self._max_bytes = max_bytes

    def ensure_allowed(self, url: str) -> None:
        if not host_allowed(url, self._allowed_hosts):
            logger.info("download.source_blocked", url=url)
            raise InvalidImageSource()

    async def fetch(self, url: str) -> FetchedImage:
        self.ensure_allowed(url)
        image = await fetch_image(
            self._client,
            url,
            timeout_seconds=self._timeout,
            max_bytes=self._max_bytes,
            default_content_type="image/png",
        )
        if not image.content_type.lower().startswith("image/"):
            raise InvalidFileType()
        return image
