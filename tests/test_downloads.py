"""Allow-listed image proxy used by the download endpoint."""

import httpx
import pytest

from conftest import PNG_BYTES, image_handler
from ghibli_ai.core.errors import (
    DownloadFailed,
    DownloadTimeout,
    ImageTooLarge,
    InvalidFileType,
    InvalidImageSource,
)
from ghibli_ai.services.downloads import ImageProxy, host_allowed

ALLOWED = ["cdn.example.com", "replicate.delivery", "ismaque.org"]


def make_proxy(handler, max_bytes: int = 1024) -> ImageProxy:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ImageProxy(client=client, allowed_hosts=ALLOWED, timeout_seconds=5, max_bytes=max_bytes)


@pytest.mark.parametrize(
    ("url", "allowed"),
    [
        ("https://replicate.delivery/pbxt/a.jpg", True),
        ("https://pbxt.replicate.delivery/a.jpg", True),
        ("https://CDN.example.com/2026-10-19/generated/x.png", True),
        ("https://replicate.delivery.evil.com/a.jpg", False),
        ("https://evilreplicate.delivery/a.jpg", False),
        ("https://example.org/ismaque.org.png", False),
        ("ftp://ismaque.org/a.png", False),
        ("not a url", False),
    ],
)
def test_host_allow_list(url: str, allowed: bool):
    assert host_allowed(url, ALLOWED) is allowed


@pytest.mark.asyncio
async def test_fetch_returns_image_bytes_and_type():
    image = await make_proxy(image_handler(content_type="image/webp")).fetch("https://ismaque.org/a.webp")

    assert image.data == PNG_BYTES
    assert image.content_type == "image/webp"


@pytest.mark.asyncio
async def test_blocked_host_is_never_contacted():
    def refuse(request: httpx.Request) -> httpx.Response:
        raise AssertionError("must not fetch")

    with pytest.raises(InvalidImageSource) as exc_info:
        await make_proxy(refuse).fetch("https://169.254.169.254/latest/meta-data")

    assert exc_info.value.code == "INVALID_SOURCE"


@pytest.mark.asyncio
async def test_non_image_content_is_rejected():
    with pytest.raises(InvalidFileType):
        await make_proxy(image_handler(content=b"<html>", content_type="text/html")).fetch(
            "https://ismaque.org/page"
        )


@pytest.mark.asyncio
async def test_declared_oversize_is_rejected():
    with pytest.raises(ImageTooLarge):
        await make_proxy(image_handler(content=b"x" * 2048)).fetch("https://ismaque.org/big.png")


@pytest.mark.asyncio
async def test_streamed_oversize_is_rejected_without_content_length():
    async def chunks():
        for _ in range(4):
            yield b"x" * 512

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=chunks(), headers={"Content-Type": "image/png"})

    with pytest.raises(ImageTooLarge):
        await make_proxy(handler).fetch("https://ismaque.org/big.png")


@pytest.mark.asyncio
async def test_upstream_error_is_fetch_failed():
    with pytest.raises(DownloadFailed) as exc_info:
        await make_proxy(image_handler(status_code=404)).fetch("https://ismaque.org/missing.png")

    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_timeout_is_download_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(DownloadTimeout) as exc_info:
        await make_proxy(handler).fetch("https://ismaque.org/slow.png")

    assert exc_info.value.status_code == 408
