from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from ...domain.generation import DownloadRequest
from ...services.downloads import ImageProxy
from ..dependencies import get_image_proxy

router = APIRouter(tags=["download"])

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


@router.post("/download", response_class=Response)
async def download_image(
    payload: DownloadRequest,
    proxy: ImageProxy = Depends(get_image_proxy),
) -> Response:
    image = await proxy.fetch(str(payload.image_url))
    return Response(
        content=image.data,
        media_type=image.content_type,
        headers={
            "Content-Disposition": f'attachment; filename="{payload.filename}"',
            **NO_CACHE_HEADERS,
        },
    )
