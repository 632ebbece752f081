from __future__ import annotations

from fastapi import APIRouter

from ... import __version__

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz() -> dict[str, str | bool]:
    return {"ok": True, "service": "api", "version": __version__}
