from __future__ import annotations

import structlog
from fastapi import APIRouter, Request

from ...core.errors import ValidationError
from ...domain.generation import WebhookAck

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhook-callback", tags=["webhook-callback"])


@router.post("", response_model=WebhookAck)
async def receive_generation_callback(request: Request) -> WebhookAck:
    """Acknowledge the text provider's asynchronous delivery.

    The synchronous generation response is authoritative, so the payload is
    only logged.
    """

    try:
        payload = await request.json()
    except ValueError as exc:
        raise ValidationError("Callback body must be valid JSON") from exc
    keys = sorted(payload) if isinstance(payload, dict) else []
    logger.info("webhook_callback.received", keys=keys)
    return WebhookAck()


@router.get("", response_model=WebhookAck)
async def callback_liveness() -> WebhookAck:
    return WebhookAck(message="Webhook callback endpoint is live (GET)")
