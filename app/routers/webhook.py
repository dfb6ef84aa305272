from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session
from starlette.requests import ClientDisconnect

from app.database import get_db
from app.logging_config import get_logger
from app.schemas.webhook import WebhookAck, WebhookDebugResponse
from app.services.debug_capture import webhook_debug_slot
from app.services.webhook_service import ingest_webhook, verify_subscription

logger = get_logger("webhook")

router = APIRouter(prefix="/whatsapp", tags=["webhook"])


@router.get("/webhook")
async def verify_webhook(
    hub_mode: Optional[str] = Query(default=None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
):
    """Meta subscription handshake: echo the challenge when the verify token matches."""
    challenge = verify_subscription(hub_mode, hub_verify_token, hub_challenge)
    if challenge is None:
        logger.warning("Webhook verification refused", extra={"context": {"mode": hub_mode}})
        return PlainTextResponse("Forbidden", status_code=403)
    return PlainTextResponse(challenge)


@router.post("/webhook", response_model=WebhookAck)
async def receive_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Inbound WhatsApp deliveries.

    Always answers 200: Meta retries non-2xx responses and eventually disables
    the subscription, and every message is deduplicated by its provider id.
    """
    try:
        payload = await request.json()
    except ClientDisconnect:
        logger.info("Webhook client disconnected during read")
        return WebhookAck()
    except Exception as exc:
        raw = await request.body()
        logger.warning(
            "Webhook payload is not valid JSON",
            extra={"context": {"error": type(exc).__name__, "body_preview": raw[:200].decode("utf-8", "ignore")}},
        )
        webhook_debug_slot.record(raw.decode("utf-8", "ignore"))
        return WebhookAck()

    ingest_webhook(db, payload, debug_slot=webhook_debug_slot)
    return WebhookAck()


@router.get("/webhook/debug", response_model=WebhookDebugResponse)
async def webhook_debug():
    """Last payload received by this instance. Empty after a restart."""
    snapshot = webhook_debug_slot.snapshot()
    if snapshot.received_at is None:
        message = "No webhook received since startup. Check the callback URL and subscription in the Meta app."
    else:
        message = "Last webhook received"
    return WebhookDebugResponse(
        message=message,
        last_payload=snapshot.payload,
        last_received_at=snapshot.received_at.isoformat() if snapshot.received_at else None,
    )
