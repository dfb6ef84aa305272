import hmac
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from pydantic import ValidationError as PayloadValidationError
from sqlalchemy.orm import Session

from app.config import settings
from app.logging_config import get_logger
from app.models import Integration, Message
from app.schemas.webhook import WhatsAppChangeValue, WhatsAppInboundMessage, WhatsAppStatus, WhatsAppWebhookPayload
from app.services.conversation_service import (
    STATUS_OPEN,
    append_message,
    find_message_by_provider_id,
    get_or_create_conversation,
)
from app.services.debug_capture import WebhookDebugSlot, webhook_debug_slot
from app.services.errors import IngestionError
from app.services.phone import normalize_phone
from app.services.state_machine import IntegrationStatus, ProviderType
from app.services.tenant import ClinicScope

logger = get_logger("webhook_service")

WHATSAPP_OBJECT = "whatsapp_business_account"

# Delivery statuses only move forward; "failed" always applies.
STATUS_RANK = {"sent": 1, "delivered": 2, "read": 3}
KNOWN_STATUSES = set(STATUS_RANK) | {"failed"}


@dataclass
class IngestSummary:
    received: int = 0
    stored: int = 0
    duplicates: int = 0
    statuses_updated: int = 0
    failed: int = 0


def verify_subscription(mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> Optional[str]:
    """Meta webhook handshake. Returns the challenge to echo, or None to refuse."""
    expected = settings.meta_webhook_verify_token
    if mode != "subscribe" or not expected or not token or challenge is None:
        return None
    if not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        return None
    return challenge


def resolve_whatsapp_clinic(db: Session, phone_number_id: Optional[str], waba_id: Optional[str]) -> Optional[UUID]:
    """Map the receiving business number to its clinic. This is the only lookup not bound to a clinic."""
    if not phone_number_id and not waba_id:
        return None
    candidates = (
        db.query(Integration)
        .filter(
            Integration.provider == ProviderType.WHATSAPP.value,
            Integration.status.in_([IntegrationStatus.CONNECTED.value, IntegrationStatus.ERROR.value]),
        )
        .all()
    )
    for key, value in (("phone_number_id", phone_number_id), ("waba_id", waba_id)):
        if not value:
            continue
        clinic_ids = {i.clinic_id for i in candidates if (i.integration_metadata or {}).get(key) == value}
        if len(clinic_ids) == 1:
            return clinic_ids.pop()
        if clinic_ids:
            logger.error(
                "WhatsApp number claimed by several clinics, not routing",
                extra={"context": {key: value, "clinic_count": len(clinic_ids)}},
            )
            return None
    return None


def _message_body(message: WhatsAppInboundMessage) -> str:
    if message.text and message.text.body:
        return message.text.body
    return f"[{message.type or 'message'}]"


def _contact_names(value: WhatsAppChangeValue) -> dict[str, str]:
    names = {}
    for contact in value.contacts:
        if contact.wa_id and contact.profile and contact.profile.name:
            names[normalize_phone(contact.wa_id)] = contact.profile.name
    return names


def ingest_inbound_message(
    scope: ClinicScope,
    message: WhatsAppInboundMessage,
    contact_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> bool:
    """Store one inbound message. Returns False when it was already stored (redelivery)."""
    canonical_phone = normalize_phone(message.from_phone)
    if not canonical_phone:
        raise IngestionError("Inbound message without sender phone")

    now = now or datetime.now(timezone.utc)
    conversation = get_or_create_conversation(scope, canonical_phone, contact_name=contact_name, now=now)

    if message.id and find_message_by_provider_id(scope, conversation.id, message.id):
        return False

    stored = append_message(
        scope,
        conversation,
        direction="inbound",
        body=_message_body(message),
        provider_message_id=message.id,
        status="received",
        message_type=message.type or "text",
        now=now,
    )
    if stored is None:
        return False

    conversation.last_inbound_at = now
    conversation.status = STATUS_OPEN
    scope.db.flush()
    return True


def apply_status_update(scope: ClinicScope, status: WhatsAppStatus) -> bool:
    """Move an outbound message's delivery status forward."""
    if not status.id or status.status not in KNOWN_STATUSES:
        return False

    message = (
        scope.messages()
        .filter(Message.provider_message_id == status.id, Message.direction == "outbound")
        .first()
    )
    if message is None:
        return False

    if status.status != "failed" and STATUS_RANK.get(status.status, 0) <= STATUS_RANK.get(message.status, 0):
        return False

    message.status = status.status
    if status.status == "failed":
        message.error_message = next((err.message or err.title for err in status.errors if err), None)
    scope.db.flush()
    return True


def _process_value(
    db: Session,
    value: WhatsAppChangeValue,
    waba_id: Optional[str],
    summary: IngestSummary,
    now: datetime,
) -> None:
    phone_number_id = value.metadata.phone_number_id if value.metadata else None
    clinic_id = resolve_whatsapp_clinic(db, phone_number_id, waba_id)
    if clinic_id is None:
        raise IngestionError(f"No connected WhatsApp integration for phone_number_id={phone_number_id}")

    scope = ClinicScope(db, clinic_id)
    names = _contact_names(value)

    for message in value.messages:
        summary.received += 1
        try:
            contact_name = names.get(normalize_phone(message.from_phone))
            if ingest_inbound_message(scope, message, contact_name=contact_name, now=now):
                summary.stored += 1
            else:
                summary.duplicates += 1
            db.commit()
        except Exception as exc:
            db.rollback()
            summary.failed += 1
            logger.error(
                "Inbound message ingestion failed",
                extra={
                    "context": {
                        "clinic_id": str(clinic_id),
                        "provider_message_id": message.id,
                        "error": str(exc),
                    }
                },
            )

    for status in value.statuses:
        try:
            if apply_status_update(scope, status):
                summary.statuses_updated += 1
            db.commit()
        except Exception as exc:
            db.rollback()
            summary.failed += 1
            logger.error(
                "Status update failed",
                extra={"context": {"clinic_id": str(clinic_id), "provider_message_id": status.id, "error": str(exc)}},
            )


def ingest_webhook(
    db: Session,
    payload: Any,
    *,
    debug_slot: Optional[WebhookDebugSlot] = None,
    now: Optional[datetime] = None,
) -> IngestSummary:
    """
    Process a WhatsApp webhook delivery. Never raises.

    Redelivered messages are detected by provider message id; failures are
    logged and left for the provider's own redelivery to repair.
    """
    summary = IngestSummary()
    now = now or datetime.now(timezone.utc)

    try:
        (debug_slot or webhook_debug_slot).record(payload)
    except Exception as exc:
        logger.warning("Webhook debug capture failed", extra={"context": {"error": str(exc)}})

    try:
        envelope = WhatsAppWebhookPayload.model_validate(payload)
    except PayloadValidationError as exc:
        logger.warning("Webhook payload rejected", extra={"context": {"error": str(exc)[:500]}})
        return summary

    if envelope.object and envelope.object != WHATSAPP_OBJECT:
        logger.info("Webhook object ignored", extra={"context": {"object": envelope.object}})
        return summary

    for entry in envelope.entry:
        for change in entry.changes:
            if change.value is None or (change.field and change.field != "messages"):
                continue
            try:
                _process_value(db, change.value, entry.id, summary, now)
            except IngestionError as exc:
                summary.failed += len(change.value.messages) + len(change.value.statuses)
                logger.warning("Webhook change skipped", extra={"context": {"error": exc.message}})
            except Exception as exc:
                db.rollback()
                summary.failed += 1
                logger.error("Webhook change processing failed", extra={"context": {"error": str(exc)}})

    logger.info("Webhook processed", extra={"context": summary.__dict__})
    return summary
