from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from app.logging_config import get_logger
from app.services.conversation_service import append_message, get_or_create_conversation
from app.services.errors import PolicyError, ProviderError, ValidationError
from app.services.integration_service import (
    ensure_fresh_google_credentials,
    get_connected_integration,
    record_failure,
)
from app.services.phone import is_valid_recipient, normalize_phone
from app.services.providers import GoogleEmailClient, MetaWhatsAppClient
from app.services.state_machine import ProviderType
from app.services.tenant import ClinicScope
from app.services.window_service import is_within_window

logger = get_logger("dispatch_service")


@dataclass
class SendResult:
    message_id: Optional[str]
    conversation_id: Optional[UUID] = None


def send_whatsapp_text(
    scope: ClinicScope,
    to: str,
    text: str,
    client: Optional[MetaWhatsAppClient] = None,
    now: Optional[datetime] = None,
) -> SendResult:
    """
    Send a free-form WhatsApp reply.

    Checks run in order and the first failure wins: recipient, text,
    connection, 24h window. The provider is called once; failures are not
    retried because the send carries no idempotency key.
    """
    canonical_phone = normalize_phone(to)
    if not is_valid_recipient(canonical_phone):
        raise ValidationError("Invalid phone number")

    text = (text or "").strip()
    if not text:
        raise ValidationError("text is required")

    provider = ProviderType.WHATSAPP.value
    integration = get_connected_integration(scope, provider)
    phone_number_id = (integration.integration_metadata or {}).get("phone_number_id")
    access_token = (integration.credentials or {}).get("access_token")
    if not phone_number_id or not access_token:
        raise PolicyError("WhatsApp sending number is not configured", code="integration_not_connected")

    now = now or datetime.now(timezone.utc)
    if not is_within_window(scope, canonical_phone, now=now):
        raise PolicyError(
            "The customer has not written in the last 24 hours; only template messages are allowed",
            code="outside_24h",
        )

    client = client or MetaWhatsAppClient()
    try:
        provider_message_id = client.send_text(access_token, phone_number_id, canonical_phone, text)
    except ProviderError as exc:
        record_failure(scope, provider, exc)
        raise

    # Delivery already happened: a storage failure is logged and the provider id still returned.
    try:
        conversation = get_or_create_conversation(scope, canonical_phone, now=now)
        append_message(
            scope,
            conversation,
            direction="outbound",
            body=text,
            provider_message_id=provider_message_id,
            status="sent",
            now=now,
        )
        conversation.last_outbound_at = now
        scope.db.flush()
    except SQLAlchemyError as exc:
        scope.db.rollback()
        logger.error(
            "WhatsApp message sent but not recorded",
            extra={
                "context": {
                    "clinic_id": str(scope.clinic_id),
                    "provider_message_id": provider_message_id,
                    "error": str(exc),
                }
            },
        )
        return SendResult(message_id=provider_message_id)

    logger.info(
        "WhatsApp message sent",
        extra={
            "context": {
                "clinic_id": str(scope.clinic_id),
                "conversation_id": str(conversation.id),
                "provider_message_id": provider_message_id,
            }
        },
    )
    return SendResult(message_id=provider_message_id, conversation_id=conversation.id)


def send_email(
    scope: ClinicScope,
    to: str,
    subject: str,
    body: str,
    client: Optional[GoogleEmailClient] = None,
    now: Optional[datetime] = None,
) -> SendResult:
    """Send an email through the clinic's connected Google account."""
    to = (to or "").strip()
    if not to or "@" not in to:
        raise ValidationError("Invalid email address")
    if not (subject or "").strip() or not (body or "").strip():
        raise ValidationError("subject and body are required")

    provider = ProviderType.EMAIL_GOOGLE.value
    integration = get_connected_integration(scope, provider)
    from_email = (integration.integration_metadata or {}).get("email")
    if not from_email:
        raise PolicyError("Sender email is not configured", code="integration_not_connected")

    client = client or GoogleEmailClient()
    credentials = ensure_fresh_google_credentials(scope, integration, client, now=now)
    try:
        message_id = client.send_email(credentials.get("access_token"), from_email, to, subject, body)
    except ProviderError as exc:
        record_failure(scope, provider, exc)
        raise

    logger.info(
        "Email sent",
        extra={"context": {"clinic_id": str(scope.clinic_id), "provider_message_id": message_id}},
    )
    return SendResult(message_id=message_id)
