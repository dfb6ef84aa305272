"""Per-clinic provider connections: OAuth authorize/callback, failures, disconnect."""

import uuid
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import Integration
from app.services.conversation_service import upsert_statement
from app.services.errors import AuthorizationError, NotFoundError, PolicyError, ProviderError, ValidationError
from app.services.providers import ProviderClient, get_provider_client, parse_provider
from app.services.state_machine import IntegrationStatus, ProviderType, connect, disconnect, fail
from app.services.state_token import issue_state_token, verify_state_token
from app.services.tenant import ClinicScope

logger = get_logger("integration_service")

# Metadata keys safe to show in status views
PUBLIC_METADATA_KEYS = ("email", "phone_number_id", "waba_id", "user_name")


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _scrub(integration: Integration) -> None:
    integration.status = disconnect(IntegrationStatus(integration.status)).value
    integration.credentials = {}
    integration.integration_metadata = {}
    integration.connected_at = None
    integration.last_sync_at = None
    integration.error_message = None


def ensure_phone_number_unclaimed(scope: ClinicScope, phone_number_id: Optional[str]) -> None:
    """Refuse a WhatsApp number that a live integration of another clinic already receives on."""
    if not phone_number_id:
        return
    others = (
        scope.db.query(Integration)
        .filter(
            Integration.provider == ProviderType.WHATSAPP.value,
            Integration.clinic_id != scope.clinic_id,
            Integration.status.in_([IntegrationStatus.CONNECTED.value, IntegrationStatus.ERROR.value]),
        )
        .all()
    )
    if any((other.integration_metadata or {}).get("phone_number_id") == phone_number_id for other in others):
        logger.warning(
            "WhatsApp number already in use by another clinic",
            extra={"context": {"clinic_id": str(scope.clinic_id), "phone_number_id": phone_number_id}},
        )
        raise PolicyError("This WhatsApp number is already connected to another clinic", code="phone_number_in_use")


def get_or_create_integration(scope: ClinicScope, provider: str) -> Integration:
    integration = scope.integration(provider)
    if integration:
        return integration

    stmt = (
        upsert_statement(scope.db, Integration)
        .values(
            id=uuid.uuid4(),
            clinic_id=scope.clinic_id,
            type=provider,
            status=IntegrationStatus.DISCONNECTED.value,
            credentials={},
            metadata={},
        )
        .on_conflict_do_nothing(index_elements=["clinic_id", "type"])
    )
    scope.db.execute(stmt)
    return scope.integration(provider)


def authorize(
    scope: ClinicScope,
    user_id: UUID,
    provider: str,
    redirect_uri: str,
    client: Optional[ProviderClient] = None,
) -> str:
    """Build the provider consent URL. Reads nothing but the caller's role and writes nothing."""
    provider = parse_provider(provider).value
    scope.require_admin(user_id)
    client = client or get_provider_client(provider)
    state = issue_state_token(scope.clinic_id, user_id, provider)
    logger.info(
        "OAuth authorize started",
        extra={"context": {"clinic_id": str(scope.clinic_id), "provider": provider}},
    )
    return client.build_authorize_url(state, redirect_uri)


def complete_authorization(
    db: Session,
    user_id: UUID,
    provider: str,
    state: Optional[str],
    code: Optional[str],
    redirect_uri: str,
    client: Optional[ProviderClient] = None,
    now: Optional[datetime] = None,
) -> Integration:
    """
    Finish the OAuth callback and move the integration to connected.

    The signed state only tells us which clinic and user started the flow; the
    caller must be that user and must still be an admin of that clinic.
    """
    provider = parse_provider(provider).value
    claims = verify_state_token(state)
    if claims.provider != provider:
        raise AuthorizationError("Invalid state", code="invalid_state")
    if claims.user_id != user_id:
        raise AuthorizationError()

    scope = ClinicScope(db, claims.clinic_id)
    scope.require_admin(user_id)

    if not code:
        raise ValidationError("Missing authorization code")

    client = client or get_provider_client(provider)
    grant = client.connect(code, redirect_uri)
    if provider == ProviderType.WHATSAPP.value:
        ensure_phone_number_unclaimed(scope, grant.metadata.get("phone_number_id"))

    now = _now(now)
    integration = get_or_create_integration(scope, provider)
    integration.status = connect(IntegrationStatus(integration.status)).value
    integration.credentials = grant.credentials
    integration.integration_metadata = grant.metadata
    integration.connected_at = now
    integration.last_sync_at = now
    integration.error_message = None
    db.flush()

    logger.info(
        "Integration connected",
        extra={
            "context": {
                "clinic_id": str(scope.clinic_id),
                "provider": provider,
                "has_phone_number_id": bool(grant.metadata.get("phone_number_id")),
            }
        },
    )
    return integration


def record_failure(scope: ClinicScope, provider: str, error: ProviderError) -> Optional[IntegrationStatus]:
    """
    Apply a send/sync failure to the integration and commit it.

    Auth failures scrub the credentials (forced disconnect); any other failure
    moves to error and keeps them so the integration can recover.
    """
    integration = scope.integration(provider)
    if integration is None or integration.status == IntegrationStatus.DISCONNECTED.value:
        return None

    if error.auth_failure:
        _scrub(integration)
    else:
        integration.status = fail(IntegrationStatus(integration.status)).value
        integration.error_message = error.message
    scope.db.commit()

    logger.warning(
        "Integration failure recorded",
        extra={
            "context": {
                "clinic_id": str(scope.clinic_id),
                "provider": provider,
                "auth_failure": error.auth_failure,
                "status": integration.status,
            }
        },
    )
    return IntegrationStatus(integration.status)


def disconnect_integration(scope: ClinicScope, user_id: UUID, provider: str) -> None:
    """Explicit disconnect. Missing or already disconnected integrations are a no-op."""
    provider = parse_provider(provider).value
    scope.require_admin(user_id)
    integration = scope.integration(provider)
    if integration is None:
        return
    _scrub(integration)
    scope.db.flush()
    logger.info(
        "Integration disconnected",
        extra={"context": {"clinic_id": str(scope.clinic_id), "provider": provider}},
    )


def set_phone_number_id(
    scope: ClinicScope, user_id: UUID, phone_number_id: str, now: Optional[datetime] = None
) -> Integration:
    """Manually configure the WhatsApp sending number, keeping the rest of the metadata."""
    scope.require_admin(user_id)
    phone_number_id = (phone_number_id or "").strip()
    if not phone_number_id:
        raise ValidationError("phone_number_id is required")

    integration = scope.integration(ProviderType.WHATSAPP.value)
    if integration is None or integration.status == IntegrationStatus.DISCONNECTED.value:
        raise NotFoundError("WhatsApp integration not found. Connect first.")
    ensure_phone_number_unclaimed(scope, phone_number_id)

    integration.integration_metadata = {**(integration.integration_metadata or {}), "phone_number_id": phone_number_id}
    integration.last_sync_at = _now(now)
    integration.error_message = None
    scope.db.flush()
    return integration


def list_integrations(scope: ClinicScope) -> dict[str, Optional[Integration]]:
    found = {integration.provider: integration for integration in scope.integrations().all()}
    return {provider.value: found.get(provider.value) for provider in ProviderType}


def public_metadata(integration: Optional[Integration]) -> dict:
    metadata = (integration.integration_metadata or {}) if integration else {}
    return {key: metadata[key] for key in PUBLIC_METADATA_KEYS if metadata.get(key)}


def get_connected_integration(scope: ClinicScope, provider: str) -> Integration:
    integration = scope.integration(provider)
    if integration is None or integration.status != IntegrationStatus.CONNECTED.value:
        raise PolicyError(f"{provider} integration is not connected", code="integration_not_connected")
    return integration


def ensure_fresh_google_credentials(
    scope: ClinicScope,
    integration: Integration,
    client,
    now: Optional[datetime] = None,
) -> dict:
    """Refresh an expired Google access token in place (expiry_date is epoch millis)."""
    credentials = integration.credentials or {}
    expiry_date = credentials.get("expiry_date")
    now_ms = int(_now(now).timestamp() * 1000)
    if not expiry_date or expiry_date >= now_ms:
        return credentials

    try:
        refreshed = client.refresh(credentials)
    except ProviderError as exc:
        record_failure(scope, integration.provider, exc)
        raise

    integration.credentials = refreshed
    integration.last_sync_at = _now(now)
    scope.db.flush()
    return refreshed
