"""OAuth connect / disconnect endpoints for clinic integrations."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.dependencies import (
    Caller,
    get_caller,
    get_clinic_scope,
    get_current_user_id,
    get_email_client,
    get_integration_client,
    get_member_scope,
    http_error,
)
from app.schemas.integration import (
    AuthorizeResponse,
    CallbackResponse,
    EmailTestRequest,
    IntegrationListResponse,
    IntegrationView,
    PhoneNumberIdRequest,
    SuccessResponse,
)
from app.services.dispatch_service import send_email
from app.services.errors import MessagingError
from app.services.integration_service import (
    authorize,
    complete_authorization,
    disconnect_integration,
    get_connected_integration,
    list_integrations,
    public_metadata,
    set_phone_number_id,
)
from app.services.providers import GoogleEmailClient, ProviderClient
from app.services.state_machine import IntegrationStatus, ProviderType
from app.services.tenant import ClinicScope

router = APIRouter(prefix="/integrations", tags=["integrations"])


def _default_redirect_uri(provider: str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/integrations/{provider}/callback"


@router.get("", response_model=IntegrationListResponse)
def get_integrations(scope: ClinicScope = Depends(get_member_scope)):
    views = []
    for provider, integration in list_integrations(scope).items():
        views.append(
            IntegrationView(
                provider=provider,
                status=integration.status if integration else IntegrationStatus.DISCONNECTED.value,
                connected_at=integration.connected_at if integration else None,
                last_sync_at=integration.last_sync_at if integration else None,
                error_message=integration.error_message if integration else None,
                metadata=public_metadata(integration),
            )
        )
    return IntegrationListResponse(integrations=views)


@router.get("/{provider}/authorize", response_model=AuthorizeResponse)
def authorize_integration(
    provider: str,
    redirect_uri: Optional[str] = Query(default=None),
    caller: Caller = Depends(get_caller),
    scope: ClinicScope = Depends(get_clinic_scope),
    client: ProviderClient = Depends(get_integration_client),
):
    """Return the provider consent URL. Admins only; nothing is persisted."""
    try:
        auth_url = authorize(scope, caller.user_id, provider, redirect_uri or _default_redirect_uri(provider), client)
    except MessagingError as e:
        raise http_error(e)
    return AuthorizeResponse(auth_url=auth_url)


@router.get("/{provider}/callback", response_model=CallbackResponse)
def integration_callback(
    provider: str,
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    error: Optional[str] = Query(default=None),
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    client: ProviderClient = Depends(get_integration_client),
):
    """OAuth redirect target: verify the signed state, exchange the code, mark connected."""
    if error:
        raise HTTPException(status_code=400, detail={"error": "oauth_error", "message": error})

    try:
        integration = complete_authorization(
            db, user_id, provider, state, code, _default_redirect_uri(provider), client=client
        )
        db.commit()
    except MessagingError as e:
        raise http_error(e)

    return CallbackResponse(success=True, provider=integration.provider, status=integration.status)


@router.post("/{provider}/disconnect", response_model=SuccessResponse)
def disconnect(
    provider: str,
    caller: Caller = Depends(get_caller),
    scope: ClinicScope = Depends(get_clinic_scope),
    db: Session = Depends(get_db),
):
    try:
        disconnect_integration(scope, caller.user_id, provider)
        db.commit()
    except MessagingError as e:
        raise http_error(e)
    return SuccessResponse(success=True)


@router.post("/whatsapp/phone-number-id", response_model=SuccessResponse)
def update_phone_number_id(
    request: PhoneNumberIdRequest,
    caller: Caller = Depends(get_caller),
    scope: ClinicScope = Depends(get_clinic_scope),
    db: Session = Depends(get_db),
):
    try:
        set_phone_number_id(scope, caller.user_id, request.phone_number_id)
        db.commit()
    except MessagingError as e:
        raise http_error(e)
    return SuccessResponse(success=True)


@router.post("/email_google/test", response_model=SuccessResponse)
def send_test_email(
    request: EmailTestRequest,
    caller: Caller = Depends(get_caller),
    scope: ClinicScope = Depends(get_clinic_scope),
    db: Session = Depends(get_db),
    client: GoogleEmailClient = Depends(get_email_client),
):
    """Send a test email through the connected Google account (to itself by default)."""
    try:
        scope.require_admin(caller.user_id)
        integration = get_connected_integration(scope, ProviderType.EMAIL_GOOGLE.value)
        recipient = request.to or public_metadata(integration).get("email")
        result = send_email(
            scope,
            recipient,
            "Test email",
            "This is a test message confirming that your email integration works.",
            client=client,
        )
        db.commit()
    except MessagingError as e:
        raise http_error(e)
    return SuccessResponse(success=True, message_id=result.message_id)
