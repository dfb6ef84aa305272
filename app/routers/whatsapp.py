from datetime import datetime, timezone
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import Caller, get_caller, get_member_scope, get_whatsapp_client, http_error
from app.schemas.message import (
    CloseExpiredResponse,
    ConversationActionResponse,
    SendRequest,
    SendResponse,
    WindowResponse,
)
from app.services.conversation_service import close_expired_conversations, complete_conversation, mark_viewed
from app.services.dispatch_service import send_whatsapp_text
from app.services.errors import MessagingError, ProviderError
from app.services.providers import MetaWhatsAppClient
from app.services.tenant import ClinicScope
from app.services.window_service import window_expires_at

router = APIRouter(prefix="/whatsapp", tags=["whatsapp"])


@router.post("/send", response_model=SendResponse)
def send_message(
    request: SendRequest,
    scope: ClinicScope = Depends(get_member_scope),
    db: Session = Depends(get_db),
    client: MetaWhatsAppClient = Depends(get_whatsapp_client),
):
    """Send a free-form reply inside the customer service window."""
    try:
        result = send_whatsapp_text(scope, request.to, request.text, client=client)
        db.commit()
    except ProviderError as e:
        # record_failure already committed the integration state
        raise http_error(e)
    except MessagingError as e:
        db.rollback()
        raise http_error(e)

    return SendResponse(success=True, message_id=result.message_id, conversation_id=result.conversation_id)


@router.post("/conversations/close-expired", response_model=CloseExpiredResponse)
def close_expired(scope: ClinicScope = Depends(get_member_scope), db: Session = Depends(get_db)):
    """Close open conversations whose reply window has run out."""
    closed = close_expired_conversations(scope)
    db.commit()
    return CloseExpiredResponse(closed=closed)


@router.post("/conversations/{conversation_id}/complete", response_model=ConversationActionResponse)
def complete(
    conversation_id: UUID,
    scope: ClinicScope = Depends(get_member_scope),
    db: Session = Depends(get_db),
):
    try:
        conversation = complete_conversation(scope, conversation_id)
        db.commit()
    except MessagingError as e:
        raise http_error(e)
    return ConversationActionResponse(success=True, conversation_id=conversation.id, status=conversation.status)


@router.post("/conversations/{conversation_id}/viewed", response_model=ConversationActionResponse)
def viewed(
    conversation_id: UUID,
    caller: Caller = Depends(get_caller),
    scope: ClinicScope = Depends(get_member_scope),
    db: Session = Depends(get_db),
):
    try:
        viewed_at = mark_viewed(scope, conversation_id, caller.user_id)
        db.commit()
    except MessagingError as e:
        raise http_error(e)
    return ConversationActionResponse(success=True, conversation_id=conversation_id, viewed_at=viewed_at)


@router.get("/conversations/{conversation_id}/window", response_model=WindowResponse)
def conversation_window(conversation_id: UUID, scope: ClinicScope = Depends(get_member_scope)):
    try:
        conversation = scope.conversation(conversation_id)
    except MessagingError as e:
        raise http_error(e)

    expires_at = window_expires_at(conversation)
    within_window = expires_at is not None and datetime.now(timezone.utc) <= expires_at
    return WindowResponse(conversation_id=conversation.id, within_window=within_window, expires_at=expires_at)
