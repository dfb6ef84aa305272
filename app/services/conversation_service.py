import uuid
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from app.models import Conversation, ConversationView, Message
from app.services.tenant import ClinicScope
from app.services.window_service import as_utc, window_expires_at

STATUS_OPEN = "open"
STATUS_COMPLETED = "completed"
STATUS_CLOSED = "closed"


def upsert_statement(db: Session, model):
    """INSERT with ON CONFLICT support for the bound dialect."""
    table = model.__table__
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise RuntimeError(f"Unsupported dialect for upserts: {dialect}")


def get_or_create_conversation(
    scope: ClinicScope,
    canonical_phone: str,
    contact_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Conversation:
    """Find the clinic's conversation for a canonical phone or create it."""
    conversation = scope.conversation_by_phone(canonical_phone)
    if conversation:
        if contact_name and not conversation.contact_name:
            conversation.contact_name = contact_name
        return conversation

    stmt = (
        upsert_statement(scope.db, Conversation)
        .values(
            id=uuid.uuid4(),
            clinic_id=scope.clinic_id,
            canonical_phone=canonical_phone,
            contact_name=contact_name,
            status=STATUS_OPEN,
            created_at=now or datetime.now(timezone.utc),
        )
        .on_conflict_do_nothing(index_elements=["clinic_id", "canonical_phone"])
    )
    scope.db.execute(stmt)
    return scope.conversation_by_phone(canonical_phone)


def find_message_by_provider_id(
    scope: ClinicScope, conversation_id: UUID, provider_message_id: str
) -> Optional[Message]:
    return (
        scope.messages()
        .filter(Message.conversation_id == conversation_id, Message.provider_message_id == provider_message_id)
        .first()
    )


def append_message(
    scope: ClinicScope,
    conversation: Conversation,
    *,
    direction: str,
    body: Optional[str],
    provider_message_id: Optional[str],
    status: str,
    message_type: str = "text",
    now: Optional[datetime] = None,
) -> Optional[Message]:
    """Append a message; returns None when the provider id is already stored for this conversation."""
    message_id = uuid.uuid4()
    stmt = (
        upsert_statement(scope.db, Message)
        .values(
            id=message_id,
            conversation_id=conversation.id,
            clinic_id=scope.clinic_id,
            direction=direction,
            message_type=message_type,
            body=body,
            provider_message_id=provider_message_id,
            status=status,
            sent_at=now or datetime.now(timezone.utc),
        )
        .on_conflict_do_nothing(index_elements=["conversation_id", "provider_message_id"])
    )
    result = scope.db.execute(stmt)
    if result.rowcount == 0:
        return None
    return scope.db.get(Message, message_id)


def complete_conversation(scope: ClinicScope, conversation_id: UUID) -> Conversation:
    """Manual close. The next inbound message reopens it."""
    conversation = scope.conversation(conversation_id)
    conversation.status = STATUS_COMPLETED
    scope.db.flush()
    return conversation


def close_expired_conversations(scope: ClinicScope, now: Optional[datetime] = None) -> int:
    """Close the clinic's open conversations whose reply window has run out. Returns how many were closed."""
    now = as_utc(now) or datetime.now(timezone.utc)
    candidates = scope.conversations().filter(
        Conversation.status == STATUS_OPEN,
        Conversation.last_inbound_at.isnot(None),
    ).all()
    closed = 0
    for conversation in candidates:
        expires_at = window_expires_at(conversation)
        if expires_at is not None and now > expires_at:
            conversation.status = STATUS_CLOSED
            closed += 1
    scope.db.flush()
    return closed


def mark_viewed(
    scope: ClinicScope, conversation_id: UUID, user_id: UUID, now: Optional[datetime] = None
) -> datetime:
    """Record that a staff member has seen the conversation. Last write wins."""
    conversation = scope.conversation(conversation_id)
    viewed_at = now or datetime.now(timezone.utc)
    stmt = (
        upsert_statement(scope.db, ConversationView)
        .values(conversation_id=conversation.id, user_id=user_id, viewed_at=viewed_at)
        .on_conflict_do_update(index_elements=["conversation_id", "user_id"], set_={"viewed_at": viewed_at})
    )
    scope.db.execute(stmt)
    return viewed_at
