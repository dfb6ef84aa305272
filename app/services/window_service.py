from datetime import datetime, timedelta, timezone

from app.config import settings
from app.models import Conversation
from app.services.tenant import ClinicScope


def get_window() -> timedelta:
    return timedelta(hours=settings.conversation_window_hours)


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def window_expires_at(conversation: Conversation | None) -> datetime | None:
    """When free-form replies stop being allowed, or None if the customer never wrote."""
    if conversation is None:
        return None
    last_inbound_at = as_utc(conversation.last_inbound_at)
    if last_inbound_at is None:
        return None
    return last_inbound_at + get_window()


def is_within_window(scope: ClinicScope, canonical_phone: str, now: datetime | None = None) -> bool:
    """True while the customer's last inbound message is at most one window old."""
    expires_at = window_expires_at(scope.conversation_by_phone(canonical_phone))
    if expires_at is None:
        return False
    now = as_utc(now) or datetime.now(timezone.utc)
    return now <= expires_at
