import uuid
from datetime import datetime, timedelta, timezone

from app.models import Conversation
from app.services.window_service import is_within_window, window_expires_at

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
PHONE = "5511987654321"


def _conversation(db, clinic_id, last_inbound_at):
    conversation = Conversation(
        clinic_id=clinic_id,
        canonical_phone=PHONE,
        last_inbound_at=last_inbound_at,
        created_at=NOW - timedelta(days=3),
    )
    db.add(conversation)
    db.commit()
    return conversation


class TestIsWithinWindow:
    def test_inbound_just_under_24h_ago(self, db_session, clinic_id, scope):
        _conversation(db_session, clinic_id, NOW - timedelta(hours=23, minutes=59))
        assert is_within_window(scope, PHONE, now=NOW) is True

    def test_inbound_just_over_24h_ago(self, db_session, clinic_id, scope):
        _conversation(db_session, clinic_id, NOW - timedelta(hours=24, minutes=1))
        assert is_within_window(scope, PHONE, now=NOW) is False

    def test_exactly_24h_is_still_open(self, db_session, clinic_id, scope):
        _conversation(db_session, clinic_id, NOW - timedelta(hours=24))
        assert is_within_window(scope, PHONE, now=NOW) is True

    def test_never_wrote(self, db_session, clinic_id, scope):
        _conversation(db_session, clinic_id, None)
        assert is_within_window(scope, PHONE, now=NOW) is False

    def test_no_conversation(self, scope):
        assert is_within_window(scope, PHONE, now=NOW) is False

    def test_other_clinic_conversation_does_not_count(self, db_session, scope):
        _conversation(db_session, uuid.uuid4(), NOW - timedelta(minutes=5))
        assert is_within_window(scope, PHONE, now=NOW) is False


class TestWindowExpiresAt:
    def test_expiry_is_last_inbound_plus_window(self, db_session, clinic_id):
        conversation = _conversation(db_session, clinic_id, NOW - timedelta(hours=2))
        db_session.expire_all()
        assert window_expires_at(conversation) == NOW + timedelta(hours=22)

    def test_none_without_inbound(self):
        assert window_expires_at(Conversation(canonical_phone=PHONE)) is None
        assert window_expires_at(None) is None
