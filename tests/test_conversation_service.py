import uuid
from datetime import datetime, timedelta, timezone

import pytest

from app.models import Conversation, ConversationView, Message
from app.services.conversation_service import (
    STATUS_CLOSED,
    STATUS_COMPLETED,
    STATUS_OPEN,
    append_message,
    close_expired_conversations,
    complete_conversation,
    get_or_create_conversation,
    mark_viewed,
)
from app.services.errors import NotFoundError
from app.services.tenant import ClinicScope
from app.services.window_service import as_utc

PHONE = "5511987654321"


class TestGetOrCreateConversation:
    def test_creates_open_conversation(self, scope, db_session):
        conversation = get_or_create_conversation(scope, PHONE, contact_name="Maria")

        assert conversation.status == STATUS_OPEN
        assert conversation.contact_name == "Maria"
        assert db_session.query(Conversation).count() == 1

    def test_returns_existing(self, scope, db_session):
        first = get_or_create_conversation(scope, PHONE)
        second = get_or_create_conversation(scope, PHONE)

        assert first.id == second.id
        assert db_session.query(Conversation).count() == 1

    def test_fills_missing_contact_name(self, scope):
        get_or_create_conversation(scope, PHONE)
        conversation = get_or_create_conversation(scope, PHONE, contact_name="Maria")
        assert conversation.contact_name == "Maria"

    def test_same_phone_in_two_clinics(self, scope, db_session):
        other = ClinicScope(db_session, uuid.uuid4())

        mine = get_or_create_conversation(scope, PHONE)
        theirs = get_or_create_conversation(other, PHONE)

        assert mine.id != theirs.id
        assert db_session.query(Conversation).count() == 2


class TestAppendMessage:
    def test_duplicate_provider_id_is_skipped(self, scope, db_session):
        conversation = get_or_create_conversation(scope, PHONE)

        first = append_message(
            scope, conversation, direction="inbound", body="hi", provider_message_id="wamid.1", status="received"
        )
        second = append_message(
            scope, conversation, direction="inbound", body="hi", provider_message_id="wamid.1", status="received"
        )

        assert first is not None
        assert first.clinic_id == scope.clinic_id
        assert second is None
        assert db_session.query(Message).count() == 1

    def test_messages_without_provider_id_are_all_kept(self, scope, db_session):
        conversation = get_or_create_conversation(scope, PHONE)
        for _ in range(2):
            append_message(
                scope, conversation, direction="outbound", body="x", provider_message_id=None, status="sent"
            )
        assert db_session.query(Message).count() == 2


class TestCompleteConversation:
    def test_marks_completed(self, scope):
        conversation = get_or_create_conversation(scope, PHONE)
        assert complete_conversation(scope, conversation.id).status == STATUS_COMPLETED

    def test_other_clinic_is_not_found(self, scope, db_session):
        theirs = get_or_create_conversation(ClinicScope(db_session, uuid.uuid4()), PHONE)
        with pytest.raises(NotFoundError):
            complete_conversation(scope, theirs.id)


class TestCloseExpiredConversations:
    NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

    def _conversation(self, scope, phone, hours_ago, status=STATUS_OPEN):
        conversation = get_or_create_conversation(scope, phone)
        conversation.status = status
        conversation.last_inbound_at = None if hours_ago is None else self.NOW - timedelta(hours=hours_ago)
        return conversation

    def test_closes_only_expired_open_conversations(self, scope, db_session):
        expired = self._conversation(scope, "5511900000001", hours_ago=25)
        fresh = self._conversation(scope, "5511900000002", hours_ago=23)
        edge = self._conversation(scope, "5511900000003", hours_ago=24)
        never_wrote = self._conversation(scope, "5511900000004", hours_ago=None)
        completed = self._conversation(scope, "5511900000005", hours_ago=48, status=STATUS_COMPLETED)
        db_session.flush()

        assert close_expired_conversations(scope, now=self.NOW) == 1

        assert expired.status == STATUS_CLOSED
        assert fresh.status == STATUS_OPEN
        assert edge.status == STATUS_OPEN
        assert never_wrote.status == STATUS_OPEN
        assert completed.status == STATUS_COMPLETED

    def test_other_clinic_untouched(self, scope, db_session):
        other_scope = ClinicScope(db_session, uuid.uuid4())
        theirs = self._conversation(other_scope, PHONE, hours_ago=72)
        db_session.flush()

        assert close_expired_conversations(scope, now=self.NOW) == 0
        assert theirs.status == STATUS_OPEN

    def test_nothing_to_close(self, scope):
        assert close_expired_conversations(scope, now=self.NOW) == 0


class TestMarkViewed:
    def test_last_write_wins(self, scope, db_session):
        conversation = get_or_create_conversation(scope, PHONE)
        user_id = uuid.uuid4()
        first = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)

        mark_viewed(scope, conversation.id, user_id, now=first)
        mark_viewed(scope, conversation.id, user_id, now=first + timedelta(hours=1))
        db_session.commit()

        views = db_session.query(ConversationView).all()
        assert len(views) == 1
        assert as_utc(views[0].viewed_at) == first + timedelta(hours=1)

    def test_unknown_conversation(self, scope):
        with pytest.raises(NotFoundError):
            mark_viewed(scope, uuid.uuid4(), uuid.uuid4())
