from uuid import UUID

from sqlalchemy.orm import Query, Session

from app.models import ClinicMember, Conversation, Integration, Message
from app.services.errors import AuthorizationError, NotFoundError

ADMIN_ROLE = "admin"
MEMBER_ROLES = {"admin", "member"}


class ClinicScope:
    """
    Clinic-bound accessor for tenant data.

    Services never query Integration, Conversation or Message directly; they go
    through a scope so the clinic filter cannot be left out.
    """

    def __init__(self, db: Session, clinic_id: UUID):
        if clinic_id is None:
            raise ValueError("clinic_id is required")
        self.db = db
        self.clinic_id = clinic_id

    def integrations(self) -> Query:
        return self.db.query(Integration).filter(Integration.clinic_id == self.clinic_id)

    def conversations(self) -> Query:
        return self.db.query(Conversation).filter(Conversation.clinic_id == self.clinic_id)

    def messages(self) -> Query:
        return self.db.query(Message).filter(Message.clinic_id == self.clinic_id)

    def integration(self, provider: str) -> Integration | None:
        return self.integrations().filter(Integration.provider == provider).first()

    def conversation_by_phone(self, canonical_phone: str) -> Conversation | None:
        return self.conversations().filter(Conversation.canonical_phone == canonical_phone).first()

    def conversation(self, conversation_id: UUID) -> Conversation:
        conversation = self.conversations().filter(Conversation.id == conversation_id).first()
        if not conversation:
            raise NotFoundError("Conversation not found")
        return conversation

    def member_role(self, user_id: UUID) -> str | None:
        member = (
            self.db.query(ClinicMember)
            .filter(ClinicMember.clinic_id == self.clinic_id, ClinicMember.user_id == user_id)
            .first()
        )
        return member.role if member else None

    def require_member(self, user_id: UUID) -> str:
        role = self.member_role(user_id)
        if role not in MEMBER_ROLES:
            raise AuthorizationError()
        return role

    def require_admin(self, user_id: UUID) -> None:
        if self.member_role(user_id) != ADMIN_ROLE:
            raise AuthorizationError()
