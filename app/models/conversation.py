import uuid

from sqlalchemy import Column, DateTime, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.database import Base


class Conversation(Base):
    __tablename__ = "whatsapp_conversations"
    __table_args__ = (
        UniqueConstraint("clinic_id", "canonical_phone", name="uq_whatsapp_conversations_clinic_phone"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id = Column(Uuid, nullable=False, index=True)
    canonical_phone = Column(Text, nullable=False)
    contact_name = Column(Text)
    status = Column(Text, nullable=False, default="open")  # open, completed, closed
    last_inbound_at = Column(DateTime(timezone=True))
    last_outbound_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False)

    messages = relationship("Message", back_populates="conversation")
    views = relationship("ConversationView", back_populates="conversation")
