import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.database import Base


class Message(Base):
    __tablename__ = "whatsapp_messages"
    __table_args__ = (
        # NULL provider ids never collide, so only provider-identified rows are deduplicated
        UniqueConstraint(
            "conversation_id", "provider_message_id", name="uq_whatsapp_messages_conversation_provider_id"
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey("whatsapp_conversations.id"), nullable=False)
    clinic_id = Column(Uuid, nullable=False, index=True)
    direction = Column(Text, nullable=False)  # inbound, outbound
    message_type = Column(Text, nullable=False, default="text")
    body = Column(Text)
    provider_message_id = Column(Text)
    status = Column(Text, nullable=False)  # received, sent, delivered, read, failed
    error_message = Column(Text)
    sent_at = Column(DateTime(timezone=True), nullable=False)

    conversation = relationship("Conversation", back_populates="messages")
