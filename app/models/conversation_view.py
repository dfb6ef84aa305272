from sqlalchemy import Column, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import relationship

from app.database import Base


class ConversationView(Base):
    __tablename__ = "whatsapp_conversation_views"

    conversation_id = Column(Uuid, ForeignKey("whatsapp_conversations.id"), primary_key=True)
    user_id = Column(Uuid, primary_key=True)
    viewed_at = Column(DateTime(timezone=True), nullable=False)

    conversation = relationship("Conversation", back_populates="views")
