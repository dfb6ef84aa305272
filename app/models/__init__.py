from app.models.clinic_member import ClinicMember
from app.models.conversation import Conversation
from app.models.conversation_view import ConversationView
from app.models.integration import Integration
from app.models.message import Message

__all__ = [
    "ClinicMember",
    "Integration",
    "Conversation",
    "ConversationView",
    "Message",
]
