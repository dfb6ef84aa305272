from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class SendRequest(BaseModel):
    to: str
    text: str


class SendResponse(BaseModel):
    success: bool
    message_id: Optional[str] = Field(default=None, serialization_alias="messageId")
    conversation_id: Optional[UUID] = None


class ConversationActionResponse(BaseModel):
    success: bool
    conversation_id: UUID
    status: Optional[str] = None
    viewed_at: Optional[datetime] = None


class WindowResponse(BaseModel):
    conversation_id: UUID
    within_window: bool
    expires_at: Optional[datetime] = None


class CloseExpiredResponse(BaseModel):
    closed: int
