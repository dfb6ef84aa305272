from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class IntegrationView(BaseModel):
    provider: str
    status: str
    connected_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None
    error_message: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class IntegrationListResponse(BaseModel):
    integrations: list[IntegrationView]


class AuthorizeResponse(BaseModel):
    auth_url: str


class CallbackResponse(BaseModel):
    success: bool
    provider: str
    status: str


class PhoneNumberIdRequest(BaseModel):
    phone_number_id: str


class EmailTestRequest(BaseModel):
    to: Optional[str] = None


class SuccessResponse(BaseModel):
    success: bool
    message_id: Optional[str] = Field(default=None, serialization_alias="messageId")
