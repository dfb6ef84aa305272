"""WhatsApp Cloud API webhook envelope.

Only the fields the ingestion pipeline reads are modeled; everything else in
the payload is ignored.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class WhatsAppText(BaseModel):
    body: Optional[str] = None


class WhatsAppProfile(BaseModel):
    name: Optional[str] = None


class WhatsAppContact(BaseModel):
    wa_id: Optional[str] = None
    profile: Optional[WhatsAppProfile] = None


class WhatsAppInboundMessage(BaseModel):
    id: Optional[str] = None
    from_phone: Optional[str] = Field(default=None, alias="from")  # "from" is reserved in Python
    timestamp: Optional[str] = None
    type: Optional[str] = "text"
    text: Optional[WhatsAppText] = None

    model_config = ConfigDict(populate_by_name=True)


class WhatsAppStatusError(BaseModel):
    code: Optional[int] = None
    title: Optional[str] = None
    message: Optional[str] = None


class WhatsAppStatus(BaseModel):
    id: Optional[str] = None
    status: Optional[str] = None  # sent, delivered, read, failed
    timestamp: Optional[str] = None
    recipient_id: Optional[str] = None
    errors: list[WhatsAppStatusError] = Field(default_factory=list)


class WhatsAppValueMetadata(BaseModel):
    display_phone_number: Optional[str] = None
    phone_number_id: Optional[str] = None


class WhatsAppChangeValue(BaseModel):
    messaging_product: Optional[str] = None
    metadata: Optional[WhatsAppValueMetadata] = None
    contacts: list[WhatsAppContact] = Field(default_factory=list)
    messages: list[WhatsAppInboundMessage] = Field(default_factory=list)
    statuses: list[WhatsAppStatus] = Field(default_factory=list)


class WhatsAppChange(BaseModel):
    field: Optional[str] = None
    value: Optional[WhatsAppChangeValue] = None


class WhatsAppEntry(BaseModel):
    id: Optional[str] = None  # WhatsApp Business Account id
    changes: list[WhatsAppChange] = Field(default_factory=list)


class WhatsAppWebhookPayload(BaseModel):
    object: Optional[str] = None
    entry: list[WhatsAppEntry] = Field(default_factory=list)


class WebhookAck(BaseModel):
    ok: bool = True


class WebhookDebugResponse(BaseModel):
    ok: bool = True
    message: str
    last_payload: Optional[Any] = None
    last_received_at: Optional[str] = None
