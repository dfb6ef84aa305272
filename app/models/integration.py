import uuid

from sqlalchemy import Column, DateTime, Text, UniqueConstraint, Uuid

from app.database import Base, JSONType


class Integration(Base):
    __tablename__ = "clinic_integrations"
    __table_args__ = (UniqueConstraint("clinic_id", "type", name="uq_clinic_integrations_clinic_type"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id = Column(Uuid, nullable=False, index=True)
    provider = Column("type", Text, nullable=False)  # whatsapp, email_google
    status = Column(Text, nullable=False, default="disconnected")  # disconnected, connected, error
    credentials = Column(JSONType, nullable=False, default=dict)
    integration_metadata = Column("metadata", JSONType, nullable=False, default=dict)
    connected_at = Column(DateTime(timezone=True))
    last_sync_at = Column(DateTime(timezone=True))
    error_message = Column(Text)

    def __repr__(self) -> str:
        # never render credentials
        return f"<Integration clinic_id={self.clinic_id} provider={self.provider} status={self.status}>"
