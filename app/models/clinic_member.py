import uuid

from sqlalchemy import Column, DateTime, Text, UniqueConstraint, Uuid

from app.database import Base


class ClinicMember(Base):
    __tablename__ = "clinic_members"
    __table_args__ = (UniqueConstraint("clinic_id", "user_id", name="uq_clinic_members_clinic_user"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id = Column(Uuid, nullable=False, index=True)
    user_id = Column(Uuid, nullable=False, index=True)
    role = Column(Text, nullable=False)  # admin, member
    created_at = Column(DateTime(timezone=True))
