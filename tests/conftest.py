import os
import uuid
from datetime import datetime, timezone

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.models import ClinicMember, Integration
from app.services.tenant import ClinicScope


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    """Real session on an in-memory database; services may commit freely."""
    session = sessionmaker(bind=engine, autoflush=True, autocommit=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clinic_id():
    return uuid.uuid4()


@pytest.fixture
def make_member(db_session):
    def _make(clinic_id, role="member", user_id=None):
        user_id = user_id or uuid.uuid4()
        db_session.add(
            ClinicMember(clinic_id=clinic_id, user_id=user_id, role=role, created_at=datetime.now(timezone.utc))
        )
        db_session.commit()
        return user_id

    return _make


@pytest.fixture
def admin_id(make_member, clinic_id):
    return make_member(clinic_id, "admin")


@pytest.fixture
def member_id(make_member, clinic_id):
    return make_member(clinic_id, "member")


@pytest.fixture
def scope(db_session, clinic_id):
    return ClinicScope(db_session, clinic_id)


@pytest.fixture
def make_integration(db_session):
    def _make(clinic_id, provider="whatsapp", status="connected", credentials=None, metadata=None):
        if credentials is None:
            credentials = {} if status == "disconnected" else {"access_token": "token-123"}
        if metadata is None:
            metadata = {"phone_number_id": "pn-1", "waba_id": "waba-1"} if provider == "whatsapp" else {}
        integration = Integration(
            clinic_id=clinic_id,
            provider=provider,
            status=status,
            credentials=credentials,
            integration_metadata=metadata,
            connected_at=None if status == "disconnected" else datetime.now(timezone.utc),
        )
        db_session.add(integration)
        db_session.commit()
        return integration

    return _make
