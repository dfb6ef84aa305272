"""Request identity and error translation for routers.

The upstream authentication layer forwards the signed-in user in
``X-User-Id`` and the active clinic in ``X-Clinic-Id``. Roles are never
trusted from headers; they are read from ``clinic_members``.
"""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.services.errors import AuthorizationError, MessagingError
from app.services.providers import GoogleEmailClient, MetaWhatsAppClient, ProviderClient, get_provider_client
from app.services.tenant import ClinicScope


@dataclass
class Caller:
    user_id: UUID
    clinic_id: Optional[UUID] = None


def _parse_uuid(value: Optional[str]) -> Optional[UUID]:
    if not value:
        return None
    try:
        return UUID(value)
    except ValueError:
        return None


def http_error(exc: MessagingError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


def get_current_user_id(x_user_id: Optional[str] = Header(default=None, alias="X-User-Id")) -> UUID:
    user_id = _parse_uuid(x_user_id)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "not_authenticated", "message": "Authentication required"},
        )
    return user_id


def get_caller(
    user_id: UUID = Depends(get_current_user_id),
    x_clinic_id: Optional[str] = Header(default=None, alias="X-Clinic-Id"),
) -> Caller:
    clinic_id = _parse_uuid(x_clinic_id)
    if clinic_id is None:
        raise http_error(AuthorizationError())
    return Caller(user_id=user_id, clinic_id=clinic_id)


def get_clinic_scope(caller: Caller = Depends(get_caller), db: Session = Depends(get_db)) -> ClinicScope:
    return ClinicScope(db, caller.clinic_id)


def get_member_scope(caller: Caller = Depends(get_caller), scope: ClinicScope = Depends(get_clinic_scope)) -> ClinicScope:
    try:
        scope.require_member(caller.user_id)
    except AuthorizationError as exc:
        raise http_error(exc)
    return scope


def get_integration_client(provider: str) -> ProviderClient:
    try:
        return get_provider_client(provider)
    except MessagingError as exc:
        raise http_error(exc)


def get_whatsapp_client() -> MetaWhatsAppClient:
    return MetaWhatsAppClient()


def get_email_client() -> GoogleEmailClient:
    return GoogleEmailClient()
