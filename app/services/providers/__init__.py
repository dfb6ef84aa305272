from app.services.errors import NotFoundError
from app.services.providers.base import ConnectionGrant, ProviderClient
from app.services.providers.google import GoogleEmailClient
from app.services.providers.meta import MetaWhatsAppClient
from app.services.state_machine import ProviderType

PROVIDER_CLIENTS = {
    ProviderType.WHATSAPP.value: MetaWhatsAppClient,
    ProviderType.EMAIL_GOOGLE.value: GoogleEmailClient,
}


def parse_provider(value: str) -> ProviderType:
    try:
        return ProviderType(value)
    except ValueError:
        raise NotFoundError(f"Unknown integration provider: {value}") from None


def get_provider_client(provider: str) -> ProviderClient:
    return PROVIDER_CLIENTS[parse_provider(provider).value]()


__all__ = [
    "ConnectionGrant",
    "GoogleEmailClient",
    "MetaWhatsAppClient",
    "ProviderClient",
    "get_provider_client",
    "parse_provider",
]
