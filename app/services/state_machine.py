from enum import Enum

from app.services.errors import InvalidTransitionError


class IntegrationStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    ERROR = "error"


class ProviderType(str, Enum):
    WHATSAPP = "whatsapp"
    EMAIL_GOOGLE = "email_google"


# Reconnecting over a live connection replaces credentials; disconnect is idempotent.
VALID_TRANSITIONS = {
    IntegrationStatus.DISCONNECTED: [IntegrationStatus.CONNECTED, IntegrationStatus.DISCONNECTED],
    IntegrationStatus.CONNECTED: [
        IntegrationStatus.CONNECTED,
        IntegrationStatus.ERROR,
        IntegrationStatus.DISCONNECTED,
    ],
    IntegrationStatus.ERROR: [
        IntegrationStatus.CONNECTED,
        IntegrationStatus.ERROR,
        IntegrationStatus.DISCONNECTED,
    ],
}


def can_transition(from_state: IntegrationStatus, to_state: IntegrationStatus) -> bool:
    return to_state in VALID_TRANSITIONS.get(from_state, ())


def transition(from_state: IntegrationStatus, to_state: IntegrationStatus) -> IntegrationStatus:
    """Return ``to_state`` or raise InvalidTransitionError when the move is not in the table."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def connect(current_state: IntegrationStatus) -> IntegrationStatus:
    """Token exchange succeeded."""
    return transition(current_state, IntegrationStatus.CONNECTED)


def fail(current_state: IntegrationStatus) -> IntegrationStatus:
    """Non-auth send or sync failure; credentials are kept."""
    return transition(current_state, IntegrationStatus.ERROR)


def disconnect(current_state: IntegrationStatus) -> IntegrationStatus:
    """Explicit disconnect or forced disconnect after an auth failure."""
    return transition(current_state, IntegrationStatus.DISCONNECTED)
