from app.services.phone import is_valid_recipient, normalize_phone
from app.services.state_machine import (
    IntegrationStatus,
    ProviderType,
    can_transition,
    connect,
    disconnect,
    fail,
    transition,
)
from app.services.window_service import is_within_window, window_expires_at
