"""Error taxonomy shared by services and routers.

Every error carries a stable ``code`` the HTTP layer returns to callers, a
human readable ``message`` and the HTTP status it maps to.
"""

from typing import Optional


class MessagingError(Exception):
    code = "error"
    status_code = 400

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(message)

    def to_detail(self) -> dict:
        return {"error": self.code, "message": self.message}


class ValidationError(MessagingError):
    code = "validation_error"
    status_code = 400


class AuthorizationError(MessagingError):
    code = "not_authorized"
    status_code = 403

    def __init__(self, message: str = "Not authorized", code: Optional[str] = None):
        super().__init__(message, code)


class NotFoundError(MessagingError):
    code = "not_found"
    status_code = 404


class PolicyError(MessagingError):
    code = "policy_violation"
    status_code = 400


class ProviderError(MessagingError):
    """Downstream provider failure. ``auth_failure`` marks revoked or invalid credentials."""

    code = "provider_error"
    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        auth_failure: bool = False,
        status: Optional[int] = None,
        provider_code: Optional[int] = None,
    ):
        self.provider = provider
        self.auth_failure = auth_failure
        self.status = status
        self.provider_code = provider_code
        super().__init__(message)


class IngestionError(MessagingError):
    code = "ingestion_error"
    status_code = 500


class InvalidTransitionError(MessagingError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, from_state, to_state):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")
