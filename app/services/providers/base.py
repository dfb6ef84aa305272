from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from app.config import settings
from app.logging_config import get_logger
from app.services.errors import ProviderError

logger = get_logger("providers")


@dataclass
class ConnectionGrant:
    """Result of a successful OAuth code exchange."""

    credentials: dict[str, Any]
    metadata: dict[str, Any] = field(default_factory=dict)


class ProviderClient:
    """Shared HTTP plumbing for provider APIs."""

    provider = "provider"

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else settings.http_timeout_seconds

    def _is_auth_failure(self, status: int, data: dict) -> bool:
        return status == 401

    def _error_message(self, data: dict) -> str:
        return "Provider request failed"

    def _make_request(
        self,
        method: str,
        url: str,
        *,
        access_token: Optional[str] = None,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
        data: Optional[dict] = None,
    ) -> dict:
        """Call the provider and return its JSON body. Non-2xx answers raise ProviderError."""
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else None
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.request(method, url, params=params, json=json, data=data, headers=headers)
        except httpx.HTTPError as exc:
            # exception text may carry the request URL and its secrets
            logger.error(
                "Provider transport error",
                extra={"context": {"provider": self.provider, "error_type": exc.__class__.__name__}},
            )
            raise ProviderError(
                f"{self.provider} request failed ({exc.__class__.__name__})", provider=self.provider
            ) from None

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {"data": body}

        if response.is_success:
            return body

        auth_failure = self._is_auth_failure(response.status_code, body)
        message = self._error_message(body)
        logger.warning(
            "Provider request rejected",
            extra={
                "context": {
                    "provider": self.provider,
                    "status": response.status_code,
                    "auth_failure": auth_failure,
                    "error": message,
                }
            },
        )
        error_block = body.get("error") if isinstance(body.get("error"), dict) else {}
        raise ProviderError(
            message,
            provider=self.provider,
            auth_failure=auth_failure,
            status=response.status_code,
            provider_code=error_block.get("code") if isinstance(error_block.get("code"), int) else None,
        )
