from typing import Optional
from urllib.parse import urlencode

from app.config import settings
from app.logging_config import get_logger
from app.services.errors import PolicyError, ProviderError
from app.services.providers.base import ConnectionGrant, ProviderClient

logger = get_logger("meta_client")

# Graph API errors that mean the access token itself is no longer usable.
# Most other Cloud API errors also carry type "OAuthException", so the type is not a signal.
OAUTH_TOKEN_ERROR_CODE = 190
AUTH_ERROR_CODES = {OAUTH_TOKEN_ERROR_CODE, 102, 463, 467}
AUTH_ERROR_SUBCODES = {458, 459, 460, 463, 464, 467}

WHATSAPP_SCOPES = [
    "whatsapp_business_management",
    "whatsapp_business_messaging",
    "business_management",
]


class MetaWhatsAppClient(ProviderClient):
    """WhatsApp Cloud API client (Meta Graph API)."""

    provider = "whatsapp"
    DIALOG_URL = "https://www.facebook.com/{version}/dialog/oauth"
    GRAPH_URL = "https://graph.facebook.com/{version}"

    def __init__(
        self,
        app_id: Optional[str] = None,
        app_secret: Optional[str] = None,
        graph_version: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(timeout=timeout)
        self.app_id = app_id or settings.meta_app_id
        self.app_secret = app_secret or settings.meta_app_secret
        self.graph_version = graph_version or settings.meta_graph_version
        self.graph_url = self.GRAPH_URL.format(version=self.graph_version)

    def _is_auth_failure(self, status: int, data: dict) -> bool:
        error = data.get("error") if isinstance(data.get("error"), dict) else {}
        if status == 401:
            return True
        return error.get("code") in AUTH_ERROR_CODES or error.get("error_subcode") in AUTH_ERROR_SUBCODES

    def _error_message(self, data: dict) -> str:
        error = data.get("error") if isinstance(data.get("error"), dict) else {}
        return error.get("message") or "WhatsApp request failed"

    def _require_app_config(self) -> None:
        if not self.app_id or not self.app_secret:
            raise PolicyError("Meta app credentials are not configured", code="provider_not_configured")

    def build_authorize_url(self, state: str, redirect_uri: str) -> str:
        self._require_app_config()
        query = urlencode(
            {
                "client_id": self.app_id,
                "redirect_uri": redirect_uri,
                "scope": ",".join(WHATSAPP_SCOPES),
                "state": state,
                "response_type": "code",
            }
        )
        return f"{self.DIALOG_URL.format(version=self.graph_version)}?{query}"

    def exchange_code(self, code: str, redirect_uri: str) -> dict:
        self._require_app_config()
        return self._make_request(
            "GET",
            f"{self.graph_url}/oauth/access_token",
            params={
                "client_id": self.app_id,
                "client_secret": self.app_secret,
                "redirect_uri": redirect_uri,
                "code": code,
            },
        )

    def get_profile(self, access_token: str) -> dict:
        return self._make_request("GET", f"{self.graph_url}/me", access_token=access_token, params={"fields": "id,name"})

    def _first_phone_number_id(self, account_id: str, access_token: str) -> Optional[str]:
        data = self._make_request("GET", f"{self.graph_url}/{account_id}/phone_numbers", access_token=access_token)
        numbers = data.get("data") or []
        return numbers[0].get("id") if numbers else None

    def discover_phone_number(self, access_token: str) -> tuple[Optional[str], Optional[str]]:
        """Find (phone_number_id, waba_id) reachable with the token. Lookup failures are not fatal."""
        for path in ("me/businesses", "me/owned_whatsapp_business_accounts"):
            try:
                accounts = self._make_request("GET", f"{self.graph_url}/{path}", access_token=access_token)
            except ProviderError as exc:
                if exc.auth_failure:
                    raise
                continue
            for account in accounts.get("data") or []:
                account_id = account.get("id")
                if not account_id:
                    continue
                try:
                    phone_number_id = self._first_phone_number_id(account_id, access_token)
                except ProviderError as exc:
                    if exc.auth_failure:
                        raise
                    continue
                if phone_number_id:
                    return phone_number_id, account_id
        return None, None

    def subscribe_app(self, waba_id: str, access_token: str) -> bool:
        """Subscribe the app to the account's webhooks. Best effort."""
        try:
            self._make_request("POST", f"{self.graph_url}/{waba_id}/subscribed_apps", access_token=access_token)
            return True
        except ProviderError as exc:
            logger.warning(
                "WhatsApp webhook subscription failed",
                extra={"context": {"waba_id": waba_id, "error": exc.message}},
            )
            return False

    def connect(self, code: str, redirect_uri: str) -> ConnectionGrant:
        tokens = self.exchange_code(code, redirect_uri)
        access_token = tokens.get("access_token")
        if not access_token:
            raise ProviderError("WhatsApp token exchange returned no access token", provider=self.provider)

        profile = self.get_profile(access_token)
        phone_number_id, waba_id = self.discover_phone_number(access_token)
        if waba_id:
            self.subscribe_app(waba_id, access_token)

        metadata = {"user_id": profile.get("id"), "user_name": profile.get("name")}
        if phone_number_id:
            metadata["phone_number_id"] = phone_number_id
        if waba_id:
            metadata["waba_id"] = waba_id

        credentials = {
            "access_token": access_token,
            "expires_in": tokens.get("expires_in"),
            "token_type": tokens.get("token_type") or "bearer",
        }
        return ConnectionGrant(credentials=credentials, metadata=metadata)

    def send_text(self, access_token: str, phone_number_id: str, to: str, text: str) -> Optional[str]:
        """Send a free-form text message. Returns the provider message id."""
        data = self._make_request(
            "POST",
            f"{self.graph_url}/{phone_number_id}/messages",
            access_token=access_token,
            json={
                "messaging_product": "whatsapp",
                "to": to,
                "type": "text",
                "text": {"body": text},
            },
        )
        messages = data.get("messages") or []
        return messages[0].get("id") if messages else None
