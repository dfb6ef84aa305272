import base64
import time
from email.message import EmailMessage
from typing import Optional
from urllib.parse import urlencode

from app.config import settings
from app.services.errors import PolicyError, ProviderError
from app.services.providers.base import ConnectionGrant, ProviderClient

GMAIL_SCOPES = [
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/userinfo.email",
]


class GoogleEmailClient(ProviderClient):
    """Google OAuth + Gmail send."""

    provider = "email_google"
    AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
    SEND_URL = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(timeout=timeout)
        self.client_id = client_id or settings.google_client_id
        self.client_secret = client_secret or settings.google_client_secret

    def _is_auth_failure(self, status: int, data: dict) -> bool:
        return status == 401 or data.get("error") in {"invalid_grant", "unauthorized_client"}

    def _error_message(self, data: dict) -> str:
        error = data.get("error")
        if isinstance(error, dict):
            return error.get("message") or "Google request failed"
        return data.get("error_description") or error or "Google request failed"

    def _require_app_config(self) -> None:
        if not self.client_id or not self.client_secret:
            raise PolicyError("Google OAuth client is not configured", code="provider_not_configured")

    def build_authorize_url(self, state: str, redirect_uri: str) -> str:
        self._require_app_config()
        query = urlencode(
            {
                "client_id": self.client_id,
                "redirect_uri": redirect_uri,
                "response_type": "code",
                "scope": " ".join(GMAIL_SCOPES),
                "access_type": "offline",
                "prompt": "consent",
                "state": state,
            }
        )
        return f"{self.AUTH_URL}?{query}"

    def _token_request(self, form: dict) -> dict:
        self._require_app_config()
        return self._make_request(
            "POST",
            self.TOKEN_URL,
            data={"client_id": self.client_id, "client_secret": self.client_secret, **form},
        )

    @staticmethod
    def _expiry_from(tokens: dict, now: Optional[float] = None) -> Optional[int]:
        expires_in = tokens.get("expires_in")
        if not expires_in:
            return None
        now = now if now is not None else time.time()
        return int((now + int(expires_in)) * 1000)

    def get_email(self, access_token: str) -> Optional[str]:
        return self._make_request("GET", self.USERINFO_URL, access_token=access_token).get("email")

    def connect(self, code: str, redirect_uri: str) -> ConnectionGrant:
        tokens = self._token_request(
            {"code": code, "redirect_uri": redirect_uri, "grant_type": "authorization_code"}
        )
        access_token = tokens.get("access_token")
        if not access_token:
            raise ProviderError("Google token exchange returned no access token", provider=self.provider)

        email = self.get_email(access_token)
        if not email:
            raise ProviderError("Google account has no email address", provider=self.provider)

        credentials = {
            "access_token": access_token,
            "refresh_token": tokens.get("refresh_token"),
            "expiry_date": self._expiry_from(tokens),
        }
        return ConnectionGrant(credentials=credentials, metadata={"email": email})

    def refresh(self, credentials: dict) -> dict:
        """Return credentials with a fresh access token. Keeps the old refresh token if none is issued."""
        refresh_token = credentials.get("refresh_token")
        if not refresh_token:
            raise ProviderError(
                "Access token expired and no refresh token is available", provider=self.provider, auth_failure=True
            )
        tokens = self._token_request({"refresh_token": refresh_token, "grant_type": "refresh_token"})
        return {
            "access_token": tokens.get("access_token"),
            "refresh_token": tokens.get("refresh_token") or refresh_token,
            "expiry_date": self._expiry_from(tokens),
        }

    def send_email(
        self,
        access_token: str,
        from_email: str,
        to: str,
        subject: str,
        body: str,
        html: Optional[str] = None,
    ) -> Optional[str]:
        message = EmailMessage()
        message["To"] = to
        message["From"] = from_email
        message["Subject"] = subject
        message.set_content(body)
        message.add_alternative(html or body.replace("\n", "<br>"), subtype="html")

        raw = base64.urlsafe_b64encode(message.as_bytes()).rstrip(b"=").decode("ascii")
        data = self._make_request("POST", self.SEND_URL, access_token=access_token, json={"raw": raw})
        return data.get("id")
