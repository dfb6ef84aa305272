import base64
import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from app.services.errors import NotFoundError, PolicyError, ProviderError
from app.services.providers import GoogleEmailClient, MetaWhatsAppClient, get_provider_client, parse_provider


@pytest.fixture
def transport(monkeypatch):
    """Route provider HTTP calls to a handler; records every request."""
    calls = []
    routes = {}

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        for (method, fragment), response in routes.items():
            if request.method == method and fragment in str(request.url):
                return response(request) if callable(response) else response
        return httpx.Response(404, json={"error": {"message": "no route"}})

    real_client = httpx.Client

    def client_factory(*args, **kwargs):
        return real_client(transport=httpx.MockTransport(handler), timeout=kwargs.get("timeout"))

    monkeypatch.setattr("app.services.providers.base.httpx.Client", client_factory)
    return routes, calls


@pytest.fixture
def meta():
    return MetaWhatsAppClient(app_id="app-1", app_secret="shh", graph_version="v21.0", timeout=5)


@pytest.fixture
def google():
    return GoogleEmailClient(client_id="cid", client_secret="csecret", timeout=5)


class TestProviderRegistry:
    def test_known_providers(self):
        assert isinstance(get_provider_client("whatsapp"), MetaWhatsAppClient)
        assert isinstance(get_provider_client("email_google"), GoogleEmailClient)

    def test_unknown_provider(self):
        with pytest.raises(NotFoundError):
            parse_provider("sms")


class TestMetaWhatsAppClient:
    def test_authorize_url(self, meta):
        url = urlparse(meta.build_authorize_url("state-1", "https://app.test/cb"))
        query = parse_qs(url.query)

        assert url.netloc == "www.facebook.com"
        assert query["state"] == ["state-1"]
        assert query["redirect_uri"] == ["https://app.test/cb"]
        assert "whatsapp_business_messaging" in query["scope"][0]

    def test_unconfigured_app(self):
        with pytest.raises(PolicyError) as exc:
            MetaWhatsAppClient(app_id="", app_secret="").build_authorize_url("s", "r")
        assert exc.value.code == "provider_not_configured"

    def test_send_text(self, meta, transport):
        routes, calls = transport
        routes[("POST", "/pn-1/messages")] = httpx.Response(200, json={"messages": [{"id": "wamid.X"}]})

        message_id = meta.send_text("token", "pn-1", "5511987654321", "hello")

        assert message_id == "wamid.X"
        assert calls[0].headers["Authorization"] == "Bearer token"
        body = json.loads(calls[0].content)
        assert body["to"] == "5511987654321"
        assert body["text"] == {"body": "hello"}

    def test_expired_token_is_auth_failure(self, meta, transport):
        routes, _ = transport
        routes[("POST", "/messages")] = httpx.Response(
            400, json={"error": {"message": "Session has expired", "type": "OAuthException", "code": 190}}
        )

        with pytest.raises(ProviderError) as exc:
            meta.send_text("token", "pn-1", "5511987654321", "hello")

        assert exc.value.auth_failure is True
        assert exc.value.provider_code == 190
        assert exc.value.message == "Session has expired"

    def test_rate_limit_is_not_auth_failure(self, meta, transport):
        routes, _ = transport
        routes[("POST", "/messages")] = httpx.Response(
            429, json={"error": {"message": "(#130429) Rate limit hit", "type": "OAuthException", "code": 130429}}
        )

        with pytest.raises(ProviderError) as exc:
            meta.send_text("token", "pn-1", "5511987654321", "hello")
        assert exc.value.auth_failure is False
        assert exc.value.status == 429

    @pytest.mark.parametrize(
        "error",
        [
            {"message": "(#131030) Recipient phone number not in allowed list", "type": "OAuthException", "code": 131030},
            {"message": "(#131026) Message undeliverable", "type": "OAuthException", "code": 131026},
            {"message": "(#100) Invalid parameter", "type": "OAuthException", "code": 100},
        ],
    )
    def test_recipient_and_parameter_errors_are_not_auth_failures(self, meta, transport, error):
        routes, _ = transport
        routes[("POST", "/messages")] = httpx.Response(400, json={"error": error})

        with pytest.raises(ProviderError) as exc:
            meta.send_text("token", "pn-1", "5511987654321", "hello")

        assert exc.value.auth_failure is False
        assert exc.value.provider_code == error["code"]

    def test_invalidated_session_subcode_is_auth_failure(self, meta, transport):
        routes, _ = transport
        routes[("POST", "/messages")] = httpx.Response(
            400,
            json={"error": {"message": "Session invalidated", "type": "OAuthException", "code": 100, "error_subcode": 460}},
        )

        with pytest.raises(ProviderError) as exc:
            meta.send_text("token", "pn-1", "5511987654321", "hello")
        assert exc.value.auth_failure is True

    def test_transport_error_hides_details(self, meta, monkeypatch):
        real_client = httpx.Client

        def client_factory(*args, **kwargs):
            def handler(request):
                raise httpx.ConnectError("failed connecting to https://graph.facebook.com/?access_token=secret")

            return real_client(transport=httpx.MockTransport(handler))

        monkeypatch.setattr("app.services.providers.base.httpx.Client", client_factory)

        with pytest.raises(ProviderError) as exc:
            meta.send_text("secret", "pn-1", "5511987654321", "hello")
        assert "secret" not in exc.value.message
        assert exc.value.__cause__ is None

    def test_connect_discovers_phone_number(self, meta, transport):
        routes, calls = transport
        routes[("GET", "/oauth/access_token")] = httpx.Response(
            200, json={"access_token": "long-lived", "token_type": "bearer", "expires_in": 5183944}
        )
        routes[("GET", "/me/businesses")] = httpx.Response(200, json={"data": [{"id": "waba-7"}]})
        routes[("GET", "/waba-7/phone_numbers")] = httpx.Response(200, json={"data": [{"id": "pn-7"}]})
        routes[("POST", "/waba-7/subscribed_apps")] = httpx.Response(200, json={"success": True})
        routes[("GET", "/me")] = httpx.Response(200, json={"id": "u-1", "name": "Clinic Owner"})

        grant = meta.connect("code-1", "https://app.test/cb")

        assert grant.credentials["access_token"] == "long-lived"
        assert grant.metadata["phone_number_id"] == "pn-7"
        assert grant.metadata["waba_id"] == "waba-7"
        assert grant.metadata["user_name"] == "Clinic Owner"
        assert any(call.url.path.endswith("/subscribed_apps") for call in calls)

    def test_connect_without_business_account(self, meta, transport):
        routes, _ = transport
        routes[("GET", "/oauth/access_token")] = httpx.Response(200, json={"access_token": "t"})
        routes[("GET", "/me/businesses")] = httpx.Response(
            403, json={"error": {"message": "(#200) Missing permission", "type": "OAuthException", "code": 200}}
        )
        routes[("GET", "/me/owned_whatsapp_business_accounts")] = httpx.Response(200, json={"data": []})
        routes[("GET", "/me")] = httpx.Response(200, json={"id": "u-1", "name": "Owner"})

        grant = meta.connect("code-1", "https://app.test/cb")

        assert "phone_number_id" not in grant.metadata
        assert "waba_id" not in grant.metadata


class TestGoogleEmailClient:
    def test_authorize_url_requests_offline_access(self, google):
        query = parse_qs(urlparse(google.build_authorize_url("s", "https://app.test/cb")).query)

        assert query["access_type"] == ["offline"]
        assert query["prompt"] == ["consent"]
        assert "https://www.googleapis.com/auth/gmail.send" in query["scope"][0].split(" ")

    def test_connect(self, google, transport):
        routes, _ = transport
        routes[("POST", "oauth2.googleapis.com/token")] = httpx.Response(
            200, json={"access_token": "a", "refresh_token": "r", "expires_in": 3600}
        )
        routes[("GET", "/userinfo")] = httpx.Response(200, json={"email": "clinic@example.com"})

        grant = google.connect("code", "https://app.test/cb")

        assert grant.credentials["refresh_token"] == "r"
        assert grant.credentials["expiry_date"] > 0
        assert grant.metadata == {"email": "clinic@example.com"}

    def test_refresh_keeps_refresh_token(self, google, transport):
        routes, _ = transport
        routes[("POST", "/token")] = httpx.Response(200, json={"access_token": "fresh", "expires_in": 3600})

        credentials = google.refresh({"access_token": "old", "refresh_token": "r"})

        assert credentials["access_token"] == "fresh"
        assert credentials["refresh_token"] == "r"

    def test_invalid_grant_is_auth_failure(self, google, transport):
        routes, _ = transport
        routes[("POST", "/token")] = httpx.Response(
            400, json={"error": "invalid_grant", "error_description": "Token has been expired or revoked."}
        )

        with pytest.raises(ProviderError) as exc:
            google.refresh({"refresh_token": "r"})
        assert exc.value.auth_failure is True
        assert exc.value.message == "Token has been expired or revoked."

    def test_refresh_without_refresh_token(self, google):
        with pytest.raises(ProviderError) as exc:
            google.refresh({"access_token": "old"})
        assert exc.value.auth_failure is True

    def test_send_email(self, google, transport):
        routes, calls = transport
        routes[("POST", "/messages/send")] = httpx.Response(200, json={"id": "gmail-1"})

        message_id = google.send_email("a", "clinic@example.com", "patient@example.com", "Hi", "Line 1\nLine 2")

        assert message_id == "gmail-1"
        raw = json.loads(calls[0].content)["raw"]
        decoded = base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4)).decode("utf-8")
        assert "To: patient@example.com" in decoded
        assert "Subject: Hi" in decoded
