"""Tests for kube_oidc.oidc against a respx-mocked identity provider."""

import base64
import hashlib
import threading
import urllib.parse
from unittest import mock

import httpx
import pytest
import respx

from kube_oidc.config import KubeOidcSettings
from kube_oidc.exceptions import ExchangeError
from kube_oidc.models import OidcProviderConfig
from kube_oidc.oidc import (
    AuthResult,
    OAuthCallbackHandler,
    OidcClient,
    _CallbackServer,
    generate_pkce,
    id_token_expiry,
    id_token_is_valid,
)
from kube_oidc.testing import make_id_token

ISSUER = "https://idp.example.com/realms/k8s"
DISCOVERY_URL = f"{ISSUER}/.well-known/openid-configuration"
DISCOVERY = {
    "issuer": ISSUER,
    "authorization_endpoint": f"{ISSUER}/protocol/openid-connect/auth",
    "token_endpoint": f"{ISSUER}/protocol/openid-connect/token",
}


class FakeIdentityProvider:
    """Discovery and token routes on a respx router."""

    def __init__(self, router: respx.MockRouter):
        self.router = router
        self.discovery = router.get(DISCOVERY_URL).mock(
            return_value=httpx.Response(200, json=DISCOVERY)
        )
        self.token = router.post(DISCOVERY["token_endpoint"])

    def respond(self, *responses: tuple[int, dict]) -> None:
        """Answer successive token requests with (status, body) pairs."""
        self.token.side_effect = [
            httpx.Response(status, json=body) for status, body in responses
        ]

    @property
    def requests(self) -> list[httpx.Request]:
        return [call.request for call in self.router.calls]

    @property
    def token_requests(self) -> list[dict[str, str]]:
        return [
            dict(urllib.parse.parse_qsl(call.request.content.decode()))
            for call in self.token.calls
        ]


@pytest.fixture
def idp():
    with respx.mock(assert_all_called=False) as router:
        yield FakeIdentityProvider(router)


def _config(**kwargs) -> OidcProviderConfig:
    kwargs.setdefault("client_id", "kubernetes")
    kwargs.setdefault("issuer_url", ISSUER)
    return OidcProviderConfig(**kwargs)


def _oidc_client(**kwargs) -> OidcClient:
    settings = KubeOidcSettings(open_browser=False, login_timeout_seconds=1)
    return OidcClient(_config(**kwargs), settings=settings)


def _grant_code(auth_url: str) -> AuthResult:
    """Simulate the browser redirect for `auth_url`."""
    params = dict(urllib.parse.parse_qsl(urllib.parse.urlparse(auth_url).query))
    return AuthResult(code="auth-code", state=params["state"])


class TestIdTokenExpiry:
    def test_valid_token(self):
        token = make_id_token(expires_in=3600)
        assert id_token_expiry(token) is not None
        assert id_token_is_valid(token)

    def test_expired_token(self):
        token = make_id_token(expires_in=-60)
        assert not id_token_is_valid(token)

    def test_token_expiring_within_leeway_is_not_valid(self):
        token = make_id_token(expires_in=5)
        assert id_token_is_valid(token)
        assert not id_token_is_valid(token, leeway_seconds=30)

    @pytest.mark.parametrize("token", ["stale", "not.a.jwt", ""])
    def test_unreadable_token(self, token):
        assert id_token_expiry(token) is None
        assert not id_token_is_valid(token)

    def test_token_without_exp(self):
        token = make_id_token(exp="never")
        assert id_token_expiry(token) is None


class TestGeneratePkce:
    def test_challenge_is_sha256_of_verifier(self):
        verifier, challenge = generate_pkce()
        digest = hashlib.sha256(verifier.encode()).digest()
        assert challenge == base64.urlsafe_b64encode(digest).rstrip(b"=").decode()

    def test_verifiers_are_random(self):
        assert generate_pkce()[0] != generate_pkce()[0]


class TestOAuthCallbackHandler:
    def _redirect(self, query: str) -> httpx.Response:
        server = _CallbackServer(("localhost", 0), OAuthCallbackHandler)
        port = server.server_address[1]
        thread = threading.Thread(target=server.handle_request, daemon=True)
        thread.start()
        try:
            return httpx.get(
                f"http://localhost:{port}/callback?{query}", trust_env=False
            )
        finally:
            thread.join(5)
            server.server_close()

    def test_code_is_recorded(self):
        response = self._redirect("code=abc&state=xyz")

        assert response.status_code == 200
        assert OAuthCallbackHandler.auth_result == AuthResult(code="abc", state="xyz")

    def test_error_from_redirect_is_escaped(self):
        query = urllib.parse.urlencode(
            {"error": "<script>alert(1)</script>", "error_description": "a&b"}
        )

        response = self._redirect(query)

        assert response.status_code == 400
        assert "<script>" not in response.text
        assert "&lt;script&gt;alert(1)&lt;/script&gt;" in response.text
        assert "a&amp;b" in response.text
        result = OAuthCallbackHandler.auth_result
        assert result.error == "<script>alert(1)</script>: a&b"


class TestGetToken:
    def test_returns_valid_cached_token_without_requests(self, idp):
        cached = make_id_token()
        client = _oidc_client(id_token=cached, refresh_token="r1")

        token = client.get_token()

        assert token.identity_token == cached
        assert token.refresh_token == "r1"
        assert idp.requests == []

    def test_refreshes_expired_token(self, idp):
        fresh = make_id_token()
        idp.respond((200, {"id_token": fresh, "refresh_token": "r2"}))
        client = _oidc_client(
            id_token=make_id_token(expires_in=-60), refresh_token="r1"
        )

        token = client.get_token()

        assert token.identity_token == fresh
        assert token.refresh_token == "r2"
        assert idp.token_requests == [
            {
                "grant_type": "refresh_token",
                "refresh_token": "r1",
                "client_id": "kubernetes",
            }
        ]

    def test_refresh_sends_client_secret(self, idp):
        idp.respond((200, {"id_token": "id"}))
        client = _oidc_client(client_secret="s3cret", refresh_token="r1")

        client.get_token()

        assert idp.token_requests[0]["client_secret"] == "s3cret"

    def test_uses_injected_http_client(self, idp):
        idp.respond((200, {"id_token": "id"}))
        with httpx.Client() as http_client:
            client = OidcClient(_config(refresh_token="r1"), http_client=http_client)
            token = client.get_token()

        assert token.identity_token == "id"
        assert idp.discovery.call_count == 1

    def test_failed_refresh_falls_back_to_login(self, idp):
        fresh = make_id_token()
        idp.respond(
            (400, {"error": "invalid_grant", "error_description": "expired"}),
            (200, {"id_token": fresh, "refresh_token": "r2"}),
        )
        client = _oidc_client(refresh_token="r1")

        with mock.patch.object(
            OidcClient, "_wait_for_callback", side_effect=_grant_code
        ) as wait:
            token = client.get_token()

        assert wait.call_count == 1
        assert token.identity_token == fresh
        grants = [r["grant_type"] for r in idp.token_requests]
        assert grants == ["refresh_token", "authorization_code"]

    def test_login_without_cached_tokens(self, idp):
        idp.respond((200, {"id_token": "id"}))
        client = _oidc_client(extra_scopes=["groups", "email"])

        with mock.patch.object(
            OidcClient, "_wait_for_callback", side_effect=_grant_code
        ) as wait:
            token = client.get_token()

        assert token.identity_token == "id"
        auth_url = wait.call_args.args[0]
        params = dict(urllib.parse.parse_qsl(urllib.parse.urlparse(auth_url).query))
        assert auth_url.startswith(DISCOVERY["authorization_endpoint"])
        assert params["scope"] == "openid groups email"
        assert params["code_challenge_method"] == "S256"

        exchange = idp.token_requests[0]
        assert exchange["grant_type"] == "authorization_code"
        assert exchange["code"] == "auth-code"
        assert exchange["redirect_uri"] == params["redirect_uri"]
        verifier = exchange["code_verifier"]
        digest = hashlib.sha256(verifier.encode()).digest()
        assert (
            params["code_challenge"]
            == base64.urlsafe_b64encode(digest).rstrip(b"=").decode()
        )

    def test_login_state_mismatch_raises(self, idp):
        client = _oidc_client()

        with mock.patch.object(
            OidcClient,
            "_wait_for_callback",
            return_value=AuthResult(code="auth-code", state="forged"),
        ):
            with pytest.raises(ExchangeError, match="state mismatch"):
                client.get_token()
        assert idp.token_requests == []

    def test_login_denied_raises(self, idp):
        client = _oidc_client()

        with mock.patch.object(
            OidcClient,
            "_wait_for_callback",
            return_value=AuthResult(error="access_denied: user said no"),
        ):
            with pytest.raises(ExchangeError, match="access_denied"):
                client.get_token()

    def test_token_endpoint_error_raises(self, idp):
        idp.respond((401, {"error": "invalid_client"}))
        client = _oidc_client()

        with mock.patch.object(
            OidcClient, "_wait_for_callback", side_effect=_grant_code
        ):
            with pytest.raises(ExchangeError, match="invalid_client"):
                client.get_token()

    @pytest.mark.parametrize(
        "missing, message",
        [("client_id", "client-id"), ("issuer_url", "idp-issuer-url")],
    )
    def test_missing_settings_raise(self, idp, missing, message):
        client = _oidc_client(**{missing: None})

        with pytest.raises(ExchangeError, match=message):
            client.get_token()
        assert idp.requests == []


class TestDiscover:
    def test_discovery_document_is_fetched_once(self, idp):
        client = _oidc_client()

        assert client.discover() == DISCOVERY
        assert client.discover() == DISCOVERY
        assert idp.discovery.call_count == 1
        assert len(idp.requests) == 1

    def test_trailing_slash_in_issuer(self, idp):
        client = _oidc_client(issuer_url=f"{ISSUER}/")

        client.discover()

        assert str(idp.discovery.calls.last.request.url) == DISCOVERY_URL

    def test_discovery_error_raises(self, idp):
        idp.discovery.mock(return_value=httpx.Response(503))
        client = _oidc_client()

        with pytest.raises(ExchangeError, match="OIDC configuration"):
            client.discover()

    def test_missing_token_endpoint_raises(self, idp):
        idp.discovery.mock(return_value=httpx.Response(200, json={"issuer": ISSUER}))
        client = _oidc_client()

        with pytest.raises(ExchangeError, match="no token_endpoint"):
            client.discover()

    def test_unreachable_issuer_raises(self, idp):
        idp.discovery.mock(side_effect=httpx.ConnectError("connection refused"))
        client = _oidc_client()

        with pytest.raises(ExchangeError, match="connection refused"):
            client.discover()
