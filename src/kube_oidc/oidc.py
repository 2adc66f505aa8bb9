"""OIDC token exchange.

OidcClient produces a usable identity token from a user's provider config,
doing as little network work as possible:

1. Cached id-token: returned unchanged while its `exp` claim is in the future
2. Refresh token: exchanged at the token endpoint (refresh_token grant)
3. Browser login: authorization code flow with PKCE and a local callback

Endpoints are found through the issuer's discovery document
({issuer}/.well-known/openid-configuration).

Identity token signatures are not verified here; only the expiry is read.
The API server validates the token it is given.
"""

from __future__ import annotations

import base64
import hashlib
import html
import http.server
import logging
import secrets
import socketserver
import threading
import urllib.parse
import webbrowser
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

import httpx
import typer
from jose import JWTError, jwt

from kube_oidc.config import KubeOidcSettings
from kube_oidc.exceptions import ExchangeError
from kube_oidc.models import OidcProviderConfig, Token

logger = logging.getLogger(__name__)

DISCOVERY_PATH = "/.well-known/openid-configuration"


class TokenExchanger(Protocol):
    """Anything that can produce a Token for one provider config."""

    def get_token(self) -> Token: ...


ExchangerFactory = Callable[[OidcProviderConfig], TokenExchanger]


def id_token_expiry(id_token: str) -> datetime | None:
    """Read the `exp` claim of an identity token without verifying it.

    Returns:
        Expiry as an aware UTC datetime, or None if the token cannot be
        decoded or has no numeric `exp` claim.
    """
    try:
        claims = jwt.get_unverified_claims(id_token)
    except JWTError as e:
        logger.debug(f"Could not decode cached id token: {e}")
        return None
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)) or isinstance(exp, bool):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)


def id_token_is_valid(id_token: str, leeway_seconds: int = 0) -> bool:
    """Check whether an identity token is still valid for `leeway_seconds`."""
    expiry = id_token_expiry(id_token)
    if expiry is None:
        return False
    return expiry > datetime.now(timezone.utc) + timedelta(seconds=leeway_seconds)


def generate_pkce() -> tuple[str, str]:
    """Generate PKCE code verifier and challenge."""
    verifier = secrets.token_urlsafe(32)
    digest = hashlib.sha256(verifier.encode()).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode()
    return verifier, challenge


@dataclass
class AuthResult:
    """Result from OAuth callback."""

    code: str | None = None
    state: str | None = None
    error: str | None = None


class OAuthCallbackHandler(http.server.BaseHTTPRequestHandler):
    """HTTP handler for OAuth callback."""

    auth_result: AuthResult | None = None

    def do_GET(self):
        """Handle GET request from OAuth redirect."""
        parsed = urllib.parse.urlparse(self.path)
        params = urllib.parse.parse_qs(parsed.query)
        state = params.get("state", [None])[0]

        if "code" in params:
            OAuthCallbackHandler.auth_result = AuthResult(
                code=params["code"][0], state=state
            )
            self._send_response(200, "Login Successful", "You can close this window.")
        elif "error" in params:
            error = params.get("error", ["unknown"])[0]
            error_desc = params.get("error_description", [""])[0]
            OAuthCallbackHandler.auth_result = AuthResult(
                error=f"{error}: {error_desc}", state=state
            )
            self._send_response(400, "Login Failed", f"Error: {error} {error_desc}")
        else:
            OAuthCallbackHandler.auth_result = AuthResult(
                error="No code or error in callback"
            )
            self._send_response(400, "Login Failed", "No authorization code received")

    def _send_response(self, status: int, title: str, message: str):
        self.send_response(status)
        self.send_header("Content-type", "text/html")
        self.end_headers()
        title = html.escape(title)
        page = f"""
        <html>
        <head><title>kube-oidc - {title}</title></head>
        <body style="font-family: sans-serif; text-align: center; padding: 50px;">
            <h1>{title}</h1>
            <p>{html.escape(message)}</p>
        </body>
        </html>
        """
        self.wfile.write(page.encode())

    def log_message(self, format, *args):
        """Suppress default logging."""
        pass


class _CallbackServer(socketserver.TCPServer):
    allow_reuse_address = True


def _error_detail(response: httpx.Response) -> str:
    """Extract the OAuth error description from an error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict) and "error" in body:
        description = body.get("error_description")
        return f"{body['error']}: {description}" if description else str(body["error"])
    return f"HTTP {response.status_code}"


class OidcClient:
    """Token exchanger for one user's OIDC provider config.

    Args:
        config: The user's provider settings and cached tokens.
        settings: Timeouts, callback port and browser behaviour.
        http_client: Client to use for all requests. A new client is
            created per request if None.
    """

    def __init__(
        self,
        config: OidcProviderConfig,
        settings: KubeOidcSettings | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.config = config
        self.settings = settings or KubeOidcSettings()
        self._http_client = http_client
        self._discovery: dict[str, Any] | None = None

    @contextmanager
    def _client(self) -> Iterator[httpx.Client]:
        if self._http_client is not None:
            yield self._http_client
            return
        verify: str | bool = self.config.certificate_authority or True
        with httpx.Client(
            timeout=self.settings.http_timeout_seconds, verify=verify
        ) as client:
            yield client

    def _require_settings(self) -> tuple[str, str]:
        if not self.config.issuer_url:
            raise ExchangeError("No issuer URL configured (idp-issuer-url)")
        if not self.config.client_id:
            raise ExchangeError("No client ID configured (client-id)")
        return self.config.issuer_url, self.config.client_id

    def discover(self) -> dict[str, Any]:
        """Fetch (once) and return the issuer's discovery document."""
        if self._discovery is not None:
            return self._discovery

        issuer_url, _ = self._require_settings()
        url = issuer_url.rstrip("/") + DISCOVERY_PATH
        logger.debug(f"Fetching OIDC configuration from {url}")
        try:
            with self._client() as client:
                response = client.get(url)
                response.raise_for_status()
                document = response.json()
        except httpx.HTTPStatusError as e:
            raise ExchangeError(
                f"Could not fetch OIDC configuration from {issuer_url}",
                _error_detail(e.response),
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ExchangeError(
                f"Could not fetch OIDC configuration from {issuer_url}", str(e)
            ) from e

        if not isinstance(document, dict) or "token_endpoint" not in document:
            raise ExchangeError(
                f"OIDC configuration from {issuer_url} has no token_endpoint"
            )
        self._discovery = document
        return document

    def _post_token_request(self, data: dict[str, str]) -> Token:
        token_endpoint = self.discover()["token_endpoint"]
        if self.config.client_secret:
            data["client_secret"] = self.config.client_secret
        try:
            with self._client() as client:
                response = client.post(token_endpoint, data=data)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as e:
            raise ExchangeError(
                f"Token request ({data['grant_type']}) failed",
                _error_detail(e.response),
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ExchangeError(
                f"Token request ({data['grant_type']}) failed", str(e)
            ) from e

        if not isinstance(body, dict):
            raise ExchangeError("Token endpoint returned a non-object response")
        return Token.from_response(body)

    def cached_token(self) -> Token | None:
        """Return the cached id-token as a Token if it is still valid."""
        id_token = self.config.id_token
        if not id_token:
            return None
        if not id_token_is_valid(id_token, self.settings.expiry_leeway_seconds):
            logger.debug("Cached id token is expired or unreadable")
            return None
        return Token(
            id_token=id_token,
            refresh_token=self.config.refresh_token,
            expires_at=id_token_expiry(id_token),
        )

    def refresh(self, refresh_token: str) -> Token:
        """Exchange a refresh token for new tokens."""
        _, client_id = self._require_settings()
        logger.info("Refreshing OIDC token")
        return self._post_token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": client_id,
            }
        )

    def authorize(self) -> Token:
        """Run the browser login (authorization code flow with PKCE)."""
        _, client_id = self._require_settings()
        discovery = self.discover()
        auth_endpoint = discovery.get("authorization_endpoint")
        if not auth_endpoint:
            raise ExchangeError("OIDC configuration has no authorization_endpoint")

        code_verifier, code_challenge = generate_pkce()
        redirect_uri = f"http://localhost:{self.settings.callback_port}/callback"
        state = secrets.token_urlsafe(16)
        auth_params = {
            "client_id": client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "scope": " ".join(self.config.scopes),
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        auth_url = f"{auth_endpoint}?{urllib.parse.urlencode(auth_params)}"

        result = self._wait_for_callback(auth_url)
        if result.error:
            raise ExchangeError("Authorization failed", result.error)
        if not result.code:
            raise ExchangeError("No authorization code received")
        if result.state != state:
            raise ExchangeError("Authorization state mismatch")

        logger.info("Exchanging authorization code for tokens")
        return self._post_token_request(
            {
                "grant_type": "authorization_code",
                "code": result.code,
                "redirect_uri": redirect_uri,
                "client_id": client_id,
                "code_verifier": code_verifier,
            }
        )

    def _wait_for_callback(self, auth_url: str) -> AuthResult:
        """Open the browser at `auth_url` and wait for the OAuth redirect."""
        timeout = self.settings.login_timeout_seconds
        OAuthCallbackHandler.auth_result = None

        try:
            server = _CallbackServer(
                ("localhost", self.settings.callback_port), OAuthCallbackHandler
            )
        except OSError as e:
            raise ExchangeError(
                f"Could not listen on port {self.settings.callback_port}", str(e)
            ) from e
        server.timeout = timeout
        server_thread = threading.Thread(target=server.handle_request, daemon=True)
        server_thread.start()

        # stdout carries the credential; prompts go to stderr
        typer.echo("Opening browser for authentication...", err=True)
        typer.echo(f"If the browser doesn't open, visit: {auth_url}", err=True)
        if self.settings.open_browser:
            webbrowser.open(auth_url)

        server_thread.join(timeout + 1)
        server.server_close()

        if OAuthCallbackHandler.auth_result is None:
            raise ExchangeError("Authentication timed out")
        return OAuthCallbackHandler.auth_result

    def get_token(self) -> Token:
        """Return a usable token: cached, refreshed, or from a new login."""
        cached = self.cached_token()
        if cached is not None:
            logger.debug("Using cached id token")
            return cached

        self._require_settings()
        if self.config.refresh_token:
            try:
                return self.refresh(self.config.refresh_token)
            except ExchangeError as e:
                logger.warning(f"Token refresh failed, falling back to login: {e}")

        return self.authorize()


def default_exchanger_factory(
    settings: KubeOidcSettings | None = None,
) -> ExchangerFactory:
    """Build a factory creating an OidcClient per provider config."""

    def factory(config: OidcProviderConfig) -> TokenExchanger:
        return OidcClient(config, settings=settings)

    return factory
