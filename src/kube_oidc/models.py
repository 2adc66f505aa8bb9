"""Data models for kubeconfig auth-info entries and OIDC tokens.

The kubeconfig stores provider settings as a flat string map. That map is
converted to and from OidcProviderConfig at the ConfigStore edge, so the
token lifecycle code works with named fields only.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from kube_oidc.exceptions import MalformedTokenResponseError

OIDC_PROVIDER_NAME = "oidc"

# Provider config keys, as written in the kubeconfig
CLIENT_ID_KEY = "client-id"
CLIENT_SECRET_KEY = "client-secret"
ISSUER_URL_KEY = "idp-issuer-url"
CERTIFICATE_AUTHORITY_KEY = "idp-certificate-authority"
EXTRA_SCOPES_KEY = "extra-scopes"
ID_TOKEN_KEY = "id-token"
REFRESH_TOKEN_KEY = "refresh-token"

_KNOWN_KEYS = frozenset(
    {
        CLIENT_ID_KEY,
        CLIENT_SECRET_KEY,
        ISSUER_URL_KEY,
        CERTIFICATE_AUTHORITY_KEY,
        EXTRA_SCOPES_KEY,
        ID_TOKEN_KEY,
        REFRESH_TOKEN_KEY,
    }
)


# --- Kubeconfig wire models ---


class AuthProviderConfig(BaseModel):
    """The `auth-provider` block of a kubeconfig user."""

    model_config = ConfigDict(extra="allow")

    name: str
    config: dict[str, str] | None = None


class AuthInfo(BaseModel):
    """The `user` block of a kubeconfig users entry.

    Only `auth-provider` is modelled; any other field (token, exec,
    client-certificate-data, ...) is kept as an extra and written back as is.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    auth_provider: AuthProviderConfig | None = Field(
        default=None, alias="auth-provider"
    )

    @property
    def is_oidc(self) -> bool:
        return (
            self.auth_provider is not None
            and self.auth_provider.name == OIDC_PROVIDER_NAME
        )

    @classmethod
    def new_oidc(cls) -> AuthInfo:
        """Create an auth-info entry for the oidc provider with empty config."""
        return cls(auth_provider=AuthProviderConfig(name=OIDC_PROVIDER_NAME, config={}))

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)


# --- Typed provider config ---


class OidcProviderConfig(BaseModel):
    """One user's OIDC provider settings and cached tokens.

    Attributes:
        client_id: OAuth client ID.
        client_secret: OAuth client secret (confidential clients only).
        issuer_url: OIDC issuer URL, used for discovery.
        certificate_authority: Path to a CA bundle for the issuer.
        extra_scopes: Scopes requested in addition to `openid`.
        id_token: Cached identity token.
        refresh_token: Cached refresh token.
        extra: Unrecognized keys, carried through unchanged.
    """

    client_id: str | None = None
    client_secret: str | None = None
    issuer_url: str | None = None
    certificate_authority: str | None = None
    extra_scopes: list[str] = Field(default_factory=list)
    id_token: str | None = None
    refresh_token: str | None = None
    extra: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_config_map(cls, config: dict[str, str]) -> OidcProviderConfig:
        """Build the typed record from a kubeconfig provider config map.

        Empty values are treated as absent.
        """
        scopes = config.get(EXTRA_SCOPES_KEY) or ""
        return cls(
            client_id=config.get(CLIENT_ID_KEY) or None,
            client_secret=config.get(CLIENT_SECRET_KEY) or None,
            issuer_url=config.get(ISSUER_URL_KEY) or None,
            certificate_authority=config.get(CERTIFICATE_AUTHORITY_KEY) or None,
            extra_scopes=[s.strip() for s in scopes.split(",") if s.strip()],
            id_token=config.get(ID_TOKEN_KEY) or None,
            refresh_token=config.get(REFRESH_TOKEN_KEY) or None,
            extra={k: v for k, v in config.items() if k not in _KNOWN_KEYS},
        )

    def to_config_map(self) -> dict[str, str]:
        """Convert back to the kubeconfig string map, omitting unset fields."""
        config = dict(self.extra)
        fields = {
            CLIENT_ID_KEY: self.client_id,
            CLIENT_SECRET_KEY: self.client_secret,
            ISSUER_URL_KEY: self.issuer_url,
            CERTIFICATE_AUTHORITY_KEY: self.certificate_authority,
            EXTRA_SCOPES_KEY: ",".join(self.extra_scopes),
            ID_TOKEN_KEY: self.id_token,
            REFRESH_TOKEN_KEY: self.refresh_token,
        }
        for key, value in fields.items():
            if value:
                config[key] = value
        return config

    @property
    def scopes(self) -> list[str]:
        """All scopes to request, `openid` first."""
        return ["openid", *[s for s in self.extra_scopes if s != "openid"]]


# --- Token ---


class Token(BaseModel):
    """Result of an OIDC exchange.

    `id_token` stays optional here so a provider response without one can
    be represented; use `identity_token` to read it.
    """

    id_token: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: datetime | None = None

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> Token:
        """Parse an OAuth 2.0 token endpoint response.

        Handles the standard fields:
        - id_token (OIDC)
        - access_token
        - refresh_token (optional)
        - expires_in (optional)
        """
        id_token = data.get("id_token")
        refresh_token = data.get("refresh_token")
        expires_at = None
        expires_in = data.get("expires_in")
        if isinstance(expires_in, (int, float)):
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
        return cls(
            id_token=id_token if isinstance(id_token, str) else None,
            access_token=data.get("access_token"),
            refresh_token=refresh_token if isinstance(refresh_token, str) else None,
            expires_at=expires_at,
        )

    @property
    def identity_token(self) -> str:
        """The identity token string.

        Raises:
            MalformedTokenResponseError: The response carried no id token.
        """
        if not self.id_token:
            raise MalformedTokenResponseError()
        return self.id_token
