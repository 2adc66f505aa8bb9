"""Helpers for testing code that uses kube-oidc without an identity provider."""

from __future__ import annotations

import time

from jose import jwt

from kube_oidc.models import OidcProviderConfig, Token

__all__ = [
    "StaticTokenExchanger",
    "make_id_token",
]


def make_id_token(expires_in: float = 3600, **claims) -> str:
    """Create a JWT-shaped id token expiring `expires_in` seconds from now.

    The token is signed with a throwaway HMAC key; kube-oidc never verifies
    signatures, only the `exp` claim.
    """
    payload = {"iss": "https://idp.example.com", "sub": "alice", **claims}
    payload.setdefault("exp", int(time.time() + expires_in))
    return jwt.encode(payload, "not-a-secret", algorithm="HS256")


class StaticTokenExchanger:
    """Exchanger factory that always returns the same token (or error).

    Usable directly as the `exchanger_factory` of a TokenLifecycleManager.
    Every provider config it is called with is recorded in `configs`.
    """

    def __init__(self, token: Token | None = None, error: Exception | None = None):
        if token is None and error is None:
            raise ValueError("StaticTokenExchanger needs a token or an error")
        self.token = token
        self.error = error
        self.configs: list[OidcProviderConfig] = []

    def __call__(self, config: OidcProviderConfig) -> StaticTokenExchanger:
        self.configs.append(config)
        return self

    def get_token(self) -> Token:
        if self.error is not None:
            raise self.error
        return self.token
