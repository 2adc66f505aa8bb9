"""kube-oidc exceptions.

Every failure of the credential helper is raised as a subclass of
KubeOidcError, with a message that can be shown as-is in CLI output.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kube_oidc.models import Token


class KubeOidcError(Exception):
    """Base exception for all kube-oidc errors."""

    pass


class StoreError(KubeOidcError):
    """Error reading or writing the kubeconfig file.

    Attributes:
        path: Path of the kubeconfig file involved.
        detail: Underlying error message (if available)
    """

    def __init__(self, message: str, path: Path, detail: str | None = None):
        self.path = path
        self.detail = detail
        parts = [f"{message} ({path})"]
        if detail:
            parts.append(f": {detail}")
        super().__init__("".join(parts))


class StoreIOError(StoreError):
    """The kubeconfig file could not be read or written."""

    def __init__(self, path: Path, detail: str | None = None):
        super().__init__("Could not access kubeconfig", path, detail)


class StoreParseError(StoreError):
    """The kubeconfig file content is malformed."""

    def __init__(self, path: Path, detail: str | None = None):
        super().__init__("Malformed kubeconfig", path, detail)


class AlreadyExistsError(KubeOidcError):
    """The user already has an auth-info entry.

    Raised instead of overwriting credentials of a possibly different kind.
    """

    def __init__(self, user: str):
        self.user = user
        super().__init__(f"User '{user}' already exists in kubeconfig")


class ExchangeError(KubeOidcError):
    """The OIDC exchange could not produce a token.

    This is raised when:
    - The identity provider is unreachable or returns an error
    - The user denied consent or the browser login timed out
    - Required provider settings (client id, issuer) are missing
    """

    def __init__(self, message: str, detail: str | None = None):
        self.detail = detail
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class MalformedTokenResponseError(KubeOidcError):
    """The token response does not carry an identity token."""

    def __init__(self, detail: str = "could not get id token from response"):
        super().__init__(detail)


class PersistError(KubeOidcError):
    """A token was obtained but could not be cached in the kubeconfig.

    Attributes:
        token: The token that was obtained by the exchange.
    """

    def __init__(self, token: Token, cause: Exception):
        self.token = token
        super().__init__(f"Obtained a token but could not cache it: {cause}")


class RenderError(KubeOidcError):
    """The exec credential could not be serialized."""

    pass
