"""User registration and token commands for kube-oidc.

Token Model:
- Provider settings and cached tokens live in the user's auth-provider
  config in the kubeconfig (client-id, idp-issuer-url, id-token, ...)
- get-token reuses the cached id-token while valid, otherwise refreshes it
  or opens a browser login, and caches the result in the kubeconfig
- The credential goes to stdout; everything else goes to stderr
"""

import logging
from typing import NoReturn

import typer

from kube_oidc.cli._context import CliContext
from kube_oidc.exceptions import AlreadyExistsError, KubeOidcError
from kube_oidc.lifecycle import TokenLifecycleManager
from kube_oidc.models import AuthInfo, OidcProviderConfig
from kube_oidc.oidc import (
    default_exchanger_factory,
    id_token_expiry,
    id_token_is_valid,
)
from kube_oidc.render import EXEC_CREDENTIAL_API_VERSION, render_exec_credential

logger = logging.getLogger(__name__)


def _fail(error: Exception) -> NoReturn:
    typer.echo(f"Error: {error}", err=True)
    raise typer.Exit(1)


def _lifecycle_manager(cli: CliContext) -> TokenLifecycleManager:
    return TokenLifecycleManager(cli.store, default_exchanger_factory(cli.settings))


def login(
    ctx: typer.Context,
    user: str = typer.Argument(..., help="Kubeconfig user name to create"),
    issuer_url: str = typer.Option(
        ...,
        "--issuer-url",
        help="OIDC issuer URL",
    ),
    client_id: str = typer.Option(
        ...,
        "--client-id",
        help="OIDC client ID",
    ),
    client_secret: str = typer.Option(
        None,
        "--client-secret",
        help="OIDC client secret (confidential clients only)",
    ),
    extra_scopes: str = typer.Option(
        None,
        "--extra-scopes",
        help="Comma-separated scopes to request in addition to 'openid'",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite the user if it already exists",
    ),
) -> None:
    """Register an OIDC user in the kubeconfig and log in.

    The login flow:
    1. Create the user entry (refuses to overwrite unless confirmed)
    2. Store the provider settings
    3. Authenticate via browser (OAuth PKCE flow)
    4. Cache the id and refresh tokens in the kubeconfig
    """
    cli: CliContext = ctx.obj
    store = cli.store

    try:
        store.create_oidc_auth_info(user)
    except AlreadyExistsError as e:
        if not force and not typer.confirm(f"{e}. Overwrite?", default=False, err=True):
            typer.echo("Aborted.", err=True)
            raise typer.Exit(1)
        try:
            store.set_auth_info(user, AuthInfo.new_oidc())
        except KubeOidcError as e:
            _fail(e)
    except KubeOidcError as e:
        _fail(e)

    provider_config = OidcProviderConfig(
        client_id=client_id,
        client_secret=client_secret,
        issuer_url=issuer_url.rstrip("/"),
        extra_scopes=[s.strip() for s in (extra_scopes or "").split(",") if s.strip()],
    )

    try:
        store.persist_provider_config(user, provider_config.to_config_map())
        typer.echo(
            f"Logging in user '{user}' at {provider_config.issuer_url}", err=True
        )
        _lifecycle_manager(cli).get_token(user)
    except KubeOidcError as e:
        _fail(e)

    typer.echo("", err=True)
    typer.echo("Login successful!", err=True)
    typer.echo(f"Tokens saved to {cli.kubeconfig}", err=True)
    typer.echo("", err=True)
    typer.echo("To use this user with kubectl, set its exec plugin:", err=True)
    typer.echo(f"  apiVersion: {EXEC_CREDENTIAL_API_VERSION}", err=True)
    typer.echo("  command: kube-oidc", err=True)
    typer.echo(f"  args: [get-token, {user}]", err=True)


def get_token(
    ctx: typer.Context,
    user: str = typer.Argument(..., help="Kubeconfig user name"),
) -> None:
    """Print an ExecCredential with a valid id token for USER.

    Refreshes or re-authenticates when the cached token has expired.
    """
    cli: CliContext = ctx.obj

    try:
        token = _lifecycle_manager(cli).get_token(user)
        credential = render_exec_credential(token.identity_token)
    except KubeOidcError as e:
        _fail(e)

    typer.echo(credential)


def status(
    ctx: typer.Context,
    user: str = typer.Argument(..., help="Kubeconfig user name"),
) -> None:
    """Show the provider settings and cached token state of USER."""
    cli: CliContext = ctx.obj

    try:
        auth_info = cli.store.get_auth_info(user)
    except KubeOidcError as e:
        _fail(e)

    typer.echo(f"Kubeconfig: {cli.kubeconfig}")
    if auth_info is None:
        typer.echo(f"User '{user}' not found", err=True)
        raise typer.Exit(1)
    if not auth_info.is_oidc:
        typer.echo(f"User '{user}' does not use the oidc auth provider")
        return

    provider = auth_info.auth_provider
    provider_map = provider.config if provider is not None else None
    config = OidcProviderConfig.from_config_map(provider_map or {})
    typer.echo(f"User: {user}")
    typer.echo(f"  Issuer: {config.issuer_url or '(not set)'}")
    typer.echo(f"  Client ID: {config.client_id or '(not set)'}")
    typer.echo(f"  Scopes: {' '.join(config.scopes)}")
    typer.echo(f"  Refresh token: {'yes' if config.refresh_token else 'no'}")

    if not config.id_token:
        typer.echo("  ID token: (not cached)")
        return

    expiry = id_token_expiry(config.id_token)
    if expiry is None:
        typer.echo("  ID token: (unreadable, will be refreshed)")
    elif id_token_is_valid(config.id_token, cli.settings.expiry_leeway_seconds):
        typer.echo(f"  ID token: valid until {expiry.isoformat()}")
    else:
        typer.echo(f"  ID token: expired at {expiry.isoformat()}")
