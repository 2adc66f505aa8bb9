"""kube-oidc CLI - OIDC credential helper for kubectl.

Usage:
    kube-oidc login <user> --issuer-url <url> --client-id <id> [--client-secret s]
    kube-oidc get-token <user>
    kube-oidc status <user>
    kube-oidc version

Use as a kubectl exec credential plugin:

    users:
    - name: alice
      user:
        exec:
          apiVersion: client.authentication.k8s.io/v1alpha1
          command: kube-oidc
          args: [get-token, alice]

Configuration:
    --kubeconfig, KUBE_OIDC_KUBECONFIG or KUBECONFIG select the kubeconfig file
    (default ~/.kube/config). See kube_oidc.config for other KUBE_OIDC_* settings.
"""

import logging
from pathlib import Path

import typer

from kube_oidc.cli import auth
from kube_oidc.cli._context import CliContext
from kube_oidc.config import KubeOidcSettings, resolve_kubeconfig_path

# Main CLI app
app = typer.Typer(
    name="kube-oidc",
    help="kube-oidc - OIDC credential helper for kubectl",
    no_args_is_help=True,
)

# Add commands
app.command()(auth.login)
app.command("get-token")(auth.get_token)
app.command()(auth.status)


@app.command()
def version() -> None:
    """Show the kube-oidc version."""
    try:
        from importlib.metadata import version as get_version

        ver = get_version("kube-oidc")
    except Exception:
        ver = "unknown"

    typer.echo(f"kube-oidc {ver}")


@app.callback()
def main(
    ctx: typer.Context,
    kubeconfig: Path = typer.Option(
        None,
        "--kubeconfig",
        help="Path to the kubeconfig file (default: $KUBECONFIG or ~/.kube/config)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log debug output to stderr",
    ),
) -> None:
    """kube-oidc - OIDC credential helper for kubectl.

    Use 'kube-oidc login' once to register a user, then reference
    'kube-oidc get-token <user>' as the user's exec credential plugin.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    settings = KubeOidcSettings()
    ctx.obj = CliContext(
        settings=settings,
        kubeconfig=resolve_kubeconfig_path(kubeconfig, settings),
    )


if __name__ == "__main__":
    app()
