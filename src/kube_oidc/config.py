"""Settings for the kube-oidc credential helper.

Settings are read from KUBE_OIDC_* environment variables. The kubeconfig
location is resolved once, up front, and handed to the ConfigStore as an
explicit path:

1. Explicit path (--kubeconfig)
2. KUBE_OIDC_KUBECONFIG
3. First entry of KUBECONFIG
4. ~/.kube/config
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_CALLBACK_PORT = 8000
DEFAULT_HTTP_TIMEOUT = 30.0
DEFAULT_LOGIN_TIMEOUT = 120
DEFAULT_EXPIRY_LEEWAY = 10


class KubeOidcSettings(BaseSettings):
    """Settings loaded from KUBE_OIDC_* environment variables."""

    kubeconfig: Path | None = None

    # Local port for the OAuth redirect during browser login
    callback_port: int = DEFAULT_CALLBACK_PORT
    http_timeout_seconds: float = DEFAULT_HTTP_TIMEOUT
    login_timeout_seconds: int = DEFAULT_LOGIN_TIMEOUT
    # Cached id-tokens expiring within this many seconds count as expired
    expiry_leeway_seconds: int = DEFAULT_EXPIRY_LEEWAY
    open_browser: bool = True

    model_config = SettingsConfigDict(
        env_prefix="KUBE_OIDC_",
        extra="ignore",
    )


def get_default_kubeconfig_path() -> Path:
    """Get the conventional kubeconfig path (~/.kube/config)."""
    return Path.home() / ".kube" / "config"


def resolve_kubeconfig_path(
    explicit: Path | None = None,
    settings: KubeOidcSettings | None = None,
) -> Path:
    """Resolve the kubeconfig file to read and rewrite.

    Args:
        explicit: Path given on the command line, if any.
        settings: Settings to consult. Loaded from the environment if None.

    Returns:
        The kubeconfig path, with ~ expanded.
    """
    if explicit is not None:
        return explicit.expanduser()

    settings = settings or KubeOidcSettings()
    if settings.kubeconfig is not None:
        return settings.kubeconfig.expanduser()

    kubeconfig_env = os.environ.get("KUBECONFIG", "")
    for entry in kubeconfig_env.split(os.pathsep):
        if entry:
            # kubectl writes new entries to the first file in the list
            logger.debug(f"Using kubeconfig from KUBECONFIG: {entry}")
            return Path(entry).expanduser()

    return get_default_kubeconfig_path()
