"""kube-oidc: OIDC credential helper for kubectl exec plugins."""

from kube_oidc.config import KubeOidcSettings, resolve_kubeconfig_path
from kube_oidc.exceptions import (
    AlreadyExistsError,
    ExchangeError,
    KubeOidcError,
    MalformedTokenResponseError,
    PersistError,
    RenderError,
    StoreIOError,
    StoreParseError,
)
from kube_oidc.lifecycle import TokenLifecycleManager
from kube_oidc.models import AuthInfo, OidcProviderConfig, Token
from kube_oidc.oidc import OidcClient, TokenExchanger
from kube_oidc.render import render_exec_credential
from kube_oidc.store import ConfigStore, KubeConfig

__all__ = [
    "AlreadyExistsError",
    "AuthInfo",
    "ConfigStore",
    "ExchangeError",
    "KubeConfig",
    "KubeOidcError",
    "KubeOidcSettings",
    "MalformedTokenResponseError",
    "OidcClient",
    "OidcProviderConfig",
    "PersistError",
    "RenderError",
    "StoreIOError",
    "StoreParseError",
    "Token",
    "TokenExchanger",
    "TokenLifecycleManager",
    "render_exec_credential",
    "resolve_kubeconfig_path",
]
