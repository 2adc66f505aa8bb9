import os
import typing
from pathlib import Path

import pytest
import yaml

from kube_oidc.store import ConfigStore

KUBECONFIG_WITH_USERS = {
    "apiVersion": "v1",
    "kind": "Config",
    "clusters": [
        {
            "name": "prod",
            "cluster": {
                "server": "https://k8s.example.com:6443",
                "certificate-authority-data": "Y2VydA==",
            },
        }
    ],
    "contexts": [
        {"name": "prod", "context": {"cluster": "prod", "user": "alice"}},
    ],
    "current-context": "prod",
    "preferences": {},
    "users": [
        {"name": "bob", "user": {"token": "static-bob-token"}},
        {
            "name": "alice",
            "user": {
                "auth-provider": {
                    "name": "oidc",
                    "config": {
                        "client-id": "kubernetes",
                        "idp-issuer-url": "https://idp.example.com",
                        "id-token": "stale",
                        "refresh-token": "r1",
                    },
                }
            },
        },
    ],
}


@pytest.fixture(scope="function", autouse=True)
def cleared_kube_oidc_env_vars(
    monkeypatch: pytest.MonkeyPatch,
) -> typing.Generator[None, None, None]:
    """Clear KUBE_OIDC_* and KUBECONFIG for the duration of the test."""
    for var in list(os.environ):
        if var.startswith("KUBE_OIDC_") or var == "KUBECONFIG":
            monkeypatch.delenv(var)
    yield


@pytest.fixture
def kubeconfig_path(tmp_path: Path) -> Path:
    return tmp_path / ".kube" / "config"


@pytest.fixture
def store(kubeconfig_path: Path) -> ConfigStore:
    return ConfigStore(kubeconfig_path)


@pytest.fixture
def write_kubeconfig(kubeconfig_path: Path) -> typing.Callable[[dict], Path]:
    """Write a kubeconfig document to the test kubeconfig path."""

    def _write(data: dict) -> Path:
        kubeconfig_path.parent.mkdir(parents=True, exist_ok=True)
        kubeconfig_path.write_text(yaml.safe_dump(data, sort_keys=False))
        return kubeconfig_path

    return _write


@pytest.fixture
def populated_kubeconfig(write_kubeconfig) -> Path:
    """A kubeconfig with a static-token user (bob) and an oidc user (alice)."""
    return write_kubeconfig(KUBECONFIG_WITH_USERS)
