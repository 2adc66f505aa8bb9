from dataclasses import dataclass
from pathlib import Path

from kube_oidc.config import KubeOidcSettings
from kube_oidc.store import ConfigStore


@dataclass
class CliContext:
    """Resolved settings shared by all commands of one invocation."""

    settings: KubeOidcSettings
    kubeconfig: Path

    @property
    def store(self) -> ConfigStore:
        return ConfigStore(self.kubeconfig)
