"""Kubeconfig-backed storage of OIDC auth-info entries.

The kubeconfig is a YAML document shared with kubectl and other clients:

    apiVersion: v1
    kind: Config
    clusters: [...]
    contexts: [...]
    users:
    - name: alice
      user:
        auth-provider:
          name: oidc
          config:
            client-id: ...
            id-token: ...

Only the `users` entry of the user being operated on is ever modified. All
other content is loaded as plain data and written back unchanged.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from kube_oidc.exceptions import AlreadyExistsError, StoreIOError, StoreParseError
from kube_oidc.models import (
    OIDC_PROVIDER_NAME,
    AuthInfo,
    AuthProviderConfig,
    OidcProviderConfig,
)

logger = logging.getLogger(__name__)


def _empty_config() -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [],
        "contexts": [],
        "users": [],
        "preferences": {},
    }


@dataclass
class KubeConfig:
    """An in-memory kubeconfig document.

    Attributes:
        data: The parsed YAML document. Unrelated fields are never touched.
    """

    data: dict[str, Any] = field(default_factory=_empty_config)

    def _users(self) -> list[dict[str, Any]]:
        users = self.data.get("users")
        if users is None:
            users = []
            self.data["users"] = users
        return users

    @property
    def user_names(self) -> list[str]:
        return [entry["name"] for entry in self._users()]

    def get_auth_info(self, user: str) -> AuthInfo | None:
        for entry in self._users():
            if entry["name"] == user:
                return AuthInfo.model_validate(entry.get("user") or {})
        return None

    def set_auth_info(self, user: str, auth_info: AuthInfo) -> None:
        """Insert or replace the auth-info entry of `user`."""
        users = self._users()
        for entry in users:
            if entry["name"] == user:
                entry["user"] = auth_info.to_dict()
                return
        users.append({"name": user, "user": auth_info.to_dict()})


def _validate_document(data: Any, path: Path) -> dict[str, Any]:
    if data is None:
        return _empty_config()
    if not isinstance(data, dict):
        raise StoreParseError(path, "top-level document is not a mapping")

    users = data.get("users")
    if users is None:
        return data
    if not isinstance(users, list):
        raise StoreParseError(path, "'users' is not a list")
    for entry in users:
        if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
            raise StoreParseError(path, "every entry in 'users' needs a 'name'")
        user = entry.get("user")
        if user is not None:
            try:
                AuthInfo.model_validate(user)
            except ValidationError as e:
                raise StoreParseError(
                    path, f"invalid user '{entry['name']}': {e}"
                ) from e
    return data


class ConfigStore:
    """Reads and writes auth-info entries in one kubeconfig file.

    Every read goes to disk; nothing is cached between calls. Writes replace
    the whole file atomically (temporary file + rename). There is no file
    locking, so two processes updating the same file concurrently may lose
    one of the updates.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> KubeConfig:
        """Load the kubeconfig.

        A missing or empty file yields an empty config.

        Raises:
            StoreIOError: The file exists but cannot be read.
            StoreParseError: The file content is malformed.
        """
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug(f"No kubeconfig at {self.path}, starting from empty config")
            return KubeConfig()
        except OSError as e:
            raise StoreIOError(self.path, str(e)) from e

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise StoreParseError(self.path, str(e)) from e

        return KubeConfig(data=_validate_document(data, self.path))

    def save(self, config: KubeConfig) -> None:
        """Write the whole kubeconfig.

        The content goes to a temporary file in the same directory, which
        then replaces the kubeconfig, so readers never see a partial write.

        Raises:
            StoreIOError: The file cannot be written.
        """
        text = yaml.safe_dump(config.data, default_flow_style=False, sort_keys=False)
        # A symlinked kubeconfig is updated at its target; the link stays
        try:
            target = self.path.resolve()
            target.parent.mkdir(parents=True, exist_ok=True)
            try:
                mode = target.stat().st_mode & 0o777
            except FileNotFoundError:
                # kubeconfig holds secrets: readable only by owner (0600)
                mode = 0o600

            fd, tmp_name = tempfile.mkstemp(
                dir=target.parent, prefix=f".{target.name}.", suffix=".tmp"
            )
            tmp_path = Path(tmp_name)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(text)
                tmp_path.chmod(mode)
                os.replace(tmp_path, target)
            except BaseException:
                tmp_path.unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StoreIOError(self.path, str(e)) from e
        logger.debug(f"Wrote kubeconfig {self.path}")

    # --- Auth info ---

    def get_auth_info(self, user: str) -> AuthInfo | None:
        """Get the auth-info entry of `user`, or None if there is none."""
        return self.load().get_auth_info(user)

    def set_auth_info(self, user: str, auth_info: AuthInfo) -> None:
        """Insert or replace the auth-info entry of `user` and save."""
        config = self.load()
        config.set_auth_info(user, auth_info)
        self.save(config)

    def create_oidc_auth_info(self, user: str) -> None:
        """Create an oidc auth-info entry with empty provider config.

        Raises:
            AlreadyExistsError: `user` already has an auth-info entry, of
                any kind. Nothing is written in that case.
        """
        config = self.load()
        if config.get_auth_info(user) is not None:
            raise AlreadyExistsError(user)
        config.set_auth_info(user, AuthInfo.new_oidc())
        self.save(config)
        logger.info(f"Created oidc user '{user}' in {self.path}")

    # --- Provider config ---

    def get_provider_config(self, user: str) -> dict[str, str]:
        """Get the auth-provider config map of `user`.

        Returns:
            A copy of the config map; empty if the user or its provider
            config does not exist.
        """
        auth_info = self.get_auth_info(user)
        if auth_info is None or auth_info.auth_provider is None:
            return {}
        return dict(auth_info.auth_provider.config or {})

    def get_oidc_provider_config(self, user: str) -> OidcProviderConfig:
        """Get the provider config of `user` as a typed record."""
        return OidcProviderConfig.from_config_map(self.get_provider_config(user))

    def persist_provider_config(
        self, user: str, provider_config: dict[str, str]
    ) -> None:
        """Replace the auth-provider config map of `user` entirely.

        A user without an auth-provider block gets an oidc one.
        """
        config = self.load()
        self._replace_provider_config(config, user, dict(provider_config))
        self.save(config)

    def update_provider_config(self, user: str, partial: dict[str, str]) -> None:
        """Overlay `partial` onto the provider config of `user` and save.

        Keys in `partial` win; keys only in the stored config are kept. The
        read and the write use the same loaded document.
        """
        config = self.load()
        auth_info = config.get_auth_info(user)
        current: dict[str, str] = {}
        if auth_info is not None and auth_info.auth_provider is not None:
            current = dict(auth_info.auth_provider.config or {})
        current.update(partial)
        logger.debug(f"Updating provider config keys {sorted(partial)} for '{user}'")
        self._replace_provider_config(config, user, current)
        self.save(config)

    @staticmethod
    def _replace_provider_config(
        config: KubeConfig, user: str, provider_config: dict[str, str]
    ) -> None:
        auth_info = config.get_auth_info(user) or AuthInfo()
        if auth_info.auth_provider is None:
            auth_info.auth_provider = AuthProviderConfig(name=OIDC_PROVIDER_NAME)
        auth_info.auth_provider.config = provider_config
        config.set_auth_info(user, auth_info)
