"""Tests for kube_oidc.config."""

import os
from pathlib import Path

import pytest

from kube_oidc.config import (
    DEFAULT_CALLBACK_PORT,
    KubeOidcSettings,
    resolve_kubeconfig_path,
)


@pytest.fixture
def temp_home(tmp_path, monkeypatch):
    """Patch Path.home() to return tmp_path."""
    monkeypatch.setattr(Path, "home", lambda: tmp_path)
    return tmp_path


class TestKubeOidcSettings:
    def test_defaults(self):
        settings = KubeOidcSettings()
        assert settings.kubeconfig is None
        assert settings.callback_port == DEFAULT_CALLBACK_PORT
        assert settings.open_browser is True

    def test_reads_env_vars(self, monkeypatch):
        monkeypatch.setenv("KUBE_OIDC_CALLBACK_PORT", "18000")
        monkeypatch.setenv("KUBE_OIDC_OPEN_BROWSER", "false")
        monkeypatch.setenv("KUBE_OIDC_EXPIRY_LEEWAY_SECONDS", "60")

        settings = KubeOidcSettings()

        assert settings.callback_port == 18000
        assert settings.open_browser is False
        assert settings.expiry_leeway_seconds == 60


class TestResolveKubeconfigPath:
    def test_defaults_to_home_kube_config(self, temp_home):
        assert resolve_kubeconfig_path() == temp_home / ".kube" / "config"

    def test_uses_first_kubeconfig_entry(self, temp_home, monkeypatch):
        monkeypatch.setenv(
            "KUBECONFIG", os.pathsep.join(["", "/tmp/first", "/tmp/second"])
        )
        assert resolve_kubeconfig_path() == Path("/tmp/first")

    def test_settings_win_over_kubeconfig_env(self, temp_home, monkeypatch):
        monkeypatch.setenv("KUBECONFIG", "/tmp/from-kubeconfig")
        monkeypatch.setenv("KUBE_OIDC_KUBECONFIG", "/tmp/from-settings")
        assert resolve_kubeconfig_path() == Path("/tmp/from-settings")

    def test_explicit_path_wins(self, temp_home, monkeypatch):
        monkeypatch.setenv("KUBE_OIDC_KUBECONFIG", "/tmp/from-settings")
        assert resolve_kubeconfig_path(Path("/tmp/explicit")) == Path("/tmp/explicit")

    def test_expands_user(self, temp_home, monkeypatch):
        monkeypatch.setenv("HOME", str(temp_home))
        assert resolve_kubeconfig_path(Path("~/cfg")) == temp_home / "cfg"
