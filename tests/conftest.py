"""Shared fixtures: every test gets its own config dir and vault."""

import json

import pytest

from redpill_vault.vault import Vault

PASSPHRASE = "test-passphrase"


@pytest.fixture(autouse=True)
def rv_home(monkeypatch, tmp_path):
    """Point config and vault paths at tmp_path and clear ambient auth."""
    config_dir = tmp_path / "config"
    vault_dir = tmp_path / "vault"
    monkeypatch.setenv("RV_CONFIG_DIR", str(config_dir))
    monkeypatch.setenv("RV_VAULT_DIR", str(vault_dir))
    monkeypatch.delenv("RV_PASSWORD", raising=False)
    monkeypatch.delenv("CLAUDE_PROJECT_DIR", raising=False)
    return tmp_path


@pytest.fixture
def vault_path(rv_home):
    path = rv_home / "vault" / "vault.db"
    Vault.initialize(path, PASSPHRASE)
    return path


@pytest.fixture
def vault(vault_path):
    v = Vault(vault_path)
    v.unlock(PASSPHRASE)
    yield v
    v.close()


@pytest.fixture
def make_project(tmp_path):
    """Create a project directory with a .rv.json manifest."""
    def _make(name="myproject", manifest=None):
        root = tmp_path / "projects" / name
        root.mkdir(parents=True)
        if manifest is not None:
            (root / ".rv.json").write_text(json.dumps(manifest))
        return root
    return _make
