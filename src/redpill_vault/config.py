"""Configuration for redpill-vault.

All paths are resolved from the environment at call time so that tests and
short-lived processes see the current values.
"""

import os
from pathlib import Path

# Passphrase handed to the vault; never passed on to child processes
AUTH_ENV_VAR = "RV_PASSWORD"

# Per-project manifest, stored at the project root
CONFIG_FILENAME = ".rv.json"

VAULT_DB_NAME = "vault.db"


def get_config_dir() -> Path:
    """Get config directory (RV_CONFIG_DIR, then XDG spec)."""
    override = os.environ.get("RV_CONFIG_DIR")
    if override:
        return Path(override).expanduser()

    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        base = Path(xdg_config)
    else:
        base = Path.home() / ".config"
    return base / "rv"


def get_master_key_path() -> Path:
    return get_config_dir() / "master-key"


def get_approved_path() -> Path:
    return get_config_dir() / "approved.json"


def get_vault_dir() -> Path:
    """Get vault directory, ~/.rv unless RV_VAULT_DIR is set."""
    override = os.environ.get("RV_VAULT_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".rv"


def get_vault_path() -> Path:
    return get_vault_dir() / VAULT_DB_NAME
