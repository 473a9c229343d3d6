"""Encrypted secret storage.

Secrets are kept in a single SQLite file. Each row holds the AES-GCM
ciphertext and nonce for one secret, plus tags and timestamps. The vault
starts locked; unlock() derives the key and keeps it in memory only.
"""

import json
import os
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from . import crypto
from .config import AUTH_ENV_VAR, get_master_key_path, get_vault_path
from .errors import (
    MissingSecretError,
    NotUnlockedError,
    VaultCorruptError,
    VaultNotFoundError,
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS secrets (
    name TEXT PRIMARY KEY,
    encrypted_value BLOB NOT NULL,
    iv BLOB NOT NULL,
    tags TEXT NOT NULL DEFAULT '[]',
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
)
"""


@dataclass
class SecretMeta:
    """Secret metadata (no value - safe for LLM)."""
    name: str
    tags: list[str] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class Vault:
    """Handle on an existing vault file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._key: Optional[bytes] = None

        if not self.path.exists():
            raise VaultNotFoundError(f"Vault not found: {self.path}")

        self._db = sqlite3.connect(str(self.path))
        try:
            self._db.execute("SELECT name FROM secrets LIMIT 1")
        except sqlite3.DatabaseError as e:
            self._db.close()
            raise VaultCorruptError(f"Cannot read vault {self.path}: {e}") from e

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self) -> None:
        self._key = None
        self._db.close()

    def unlock(self, passphrase: Optional[str]) -> None:
        if not passphrase:
            raise NotUnlockedError(
                f"No passphrase available (set {AUTH_ENV_VAR} or run: rv init)"
            )
        self._key = crypto.derive_key(passphrase)

    def lock(self) -> None:
        self._key = None

    @property
    def is_unlocked(self) -> bool:
        return self._key is not None

    def _require_key(self) -> bytes:
        if self._key is None:
            raise NotUnlockedError("Vault is locked")
        return self._key

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            with self._db:
                return self._db.execute(sql, params)
        except sqlite3.DatabaseError as e:
            raise VaultCorruptError(f"Vault query failed: {e}") from e

    def set_secret(self, name: str, value: str, tags: Iterable[str] = ()) -> None:
        """Encrypt and upsert a secret. Every write gets a fresh nonce."""
        key = self._require_key()
        ciphertext, nonce = crypto.encrypt(value, key)
        self._execute(
            """
            INSERT INTO secrets (name, encrypted_value, iv, tags, updated_at)
            VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(name) DO UPDATE SET
                encrypted_value = excluded.encrypted_value,
                iv = excluded.iv,
                tags = excluded.tags,
                updated_at = CURRENT_TIMESTAMP
            """,
            (name, ciphertext, nonce, json.dumps(sorted(set(tags)))),
        )

    def get_secret(self, name: str) -> Optional[str]:
        """Get a secret value (UNSAFE for LLM). None if absent."""
        key = self._require_key()
        row = self._execute(
            "SELECT encrypted_value, iv FROM secrets WHERE name = ?", (name,)
        ).fetchone()
        if row is None:
            return None
        return crypto.decrypt(row[0], row[1], key)

    def require_secret(self, name: str) -> str:
        value = self.get_secret(name)
        if value is None:
            raise MissingSecretError([name])
        return value

    def list_secrets(self, filter_tags: Optional[Iterable[str]] = None) -> list[SecretMeta]:
        """List secret metadata, optionally keeping rows with any of filter_tags."""
        self._require_key()
        rows = self._execute(
            "SELECT name, tags, created_at, updated_at FROM secrets ORDER BY name"
        ).fetchall()

        secrets = [
            SecretMeta(name=name, tags=json.loads(tags or "[]"),
                       created_at=created_at, updated_at=updated_at)
            for name, tags, created_at, updated_at in rows
        ]

        wanted = set(filter_tags or ())
        if wanted:
            secrets = [s for s in secrets if wanted.intersection(s.tags)]
        return secrets

    def keys(self) -> set[str]:
        return {s.name for s in self.list_secrets()}

    def remove_secret(self, name: str) -> bool:
        """Delete a secret. True iff a row was removed."""
        self._require_key()
        cursor = self._execute("DELETE FROM secrets WHERE name = ?", (name,))
        return cursor.rowcount > 0

    @classmethod
    def initialize(cls, path: Path, passphrase: Optional[str]) -> bool:
        """
        Create the vault file and schema.

        Returns True if a new vault was created, False if one already
        existed. Requires a passphrase so a vault is never created that
        nobody can unlock.
        """
        if not passphrase:
            raise NotUnlockedError(
                f"{AUTH_ENV_VAR} must be set to initialize the vault"
            )

        path = Path(path)
        existed = path.exists()
        path.parent.mkdir(parents=True, exist_ok=True)

        try:
            db = sqlite3.connect(str(path))
            try:
                with db:
                    db.execute(SCHEMA)
            finally:
                db.close()
        except sqlite3.DatabaseError as e:
            raise VaultCorruptError(f"Cannot initialize vault {path}: {e}") from e

        os.chmod(path, 0o600)
        return not existed


def read_master_key(path: Optional[Path] = None) -> Optional[str]:
    """Read the master key file. None if missing or empty."""
    path = path or get_master_key_path()
    if not path.exists():
        return None
    key = path.read_text().strip()
    return key or None


def resolve_passphrase(environ=None, master_key_path: Optional[Path] = None) -> Optional[str]:
    """Passphrase from the environment, falling back to the master key file."""
    environ = os.environ if environ is None else environ
    passphrase = environ.get(AUTH_ENV_VAR)
    if passphrase:
        return passphrase
    return read_master_key(master_key_path)


def open_vault(path: Optional[Path] = None, passphrase: Optional[str] = None) -> Vault:
    """Open and unlock the vault. Caller closes it."""
    if passphrase is None:
        passphrase = resolve_passphrase()

    vault = Vault(path or get_vault_path())
    try:
        vault.unlock(passphrase)
    except NotUnlockedError:
        vault.close()
        raise
    return vault


def get_vault_keys(path: Optional[Path] = None, passphrase: Optional[str] = None) -> set[str]:
    """Names of all secrets in the vault."""
    with open_vault(path, passphrase) as vault:
        return vault.keys()
