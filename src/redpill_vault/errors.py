"""Exception hierarchy for redpill-vault."""

from typing import Iterable, Optional


class RedpillError(Exception):
    """Base exception for redpill-vault errors."""
    pass


class ConfigValidationError(RedpillError):
    """Project manifest is malformed."""

    def __init__(self, field: Optional[str], reason: str):
        self.field = field
        self.reason = reason
        super().__init__(reason)


class AuthenticationError(RedpillError):
    """Wrong key or tampered ciphertext."""
    pass


class NotUnlockedError(RedpillError):
    """Vault operation attempted without a passphrase."""
    pass


class MissingSecretError(RedpillError):
    """Declared key is not present in the vault."""

    def __init__(self, keys: Iterable[str]):
        self.keys = list(keys)
        super().__init__(f"Missing secrets: {', '.join(self.keys)}")


class ApprovalRequiredError(RedpillError):
    """Project has not been approved for secret injection."""
    pass


class SpawnError(RedpillError):
    """Target command could not be started."""
    pass


class VaultError(RedpillError):
    """Base exception for vault storage errors."""
    pass


class VaultNotFoundError(VaultError):
    """Vault backing file does not exist."""
    pass


class VaultCorruptError(VaultError):
    """Vault backing file cannot be read."""
    pass
