"""AES-256-GCM primitives for the vault.

Nonces are always generated here; callers cannot supply one.
"""

import base64
import binascii
import hashlib
import os
from typing import Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import AuthenticationError

KEY_LENGTH = 32
NONCE_LENGTH = 12


def derive_key(secret: str) -> bytes:
    """
    Turn a passphrase into a 32-byte key.

    A base64 string that decodes to exactly 32 bytes is used as-is;
    anything else is hashed with SHA-256.
    """
    try:
        decoded = base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError):
        decoded = b""

    if len(decoded) == KEY_LENGTH:
        return decoded

    return hashlib.sha256(secret.encode("utf-8")).digest()


def generate_key() -> str:
    """Generate a random key, base64 encoded."""
    return base64.b64encode(os.urandom(KEY_LENGTH)).decode("ascii")


def encrypt(plaintext: str, key: bytes) -> Tuple[bytes, bytes]:
    """Encrypt plaintext under key. Returns (ciphertext, nonce)."""
    nonce = os.urandom(NONCE_LENGTH)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return ciphertext, nonce


def decrypt(ciphertext: bytes, nonce: bytes, key: bytes) -> str:
    """Decrypt and verify. Raises AuthenticationError if the tag does not verify."""
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
    except (InvalidTag, ValueError) as e:
        raise AuthenticationError("Decryption failed (wrong key or tampered data)") from e
    return plaintext.decode("utf-8")
