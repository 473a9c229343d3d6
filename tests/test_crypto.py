"""Tests for the AES-GCM primitives."""

import base64
import hashlib
import os

import pytest

from redpill_vault.crypto import NONCE_LENGTH, decrypt, derive_key, encrypt, generate_key
from redpill_vault.errors import AuthenticationError


def _flip(data: bytes, index: int) -> bytes:
    return data[:index] + bytes([data[index] ^ 0x01]) + data[index + 1:]


class TestDeriveKey:
    """Tests for passphrase to key derivation."""

    def test_base64_32_bytes_used_directly(self):
        """A base64 encoded 32-byte key is used as-is."""
        raw = os.urandom(32)
        assert derive_key(base64.b64encode(raw).decode()) == raw

    def test_password_is_hashed(self):
        """Anything else is SHA-256 hashed."""
        assert derive_key("hunter2") == hashlib.sha256(b"hunter2").digest()

    def test_base64_wrong_length_is_hashed(self):
        """Valid base64 of the wrong length is treated as a password."""
        short = base64.b64encode(b"x" * 16).decode()
        assert derive_key(short) == hashlib.sha256(short.encode()).digest()

    def test_hex_master_key_gives_32_bytes(self):
        """The hex master key written by rv init derives a 32-byte key."""
        assert len(derive_key("ab" * 32)) == 32

    def test_generate_key_round_trips(self):
        """Generated keys decode to 32 bytes."""
        key = generate_key()
        assert derive_key(key) == base64.b64decode(key)


class TestEncryptDecrypt:
    """Tests for authenticated encryption."""

    def test_round_trip(self):
        """decrypt(encrypt(p)) == p"""
        key = derive_key("k")
        for plaintext in ["", "sk-test-1234", "ünïcødé ✓", "x" * 10000]:
            ciphertext, nonce = encrypt(plaintext, key)
            assert decrypt(ciphertext, nonce, key) == plaintext

    def test_fresh_nonce_per_call(self):
        """Encrypting the same plaintext twice uses different nonces."""
        key = derive_key("k")
        c1, n1 = encrypt("same", key)
        c2, n2 = encrypt("same", key)
        assert len(n1) == NONCE_LENGTH
        assert n1 != n2
        assert c1 != c2

    def test_wrong_key_fails(self):
        """Wrong key raises AuthenticationError."""
        ciphertext, nonce = encrypt("secret", derive_key("right"))
        with pytest.raises(AuthenticationError):
            decrypt(ciphertext, nonce, derive_key("wrong"))

    def test_ciphertext_bit_flip_fails(self):
        """Any single bit flip in the ciphertext is detected."""
        key = derive_key("k")
        ciphertext, nonce = encrypt("sk-test-1234", key)
        for i in range(len(ciphertext)):
            with pytest.raises(AuthenticationError):
                decrypt(_flip(ciphertext, i), nonce, key)

    def test_nonce_bit_flip_fails(self):
        """Any single bit flip in the nonce is detected."""
        key = derive_key("k")
        ciphertext, nonce = encrypt("sk-test-1234", key)
        for i in range(len(nonce)):
            with pytest.raises(AuthenticationError):
                decrypt(ciphertext, _flip(nonce, i), key)

    def test_empty_nonce_fails(self):
        """A malformed nonce is an authentication failure, not a crash."""
        key = derive_key("k")
        ciphertext, _ = encrypt("secret", key)
        with pytest.raises(AuthenticationError):
            decrypt(ciphertext, b"", key)
