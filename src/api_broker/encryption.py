# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Field-level encryption for stored secrets.

Database passwords, SSH credentials and upstream auth headers are stored
with AES-256-GCM when a key is configured. Encrypted values carry the
"ENC:" prefix so plaintext rows written before a key existed still read.

Key sources (in priority order):
1. API_BROKER_ENCRYPTION_KEY environment variable (base64-encoded 32 bytes)
2. /run/secrets/encryption_key file (Docker/Kubernetes secrets)

Usage:
    key = base64.b64decode(generate_key())
    token = encrypt_value_with_key("s3cret", key)   # "ENC:..."
    decrypt_value_with_key(token, key)              # "s3cret"
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import secrets
from pathlib import Path
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

NONCE_SIZE = 12  # 96 bits recommended for GCM
TAG_SIZE = 16
KEY_SIZE = 32  # AES-256

ENCRYPTED_PREFIX = "ENC:"
SECRETS_PATH = Path("/run/secrets/encryption_key")


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""


class EncryptionKeyNotConfigured(EncryptionError):
    """Raised when encryption key is not available."""


def generate_key() -> str:
    """Generate a new random base64-encoded 32-byte key."""
    return base64.b64encode(secrets.token_bytes(KEY_SIZE)).decode()


def is_encrypted(value: Any) -> bool:
    """Check if a value is encrypted (has ENC: prefix)."""
    return isinstance(value, str) and value.startswith(ENCRYPTED_PREFIX)


def encrypt_value_with_key(plaintext: str, key: bytes) -> str:
    """Encrypt a string with AES-256-GCM.

    Returns:
        "ENC:" + base64(nonce + ciphertext + tag). Empty or already
        encrypted values are returned unchanged.
    """
    if not plaintext or is_encrypted(plaintext):
        return plaintext
    if len(key) != KEY_SIZE:
        raise EncryptionError(f"Key must be {KEY_SIZE} bytes")

    nonce = secrets.token_bytes(NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return ENCRYPTED_PREFIX + base64.b64encode(nonce + ciphertext).decode("ascii")


def decrypt_value_with_key(encrypted: str, key: bytes) -> str:
    """Decrypt a value produced by encrypt_value_with_key().

    Raises:
        EncryptionError: Wrong key, corrupted or truncated data.
    """
    if not is_encrypted(encrypted):
        return encrypted
    if len(key) != KEY_SIZE:
        raise EncryptionError(f"Key must be {KEY_SIZE} bytes")

    try:
        data = base64.b64decode(encrypted[len(ENCRYPTED_PREFIX) :], validate=True)
    except binascii.Error as e:
        raise EncryptionError(f"Invalid encrypted data format: {e}") from e
    if len(data) < NONCE_SIZE + TAG_SIZE:
        raise EncryptionError("Encrypted data too short")

    try:
        plaintext = AESGCM(key).decrypt(data[:NONCE_SIZE], data[NONCE_SIZE:], None)
    except InvalidTag as e:
        raise EncryptionError("Decryption failed: invalid key or corrupted data") from e
    return plaintext.decode("utf-8")


class EncryptionManager:
    """Loads the encryption key and encrypts/decrypts with it.

    Attributes:
        broker: Owning broker instance.
        key: Loaded 32-byte key or None.
    """

    def __init__(self, parent: object, env_var: str = "API_BROKER_ENCRYPTION_KEY"):
        self.broker = parent
        self._env_var = env_var
        self._key: bytes | None = None
        self._load_key()

    def _load_key(self) -> None:
        key_b64 = os.environ.get(self._env_var)
        if key_b64:
            try:
                key = base64.b64decode(key_b64, validate=True)
            except binascii.Error:
                key = b""
            if len(key) == KEY_SIZE:
                self._key = key
                return
            logger.warning("%s is not a base64-encoded %d-byte key, ignored", self._env_var, KEY_SIZE)

        if SECRETS_PATH.exists():
            key = SECRETS_PATH.read_bytes().strip()
            if len(key) == KEY_SIZE:
                self._key = key
            else:
                logger.warning("%s must hold %d bytes, ignored", SECRETS_PATH, KEY_SIZE)

    @property
    def key(self) -> bytes | None:
        return self._key

    @property
    def is_configured(self) -> bool:
        return self._key is not None

    def set_key(self, key: bytes) -> None:
        """Set encryption key programmatically."""
        if len(key) != KEY_SIZE:
            raise ValueError(f"Encryption key must be {KEY_SIZE} bytes")
        self._key = key

    def encrypt(self, plaintext: str) -> str:
        if self._key is None:
            raise EncryptionKeyNotConfigured("Encryption key not configured")
        return encrypt_value_with_key(plaintext, self._key)

    def decrypt(self, encrypted: str) -> str:
        if self._key is None:
            raise EncryptionKeyNotConfigured("Encryption key not configured")
        return decrypt_value_with_key(encrypted, self._key)


__all__ = [
    "ENCRYPTED_PREFIX",
    "EncryptionError",
    "EncryptionKeyNotConfigured",
    "EncryptionManager",
    "decrypt_value_with_key",
    "encrypt_value_with_key",
    "generate_key",
    "is_encrypted",
]
