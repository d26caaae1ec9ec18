"""
Encryption of analytics provider API keys at rest.

Implements AES-256-GCM with a fresh random nonce per value. Stored
values have the form "v1:<base64(nonce || ciphertext || tag)>".

SECURITY:
- Key comes from POSTHOG_ENCRYPTION_KEY (base64, hex or raw 32 bytes)
- Without a key, values are stored as plaintext and a warning is logged;
  this is only acceptable in local development
- Plaintext and key material are never logged

Usage:
    from src.utils.encryption import encrypt_secret, decrypt_secret

    stored = encrypt_secret("phx_abc123")
    api_key = decrypt_secret(stored)
"""

import base64
import binascii
import logging
import os
import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

NONCE_SIZE = 12  # 96 bits, recommended for AES-GCM
KEY_SIZE = 32    # 256 bits for AES-256

ENCRYPTED_PREFIX = "v1:"
ENCRYPTION_KEY_ENV = "POSTHOG_ENCRYPTION_KEY"


class EncryptionError(Exception):
    """Raised when encryption fails."""
    pass


class DecryptionError(Exception):
    """Raised when decryption fails (wrong key, tampered value)."""
    pass


class InvalidKeyError(Exception):
    """Raised when the encryption key is invalid."""
    pass


class SecretEncryptor:
    """
    AES-256-GCM encryptor for short secret strings.

    SECURITY:
    - Key must be 32 bytes
    - Never reuse nonces with the same key
    """

    def __init__(self, key: Optional[bytes] = None, key_string: Optional[str] = None):
        """
        Args:
            key: 32-byte encryption key
            key_string: Base64, hex or raw key string

        Raises:
            InvalidKeyError: If key is missing or wrong size
        """
        if key is not None:
            self._key = key
        elif key_string is not None:
            self._key = self._decode_key_string(key_string)
        else:
            raise InvalidKeyError("Encryption key is required")

        if len(self._key) != KEY_SIZE:
            raise InvalidKeyError(f"Encryption key must be {KEY_SIZE} bytes, got {len(self._key)}")

        self._aesgcm = AESGCM(self._key)

    @staticmethod
    def _decode_key_string(key_string: str) -> bytes:
        """Decode a key given as base64, hex, or raw UTF-8 (first match of 32 bytes)."""
        try:
            decoded = base64.b64decode(key_string, validate=True)
            if len(decoded) == KEY_SIZE:
                return decoded
        except (binascii.Error, ValueError):
            pass

        try:
            decoded = bytes.fromhex(key_string)
            if len(decoded) == KEY_SIZE:
                return decoded
        except ValueError:
            pass

        raw = key_string.encode("utf-8")
        if len(raw) == KEY_SIZE:
            return raw

        raise InvalidKeyError(f"Could not decode key string. Expected {KEY_SIZE} bytes after decoding.")

    @staticmethod
    def generate_key_string() -> str:
        """Generate a new random key as a base64 string."""
        return base64.b64encode(secrets.token_bytes(KEY_SIZE)).decode("utf-8")

    def encrypt(self, plaintext: str) -> str:
        try:
            nonce = secrets.token_bytes(NONCE_SIZE)
            # AESGCM.encrypt returns ciphertext || tag
            sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        except Exception as e:
            logger.error("Encryption failed", extra={"error_type": type(e).__name__})
            raise EncryptionError("Failed to encrypt value") from e
        return ENCRYPTED_PREFIX + base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, value: str) -> str:
        if not value.startswith(ENCRYPTED_PREFIX):
            raise DecryptionError("Value is not in encrypted format")
        try:
            blob = base64.b64decode(value[len(ENCRYPTED_PREFIX):], validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError("Encrypted value is not valid base64") from e
        if len(blob) <= NONCE_SIZE:
            raise DecryptionError("Encrypted value is truncated")
        try:
            plaintext = self._aesgcm.decrypt(blob[:NONCE_SIZE], blob[NONCE_SIZE:], None)
        except InvalidTag as e:
            raise DecryptionError("Authentication failed: wrong key or tampered value") from e
        return plaintext.decode("utf-8")


def is_encrypted(value: Optional[str]) -> bool:
    return bool(value) and value.startswith(ENCRYPTED_PREFIX)


def get_encryptor() -> Optional[SecretEncryptor]:
    """Build an encryptor from the environment, or None if no key is configured."""
    key_string = os.getenv(ENCRYPTION_KEY_ENV)
    if not key_string:
        return None
    return SecretEncryptor(key_string=key_string)


def encrypt_secret(plaintext: str) -> str:
    """
    Encrypt a secret for storage.

    Falls back to plaintext (with a warning) when no key is configured.
    """
    encryptor = get_encryptor()
    if encryptor is None:
        logger.warning(
            "Encryption key not configured; storing secret in plaintext",
            extra={"env_var": ENCRYPTION_KEY_ENV},
        )
        return plaintext
    return encryptor.encrypt(plaintext)


def decrypt_secret(stored: str) -> str:
    """
    Decrypt a stored secret. Plaintext values (legacy or keyless dev
    setups) are returned unchanged.

    Raises:
        DecryptionError: If the value is encrypted but no key is configured,
            or decryption fails
    """
    if not is_encrypted(stored):
        return stored
    encryptor = get_encryptor()
    if encryptor is None:
        raise DecryptionError(f"{ENCRYPTION_KEY_ENV} is required to decrypt stored secret")
    return encryptor.decrypt(stored)
