"""
Shared utilities.
"""

from src.utils.encryption import (
    SecretEncryptor,
    EncryptionError,
    DecryptionError,
    InvalidKeyError,
    encrypt_secret,
    decrypt_secret,
    is_encrypted,
)

__all__ = [
    "SecretEncryptor",
    "EncryptionError",
    "DecryptionError",
    "InvalidKeyError",
    "encrypt_secret",
    "decrypt_secret",
    "is_encrypted",
]
