"""Encryption of webhook secrets and OAuth tokens at rest.

Uses Fernet symmetric encryption. The encryption key is derived from the
SECRETS_KEY environment variable.
"""

import base64
import hashlib
import os
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken


class SecretsError(Exception):
    """Error related to secrets management."""

    pass


@lru_cache(maxsize=1)
def _get_fernet() -> Fernet:
    """Get the Fernet cipher for encryption.

    The key is derived from SECRETS_KEY. If it is not set, a deterministic
    development key based on DATABASE_PATH is used.
    """
    key_material = os.environ.get("SECRETS_KEY")

    if not key_material:
        # NOT SECURE FOR PRODUCTION - always set SECRETS_KEY
        db_path = os.environ.get("DATABASE_PATH", "./data/studio.db")
        key_material = f"dev-secrets-key-{db_path}"

    # Fernet keys are 32 bytes, base64-encoded
    key_hash = hashlib.sha256(key_material.encode()).digest()
    return Fernet(base64.urlsafe_b64encode(key_hash))


def encrypt_secret(value: str) -> str:
    """Encrypt a secret value.

    Returns:
        Base64-encoded encrypted value
    """
    return _get_fernet().encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_secret(encrypted_value: str) -> str:
    """Decrypt a secret value.

    Raises:
        SecretsError: If decryption fails (wrong key or corrupted value)
    """
    try:
        return _get_fernet().decrypt(encrypted_value.encode("utf-8")).decode("utf-8")
    except InvalidToken as e:
        raise SecretsError("Failed to decrypt secret: invalid token or key") from e
