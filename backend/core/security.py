"""Credential encryption for stored integration connections."""

import json
from typing import Any, Optional

from cryptography.fernet import Fernet, InvalidToken

from app.config import get_settings
from core.exceptions import AdapterError, ValidationError


class CredentialVault:
    """
    Manages encryption and decryption of sensitive credentials using Fernet (AES-256).
    """

    def __init__(self, key: Optional[str] = None):
        """
        Initialize the vault with an encryption key.

        Args:
            key: Encryption key (base64 encoded). If None, uses ENCRYPTION_KEY from settings.

        Raises:
            ValidationError: If no usable key is configured
        """
        if key is None:
            key = get_settings().ENCRYPTION_KEY
        if not key:
            raise ValidationError("ENCRYPTION_KEY is not configured; cannot store credentials")
        try:
            self.cipher = Fernet(key.encode() if isinstance(key, str) else key)
        except ValueError:
            raise ValidationError("ENCRYPTION_KEY is not a valid Fernet key") from None

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a string using Fernet.

        Args:
            plaintext: Plain text to encrypt

        Returns:
            Encrypted string (base64 encoded)
        """
        if isinstance(plaintext, str):
            plaintext = plaintext.encode()
        encrypted = self.cipher.encrypt(plaintext)
        return encrypted.decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a string using Fernet.

        Raises:
            AdapterError: If the token was not produced with this key
        """
        try:
            if isinstance(ciphertext, str):
                ciphertext = ciphertext.encode()
            return self.cipher.decrypt(ciphertext).decode()
        except InvalidToken:
            raise AdapterError("Stored credentials cannot be decrypted with the configured key") from None

    def encrypt_json(self, data: dict[str, Any]) -> str:
        return self.encrypt(json.dumps(data, separators=(",", ":")))

    def decrypt_json(self, ciphertext: str) -> dict[str, Any]:
        data = json.loads(self.decrypt(ciphertext))
        if not isinstance(data, dict):
            raise AdapterError("Stored credentials are not an object")
        return data


# ─── Singleton ─────────────────────────────────────────────────

_vault: Optional[CredentialVault] = None


def get_vault() -> CredentialVault:
    """Vault over the configured ENCRYPTION_KEY, built on first use."""
    global _vault
    if _vault is None:
        _vault = CredentialVault()
    return _vault


def set_vault(vault: Optional[CredentialVault]) -> None:
    global _vault
    _vault = vault
