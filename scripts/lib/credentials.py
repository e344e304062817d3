"""
KPI Report Hub — Credential Encryption
=========================================

Encrypts HubSpot private-app keys and OAuth tokens before they are stored
in Supabase, and decrypts them when a report needs them.
"""
from __future__ import annotations

import os

from cryptography.fernet import Fernet, InvalidToken

from scripts.lib.errors import ConfigError
from scripts.lib.logger import setup_logger

logger = setup_logger("credentials")


class CredentialCipher:
    """Fernet wrapper for stored API credentials."""

    def __init__(self, key: str | bytes | None = None):
        key = key or os.getenv("CREDENTIAL_ENCRYPTION_KEY")
        if not key:
            logger.warning(
                "CREDENTIAL_ENCRYPTION_KEY not set. Generating a temporary key "
                "(stored credentials will NOT survive restarts)."
            )
            key = Fernet.generate_key().decode()

        self.cipher = Fernet(key.encode() if isinstance(key, str) else key)

    def encrypt(self, credential: str) -> str:
        """Encrypt a credential string."""
        return self.cipher.encrypt(credential.encode()).decode()

    def decrypt(self, encrypted: str) -> str:
        """Decrypt a credential string."""
        try:
            return self.cipher.decrypt(encrypted.encode()).decode()
        except (InvalidToken, AttributeError) as e:
            logger.error("Failed to decrypt credential: %s", type(e).__name__)
            raise ConfigError("Stored credential is invalid or was encrypted with another key")
