"""AES-256-GCM encryption for integration credentials at rest.

Ciphertext layout (base64): 16-byte IV | 16-byte auth tag | encrypted payload.
The key is derived with scrypt from the configured secret and salt.
"""

from __future__ import annotations

import base64
import binascii
import json
import os
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from ats_api.core.config import get_settings

KEY_LENGTH = 32
IV_LENGTH = 16
AUTH_TAG_LENGTH = 16


class CredentialDecryptionError(Exception):
    """Raised when stored credentials cannot be decrypted."""


class CredentialCipher:
    def __init__(self, secret: str, salt: str) -> None:
        if not secret:
            raise ValueError("encryption secret must be non-empty")
        kdf = Scrypt(salt=salt.encode("utf-8"), length=KEY_LENGTH, n=2**14, r=8, p=1)
        self._aead = AESGCM(kdf.derive(secret.encode("utf-8")))

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_LENGTH)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
        return base64.b64encode(iv + tag + ciphertext).decode("ascii")

    def decrypt(self, encrypted: str) -> str:
        try:
            combined = base64.b64decode(encrypted, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise CredentialDecryptionError("credentials are not valid base64") from exc
        if len(combined) < IV_LENGTH + AUTH_TAG_LENGTH:
            raise CredentialDecryptionError("credentials payload is truncated")

        iv = combined[:IV_LENGTH]
        tag = combined[IV_LENGTH : IV_LENGTH + AUTH_TAG_LENGTH]
        ciphertext = combined[IV_LENGTH + AUTH_TAG_LENGTH :]
        try:
            return self._aead.decrypt(iv, ciphertext + tag, None).decode("utf-8")
        except InvalidTag as exc:
            raise CredentialDecryptionError("credentials failed authentication") from exc

    def encrypt_credentials(self, credentials: dict[str, str]) -> str:
        return self.encrypt(json.dumps(credentials))

    def decrypt_credentials(self, encrypted: str) -> dict[str, str]:
        try:
            parsed = json.loads(self.decrypt(encrypted))
        except json.JSONDecodeError as exc:
            raise CredentialDecryptionError("credentials payload is not JSON") from exc
        if not isinstance(parsed, dict):
            raise CredentialDecryptionError("credentials payload is not an object")
        return {str(key): str(value) for key, value in parsed.items()}


def mask_api_key(api_key: str | None) -> str:
    if not api_key or len(api_key) < 8:
        return "****"
    return "•" * (len(api_key) - 4) + api_key[-4:]


def mask_credentials(credentials: dict[str, str]) -> dict[str, str]:
    return {key: mask_api_key(value) for key, value in credentials.items()}


@lru_cache
def get_credential_cipher() -> CredentialCipher:
    settings = get_settings()
    secret = settings.encryption_secret or settings.supabase_service_role_key
    if not secret:
        raise ValueError("ATS_ENCRYPTION_SECRET is required to store integration credentials")
    return CredentialCipher(secret=secret, salt=settings.encryption_salt)
