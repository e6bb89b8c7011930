"""Authenticated encryption for tenant application secrets.

Ciphertexts are ``v1:<base64(nonce || ciphertext || tag)>``. The optional
``context`` (the tenant id in practice) is bound as associated data, so a
ciphertext copied onto another tenant row fails authentication instead of
decrypting under the wrong identity.
"""

from __future__ import annotations

import binascii
import logging
import os
from typing import Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from lifecycleops.core.config import get_settings
from lifecycleops.core.errors import CryptoError
from lifecycleops.services.crypto.utils import b64decode_str, b64encode_bytes, decode_key_material


logger = logging.getLogger(__name__)

CIPHERTEXT_VERSION = "v1"
KEY_BYTES = 32
NONCE_BYTES = 12


class KeyProvider(Protocol):
    def load_key(self) -> bytes:
        ...


class SettingsKeyProvider:
    """Reads the process-wide key from ``CREDENTIAL_ENCRYPTION_KEY``."""

    def load_key(self) -> bytes:
        raw = get_settings().credential_encryption_key
        if not raw:
            raise CryptoError("credential_encryption_key is not configured")
        try:
            return decode_key_material(raw)
        except ValueError as exc:
            raise CryptoError("credential_encryption_key must be hex or base64") from exc


class StaticKeyProvider:
    def __init__(self, key: bytes) -> None:
        self._key = key

    def load_key(self) -> bytes:
        return self._key


class CredentialStore:
    def __init__(self, key_provider: KeyProvider | None = None) -> None:
        # Load once; the AESGCM instance holds the only key reference afterwards.
        key = (key_provider or SettingsKeyProvider()).load_key()
        if len(key) != KEY_BYTES:
            raise CryptoError(f"credential key must be {KEY_BYTES} bytes, got {len(key)}")
        self._aesgcm = AESGCM(key)

    def encrypt(self, plaintext: str, *, context: str | None = None) -> str:
        nonce = os.urandom(NONCE_BYTES)
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), _aad(context))
        return f"{CIPHERTEXT_VERSION}:{b64encode_bytes(nonce + sealed)}"

    def decrypt(self, ciphertext: str, *, context: str | None = None) -> str:
        version, _, payload = ciphertext.partition(":")
        if version != CIPHERTEXT_VERSION or not payload:
            raise CryptoError("unsupported ciphertext format")
        try:
            raw = b64decode_str(payload)
        except (binascii.Error, ValueError) as exc:
            raise CryptoError("ciphertext is not valid base64") from exc
        if len(raw) <= NONCE_BYTES:
            raise CryptoError("ciphertext is truncated")
        nonce, sealed = raw[:NONCE_BYTES], raw[NONCE_BYTES:]
        try:
            plaintext = self._aesgcm.decrypt(nonce, sealed, _aad(context))
        except InvalidTag as exc:
            # Tampering or a key mismatch after rotation; never fall back to a default.
            logger.error("credential_decrypt_failed reason=authentication")
            raise CryptoError("ciphertext failed authentication") from exc
        return plaintext.decode("utf-8")


def _aad(context: str | None) -> bytes | None:
    if context is None:
        return None
    return f"lifecycleops:{context}".encode("utf-8")
