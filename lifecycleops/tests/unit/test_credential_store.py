from __future__ import annotations

import base64

import pytest

from lifecycleops.core.config import get_settings
from lifecycleops.core.errors import CryptoError
from lifecycleops.services.crypto.credential_store import (
    CredentialStore,
    SettingsKeyProvider,
    StaticKeyProvider,
)


KEY = bytes(range(32))


@pytest.fixture
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_round_trip_hides_plaintext() -> None:
    store = CredentialStore(StaticKeyProvider(KEY))
    ciphertext = store.encrypt("client-secret-value", context="tenant-a")
    assert ciphertext.startswith("v1:")
    assert "client-secret-value" not in ciphertext
    assert store.decrypt(ciphertext, context="tenant-a") == "client-secret-value"


def test_each_encryption_uses_a_fresh_nonce() -> None:
    store = CredentialStore(StaticKeyProvider(KEY))
    assert store.encrypt("same", context="t") != store.encrypt("same", context="t")


def test_ciphertext_is_bound_to_its_tenant() -> None:
    # A secret copied onto another tenant's row must not decrypt there.
    store = CredentialStore(StaticKeyProvider(KEY))
    ciphertext = store.encrypt("secret", context="tenant-a")
    with pytest.raises(CryptoError):
        store.decrypt(ciphertext, context="tenant-b")


def test_tampered_ciphertext_fails_authentication() -> None:
    store = CredentialStore(StaticKeyProvider(KEY))
    ciphertext = store.encrypt("secret", context="tenant-a")
    raw = bytearray(base64.b64decode(ciphertext[3:]))
    raw[-1] ^= 0x01
    tampered = "v1:" + base64.b64encode(bytes(raw)).decode("ascii")
    with pytest.raises(CryptoError):
        store.decrypt(tampered, context="tenant-a")


def test_wrong_key_fails_authentication() -> None:
    ciphertext = CredentialStore(StaticKeyProvider(KEY)).encrypt("secret")
    other = CredentialStore(StaticKeyProvider(bytes(32)))
    with pytest.raises(CryptoError):
        other.decrypt(ciphertext)


@pytest.mark.parametrize("ciphertext", ["", "v2:AAAA", "v1:", "v1:not-base64!!", "v1:AAAA"])
def test_malformed_ciphertext_is_rejected(ciphertext: str) -> None:
    store = CredentialStore(StaticKeyProvider(KEY))
    with pytest.raises(CryptoError):
        store.decrypt(ciphertext)


def test_short_key_is_rejected() -> None:
    with pytest.raises(CryptoError):
        CredentialStore(StaticKeyProvider(b"too-short"))


def test_missing_configured_key_fails_closed(monkeypatch, clear_settings_cache) -> None:
    monkeypatch.delenv("CREDENTIAL_ENCRYPTION_KEY", raising=False)
    get_settings.cache_clear()
    with pytest.raises(CryptoError):
        CredentialStore(SettingsKeyProvider())


def test_configured_hex_key_is_loaded(monkeypatch, clear_settings_cache) -> None:
    monkeypatch.setenv("CREDENTIAL_ENCRYPTION_KEY", KEY.hex())
    get_settings.cache_clear()
    store = CredentialStore(SettingsKeyProvider())
    assert CredentialStore(StaticKeyProvider(KEY)).decrypt(store.encrypt("s")) == "s"


def test_configured_garbage_key_is_rejected(monkeypatch, clear_settings_cache) -> None:
    monkeypatch.setenv("CREDENTIAL_ENCRYPTION_KEY", "not a key at all")
    get_settings.cache_clear()
    with pytest.raises(CryptoError):
        CredentialStore(SettingsKeyProvider())
