"""Tests for wiki AES-GCM encryption and legacy plaintext fallback."""
import pytest

from family_helper.core.config import settings
from family_helper.features.wiki import encryption
from family_helper.features.wiki.encryption import (
    DecryptionError,
    EncryptionConfigError,
    EncryptionService,
    is_encrypted,
)


@pytest.mark.parametrize("text", [
    "",
    "Wifi password",
    "Line one\nline two\n\ttabbed",
    "Grandma's recipe: 🍰 café naïve 日本語",
    "x" * 10_000,
])
def test_decrypt_reverses_encrypt(text):
    token = encryption.encrypt(text)
    assert encryption.decrypt(token) == text


def test_tokens_are_randomized():
    assert encryption.encrypt("same") != encryption.encrypt("same")


def test_token_shape():
    token = encryption.encrypt("hello")
    iv, tag, ct = token.split(":")
    assert len(iv) == 24
    assert len(tag) == 32
    assert len(ct) == 10
    assert is_encrypted(token)


def test_empty_string_token_is_recognized():
    assert is_encrypted(encryption.encrypt(""))


@pytest.mark.parametrize("value", [None, "", "plain legacy text", "a:b:c", "Meeting: 10:30"])
def test_is_encrypted_rejects_plaintext(value):
    assert is_encrypted(value) is False


def test_safe_decrypt_returns_legacy_plaintext_unchanged():
    assert encryption.safe_decrypt("Old unencrypted note") == "Old unencrypted note"
    assert encryption.safe_decrypt("") == ""
    assert encryption.safe_decrypt(None) is None


def test_decrypt_plaintext_raises():
    with pytest.raises(DecryptionError):
        encryption.decrypt("Old unencrypted note")


def test_tampered_token_fails_authentication():
    iv, tag, ct = encryption.encrypt("secret").split(":")
    flipped = format(int(ct[:2], 16) ^ 0x01, "02x") + ct[2:]
    tampered = f"{iv}:{tag}:{flipped}"
    with pytest.raises(DecryptionError):
        encryption.decrypt(tampered)
    assert encryption.safe_decrypt(tampered) == tampered


def test_wrong_key_falls_back_to_raw_value():
    token = encryption.encrypt("family secret")
    other = EncryptionService("ff" * 32)
    assert other.safe_decrypt(token) == token


def test_missing_key_raises_config_error(monkeypatch):
    monkeypatch.setattr(settings, "MESSAGE_ENCRYPTION_KEY", None)
    encryption.reset_encryption_service()
    with pytest.raises(EncryptionConfigError):
        encryption.encrypt("anything")


@pytest.mark.parametrize("bad_key", ["not-hex", "abcd"])
def test_malformed_key_raises_config_error(bad_key):
    with pytest.raises(EncryptionConfigError):
        EncryptionService(bad_key).encrypt("anything")
