"""
AES-256-GCM encryption for wiki titles and content.

Token format: ``<iv hex>:<auth tag hex>:<ciphertext hex>`` with a 12-byte IV
and a 16-byte tag. Rows written before encryption was introduced hold
plaintext, so reads go through ``safe_decrypt``.
"""
import logging
import os
import re
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from family_helper.core.config import settings

logger = logging.getLogger("family_helper.encryption")

IV_BYTES = 12
TAG_BYTES = 16
KEY_BYTES = 32

_TOKEN_RE = re.compile(r"^[0-9a-f]{%d}:[0-9a-f]{%d}:(?:[0-9a-f]{2})*$" % (IV_BYTES * 2, TAG_BYTES * 2))


class EncryptionConfigError(RuntimeError):
    """Encryption key missing or malformed."""


class DecryptionError(ValueError):
    """Token is malformed or fails authentication."""


def _load_key(hex_key: Optional[str]) -> bytes:
    if not hex_key:
        raise EncryptionConfigError("MESSAGE_ENCRYPTION_KEY is not configured")
    try:
        key = bytes.fromhex(hex_key.strip())
    except ValueError:
        raise EncryptionConfigError("MESSAGE_ENCRYPTION_KEY must be hex encoded")
    if len(key) != KEY_BYTES:
        raise EncryptionConfigError(f"MESSAGE_ENCRYPTION_KEY must be {KEY_BYTES} bytes ({KEY_BYTES * 2} hex chars)")
    return key


def is_encrypted(value: Optional[str]) -> bool:
    """Whether a stored value has the shape of an encryption token."""
    if not value:
        return False
    return bool(_TOKEN_RE.match(value))


class EncryptionService:
    def __init__(self, hex_key: Optional[str] = None):
        self._hex_key = hex_key
        self._cipher: Optional[AESGCM] = None

    @property
    def cipher(self) -> AESGCM:
        if self._cipher is None:
            self._cipher = AESGCM(_load_key(self._hex_key or settings.MESSAGE_ENCRYPTION_KEY))
        return self._cipher

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_BYTES)
        sealed = self.cipher.encrypt(iv, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag to the ciphertext
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, token: str) -> str:
        if not is_encrypted(token):
            raise DecryptionError("Value is not an encryption token")
        iv_hex, tag_hex, ct_hex = token.split(":")
        try:
            plain = self.cipher.decrypt(bytes.fromhex(iv_hex), bytes.fromhex(ct_hex) + bytes.fromhex(tag_hex), None)
        except InvalidTag:
            raise DecryptionError("Authentication tag mismatch")
        return plain.decode("utf-8")

    def safe_decrypt(self, value: Optional[str]) -> Optional[str]:
        """Decrypt, or return the value unchanged for empty/legacy plaintext."""
        if not value:
            return value
        try:
            return self.decrypt(value)
        except (DecryptionError, UnicodeDecodeError):
            logger.debug("wiki.decrypt.fallback")
            return value


_default_service: Optional[EncryptionService] = None


def get_encryption_service() -> EncryptionService:
    global _default_service
    if _default_service is None:
        _default_service = EncryptionService()
    return _default_service


def reset_encryption_service() -> None:
    """Drop the cached service so a changed key takes effect."""
    global _default_service
    _default_service = None


def encrypt(plaintext: str) -> str:
    return get_encryption_service().encrypt(plaintext)


def decrypt(token: str) -> str:
    return get_encryption_service().decrypt(token)


def safe_decrypt(value: Optional[str]) -> Optional[str]:
    return get_encryption_service().safe_decrypt(value)
