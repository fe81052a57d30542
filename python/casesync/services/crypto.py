"""Sealing of OAuth tokens at rest.

XSalsa20-Poly1305 (PyNaCl SecretBox) with a 32-byte key from
TOKEN_ENCRYPTION_KEY (base64). The stored form is
base64(nonce || ciphertext || tag), so one Text column holds everything
needed to open it.

Security invariants:
- Never log plaintext tokens or sealed values
- A fresh random 24-byte nonce per seal
- Opening fails loudly (CryptoError) on a wrong key or tampered value
"""

import base64
import binascii
from functools import lru_cache

from nacl.exceptions import CryptoError as NaClCryptoError
from nacl.secret import SecretBox
from nacl.utils import random as random_bytes

from casesync.config import get_settings
from casesync.logging import get_logger

logger = get_logger(__name__)

# XSalsa20-Poly1305 nonce size (24 bytes)
NONCE_SIZE = SecretBox.NONCE_SIZE

# Key size (32 bytes)
KEY_SIZE = SecretBox.KEY_SIZE


class CryptoError(Exception):
    """Raised when cryptographic operations fail."""

    pass


@lru_cache(maxsize=1)
def _get_box() -> SecretBox:
    """Load and validate the sealing key once.

    Raises:
        CryptoError: If the key is not valid base64 or not 32 bytes.
    """
    key_b64 = get_settings().effective_token_encryption_key
    try:
        key = base64.b64decode(key_b64, validate=True)
    except binascii.Error as e:
        raise CryptoError("TOKEN_ENCRYPTION_KEY is not valid base64") from e

    if len(key) != KEY_SIZE:
        raise CryptoError(f"TOKEN_ENCRYPTION_KEY must be {KEY_SIZE} bytes, got {len(key)} bytes")

    return SecretBox(key)


def clear_key_cache() -> None:
    """Forget the cached key (tests, key rotation)."""
    _get_box.cache_clear()


def seal_token(plaintext: str) -> str:
    """Encrypt a token for storage."""
    nonce = random_bytes(NONCE_SIZE)
    sealed = _get_box().encrypt(plaintext.encode("utf-8"), nonce=nonce)
    # EncryptedMessage is nonce + ciphertext
    return base64.b64encode(bytes(sealed)).decode("ascii")


def open_token(sealed: str) -> str:
    """Decrypt a token sealed by seal_token.

    Raises:
        CryptoError: Malformed value, wrong key, or tampered ciphertext.
    """
    try:
        raw = base64.b64decode(sealed, validate=True)
    except binascii.Error as e:
        raise CryptoError("Sealed token is not valid base64") from e

    if len(raw) <= NONCE_SIZE:
        raise CryptoError("Sealed token is truncated")

    try:
        return _get_box().decrypt(raw).decode("utf-8")
    except NaClCryptoError as e:
        logger.error("token_open_failed")
        raise CryptoError("Token decryption failed") from e


def seal_optional(plaintext: str | None) -> str | None:
    return seal_token(plaintext) if plaintext else None


def open_optional(sealed: str | None) -> str | None:
    return open_token(sealed) if sealed else None
