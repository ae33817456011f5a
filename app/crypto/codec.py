# app/crypto/codec.py
"""
At-rest encryption for resource bytes.

Blob layout: nonce (12 bytes) + auth tag (16 bytes) + ciphertext. Blobs
shorter than the storage network's minimum object size are right-padded
with zero bytes; the padding length is not recorded.

Note: trailing zero bytes are trimmed from plaintexts recovered from
minimum-size blobs, so a short plaintext that genuinely ends in zero bytes
does not round-trip. Larger blobs are never padded and round-trip exactly.
"""
import logging
import os
from typing import NamedTuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.core.config import settings
from app.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

NONCE_LENGTH = 12  # 96 bits for GCM
TAG_LENGTH = 16  # 128 bits
KEY_LENGTH = 32  # AES-256
HEADER_LENGTH = NONCE_LENGTH + TAG_LENGTH

PLACEHOLDER_KEY = "your_private_key_here"


class DecryptResult(NamedTuple):
    """Recovered bytes, and whether they were returned as-is (legacy/unencrypted)."""
    data: bytes
    legacy: bool


def get_encryption_key() -> bytes:
    """
    Derive the AES-256 key from the configured signing key.

    Raises:
        ConfigurationError: If the signing key is missing or not 32 hex-encoded bytes
    """
    signing_key = settings.SIGNING_KEY
    if not signing_key or signing_key == PLACEHOLDER_KEY:
        raise ConfigurationError("SIGNING_KEY is required for encryption")

    key_hex = signing_key[2:] if signing_key.startswith("0x") else signing_key
    try:
        key = bytes.fromhex(key_hex)
    except ValueError as e:
        raise ConfigurationError("SIGNING_KEY must be hex-encoded") from e

    if len(key) != KEY_LENGTH:
        raise ConfigurationError(f"SIGNING_KEY must be {KEY_LENGTH} bytes, got {len(key)}")
    return key


def encrypt(plaintext: bytes) -> bytes:
    """Encrypt with AES-256-GCM and pad the blob to the storage minimum."""
    key = get_encryption_key()
    nonce = os.urandom(NONCE_LENGTH)

    # AESGCM appends the tag to the ciphertext
    sealed = AESGCM(key).encrypt(nonce, plaintext, None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    blob = nonce + tag + ciphertext

    min_size = settings.STORAGE_MIN_OBJECT_SIZE
    if len(blob) < min_size:
        blob = blob.ljust(min_size, b"\x00")
    return blob


def _open(aesgcm: AESGCM, stored: bytes, end: int) -> bytes:
    nonce = stored[:NONCE_LENGTH]
    tag = stored[NONCE_LENGTH:HEADER_LENGTH]
    ciphertext = stored[HEADER_LENGTH:end]
    return aesgcm.decrypt(nonce, ciphertext + tag, None)


def decrypt(stored: bytes) -> DecryptResult:
    """
    Decrypt a stored blob.

    Never raises on authentication failure: bytes that do not authenticate
    are returned unchanged with ``legacy=True`` so objects written before
    encryption was introduced stay retrievable.

    Raises:
        ConfigurationError: If no signing key is configured
    """
    key = get_encryption_key()

    if len(stored) < HEADER_LENGTH:
        return DecryptResult(stored, True)

    aesgcm = AESGCM(key)
    min_size = settings.STORAGE_MIN_OBJECT_SIZE
    padded = len(stored) == min_size

    # Padded blobs: the real ciphertext ends somewhere between the last
    # non-zero byte and the end of the blob.
    if padded:
        start = max(len(stored.rstrip(b"\x00")), HEADER_LENGTH)
        candidates = range(start, len(stored) + 1)
    else:
        candidates = [len(stored)]

    for end in candidates:
        try:
            plaintext = _open(aesgcm, stored, end)
        except InvalidTag:
            continue
        if padded:
            plaintext = plaintext.rstrip(b"\x00")
        return DecryptResult(plaintext, False)

    logger.info(f"Blob of {len(stored)} bytes did not authenticate, returning it as legacy data")
    return DecryptResult(stored, True)
