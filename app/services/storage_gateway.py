# app/services/storage_gateway.py
"""
Encrypting front for the storage network.

Everything written through this module is encrypted with the gateway's key
before it leaves the process, and decrypted again on the way back.
"""
import base64
import logging
from dataclasses import dataclass
from typing import Optional, Union

from requests.exceptions import RequestException

from app.core.exceptions import StorageUnavailable
from app.crypto import codec
from app.services import storage_api

logger = logging.getLogger(__name__)

FORMAT_TEXT = "text"
FORMAT_BINARY = "binary"

LEGACY_MESSAGE = "Failed to decrypt. Data might be unencrypted or corrupted."
BINARY_MESSAGE = "Content is binary, returned as base64. Decode to get original bytes."


@dataclass(frozen=True)
class StorageRecord:
    handle: str
    byte_length: int
    mime_hint: Optional[str] = None


@dataclass(frozen=True)
class RetrievedContent:
    handle: str
    content: str
    format: str
    size: int
    encrypted: bool = True
    message: Optional[str] = None


def store(data: Union[str, bytes], is_text: bool = False, mime_type: Optional[str] = None) -> StorageRecord:
    """
    Encrypt and upload resource bytes.

    Args:
        data: Raw bytes, or text which is stored as UTF-8
        is_text: Whether the input is a plaintext message
        mime_type: Optional MIME hint recorded with the result

    Returns:
        StorageRecord with the handle assigned by the storage network

    Raises:
        ConfigurationError: If the signing key or upload identity is missing
        StorageUnavailable: If the storage network cannot be reached
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
        is_text = True

    blob = codec.encrypt(data)

    try:
        receipt = storage_api.upload_bytes(blob)
    except (RequestException, ValueError) as e:
        raise StorageUnavailable(f"Failed to upload data to storage network: {e}") from e

    mime_hint = mime_type or ("text/plain" if is_text else None)
    logger.info(f"Stored {len(data)} plaintext bytes as {receipt.size} encrypted bytes at {receipt.handle}")
    return StorageRecord(handle=receipt.handle, byte_length=receipt.size, mime_hint=mime_hint)


def classify(handle: str, data: bytes, encrypted: bool = True) -> RetrievedContent:
    """Report bytes as text when they decode as UTF-8, otherwise as base64 binary."""
    message = None if encrypted else LEGACY_MESSAGE
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return RetrievedContent(
            handle=handle,
            content=base64.b64encode(data).decode("ascii"),
            format=FORMAT_BINARY,
            size=len(data),
            encrypted=encrypted,
            message=message or BINARY_MESSAGE,
        )
    return RetrievedContent(
        handle=handle,
        content=text,
        format=FORMAT_TEXT,
        size=len(data),
        encrypted=encrypted,
        message=message,
    )


def retrieve(handle: str) -> RetrievedContent:
    """
    Download and decrypt a stored resource.

    Raises:
        FileNotFoundError: If the storage network has no object for the handle
        ConfigurationError: If the signing key is missing
        StorageUnavailable: If the storage network cannot be reached
    """
    try:
        stored = storage_api.download_bytes(handle)
    except RequestException as e:
        raise StorageUnavailable(f"Failed to download data from storage network: {e}") from e

    result = codec.decrypt(stored)
    if result.legacy:
        logger.warning(f"Reference {handle} did not decrypt; serving it as legacy data")

    return classify(handle, result.data, encrypted=not result.legacy)
