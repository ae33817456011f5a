# app/services/storage_api.py
import requests
from requests.exceptions import RequestException
import logging
import mimetypes
from typing import NamedTuple, Optional
from urllib.parse import urljoin, urlparse
from pathlib import PurePosixPath

from app.core.config import settings
from app.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Default redundancy level for erasure coding (2 = medium redundancy)
DEFAULT_REDUNDANCY_LEVEL = 2


class UploadReceipt(NamedTuple):
    handle: str
    size: int


class RemoteFile(NamedTuple):
    data: bytes
    filename: Optional[str]
    mime_type: Optional[str]


def upload_bytes(data: bytes) -> UploadReceipt:
    """
    Uploads raw bytes to the storage network.

    Args:
        data: The bytes to store (already encrypted by the caller)

    Returns:
        UploadReceipt with the content address assigned by the network and the stored size

    Raises:
        ConfigurationError: If no postage batch (upload identity) is configured
        RequestException: If the HTTP request to the storage API fails
        ValueError: If the response is malformed or missing expected fields
    """
    batch_id = settings.STORAGE_POSTAGE_BATCH_ID
    if not batch_id:
        raise ConfigurationError("STORAGE_POSTAGE_BATCH_ID is required for uploads")

    api_url = urljoin(str(settings.STORAGE_API_URL), "bytes")
    headers = {
        "Swarm-Postage-Batch-Id": batch_id.lower(),
        "Content-Type": "application/octet-stream",
        "Swarm-Redundancy-Level": str(DEFAULT_REDUNDANCY_LEVEL)
    }

    try:
        response = requests.post(api_url, data=data, headers=headers, timeout=settings.STORAGE_TIMEOUT_SECONDS)
        response.raise_for_status()

        response_json = response.json()
        reference = response_json.get("reference")
        if not reference:
            raise ValueError("API Response missing 'reference' from upload")

        logger.info(f"Successfully uploaded {len(data)} bytes with reference: {reference}")
        return UploadReceipt(handle=reference, size=len(data))

    except requests.exceptions.RequestException as e:
        logger.error(f"Error uploading data to storage API ({api_url}): {e}")
        raise
    except (ValueError, KeyError) as e:
        logger.error(f"Error parsing data upload response: {e}")
        raise ValueError(f"Could not parse data upload response: {e}") from e


def download_bytes(handle: str) -> bytes:
    """
    Downloads raw bytes from the storage network by content address.

    Args:
        handle: The reference returned at upload time

    Returns:
        The stored bytes

    Raises:
        RequestException: If the HTTP request to the storage API fails
        FileNotFoundError: If the data is not found (404)
    """
    api_url = urljoin(str(settings.STORAGE_API_URL), f"bytes/{handle.lower()}")

    try:
        response = requests.get(api_url, timeout=settings.STORAGE_TIMEOUT_SECONDS)

        if response.status_code == 404:
            raise FileNotFoundError(f"Data not found at reference {handle}")

        response.raise_for_status()

        logger.info(f"Successfully downloaded {len(response.content)} bytes from reference: {handle}")
        return response.content

    except requests.exceptions.RequestException as e:
        logger.error(f"Error downloading data from storage API ({api_url}): {e}")
        raise


def _filename_from_response(url: str, content_disposition: Optional[str]) -> Optional[str]:
    if content_disposition and "filename=" in content_disposition:
        name = content_disposition.split("filename=", 1)[1].split(";")[0]
        return name.strip().strip('"') or None
    name = PurePosixPath(urlparse(url).path).name
    return name or None


def fetch_remote_file(url: str, timeout: int = 30) -> RemoteFile:
    """
    Downloads a file from an external URL so it can be stored.

    Raises:
        ValueError: If the URL is not http(s)
        RequestException: If the download fails
    """
    if urlparse(url).scheme not in ("http", "https"):
        raise ValueError(f"Unsupported URL scheme: {url}")

    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except RequestException as e:
        logger.error(f"Failed to download from URL {url}: {e}")
        raise

    filename = _filename_from_response(url, response.headers.get("Content-Disposition"))
    mime_type = response.headers.get("Content-Type")
    if mime_type:
        mime_type = mime_type.split(";")[0].strip()
    elif filename:
        mime_type = mimetypes.guess_type(filename)[0]

    logger.info(f"Downloaded {len(response.content)} bytes from {url} (filename: {filename}, type: {mime_type})")
    return RemoteFile(data=response.content, filename=filename, mime_type=mime_type)
