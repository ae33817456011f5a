# app/api/endpoints/resources.py
import base64
import binascii
import logging
from pathlib import PurePosixPath
from typing import Optional

from fastapi import APIRouter, Body, Path, Query, Request
from requests.exceptions import RequestException

from app.api.errors import error_response
from app.api.models.resource import DownloadResponse, UploadRequest, UploadResponse
from app.core.exceptions import ConfigurationError, StorageUnavailable
from app.services import storage_api, storage_gateway
from app.services.registry import ResourceRecord, get_registry
from app.x402 import audit
from app.x402.middleware import get_requested_handle
from app.x402.pricing import parse_atomic_amount

logger = logging.getLogger(__name__)
router = APIRouter()

DEFAULT_FILETYPE = "application/octet-stream"
MESSAGE_TYPE = "message"

EXTENSION_FILETYPES = {
    "pdf": "application/pdf",
    "txt": "text/plain",
    "json": "application/json",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "svg": "image/svg+xml",
    "mp4": "video/mp4",
    "mp3": "audio/mpeg",
    "zip": "application/zip",
    "html": "text/html",
    "css": "text/css",
    "js": "application/javascript",
    "xml": "application/xml",
}

DOWNLOAD_USAGE = {
    "usage": ["GET /download?id=<handle>", "GET /download/<handle>"],
}

UPLOAD_USAGE = {
    "usage": 'POST /upload with JSON body: {"message": "text"} OR {"file": "base64", "filename": "file.pdf"} '
             'OR {"url": "https://example.com/file.pdf"}',
    "requiredFields": {
        "name": "Name of the file/data",
        "description": "Description of what the file is",
        "priceUSDC": "Price in USDC atomic units (6 decimals, e.g. 1000000 for 1 USDC)",
        "payAddress": "Address to receive payments",
    },
}


def deduce_filetype(mime_type: Optional[str] = None, filename: Optional[str] = None) -> str:
    """Filetype from an explicit MIME type, else from the filename extension."""
    if mime_type:
        return mime_type
    if filename:
        ext = PurePosixPath(filename).suffix.lstrip(".").lower()
        if ext in EXTENSION_FILETYPES:
            return EXTENSION_FILETYPES[ext]
    return DEFAULT_FILETYPE


def _missing_field(field: str, hint: str):
    return error_response(400, "malformed-input", f"Missing required field: {field}", {"field": field, "hint": hint})


def _download(handle: str):
    """Shared body of both download routes."""
    try:
        content = storage_gateway.retrieve(handle)
    except FileNotFoundError:
        logger.warning(f"No data stored at {handle}")
        return error_response(404, "not-found", f"No resource found for handle {handle}")
    except StorageUnavailable as e:
        logger.error(f"Storage error during download: {e}")
        return error_response(502, "storage-unavailable", "Failed to download data from storage", {"detail": str(e)})
    except ConfigurationError as e:
        logger.error(f"Gateway misconfigured for download: {e}")
        return error_response(500, "configuration", str(e))

    record = get_registry().get(handle)
    filename = record.filename if record else None
    filetype = record.filetype if record else None

    if content.format == storage_gateway.FORMAT_TEXT and not filename:
        resource_type = MESSAGE_TYPE
    else:
        resource_type = filetype or DEFAULT_FILETYPE

    audit.log_resource_downloaded(handle, content.size, content.format)
    logger.info(f"Downloaded {content.size} bytes from {handle} (format: {content.format}, type: {resource_type})")

    return DownloadResponse(
        handle=handle,
        content=content.content,
        format=content.format,
        size=content.size,
        encrypted=content.encrypted,
        type=resource_type,
        name=record.name if record else None,
        filetype=filetype,
        filename=filename,
        message=content.message,
    )


@router.get("/download", response_model=DownloadResponse, response_model_exclude_none=True)
async def download_resource(
    request: Request,
    id: Optional[str] = Query(default=None, description="Handle of the resource to download"),
    piece_cid: Optional[str] = Query(default=None, alias="pieceCid", description="Legacy name for id"),
):
    """
    Download and decrypt a stored resource.

    Guarded by x402: without a valid X-PAYMENT proof this answers 402 with
    the resource's price before reaching the handler. The handle is resolved
    the same way the guard resolves it, so the paid-for resource is the one
    served.
    """
    handle = get_requested_handle(request)
    if not handle:
        return error_response(400, "malformed-input", "Missing id parameter", DOWNLOAD_USAGE)
    return _download(handle)


@router.get("/download/{handle}", response_model=DownloadResponse, response_model_exclude_none=True)
async def download_resource_by_path(
    request: Request,
    handle: str = Path(..., description="Handle of the resource to download"),
):
    """Same as GET /download?id=<handle>; any id/pieceCid query is ignored."""
    return _download(get_requested_handle(request))


@router.post("/upload", response_model=UploadResponse, response_model_exclude_none=True)
async def upload_resource(request: UploadRequest = Body(...)):
    """
    Encrypt and store a resource, then register its download price.

    Content comes from exactly one of ``message``, ``file`` (base64, with
    ``filename``) or ``url``.
    """
    if not request.name:
        return _missing_field("name", "name is required to identify the file/data")
    if not request.description:
        return _missing_field("description", "description is required to describe what the file is")
    if request.price_usdc is None or request.price_usdc == "":
        return _missing_field("priceUSDC", "priceUSDC is required (USDC with 6 decimals, e.g. 1000000 for 1 USDC)")
    if not request.pay_address:
        return _missing_field("payAddress", "payAddress is required (address to receive payments)")

    try:
        price_atomic = parse_atomic_amount(request.price_usdc)
    except ValueError as e:
        return error_response(400, "malformed-input", str(e), {"field": "priceUSDC"})

    sources = [s for s in (request.message, request.file, request.url) if s]
    if not sources:
        return error_response(400, "malformed-input", "Missing message, file, or url in request body", UPLOAD_USAGE)
    if len(sources) > 1:
        return error_response(400, "malformed-input", "Provide only one of message, file, or url", UPLOAD_USAGE)

    filename = None
    try:
        if request.url:
            try:
                remote = storage_api.fetch_remote_file(request.url)
            except (RequestException, ValueError) as e:
                logger.error(f"URL download failed for {request.url}: {e}")
                return error_response(400, "malformed-input", "Could not download file from the provided URL",
                                      {"url": request.url, "detail": str(e)})
            filename = remote.filename or request.filename or request.name
            filetype = deduce_filetype(remote.mime_type or request.mime_type, filename)
            stored = storage_gateway.store(remote.data, mime_type=filetype)
            result_message = f'File from URL "{request.url}" stored successfully as "{filename}"'
        elif request.file:
            if not request.filename:
                return error_response(400, "malformed-input", "filename is required when uploading a file",
                                      {"field": "filename"})
            try:
                file_bytes = base64.b64decode(request.file, validate=True)
            except (binascii.Error, ValueError):
                return error_response(400, "malformed-input", "file must be base64-encoded", {"field": "file"})
            filename = request.filename
            filetype = deduce_filetype(request.mime_type, filename)
            stored = storage_gateway.store(file_bytes, mime_type=filetype)
            result_message = f'File "{filename}" stored successfully'
        else:
            filetype = "text/plain"
            stored = storage_gateway.store(request.message)
            result_message = "Message stored successfully"

    except StorageUnavailable as e:
        logger.error(f"Storage error during upload: {e}")
        return error_response(502, "storage-unavailable", "Failed to upload data to storage", {"detail": str(e)})
    except ConfigurationError as e:
        logger.error(f"Gateway misconfigured for upload: {e}")
        return error_response(500, "configuration", str(e),
                              {"hint": "Uploads require SIGNING_KEY and STORAGE_POSTAGE_BATCH_ID"})

    get_registry().register(ResourceRecord(
        handle=stored.handle,
        name=request.name,
        description=request.description,
        price_atomic=str(price_atomic),
        pay_to_address=request.pay_address,
        filetype=filetype,
        filename=filename,
        size=stored.byte_length,
    ))
    audit.log_resource_uploaded(stored.handle, request.name, stored.byte_length, str(price_atomic), request.pay_address)

    return UploadResponse(
        handle=stored.handle,
        size=stored.byte_length,
        type=MESSAGE_TYPE if request.message else filetype,
        name=request.name,
        filetype=filetype,
        filename=filename,
        description=request.description,
        price_usdc=str(price_atomic),
        pay_address=request.pay_address,
        message=result_message,
    )
