# app/api/models/resource.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Union


class UploadRequest(BaseModel):
    """
    Request model for storing a priced resource.

    Exactly one of ``message``, ``file`` or ``url`` carries the content.
    The metadata fields are checked by the handler so that each missing one
    gets its own 400 answer.
    """
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = Field(default=None, description="Plain text to store")
    file: Optional[str] = Field(
        default=None,
        description="Base64-encoded file content (requires filename)",
        examples=["JVBERi0xLjQK"]
    )
    filename: Optional[str] = Field(default=None, description="Original filename", examples=["document.pdf"])
    mime_type: Optional[str] = Field(default=None, alias="mimeType", description="MIME type of the file")
    url: Optional[str] = Field(default=None, description="External URL to fetch and store")

    name: Optional[str] = Field(default=None, description="Name of the resource", examples=["greeting"])
    description: Optional[str] = Field(default=None, description="What the resource is")
    price_usdc: Optional[Union[str, int]] = Field(
        default=None,
        alias="priceUSDC",
        description="Download price in USDC atomic units (6 decimals, 1000000 = 1 USDC)",
        examples=["1000000"]
    )
    pay_address: Optional[str] = Field(default=None, alias="payAddress", description="Address that receives download payments")


class UploadResponse(BaseModel):
    """Response model for a stored resource."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    handle: str = Field(..., description="Content address assigned by the storage network")
    size: int = Field(..., description="Stored (encrypted, padded) size in bytes")
    type: str = Field(..., description='"message" for text uploads, otherwise the filetype')
    name: str
    filetype: str
    filename: Optional[str] = None
    description: str
    price_usdc: str = Field(..., alias="priceUSDC")
    pay_address: str = Field(..., alias="payAddress")
    message: str


class DownloadResponse(BaseModel):
    """Response model for a retrieved resource."""
    handle: str
    content: str = Field(..., description="Text, or base64 when format is binary")
    format: str = Field(..., description='"text" or "binary"')
    size: int = Field(..., description="Plaintext size in bytes")
    encrypted: bool = Field(default=True, description="False when the stored bytes were not decryptable")
    type: str = Field(..., description='"message" for text without a filename, otherwise the filetype')
    name: Optional[str] = None
    filetype: Optional[str] = None
    filename: Optional[str] = None
    message: Optional[str] = None
