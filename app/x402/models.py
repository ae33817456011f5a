# app/x402/models.py
"""
Wire and configuration models for the x402 payment handshake.

Payment options serialize with the x402 wire names (``payTo``, ``asset``,
``maxAmountRequired``) and also accept ``payToAddress`` / ``assetAddress``
when parsing.
"""
import json
import re
from dataclasses import dataclass
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from x402.encoding import safe_base64_decode, safe_base64_encode

from app.core.exceptions import ProtocolError

X402_VERSION = 1
SCHEME_EXACT = "exact"

TX_HASH_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")

# Verification reject reasons
REASON_INSUFFICIENT_PAYMENT = "insufficient-payment"
REASON_REPLAY = "replay"
REASON_NOT_FOUND = "not-found"
REASON_INVALID_PROOF = "invalid-proof"
REASON_EXPIRED = "expired"


def _validate_atomic(v: str) -> str:
    try:
        amount = int(v)
    except (TypeError, ValueError):
        raise ValueError("amount must be an integer encoded as a string")
    if amount < 0:
        raise ValueError("amount must not be negative")
    return str(amount)


class PriceSpec(BaseModel):
    """What a route or resource costs and where the funds must land."""

    model_config = ConfigDict(frozen=True)

    amount: str = Field(..., description="Price in the asset's atomic units")
    network: str
    pay_to_address: str
    asset_address: Optional[str] = None
    description: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, v):
        return _validate_atomic(v)


class PaymentOption(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    scheme: str = SCHEME_EXACT
    network: str
    pay_to: str = Field(
        ...,
        validation_alias=AliasChoices("payTo", "payToAddress", "pay_to"),
        serialization_alias="payTo",
    )
    max_amount_required: str = Field(
        ...,
        validation_alias=AliasChoices("maxAmountRequired", "max_amount_required"),
        serialization_alias="maxAmountRequired",
    )
    asset: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("asset", "assetAddress"),
        serialization_alias="asset",
    )
    resource: Optional[str] = None
    description: Optional[str] = None
    mime_type: str = Field(
        default="application/json",
        validation_alias=AliasChoices("mimeType", "mime_type"),
        serialization_alias="mimeType",
    )
    max_timeout_seconds: int = Field(
        default=300,
        validation_alias=AliasChoices("maxTimeoutSeconds", "max_timeout_seconds"),
        serialization_alias="maxTimeoutSeconds",
    )

    @field_validator("max_amount_required", mode="before")
    @classmethod
    def validate_max_amount(cls, v):
        return _validate_atomic(v)

    @property
    def is_token_payment(self) -> bool:
        return bool(self.asset)


class PaymentChallenge(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    x402_version: int = Field(
        default=X402_VERSION,
        validation_alias=AliasChoices("x402Version", "x402_version"),
        serialization_alias="x402Version",
    )
    scheme: str = SCHEME_EXACT
    accepts: List[PaymentOption]
    error: Optional[str] = None

    def to_body(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def parse_body(cls, body) -> "PaymentChallenge":
        """
        Parse a 402 response body.

        Raises:
            ProtocolError: ``malformed-challenge`` if there is no usable first option
        """
        if not isinstance(body, dict):
            raise ProtocolError("malformed-challenge", "Payment challenge is not a JSON object")

        accepts = body.get("accepts")
        if not isinstance(accepts, list) or not accepts:
            raise ProtocolError("malformed-challenge", "No payment options available from server")

        first = accepts[0]
        if not isinstance(first, dict):
            raise ProtocolError("malformed-challenge", "Invalid payment option from server")
        has_pay_to = first.get("payTo") or first.get("payToAddress")
        if not has_pay_to or first.get("maxAmountRequired") in (None, ""):
            raise ProtocolError("malformed-challenge", "Invalid payment option from server")

        try:
            return cls.model_validate(body)
        except ValidationError as e:
            raise ProtocolError("malformed-challenge", f"Invalid payment challenge: {e}") from e


class ProofPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transaction_hash: str = Field(
        ...,
        validation_alias=AliasChoices("transactionHash", "transaction_hash"),
        serialization_alias="transactionHash",
    )
    network: str

    @field_validator("transaction_hash")
    @classmethod
    def validate_transaction_hash(cls, v: str) -> str:
        if not TX_HASH_PATTERN.match(v):
            raise ValueError("transactionHash must be a 0x-prefixed 32-byte hex string")
        return v


class PaymentProof(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    x402_version: int = Field(
        default=X402_VERSION,
        validation_alias=AliasChoices("x402Version", "x402_version"),
        serialization_alias="x402Version",
    )
    scheme: str = SCHEME_EXACT
    payload: ProofPayload

    @property
    def transaction_hash(self) -> str:
        return self.payload.transaction_hash

    def encode_header(self) -> str:
        """Base64-encoded JSON for the X-PAYMENT header."""
        return safe_base64_encode(self.model_dump_json(by_alias=True).encode("utf-8"))

    @classmethod
    def decode_header(cls, header_value: str) -> "PaymentProof":
        """
        Decode an X-PAYMENT header value.

        Raises:
            ProtocolError: ``malformed-proof`` if the header is not base64 JSON of a proof
        """
        try:
            decoded = safe_base64_decode(header_value)
            return cls.model_validate(json.loads(decoded))
        except (ValueError, UnicodeDecodeError) as e:
            # binascii.Error, JSONDecodeError and ValidationError are all ValueErrors
            raise ProtocolError("malformed-proof", f"Invalid X-PAYMENT header: {e}") from e


@dataclass(frozen=True)
class VerificationResult:
    is_valid: bool
    reason: Optional[str] = None
    payer: Optional[str] = None

    @classmethod
    def accept(cls, payer: Optional[str] = None) -> "VerificationResult":
        return cls(is_valid=True, payer=payer)

    @classmethod
    def reject(cls, reason: str) -> "VerificationResult":
        return cls(is_valid=False, reason=reason)
