# app/core/exceptions.py
"""
Error taxonomy shared by the gateway server and the paying client.

Each error carries a machine-readable ``kind`` that matches the ``kind`` of
the ErrorBody returned over HTTP, plus optional ``details``.
"""
from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Base class for all gateway errors."""

    kind = "internal"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(GatewayError):
    """Raised when required configuration (signing key, postage batch) is missing."""

    kind = "configuration"


class ProtocolError(GatewayError):
    """Raised for malformed challenges or proofs."""

    kind = "malformed-input"

    def __init__(self, reason: str, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message or reason, details)
        self.reason = reason


class PaymentAmountExceeded(ProtocolError):
    """Raised when the offered option costs more than the caller allows."""

    def __init__(self, amount: int, limit: int):
        super().__init__(
            "amount-exceeded",
            f"Payment amount {amount} exceeds maximum allowed value {limit}",
            {"amount": str(amount), "limit": str(limit)},
        )


class PaymentRejected(GatewayError):
    """Raised when a submitted payment is not accepted by the server."""

    kind = "payment-rejected"

    def __init__(self, reason: str, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message or f"Payment rejected: {reason}", details)
        self.reason = reason


class PaymentSubmissionError(GatewayError):
    """Raised when the wallet signer or chain submission fails."""

    kind = "payment-rejected"


class WalletNotConnectedError(PaymentSubmissionError):
    """Raised when no wallet account is available to pay."""


class UnretrievedPaymentError(GatewayError):
    """
    Raised when a payment was broadcast but the retried request never completed.

    The payment cannot be recalled; ``payment_header`` can be replayed by the
    caller to retry fetching the resource manually.
    """

    kind = "payment-rejected"

    def __init__(self, message: str, transaction_hash: str, payment_header: str):
        super().__init__(message, {"transactionHash": transaction_hash})
        self.transaction_hash = transaction_hash
        self.payment_header = payment_header


class StorageUnavailable(GatewayError):
    """Raised when the storage network cannot be reached or replies badly."""

    kind = "storage-unavailable"


class VerificationUnavailable(GatewayError):
    """Raised when the facilitator or chain reader cannot be reached."""

    kind = "verification-unavailable"
