# app/x402/middleware.py
"""
FastAPI middleware for x402 payment verification.

This module provides HTTP middleware that:
1. Intercepts requests to the guarded resource routes
2. Prices the request (route price, or the resource's own registry price)
3. Returns 402 Payment Required with a challenge when no proof is attached
4. Verifies the X-PAYMENT proof (transaction hash) exactly once
5. Runs the handler and attaches X-PAYMENT-RESPONSE on success
"""
import json
import logging
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from x402.encoding import safe_base64_encode

from app.api.errors import error_response
from app.core.config import settings
from app.core.exceptions import ProtocolError, VerificationUnavailable
from app.services.registry import get_registry
from app.x402 import audit
from app.x402.challenge import create_402_response, issue_challenge, resource_price_spec, route_price_spec
from app.x402.models import PaymentProof, PriceSpec, VerificationResult
from app.x402.verifier import PaymentVerifier, get_verifier

logger = logging.getLogger(__name__)

# x402 protocol constants
X_PAYMENT_HEADER = "X-PAYMENT"
X_PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"

DOWNLOAD_PATH = "/download"
UPLOAD_PATH = "/upload"

# These endpoints require x402 payment when X402_ENABLED=true
PROTECTED_ENDPOINTS = [
    ("GET", DOWNLOAD_PATH),
    ("POST", UPLOAD_PATH),
]

HANDLE_QUERY_PARAMS = ("id", "pieceCid")


def is_protected_endpoint(method: str, path: str) -> bool:
    """Check if the request matches a protected endpoint (including /download/<handle>)."""
    path = path.rstrip("/")
    for protected_method, protected_path in PROTECTED_ENDPOINTS:
        if method != protected_method:
            continue
        if path == protected_path or path.startswith(protected_path + "/"):
            return True
    return False


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


def get_requested_handle(request: Request) -> Optional[str]:
    """
    Handle named by a download request.

    On /download/<handle> the path is authoritative and query parameters are
    ignored; id/pieceCid are only read on the bare /download route. The guard
    and the download handlers both resolve the handle here.
    """
    path = request.url.path.rstrip("/")
    prefix = DOWNLOAD_PATH + "/"
    if path.startswith(prefix):
        return path[len(prefix):] or None

    for param in HANDLE_QUERY_PARAMS:
        value = (request.query_params.get(param) or "").strip()
        if value:
            return value
    return None


def price_for_request(request: Request) -> Optional[PriceSpec]:
    """
    Price a guarded request.

    Returns:
        The PriceSpec to charge, or None when the request names no resource
        (the handler then rejects it as malformed)
    """
    if request.url.path.rstrip("/") == UPLOAD_PATH:
        return route_price_spec("upload")

    handle = get_requested_handle(request)
    if not handle:
        return None

    record = get_registry().get(handle)
    if record is not None:
        return resource_price_spec(record)
    return route_price_spec("download")


def encode_payment_response(proof: PaymentProof, result: VerificationResult) -> str:
    """Base64-encoded JSON for the X-PAYMENT-RESPONSE header."""
    response_dict = {
        "success": True,
        "transaction": proof.transaction_hash,
        "network": proof.payload.network,
        "payer": result.payer,
    }
    return safe_base64_encode(json.dumps(response_dict).encode("utf-8"))


class X402Middleware(BaseHTTPMiddleware):
    """
    x402 payment verification middleware for FastAPI.

    When X402_ENABLED=false, all requests pass through unchanged.
    """

    def __init__(self, app, verifier: Optional[PaymentVerifier] = None):
        super().__init__(app)
        self._verifier = verifier

    @property
    def verifier(self) -> PaymentVerifier:
        """The injected verifier, else the process-wide one."""
        return self._verifier or get_verifier()

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        if not settings.X402_ENABLED:
            return await call_next(request)

        if not is_protected_endpoint(request.method, request.url.path):
            return await call_next(request)

        client_ip = get_client_ip(request)
        logger.info(f"x402: Processing protected request from {client_ip}: {request.method} {request.url.path}")

        try:
            price_spec = price_for_request(request)
        except ValueError as e:
            logger.error(f"x402: Failed to price request: {e}")
            return error_response(500, "configuration", "Route price is misconfigured", {"detail": str(e)})

        if price_spec is None:
            # Nothing to charge for; the handler answers 400
            return await call_next(request)

        challenge = issue_challenge(price_spec, resource=str(request.url))
        payment_header = request.headers.get(X_PAYMENT_HEADER)

        if not payment_header:
            logger.info(f"x402: No X-PAYMENT header, returning 402 for {price_spec.amount} units")
            audit.log_challenge_issued(
                client_ip, request.url.path, price_spec.amount,
                price_spec.pay_to_address, price_spec.network, "missing-proof"
            )
            return create_402_response(challenge, "X-PAYMENT header is required")

        try:
            proof = PaymentProof.decode_header(payment_header)
        except ProtocolError as e:
            logger.warning(f"x402: Invalid X-PAYMENT header from {client_ip}: {e}")
            audit.log_payment_rejected(client_ip, None, "malformed-proof")
            return create_402_response(challenge, "Invalid X-PAYMENT header format")

        request_id = audit.log_payment_received(client_ip, proof.transaction_hash, proof.payload.network)

        try:
            result = await run_in_threadpool(self.verifier.verify, proof, challenge)
        except VerificationUnavailable as e:
            logger.error(f"x402: Payment verification unavailable: {e}")
            audit.log_error("verification_unavailable", str(e), client_ip=client_ip, request_id=request_id)
            return error_response(502, "verification-unavailable", "Payment verification failed", {"detail": str(e)})

        if not result.is_valid:
            logger.warning(f"x402: Payment verification failed: {result.reason}")
            audit.log_payment_rejected(client_ip, proof.transaction_hash, result.reason, request_id=request_id)
            return create_402_response(challenge, f"Payment verification failed: {result.reason}")

        logger.info(f"x402: Payment verified for payer {result.payer}")
        audit.log_payment_verified(
            client_ip, proof.transaction_hash, result.payer, price_spec.amount, request_id=request_id
        )

        response = await call_next(request)

        # The proof is consumed even if the handler fails; payment and
        # delivery are not atomic.
        if 200 <= response.status_code < 300:
            response.headers[X_PAYMENT_RESPONSE_HEADER] = encode_payment_response(proof, result)
        else:
            logger.error(
                f"x402: Handler returned {response.status_code} after payment {proof.transaction_hash} was accepted"
            )
        return response
