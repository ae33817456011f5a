# app/x402/challenge.py
"""
Building 402 Payment Required challenges.

issue_challenge() is a pure function of the PriceSpec. The route and
resource helpers turn configuration and registry records into PriceSpecs.
"""
import logging
from typing import Optional

from starlette.responses import JSONResponse

from app.core.config import settings
from app.services.registry import ResourceRecord
from app.x402.models import PaymentChallenge, PaymentOption, PriceSpec, SCHEME_EXACT, X402_VERSION
from app.x402.networks import USDC_ADDRESSES, usdc_address
from app.x402.pricing import usd_to_atomic

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

ROUTE_DESCRIPTIONS = {
    "upload": "Encrypted resource upload",
    "download": "Resource download",
}


def issue_challenge(price_spec: PriceSpec, resource: Optional[str] = None) -> PaymentChallenge:
    """
    Convert a price into a single-option payment challenge.

    With an asset address the amount is in the token's atomic units;
    without one it is in native-chain atomic units (wei).
    """
    option = PaymentOption(
        scheme=SCHEME_EXACT,
        network=price_spec.network,
        pay_to=price_spec.pay_to_address,
        max_amount_required=price_spec.amount,
        asset=price_spec.asset_address,
        resource=resource,
        description=price_spec.description,
        max_timeout_seconds=settings.X402_MAX_TIMEOUT_SECONDS,
    )
    return PaymentChallenge(x402_version=X402_VERSION, scheme=SCHEME_EXACT, accepts=[option])


def create_402_response(challenge: PaymentChallenge, error_message: str = "Payment required") -> JSONResponse:
    """
    Create an HTTP 402 Payment Required response.

    Args:
        challenge: The challenge to send
        error_message: Error message for the response

    Returns:
        JSONResponse with 402 status and payment details
    """
    body = challenge.model_copy(update={"error": error_message}).to_body()
    return JSONResponse(status_code=402, content=body)


def _operator_address() -> str:
    pay_to = settings.X402_PAY_TO_ADDRESS
    if not pay_to:
        logger.warning("X402_PAY_TO_ADDRESS not configured")
        pay_to = ZERO_ADDRESS
    return pay_to


def _usdc_asset(network: str) -> str:
    """USDC contract for the configured network; prices are never charged as native wei."""
    asset = usdc_address(network)
    if asset is None:
        raise ValueError(
            f"No USDC contract known for network '{network}'; "
            f"set X402_NETWORK to one of {', '.join(sorted(USDC_ADDRESSES))}"
        )
    return asset


def route_price_spec(operation: str) -> PriceSpec:
    """
    PriceSpec for a guarded route, paid in USDC to the gateway operator.

    Raises:
        ValueError: If the operation is unknown, its configured price is invalid,
            or the network has no known USDC contract
    """
    if operation == "upload":
        price_usd = settings.X402_UPLOAD_PRICE_USD
    elif operation == "download":
        price_usd = settings.X402_DOWNLOAD_PRICE_USD
    else:
        raise ValueError(f"Unknown operation type: {operation}")

    network = settings.X402_NETWORK
    return PriceSpec(
        amount=str(usd_to_atomic(price_usd)),
        network=network,
        pay_to_address=_operator_address(),
        asset_address=_usdc_asset(network),
        description=ROUTE_DESCRIPTIONS[operation],
    )


def resource_price_spec(record: ResourceRecord) -> PriceSpec:
    """
    PriceSpec for a registered resource: its own price, paid to its own payee.

    Raises:
        ValueError: If the network has no known USDC contract
    """
    network = settings.X402_NETWORK
    return PriceSpec(
        amount=record.price_atomic,
        network=network,
        pay_to_address=record.pay_to_address,
        asset_address=_usdc_asset(network),
        description=f"Download of '{record.name}'",
    )
