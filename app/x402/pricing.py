# app/x402/pricing.py
"""
Price conversion for x402 payment challenges.

Prices are configured in USD (e.g. "0.01" or "$0.01") and charged in USDC,
which has 6 decimals: $1.00 = 1,000,000 atomic units. Resource prices set at
upload time are already atomic and only need validating.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from app.x402.networks import USDC_DECIMALS


def parse_usd_amount(value: Union[str, int, float, Decimal]) -> Decimal:
    """
    Parse a USD price such as "$0.01", "0.01" or 0.01.

    Raises:
        ValueError: If the value is not a non-negative number
    """
    if isinstance(value, Decimal):
        amount = value
    else:
        text = str(value).strip()
        if text.startswith("$"):
            text = text[1:].strip()
        try:
            amount = Decimal(text)
        except InvalidOperation:
            raise ValueError(f"Invalid USD amount: {value!r}")

    if not amount.is_finite() or amount < 0:
        raise ValueError(f"USD amount must be a non-negative number: {value!r}")
    return amount


def usd_to_atomic(value: Union[str, int, float, Decimal], decimals: int = USDC_DECIMALS) -> int:
    """
    Convert a USD price to token atomic units.

    Example:
        usd_to_atomic("0.01") == 10000
    """
    amount = parse_usd_amount(value)
    scaled = (amount * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(scaled)


def parse_atomic_amount(value: Union[str, int]) -> int:
    """
    Validate a price already expressed in atomic units.

    Raises:
        ValueError: If the value is not a non-negative integer
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid atomic amount: {value!r}")
    if isinstance(value, int):
        amount = value
    else:
        text = str(value).strip()
        if not text.isdigit():
            raise ValueError(f"Invalid atomic amount: {value!r}")
        amount = int(text)

    if amount < 0:
        raise ValueError(f"Atomic amount must not be negative: {value!r}")
    return amount
