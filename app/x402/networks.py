# app/x402/networks.py
"""Network name -> EVM chain id and USDC contract tables."""
from typing import Optional

NETWORK_TO_CHAIN_ID = {
    "base-sepolia": 84532,
    "base": 8453,
    "ethereum": 1,
    "sepolia": 11155111,
    "avalanche-fuji": 43113,
    "avalanche": 43114,
}

# USDC contract addresses by network
USDC_ADDRESSES = {
    "base": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
    "base-sepolia": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
    "ethereum": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
    "sepolia": "0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238",
    "avalanche-fuji": "0x5425890298aed601595a70AB815c96711a31Bc65",
    "avalanche": "0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E",
}

USDC_DECIMALS = 6


def lookup_chain_id(network: str) -> Optional[int]:
    """
    Resolve a network name (or a numeric chain id string) to a chain id.

    Returns None for unknown networks; callers decide how to fail.
    """
    if network is None:
        return None
    name = str(network).strip().lower()
    if name.isdigit():
        return int(name)
    return NETWORK_TO_CHAIN_ID.get(name)


def usdc_address(network: str) -> Optional[str]:
    """USDC contract for a network, or None if we do not know one."""
    return USDC_ADDRESSES.get(str(network).strip().lower())
