"""
x402 Payment Protocol Integration Module.

This module implements the x402 payment protocol for the DataBox gateway,
enabling pay-per-request access to encrypted resource uploads and downloads.

Key components:
- models: Wire models for challenges, options and payment proofs
- challenge: Building 402 challenges from route or resource prices
- verifier: Proof verification against the chain or a facilitator, with replay protection
- middleware: FastAPI middleware guarding the resource routes
- interceptor: Client side that pays a 402 and retries with the proof
- wallet: Transaction signing and broadcasting for the client
- audit: Transaction audit logging

Configuration is loaded from environment variables via app.core.config.
"""

__version__ = "0.1.0"
