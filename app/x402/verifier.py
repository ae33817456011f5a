# app/x402/verifier.py
"""
Server-side verification of submitted payment proofs.

A proof names a transaction hash. Verification confirms the transaction
exists on the expected network, was mined within the challenge's
maxTimeoutSeconds, pays at least the required amount of the right asset to
the right address, and has not been used before.

Replay protection is a per-hash mutual exclusion: different hashes verify
concurrently, while two requests carrying the same hash are serialized so
only one of them can be accepted.
"""
import json
import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, Optional, Set

import requests
from requests.exceptions import RequestException
from web3 import Web3
from web3.exceptions import TransactionNotFound

from app.core.config import settings
from app.core.exceptions import VerificationUnavailable
from app.x402.models import (
    PaymentChallenge,
    PaymentOption,
    PaymentProof,
    VerificationResult,
    REASON_EXPIRED,
    REASON_INSUFFICIENT_PAYMENT,
    REASON_INVALID_PROOF,
    REASON_NOT_FOUND,
    REASON_REPLAY,
    X402_VERSION,
)

logger = logging.getLogger(__name__)

TRANSFER_EVENT_TOPIC = Web3.to_hex(Web3.keccak(text="Transfer(address,address,uint256)"))


class _HashLock:
    """A per-hash lock plus the number of requests holding or waiting on it."""

    def __init__(self):
        self.lock = threading.Lock()
        self.holders = 0


class ReplayGuard:
    """
    Tracks consumed transaction hashes with one lock per hash in flight.

    A hash's lock lives only while some request holds or waits on it, so
    only the consumed set grows. When path is set, each consumed hash is
    appended to it as a JSON line and the file is reloaded on startup; a
    restart does not reopen proofs that were already accepted.
    """

    def __init__(self, path: Optional[str] = None):
        self._path = Path(path) if path else None
        self._consumed: Set[str] = set()
        self._locks: Dict[str, _HashLock] = {}
        self._registry_lock = threading.Lock()
        self._file_lock = threading.Lock()
        if self._path is not None:
            self._load()

    @staticmethod
    def _key(tx_hash: str) -> str:
        return tx_hash.lower()

    def _load(self) -> None:
        if not self._path.exists():
            return
        with open(self._path, "r") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    self._consumed.add(self._key(json.loads(line)["transaction_hash"]))
                except (ValueError, KeyError, TypeError, AttributeError) as e:
                    logger.warning(f"Skipping malformed consumed-transaction line {line_num}: {e}")
        logger.info(f"Loaded {len(self._consumed)} consumed transactions from {self._path}")

    def _append(self, key: str) -> None:
        entry = {"transaction_hash": key, "consumed_at": datetime.now(timezone.utc).isoformat()}
        try:
            with self._file_lock:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with open(self._path, "a") as f:
                    f.write(json.dumps(entry) + "\n")
        except OSError as e:
            # Still consumed in memory; only a restart could reopen it
            logger.error(f"Failed to persist consumed transaction {key}: {e}")

    @contextmanager
    def hold(self, tx_hash: str) -> Iterator[str]:
        """Serialize all work on one transaction hash; yields the normalized key."""
        key = self._key(tx_hash)
        with self._registry_lock:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _HashLock()
            entry.holders += 1
        try:
            with entry.lock:
                yield key
        finally:
            with self._registry_lock:
                entry.holders -= 1
                if entry.holders == 0 and self._locks.get(key) is entry:
                    del self._locks[key]

    @property
    def active_locks(self) -> int:
        """Number of hashes currently being verified or waited on."""
        with self._registry_lock:
            return len(self._locks)

    def is_consumed(self, tx_hash: str) -> bool:
        return self._key(tx_hash) in self._consumed

    def mark_consumed(self, tx_hash: str) -> None:
        key = self._key(tx_hash)
        if self._path is not None:
            self._append(key)
        self._consumed.add(key)

    def reset(self) -> None:
        """Forget consumed hashes held in memory; the file on disk is kept."""
        with self._registry_lock:
            self._consumed.clear()
            self._locks.clear()


class PaymentVerifier:
    """
    Base verifier: shared proof/challenge checks and replay protection.

    Subclasses implement _check_payment() against a chain reader or facilitator.
    """

    def __init__(self, replay_guard: Optional[ReplayGuard] = None):
        self.replay_guard = replay_guard or ReplayGuard()

    def verify(self, proof: PaymentProof, challenge: PaymentChallenge) -> VerificationResult:
        """
        Verify a proof against the first option of a challenge.

        Raises:
            VerificationUnavailable: If the chain reader or facilitator cannot be reached
        """
        option = challenge.accepts[0]

        if proof.scheme != option.scheme:
            logger.warning(f"x402: Proof scheme {proof.scheme} does not match {option.scheme}")
            return VerificationResult.reject(REASON_INVALID_PROOF)

        if proof.payload.network.lower() != option.network.lower():
            logger.warning(
                f"x402: Proof network {proof.payload.network} does not match {option.network}"
            )
            return VerificationResult.reject(REASON_INVALID_PROOF)

        with self.replay_guard.hold(proof.transaction_hash) as key:
            if self.replay_guard.is_consumed(key):
                logger.warning(f"x402: Replay of transaction {key} rejected")
                return VerificationResult.reject(REASON_REPLAY)

            result = self._check_payment(proof, option)
            if result.is_valid:
                self.replay_guard.mark_consumed(key)
                logger.info(f"x402: Transaction {key} accepted and marked consumed")
            else:
                logger.warning(f"x402: Transaction {key} rejected: {result.reason}")
            return result

    def _check_payment(self, proof: PaymentProof, option: PaymentOption) -> VerificationResult:
        raise NotImplementedError


def _as_bytes(value) -> bytes:
    if isinstance(value, str):
        return bytes.fromhex(value[2:] if value.startswith("0x") else value)
    return bytes(value)


def _same_address(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and a.lower() == b.lower()


class ChainPaymentVerifier(PaymentVerifier):
    """Verifies proofs by reading the transaction and its receipt from an RPC node."""

    def __init__(self, rpc_url: Optional[str] = None, web3: Optional[Web3] = None,
                 replay_guard: Optional[ReplayGuard] = None):
        super().__init__(replay_guard)
        self.w3 = web3 or Web3(Web3.HTTPProvider(rpc_url or settings.X402_RPC_URL))

    def _check_payment(self, proof: PaymentProof, option: PaymentOption) -> VerificationResult:
        tx_hash = proof.transaction_hash
        required = int(option.max_amount_required)

        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            logger.info(f"x402: Transaction {tx_hash} not found (yet) on {option.network}")
            return VerificationResult.reject(REASON_NOT_FOUND)
        except Exception as e:
            raise VerificationUnavailable(f"Failed to read transaction receipt: {e}") from e

        if receipt is None or receipt.get("status") != 1:
            logger.info(f"x402: Transaction {tx_hash} missing or reverted")
            return VerificationResult.reject(REASON_NOT_FOUND)

        try:
            block = self.w3.eth.get_block(receipt["blockNumber"])
        except Exception as e:
            raise VerificationUnavailable(f"Failed to read block: {e}") from e

        age = time.time() - int(block["timestamp"])
        if age > option.max_timeout_seconds:
            logger.info(
                f"x402: Transaction {tx_hash} mined {int(age)}s ago, older than {option.max_timeout_seconds}s"
            )
            return VerificationResult.reject(REASON_EXPIRED)

        payer = receipt.get("from")

        if option.is_token_payment:
            paid = self._token_amount_paid(receipt, option)
        else:
            try:
                tx = self.w3.eth.get_transaction(tx_hash)
            except TransactionNotFound:
                return VerificationResult.reject(REASON_NOT_FOUND)
            except Exception as e:
                raise VerificationUnavailable(f"Failed to read transaction: {e}") from e
            paid = int(tx.get("value", 0)) if _same_address(tx.get("to"), option.pay_to) else 0
            payer = tx.get("from", payer)

        if paid < required:
            logger.info(f"x402: Transaction {tx_hash} paid {paid}, required {required}")
            return VerificationResult.reject(REASON_INSUFFICIENT_PAYMENT)

        return VerificationResult.accept(payer=payer)

    @staticmethod
    def _token_amount_paid(receipt, option: PaymentOption) -> int:
        """Sum the ERC-20 Transfer events from the asset contract to payTo."""
        pay_to = _as_bytes(option.pay_to)[-20:]
        total = 0
        for log in receipt.get("logs", []):
            if not _same_address(log.get("address"), option.asset):
                continue
            topics = log.get("topics", [])
            if len(topics) < 3 or Web3.to_hex(_as_bytes(topics[0])) != TRANSFER_EVENT_TOPIC:
                continue
            if _as_bytes(topics[2])[-20:] != pay_to:
                continue
            total += int.from_bytes(_as_bytes(log.get("data", b"")), "big")
        return total


class FacilitatorPaymentVerifier(PaymentVerifier):
    """Delegates the on-chain checks to a facilitator's /verify endpoint."""

    def __init__(self, base_url: Optional[str] = None, timeout: int = 30,
                 replay_guard: Optional[ReplayGuard] = None):
        super().__init__(replay_guard)
        self.base_url = (base_url or settings.X402_FACILITATOR_URL).rstrip("/")
        self.timeout = timeout

    def _check_payment(self, proof: PaymentProof, option: PaymentOption) -> VerificationResult:
        api_url = f"{self.base_url}/verify"
        body = {
            "x402Version": X402_VERSION,
            "paymentPayload": proof.model_dump(by_alias=True),
            "paymentRequirements": option.model_dump(by_alias=True, exclude_none=True),
        }
        try:
            response = requests.post(api_url, json=body, timeout=self.timeout)
            response.raise_for_status()
            result = response.json()
        except (RequestException, ValueError) as e:
            logger.error(f"x402: Facilitator verification failed ({api_url}): {e}")
            raise VerificationUnavailable(f"Facilitator verification failed: {e}") from e

        if result.get("isValid"):
            return VerificationResult.accept(payer=result.get("payer"))
        return VerificationResult.reject(result.get("invalidReason") or REASON_NOT_FOUND)


# Global verifier instance
_verifier: Optional[PaymentVerifier] = None
_verifier_lock = threading.Lock()


def create_verifier(kind: Optional[str] = None) -> PaymentVerifier:
    kind = (kind or settings.X402_VERIFIER).lower()
    replay_guard = ReplayGuard(settings.X402_CONSUMED_TX_PATH)
    if kind == "facilitator":
        return FacilitatorPaymentVerifier(replay_guard=replay_guard)
    if kind == "chain":
        return ChainPaymentVerifier(replay_guard=replay_guard)
    raise ValueError(f"Unknown X402_VERIFIER: {kind}")


def get_verifier() -> PaymentVerifier:
    """Get the configured verifier singleton; replay state lives in it."""
    global _verifier

    if _verifier is None:
        with _verifier_lock:
            if _verifier is None:
                _verifier = create_verifier()

    return _verifier


def reset_verifier() -> None:
    """Drop the global verifier (useful for testing)."""
    global _verifier
    with _verifier_lock:
        _verifier = None
