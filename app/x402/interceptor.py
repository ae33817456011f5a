# app/x402/interceptor.py
"""
Client-side x402 payment interceptor.

Wraps a requests.Session so that a priced call looks like a plain call:

1. Send the request; anything but 402 is returned as-is
2. Parse the 402 body as a payment challenge and pick an option
3. Pay on-chain (ERC-20 transfer when the option names an asset, native
   transfer otherwise) through a WalletSigner
4. Retry the request once with the base64 proof in the X-PAYMENT header
5. A second 402 is terminal: the interceptor never pays twice

Each call keeps its own state; nothing is shared between calls. Once the
payment has been broadcast it cannot be undone, so a failed retry surfaces
as UnretrievedPaymentError carrying the proof for a manual retry.
"""
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urljoin

import requests
from requests.exceptions import RequestException

from app.core.exceptions import (
    PaymentAmountExceeded,
    PaymentRejected,
    PaymentSubmissionError,
    ProtocolError,
    StorageUnavailable,
    UnretrievedPaymentError,
    WalletNotConnectedError,
)
from app.x402.models import PaymentChallenge, PaymentOption, PaymentProof, ProofPayload, SCHEME_EXACT, X402_VERSION
from app.x402.networks import lookup_chain_id
from app.x402.wallet import WalletSigner, encode_transfer_call

logger = logging.getLogger(__name__)

X_PAYMENT_HEADER = "X-PAYMENT"

OptionSelector = Callable[[List[PaymentOption]], PaymentOption]


class PaymentState(Enum):
    INITIAL = "initial"
    REQUESTED = "requested"
    CHALLENGED = "challenged"
    PAYMENT_SUBMITTING = "payment_submitting"
    PAYMENT_SUBMITTED = "payment_submitted"
    RETRIED = "retried"
    COMPLETED = "completed"
    FAILED = "failed"


def select_first_option(accepts: List[PaymentOption]) -> PaymentOption:
    """Default selection strategy: the first offered option."""
    return accepts[0]


class PaymentInterceptor:
    """
    Makes HTTP requests that pay for themselves on a 402.

    Args:
        signer: Wallet used to submit payments; None means no wallet is connected
        session: Optional requests.Session to send requests with
        base_url: Prefix for relative request paths
        select_option: Strategy that picks one option from a challenge
        max_amount: Refuse to pay options above this many atomic units
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        signer: Optional[WalletSigner],
        session: Optional[requests.Session] = None,
        base_url: Optional[str] = None,
        select_option: OptionSelector = select_first_option,
        max_amount: Optional[int] = None,
        timeout: int = 60,
    ):
        self.signer = signer
        self.session = session or requests.Session()
        self.base_url = base_url
        self.select_option = select_option
        self.max_amount = max_amount
        self.timeout = timeout

    def _url(self, url: str) -> str:
        if self.base_url and not url.startswith(("http://", "https://")):
            return urljoin(self.base_url.rstrip("/") + "/", url.lstrip("/"))
        return url

    def _send(self, method: str, url: str, headers: Dict[str, str], **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        return self.session.request(method, url, headers=headers, **kwargs)

    def _transition(self, state: PaymentState, new_state: PaymentState, url: str) -> PaymentState:
        logger.debug(f"x402: {url} {state.value} -> {new_state.value}")
        return new_state

    def request(self, method: str, url: str, headers: Optional[Dict[str, str]] = None,
                **kwargs: Any) -> requests.Response:
        """
        Send a request, paying for it if the server answers 402.

        Raises:
            ProtocolError: If the challenge is malformed or names an unknown network
            PaymentAmountExceeded: If the selected option exceeds max_amount
            WalletNotConnectedError: If a payment is needed but no signer is set
            PaymentSubmissionError: If the signer or chain rejects the payment
            PaymentRejected: If the server answers 402 again after payment
            UnretrievedPaymentError: If the retry fails after the payment was broadcast
        """
        url = self._url(url)
        headers = dict(headers or {})
        state = PaymentState.INITIAL

        response = self._send(method, url, headers, **kwargs)
        state = self._transition(state, PaymentState.REQUESTED, url)

        if response.status_code != 402:
            self._transition(state, PaymentState.COMPLETED, url)
            return response

        logger.info(f"x402: 402 received from {url}, processing payment")
        try:
            state = self._transition(state, PaymentState.CHALLENGED, url)
            challenge = self._parse_challenge(response)
            option = self.select_option(challenge.accepts)
            chain_id = self._resolve_chain_id(option)
            self._check_amount(option)

            state = self._transition(state, PaymentState.PAYMENT_SUBMITTING, url)
            tx_hash = self._submit_payment(option, chain_id)
            state = self._transition(state, PaymentState.PAYMENT_SUBMITTED, url)
        except Exception:
            self._transition(state, PaymentState.FAILED, url)
            raise

        proof = PaymentProof(
            x402_version=X402_VERSION,
            scheme=SCHEME_EXACT,
            payload=ProofPayload(transaction_hash=tx_hash, network=option.network),
        )
        payment_header = proof.encode_header()

        retry_headers = dict(headers)
        retry_headers[X_PAYMENT_HEADER] = payment_header
        logger.info(f"x402: Retrying {method} {url} with payment proof {tx_hash}")

        try:
            retried = self._send(method, url, retry_headers, **kwargs)
        except RequestException as e:
            self._transition(state, PaymentState.FAILED, url)
            raise UnretrievedPaymentError(
                f"Payment {tx_hash} was sent but the retried request failed: {e}",
                transaction_hash=tx_hash,
                payment_header=payment_header,
            ) from e
        state = self._transition(state, PaymentState.RETRIED, url)

        if retried.status_code == 402:
            self._transition(state, PaymentState.FAILED, url)
            reason = self._rejection_reason(retried)
            logger.warning(f"x402: Payment {tx_hash} rejected by {url}: {reason}")
            raise PaymentRejected(reason, details={"transactionHash": tx_hash})

        self._transition(state, PaymentState.COMPLETED, url)
        return retried

    def get(self, url: str, **kwargs: Any) -> requests.Response:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> requests.Response:
        return self.request("POST", url, **kwargs)

    @staticmethod
    def _parse_challenge(response: requests.Response) -> PaymentChallenge:
        try:
            body = response.json()
        except ValueError as e:
            raise ProtocolError("malformed-challenge", "402 response body is not JSON") from e
        return PaymentChallenge.parse_body(body)

    @staticmethod
    def _resolve_chain_id(option: PaymentOption) -> int:
        chain_id = lookup_chain_id(option.network)
        if chain_id is None:
            raise ProtocolError(
                "unknown-network",
                f"Unknown payment network: {option.network}",
                {"network": option.network},
            )
        return chain_id

    def _check_amount(self, option: PaymentOption) -> None:
        amount = int(option.max_amount_required)
        if self.max_amount is not None and amount > self.max_amount:
            raise PaymentAmountExceeded(amount, self.max_amount)

    def _submit_payment(self, option: PaymentOption, chain_id: int) -> str:
        if self.signer is None:
            raise WalletNotConnectedError("Wallet not connected")

        amount = int(option.max_amount_required)
        try:
            if option.is_token_payment:
                logger.info(f"x402: Sending token payment of {amount} units of {option.asset} to {option.pay_to}")
                tx_hash = self.signer.submit(
                    to=option.asset,
                    value=0,
                    data=encode_transfer_call(option.pay_to, amount),
                    chain_id=chain_id,
                )
            else:
                logger.info(f"x402: Sending native payment of {amount} to {option.pay_to}")
                tx_hash = self.signer.submit(to=option.pay_to, value=amount, data=None, chain_id=chain_id)
        except PaymentSubmissionError:
            raise
        except Exception as e:
            logger.error(f"x402: Payment submission failed: {e}")
            raise PaymentSubmissionError(f"Payment submission failed: {e}") from e

        if not tx_hash:
            raise PaymentSubmissionError("Wallet returned no transaction hash")
        logger.info(f"x402: Payment transaction sent: {tx_hash}")
        return tx_hash

    @staticmethod
    def _rejection_reason(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return "payment-required"
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        return "payment-required"

    def fetch_resource(self, handle: str, base_url: Optional[str] = None) -> Dict[str, Any]:
        """
        Download a priced resource, paying for it if needed.

        Returns:
            The JSON download body (content, format, size, name, ...)

        Raises:
            FileNotFoundError: If the gateway does not know the handle
            StorageUnavailable: If the gateway fails to reach storage
            RuntimeError: For any other non-2xx answer
        """
        url = urljoin((base_url or self.base_url or "").rstrip("/") + "/", "download")
        response = self.request("GET", url, params={"id": handle}, headers={"Accept": "application/json"})

        if response.status_code == 404:
            raise FileNotFoundError(f"Resource not found: {handle}")
        if response.status_code in (502, 503):
            raise StorageUnavailable(f"Gateway could not reach storage: {response.text}")
        if not response.ok:
            raise RuntimeError(f"Download failed with status {response.status_code}: {response.text}")
        return response.json()
