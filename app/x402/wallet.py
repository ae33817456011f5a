# app/x402/wallet.py
"""
Client-side wallet signer and chain submitter.

The payment interceptor only needs something with a submit() method; the
LocalAccountSigner here signs with a local private key and broadcasts
through an RPC node.
"""
import logging
from typing import Optional, Protocol

from eth_abi import encode as abi_encode
from eth_account import Account
from web3 import Web3

logger = logging.getLogger(__name__)

TRANSFER_SELECTOR = Web3.keccak(text="transfer(address,uint256)")[:4]


class WalletSigner(Protocol):
    """Signs and broadcasts a transaction, returning its hash."""

    def submit(self, to: str, value: int, data: Optional[str], chain_id: int) -> str:
        ...


def encode_transfer_call(to: str, amount: int) -> str:
    """ABI-encode an ERC-20 ``transfer(to, amount)`` call as 0x-prefixed hex."""
    args = abi_encode(["address", "uint256"], [Web3.to_checksum_address(to), int(amount)])
    return Web3.to_hex(TRANSFER_SELECTOR + args)


class LocalAccountSigner:
    """
    Signs EIP-1559 transactions with a local key and broadcasts them.

    Args:
        private_key: Hex private key of the paying account
        rpc_url: RPC endpoint of the target chain
        wait_for_receipt: Block until the transaction is mined
        receipt_timeout: Seconds to wait for the receipt
    """

    def __init__(
        self,
        private_key: str,
        rpc_url: str,
        wait_for_receipt: bool = True,
        receipt_timeout: int = 120,
        web3: Optional[Web3] = None,
    ):
        self.account = Account.from_key(private_key)
        self.address = self.account.address
        self.w3 = web3 or Web3(Web3.HTTPProvider(rpc_url))
        self.wait_for_receipt = wait_for_receipt
        self.receipt_timeout = receipt_timeout

    def build_transaction(self, to: str, value: int, data: Optional[str], chain_id: int) -> dict:
        tx = {
            "from": self.address,
            "to": Web3.to_checksum_address(to),
            "value": int(value),
            "data": data or "0x",
            "chainId": chain_id,
            "nonce": self.w3.eth.get_transaction_count(self.address, "pending"),
            "type": 2,
        }
        tx["gas"] = self.w3.eth.estimate_gas(tx)

        priority_fee = self.w3.eth.max_priority_fee
        base_fee = self.w3.eth.get_block("latest").get("baseFeePerGas", 0)
        tx["maxPriorityFeePerGas"] = priority_fee
        tx["maxFeePerGas"] = 2 * base_fee + priority_fee
        return tx

    def submit(self, to: str, value: int, data: Optional[str], chain_id: int) -> str:
        tx = self.build_transaction(to, value, data, chain_id)
        signed = self.account.sign_transaction(tx)
        tx_hash = Web3.to_hex(self.w3.eth.send_raw_transaction(signed.raw_transaction))
        logger.info(f"x402: Broadcast payment transaction {tx_hash} on chain {chain_id}")

        if self.wait_for_receipt:
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
            if receipt.get("status") != 1:
                raise RuntimeError(f"Payment transaction {tx_hash} reverted")
            logger.info(f"x402: Payment transaction {tx_hash} mined in block {receipt.get('blockNumber')}")

        return tx_hash
