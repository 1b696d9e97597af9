"""Ethereum mirror — anchors the digest of a local fact in a transaction.

Each mirrored entry becomes a 0-ETH self-send transaction whose data
field is the 32-byte SHA-256 digest of the local record. No contract
code executes on-chain and nothing but the digest is published; the
chain serves as a timestamped witness that the record existed in that
exact form.

The cross-reference back to the local record is kept off-chain: the
external reference is keccak-256 of the local ID, stored in the mirror
mapping together with the transaction hash.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any

from agtrace.errors import MirrorUnavailable
from agtrace.models.mirror import MirrorResult, order_transition_id
from agtrace.models.order import Order, OrderStatus
from agtrace.models.trace import TraceEvent

logger = logging.getLogger(__name__)

SEPOLIA_CHAIN_ID = 11155111
SEPOLIA_EXPLORER_URL = "https://sepolia.etherscan.io"


def order_transition_digest(order: Order, status: OrderStatus) -> str:
    """SHA-256 over the canonical JSON of an order at a given status.

    Canonical form: sorted keys, Unicode preserved, UTF-8 encoded.
    """
    canonical = json.dumps(
        {
            "order_id": order.order_id,
            "order_type": order.order_type.value,
            "buyer_id": order.buyer_id,
            "seller_id": order.seller_id,
            "batch_id": order.batch_id,
            "quantity": str(order.quantity),
            "total_amount": str(order.total_amount),
            "status": status.value,
            "tracking_number": order.tracking_number,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return hashlib.sha256(canonical).hexdigest()


def event_digest(event: TraceEvent) -> str:
    """The event's content hash without its ``sha256:`` prefix."""
    return event.content_hash.split(":", 1)[-1]


class Web3Mirror:
    """Mirror adapter that anchors digests on an Ethereum network.

    Usage:
        mirror = Web3Mirror(rpc_url, private_key)
        result = mirror.mirror_event(event)
        print(result.external_url)
    """

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        chain_id: int = SEPOLIA_CHAIN_ID,
        explorer_url: str = SEPOLIA_EXPLORER_URL,
        gas: int = 30_000,
        gas_price_gwei: str = "2",
        receipt_timeout: int = 300,
    ) -> None:
        self._rpc_url = rpc_url
        self._private_key = private_key
        self._chain_id = chain_id
        self._explorer_url = explorer_url.rstrip("/")
        self._gas = gas
        self._gas_price_gwei = gas_price_gwei
        self._receipt_timeout = receipt_timeout

    def mirror_event(self, event: TraceEvent) -> MirrorResult:
        return self._anchor(event.event_id, event_digest(event))

    def mirror_order_transition(self, order: Order, status: OrderStatus) -> MirrorResult:
        return self._anchor(
            order_transition_id(order.order_id, status.value),
            order_transition_digest(order, status),
        )

    def _anchor(self, local_id: str, digest: str) -> MirrorResult:
        """Send the self-send transaction and wait for one confirmation."""
        from web3 import Web3, HTTPProvider
        from eth_account import Account

        try:
            w3 = Web3(HTTPProvider(self._rpc_url))
            acct = Account.from_key(self._private_key)

            nonce = w3.eth.get_transaction_count(acct.address)
            tx: dict[str, Any] = {
                "to": acct.address,  # self-send, 0 ETH
                "value": 0,
                "gas": self._gas,
                "gasPrice": w3.to_wei(self._gas_price_gwei, "gwei"),
                "nonce": nonce,
                "chainId": self._chain_id,
                "data": bytes.fromhex(digest),
            }

            signed = acct.sign_transaction(tx)
            tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
            logger.debug("Sent mirror tx %s for %s", tx_hash.hex(), local_id)

            receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._receipt_timeout)
        except Exception as exc:
            raise MirrorUnavailable(f"Could not anchor {local_id}: {exc}") from exc

        tx_hex = tx_hash.hex()
        logger.info("Mirrored %s in block %s (tx %s)", local_id, receipt.blockNumber, tx_hex)
        return MirrorResult(
            external_ref=Web3.keccak(text=local_id).hex(),
            tx_hash=tx_hex,
            external_url=f"{self._explorer_url}/tx/{tx_hex}",
        )
