import logging
from typing import Any, Dict, Optional

from eth_utils import keccak
from web3 import Web3

from core.domain.entities.order_entity import LimitOrderPayload

from .limit_order_protocol_client import LimitOrderProtocolClient

DRY_RUN_GAS = 150_000
DRY_RUN_GAS_PRICE = 1_000_000_000


class DryRunProtocolClient(LimitOrderProtocolClient):
    """
    Signs and hashes exactly like the real client but never touches the chain.

    Fill transactions get a tx hash derived from the order and signature and a
    successful receipt derived from that hash, so runs are reproducible.
    Only enabled through CHAIN_DRY_RUN.
    """

    def __init__(self, *args, logger: Optional[logging.Logger] = None, **kwargs):
        super().__init__(*args, logger=logger, **kwargs)
        self._logger.warning("Dry-run protocol client active: fills are simulated, nothing is broadcast")
        self._sent: Dict[str, int] = {}

    async def estimate_fill_gas(self, order: LimitOrderPayload, signature: str) -> int:
        return DRY_RUN_GAS

    async def send_fill(self, order: LimitOrderPayload, signature: str, gas_limit: int) -> str:
        order_hash = self.compute_order_hash(order)
        tx_hash = Web3.to_hex(keccak(text=f"{order_hash}:{signature}"))
        self._sent[tx_hash] = int(gas_limit)
        self._logger.info("[dry-run] fillOrder %s -> tx %s", order_hash, tx_hash)
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        digest = bytes.fromhex(tx_hash[2:] if tx_hash.startswith("0x") else tx_hash)
        return {
            "status": 1,
            "block_number": 1_000_000 + int.from_bytes(digest[:3], "big"),
            "gas_used": min(DRY_RUN_GAS, self._sent.get(tx_hash, DRY_RUN_GAS)),
            "effective_gas_price": DRY_RUN_GAS_PRICE,
        }
