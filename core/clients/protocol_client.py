from abc import ABC, abstractmethod
from typing import Any, Dict

from core.domain.entities.order_entity import LimitOrderPayload


class ProtocolClient(ABC):
    """
    Signing and submission surface of the on-chain limit order protocol.
    """

    @property
    @abstractmethod
    def maker_address(self) -> str:
        """Checksum address of the signer; orders are made by this account."""
        raise NotImplementedError

    @abstractmethod
    def compute_order_hash(self, order: LimitOrderPayload) -> str:
        """EIP-712 hash the protocol recomputes when verifying the fill (0x-hex)."""
        raise NotImplementedError

    @abstractmethod
    async def sign(self, order: LimitOrderPayload) -> str:
        """Return the maker signature (0x-hex)."""
        raise NotImplementedError

    @abstractmethod
    async def estimate_fill_gas(self, order: LimitOrderPayload, signature: str) -> int:
        """
        Simulate the fill. Raises SubmissionError if the simulation reverts.
        """
        raise NotImplementedError

    @abstractmethod
    async def send_fill(self, order: LimitOrderPayload, signature: str, gas_limit: int) -> str:
        """Broadcast the fill transaction and return its hash."""
        raise NotImplementedError

    @abstractmethod
    async def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        """
        Block until mined. Returns a dict with at least
        status, block_number, gas_used and effective_gas_price.
        """
        raise NotImplementedError
