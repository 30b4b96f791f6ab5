import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import keccak, to_checksum_address
from hexbytes import HexBytes
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import ContractLogicError

from core.clients.protocol_client import ProtocolClient
from core.domain.entities.order_entity import LimitOrderPayload
from core.domain.exceptions import SubmissionError

ORDER_TYPE = [
    {"name": "salt", "type": "uint256"},
    {"name": "makerAsset", "type": "address"},
    {"name": "takerAsset", "type": "address"},
    {"name": "maker", "type": "address"},
    {"name": "receiver", "type": "address"},
    {"name": "allowedSender", "type": "address"},
    {"name": "makingAmount", "type": "uint256"},
    {"name": "takingAmount", "type": "uint256"},
    {"name": "makerAssetData", "type": "bytes"},
    {"name": "takerAssetData", "type": "bytes"},
    {"name": "getMakerAmount", "type": "bytes"},
    {"name": "getTakerAmount", "type": "bytes"},
    {"name": "predicate", "type": "bytes"},
    {"name": "permit", "type": "bytes"},
    {"name": "interaction", "type": "bytes"},
]

EIP712_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

_ADDRESS_FIELDS = {f["name"] for f in ORDER_TYPE if f["type"] == "address"}
_BYTES_FIELDS = {f["name"] for f in ORDER_TYPE if f["type"] == "bytes"}

FILL_ORDER_ABI = [
    {
        "name": "fillOrder",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {
                "name": "order",
                "type": "tuple",
                "components": [{"name": f["name"], "type": f["type"]} for f in ORDER_TYPE],
            },
            {"name": "signature", "type": "bytes"},
            {"name": "makingAmount", "type": "uint256"},
            {"name": "takingAmount", "type": "uint256"},
            {"name": "thresholdAmount", "type": "uint256"},
        ],
        "outputs": [
            {"name": "", "type": "uint256"},
            {"name": "", "type": "uint256"},
        ],
    },
]


def order_message(order: LimitOrderPayload) -> Dict[str, Any]:
    """camelCase order struct with EIP-712-ready values (ints, checksum addresses, bytes)."""
    data = order.to_order_data()
    message: Dict[str, Any] = {}
    for field in ORDER_TYPE:
        name = field["name"]
        value = data[name]
        if name in _ADDRESS_FIELDS:
            value = to_checksum_address(value)
        elif name in _BYTES_FIELDS:
            value = bytes(HexBytes(value or "0x"))
        else:
            value = int(value)
        message[name] = value
    return message


def order_tuple(order: LimitOrderPayload) -> Tuple[Any, ...]:
    message = order_message(order)
    return tuple(message[f["name"]] for f in ORDER_TYPE)


class LimitOrderProtocolClient(ProtocolClient):
    """
    EIP-712 signing and `fillOrder` submission against a limit order protocol
    deployment.

    The engine account is both maker (signs the order) and taker (sends the
    fill), so a filled order moves makerAsset out of and takerAsset into the
    signer's wallet, bounded by the signed amounts.
    """

    def __init__(
        self,
        rpc_url: str,
        chain_id: int,
        contract_address: str,
        private_key: str,
        domain_name: str = "1inch Limit Order Protocol",
        domain_version: str = "2",
        receipt_timeout_sec: float = 180.0,
        web3: Optional[AsyncWeb3] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._w3 = web3 or AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self._chain_id = int(chain_id)
        self._contract_address = to_checksum_address(contract_address)
        self._account = Account.from_key(private_key)
        self._domain = {
            "name": domain_name,
            "version": domain_version,
            "chainId": self._chain_id,
            "verifyingContract": self._contract_address,
        }
        self._receipt_timeout = float(receipt_timeout_sec)
        self._contract = self._w3.eth.contract(address=self._contract_address, abi=FILL_ORDER_ABI)
        # one signer account: nonce allocation and broadcast must not interleave
        self._send_lock = asyncio.Lock()
        self._logger = logger or logging.getLogger(self.__class__.__name__)

    @property
    def maker_address(self) -> str:
        return self._account.address

    @property
    def contract_address(self) -> str:
        return self._contract_address

    @property
    def chain_id(self) -> int:
        return self._chain_id

    def typed_data(self, order: LimitOrderPayload) -> Dict[str, Any]:
        return {
            "types": {"EIP712Domain": EIP712_DOMAIN_TYPE, "Order": ORDER_TYPE},
            "primaryType": "Order",
            "domain": dict(self._domain),
            "message": order_message(order),
        }

    def compute_order_hash(self, order: LimitOrderPayload) -> str:
        signable = encode_typed_data(full_message=self.typed_data(order))
        digest = keccak(b"\x19" + signable.version + signable.header + signable.body)
        return Web3.to_hex(digest)

    async def sign(self, order: LimitOrderPayload) -> str:
        signable = encode_typed_data(full_message=self.typed_data(order))
        signed = self._account.sign_message(signable)
        return Web3.to_hex(signed.signature)

    def _fill_call(self, order: LimitOrderPayload, signature: str):
        # Fill the whole order by making amount (takingAmount=0, derived on-chain).
        # thresholdAmount then caps what the taker pays: the signed taking amount.
        return self._contract.functions.fillOrder(
            order_tuple(order),
            bytes(HexBytes(signature)),
            int(order.making_amount),
            0,
            int(order.taking_amount),
        )

    async def estimate_fill_gas(self, order: LimitOrderPayload, signature: str) -> int:
        try:
            return int(await self._fill_call(order, signature).estimate_gas({"from": self.maker_address}))
        except ContractLogicError as exc:
            raise SubmissionError(f"fillOrder would revert: {exc}") from exc

    async def send_fill(self, order: LimitOrderPayload, signature: str, gas_limit: int) -> str:
        async with self._send_lock:
            nonce = await self._w3.eth.get_transaction_count(self.maker_address, "pending")
            tx = await self._fill_call(order, signature).build_transaction(
                {
                    "from": self.maker_address,
                    "nonce": nonce,
                    "gas": int(gas_limit),
                    "chainId": self._chain_id,
                }
            )
            signed = self._account.sign_transaction(tx)
            tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        return Web3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        receipt = await self._w3.eth.wait_for_transaction_receipt(
            HexBytes(tx_hash), timeout=self._receipt_timeout
        )
        return {
            "status": int(receipt["status"]),
            "block_number": int(receipt["blockNumber"]),
            "gas_used": int(receipt["gasUsed"]),
            "effective_gas_price": int(receipt.get("effectiveGasPrice", 0) or 0),
        }
