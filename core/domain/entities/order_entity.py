from typing import Annotated, Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel
from ..enums.order_enums import OrderStatus
from .base_entity import MongoEntity

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# uint256 values do not fit BSON int64; they travel as decimal strings
Uint256 = Annotated[int, PlainSerializer(lambda v: str(v), return_type=str, when_used="always")]


class LimitOrderPayload(BaseModel):
    """
    Order struct of the limit order protocol (v2 layout).
    Dumped with `by_alias=True` it matches the on-chain field names.
    """

    salt: Uint256
    maker_asset: str
    taker_asset: str
    maker: str
    receiver: str = ZERO_ADDRESS
    allowed_sender: str = ZERO_ADDRESS
    making_amount: Uint256
    taking_amount: Uint256
    maker_asset_data: str = "0x"
    taker_asset_data: str = "0x"
    get_maker_amount: str = "0x"
    get_taker_amount: str = "0x"
    predicate: str = "0x"
    permit: str = "0x"
    interaction: str = "0x"

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    def to_order_data(self) -> Dict[str, Any]:
        return self.model_dump(mode="python", by_alias=True)


class OrderEntity(MongoEntity):
    """
    Canonical in-memory representation of an order document
    saved in the 'orders' collection.
    """

    strategy_id: Optional[int] = None
    slot: int = 0
    order_hash: str
    order_data: LimitOrderPayload
    signature: Optional[str] = None

    maker_address: str
    owner_address: Optional[str] = None

    token_in: str
    token_in_symbol: str
    token_out: str
    token_out_symbol: str
    amount_in: Uint256
    amount_out: Uint256

    price_at_creation: float
    status: OrderStatus = OrderStatus.PENDING
    trigger_conditions: Optional[Dict[str, Any]] = None

    execution_price: Optional[float] = None
    gas_used: Optional[int] = None
    gas_price: Optional[Uint256] = None
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    executed_at: Optional[int] = None
    expires_at: Optional[int] = None
    error_message: Optional[str] = None

    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    def to_mongo(self) -> dict[str, Any]:
        data = super().to_mongo()
        data["order_data"] = self.order_data.to_order_data()
        return data
