from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

from eth_utils import is_address, to_checksum_address
from pydantic import BaseModel, ConfigDict

from core.domain.entities.order_entity import ZERO_ADDRESS
from core.domain.entities.token_entity import TokenEntity
from core.domain.exceptions import StrategyValidationError

from .token_registry import TokenRegistry

# Accepted spellings for each trade field, first match wins
MAKER_ASSET_KEYS = ("maker_asset", "makerAsset", "token_in", "tokenIn", "from")
TAKER_ASSET_KEYS = ("taker_asset", "takerAsset", "token_out", "tokenOut", "to")
MAKING_AMOUNT_KEYS = ("making_amount", "makingAmount")
TAKING_AMOUNT_KEYS = ("taking_amount", "takingAmount")
MAKER_HUMAN_KEYS = ("maker_amount", "amount_in", "amountIn", "input")
TAKER_HUMAN_KEYS = ("taker_amount", "amount_out", "amountOut", "output")
RECEIVER_KEYS = ("receiver", "beneficiary")


class ResolvedTrade(BaseModel):
    maker_token: TokenEntity
    taker_token: TokenEntity
    making_amount: int
    # None when the strategy leaves the minimum return to the market price
    taking_amount: Optional[int] = None
    receiver: str = ZERO_ADDRESS

    model_config = ConfigDict(frozen=True)

    @property
    def pair(self) -> str:
        return f"{self.maker_token.symbol}/{self.taker_token.symbol}"


def _first(trade: Mapping[str, Any], keys: Sequence[str]) -> Optional[Any]:
    for key in keys:
        value = trade.get(key)
        if value not in (None, ""):
            return value
    return None


def _base_units(value: Any, field: str) -> int:
    try:
        amount = int(str(value))
    except ValueError as exc:
        raise StrategyValidationError(f"{field} must be an integer amount in base units") from exc
    if amount <= 0:
        raise StrategyValidationError(f"{field} must be positive")
    return amount


def resolve_trade(trade: Optional[Mapping[str, Any]], tokens: TokenRegistry) -> ResolvedTrade:
    """
    Turn a loosely shaped trade dict into token metadata and base-unit amounts.

    Base-unit amounts (making_amount / taking_amount) win over human amounts
    (maker_amount / amount_in ...), which are scaled by the token decimals.
    """
    if not trade:
        raise StrategyValidationError("trade is required")

    maker_ref = _first(trade, MAKER_ASSET_KEYS)
    taker_ref = _first(trade, TAKER_ASSET_KEYS)
    if not maker_ref or not taker_ref:
        raise StrategyValidationError("trade needs a maker asset and a taker asset")

    maker_token = tokens.resolve(str(maker_ref))
    taker_token = tokens.resolve(str(taker_ref))
    if maker_token.address == taker_token.address:
        raise StrategyValidationError("maker and taker asset must differ")

    raw_making = _first(trade, MAKING_AMOUNT_KEYS)
    if raw_making is not None:
        making_amount = _base_units(raw_making, "making_amount")
    else:
        human = _first(trade, MAKER_HUMAN_KEYS)
        if human is None:
            raise StrategyValidationError("trade needs a maker amount")
        making_amount = tokens.to_base_units(human, maker_token)

    taking_amount: Optional[int] = None
    raw_taking = _first(trade, TAKING_AMOUNT_KEYS)
    if raw_taking is not None:
        taking_amount = _base_units(raw_taking, "taking_amount")
    else:
        human = _first(trade, TAKER_HUMAN_KEYS)
        if human is not None:
            taking_amount = tokens.to_base_units(human, taker_token)

    receiver = _first(trade, RECEIVER_KEYS) or ZERO_ADDRESS
    if not is_address(str(receiver)):
        raise StrategyValidationError(f"invalid receiver address: {receiver!r}")

    return ResolvedTrade(
        maker_token=maker_token,
        taker_token=taker_token,
        making_amount=making_amount,
        taking_amount=taking_amount,
        receiver=to_checksum_address(str(receiver)),
    )


def taking_amount_at_price(
    making_amount: int,
    maker_token: TokenEntity,
    taker_token: TokenEntity,
    price: float,
    slippage: float,
) -> int:
    """
    Minimum taker amount for `making_amount` at `price` (taker per maker unit),
    reduced by `slippage`.
    """
    if maker_token.decimals < 0 or taker_token.decimals < 0:
        raise StrategyValidationError("cannot price a trade in tokens with unknown decimals")
    maker_human = TokenRegistry.from_base_units(making_amount, maker_token)
    taker_human = maker_human * Decimal(str(price)) * (Decimal(1) - Decimal(str(slippage)))
    return int(taker_human.scaleb(taker_token.decimals).to_integral_value())
