import math
from typing import Any, Dict, List, Mapping, Optional

from eth_utils import is_address
from pydantic import BaseModel, ConfigDict

from core.domain.entities.strategy_entity import StrategyEntity
from core.domain.enums.strategy_enums import StrategyKind
from core.domain.exceptions import StrategyValidationError

from .condition_evaluator import SUPPORTED_OPERATORS, get_target_price
from .token_registry import TokenRegistry
from .trade_resolver import ResolvedTrade, resolve_trade


class GridLevel(BaseModel):
    index: int
    price: float
    maker_amount: Optional[Any] = None
    taker_amount: Optional[Any] = None

    model_config = ConfigDict(frozen=True)


def parse_grid_levels(conditions: Mapping[str, Any]) -> List[GridLevel]:
    """
    Accepts `grid_levels` (or `gridLevels`) as plain prices or dicts with a price
    and optional per-level human amounts. Levels keep their declared order.
    """
    raw = conditions.get("grid_levels")
    if raw is None:
        raw = conditions.get("gridLevels")
    if not isinstance(raw, (list, tuple)) or not raw:
        raise StrategyValidationError("grid strategies need a non-empty grid_levels list")

    levels: List[GridLevel] = []
    for idx, item in enumerate(raw):
        if isinstance(item, Mapping):
            price = item.get("price")
            maker_amount = item.get("maker_amount")
            taker_amount = item.get("taker_amount")
        else:
            price, maker_amount, taker_amount = item, None, None
        try:
            price = float(price)
        except (TypeError, ValueError) as exc:
            raise StrategyValidationError(f"grid level {idx} has an invalid price") from exc
        if not math.isfinite(price) or price <= 0:
            raise StrategyValidationError(f"grid level {idx} price must be a positive number")
        levels.append(
            GridLevel(index=idx, price=price, maker_amount=maker_amount, taker_amount=taker_amount)
        )

    prices = [lvl.price for lvl in levels]
    if len(set(prices)) != len(prices):
        raise StrategyValidationError("grid levels must have distinct prices")
    return levels


def _positive_number(conditions: Mapping[str, Any], key: str, integer: bool = False) -> float:
    value = conditions.get(key)
    try:
        number = int(value) if integer else float(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise StrategyValidationError(f"conditions.{key} is required and must be numeric") from exc
    if not math.isfinite(number) or number <= 0:
        raise StrategyValidationError(f"conditions.{key} must be positive")
    return number


def _validate_price_trigger(conditions: Dict[str, Any]) -> None:
    operator = conditions.get("operator")
    target = get_target_price(conditions)
    if operator is None and target is None:
        return
    if operator is None or target is None:
        raise StrategyValidationError("price trigger needs both operator and value")
    if str(operator).strip() not in SUPPORTED_OPERATORS:
        raise StrategyValidationError(f"unsupported operator: {operator!r}")
    try:
        if float(target) <= 0:
            raise StrategyValidationError("trigger value must be positive")
    except (TypeError, ValueError) as exc:
        raise StrategyValidationError("trigger value must be numeric") from exc


def validate_strategy(strategy: StrategyEntity, tokens: TokenRegistry) -> ResolvedTrade:
    """
    Reject strategies the engine cannot run. Returns the resolved trade.
    """
    if strategy.kind == StrategyKind.OPTIONS:
        raise StrategyValidationError("OPTIONS strategies are not supported")

    if not is_address(strategy.owner_address):
        raise StrategyValidationError(f"invalid owner address: {strategy.owner_address!r}")

    conditions = dict(strategy.conditions or {})
    _validate_price_trigger(conditions)

    if strategy.kind == StrategyKind.TWAP:
        _positive_number(conditions, "intervals", integer=True)
        _positive_number(conditions, "timeframe")
    elif strategy.kind == StrategyKind.DCA:
        _positive_number(conditions, "interval")
        if conditions.get("total_executions") is not None:
            _positive_number(conditions, "total_executions", integer=True)
    elif strategy.kind == StrategyKind.GRID:
        parse_grid_levels(conditions)

    slippage = conditions.get("max_slippage")
    if slippage is not None:
        try:
            slippage = float(slippage)
        except (TypeError, ValueError) as exc:
            raise StrategyValidationError("max_slippage must be numeric") from exc
        if not 0 <= slippage < 1:
            raise StrategyValidationError("max_slippage must be a fraction in [0, 1)")

    return resolve_trade(strategy.trade, tokens)
