import pytest

from core.domain.entities.order_entity import ZERO_ADDRESS
from core.domain.entities.strategy_entity import StrategyEntity
from core.domain.exceptions import StrategyValidationError
from core.services.strategy_validator import parse_grid_levels, validate_strategy
from core.services.trade_resolver import resolve_trade, taking_amount_at_price

from tests.helpers.fakes import OWNER, mainnet_tokens

WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"


def _strategy(kind="LIMIT_ORDER", conditions=None, trade=None, owner=OWNER) -> StrategyEntity:
    return StrategyEntity(
        owner_address=owner,
        kind=kind,
        conditions=conditions or {},
        trade=trade or {"maker_asset": "ETH", "taker_asset": "USDC", "maker_amount": "1"},
    )


def test_resolves_symbols_aliases_and_human_amounts() -> None:
    trade = resolve_trade({"tokenIn": "ETH", "tokenOut": "usdc", "amountIn": "1.5", "amountOut": "4500"}, mainnet_tokens())
    assert trade.maker_token.address == WETH
    assert trade.taker_token.address == USDC
    assert trade.making_amount == 1_500_000_000_000_000_000
    assert trade.taking_amount == 4_500_000_000
    assert trade.receiver == ZERO_ADDRESS
    assert trade.pair == "WETH/USDC"


def test_base_unit_amounts_win_over_human_amounts() -> None:
    trade = resolve_trade(
        {"makerAsset": WETH, "takerAsset": USDC, "makingAmount": "42", "maker_amount": "1"},
        mainnet_tokens(),
    )
    assert trade.making_amount == 42
    assert trade.taking_amount is None


def test_uint256_amounts_survive_exactly() -> None:
    big = str(2**200 + 1)
    trade = resolve_trade({"from": "WETH", "to": "USDC", "making_amount": big}, mainnet_tokens())
    assert trade.making_amount == 2**200 + 1


def test_unknown_symbol_is_rejected() -> None:
    with pytest.raises(StrategyValidationError):
        resolve_trade({"from": "NOPE", "to": "USDC", "maker_amount": "1"}, mainnet_tokens())


def test_same_asset_is_rejected() -> None:
    with pytest.raises(StrategyValidationError):
        resolve_trade({"from": "ETH", "to": "WETH", "maker_amount": "1"}, mainnet_tokens())


def test_taking_amount_at_price_applies_slippage() -> None:
    tokens = mainnet_tokens()
    weth, usdc = tokens.resolve("WETH"), tokens.resolve("USDC")
    assert taking_amount_at_price(10**18, weth, usdc, 3000.0, 0.01) == 2_970_000_000


def test_options_is_rejected() -> None:
    with pytest.raises(StrategyValidationError, match="OPTIONS"):
        validate_strategy(_strategy(kind="OPTIONS"), mainnet_tokens())


def test_owner_must_be_an_address() -> None:
    with pytest.raises(StrategyValidationError):
        validate_strategy(_strategy(owner="not-an-address"), mainnet_tokens())


@pytest.mark.parametrize(
    "kind,conditions",
    [
        ("TWAP", {"timeframe": 4000}),
        ("TWAP", {"intervals": 0, "timeframe": 4000}),
        ("DCA", {}),
        ("DCA", {"interval": 1000, "total_executions": -1}),
        ("GRID", {}),
        ("GRID", {"grid_levels": [3000, 3000]}),
        ("GRID", {"grid_levels": [3000, "nan"]}),
        ("DCA", {"interval": "inf"}),
        ("LIMIT_ORDER", {"operator": "!=", "value": 3000}),
        ("LIMIT_ORDER", {"operator": ">"}),
        ("LIMIT_ORDER", {"max_slippage": 1.5}),
    ],
)
def test_invalid_conditions_are_rejected(kind, conditions) -> None:
    with pytest.raises(StrategyValidationError):
        validate_strategy(_strategy(kind=kind, conditions=conditions), mainnet_tokens())


def test_valid_strategies_pass() -> None:
    tokens = mainnet_tokens()
    validate_strategy(_strategy(conditions={"operator": ">", "value": 3000}), tokens)
    validate_strategy(_strategy(kind="TWAP", conditions={"intervals": 4, "timeframe": 4000}), tokens)
    validate_strategy(_strategy(kind="DCA", conditions={"interval": 1000, "total_executions": 3}), tokens)
    validate_strategy(_strategy(kind="GRID", conditions={"gridLevels": [2900, {"price": 3100}]}), tokens)


def test_grid_levels_keep_declared_order() -> None:
    levels = parse_grid_levels({"grid_levels": [3100, {"price": "2900", "maker_amount": "0.5"}]})
    assert [(lvl.index, lvl.price) for lvl in levels] == [(0, 3100.0), (1, 2900.0)]
    assert levels[1].maker_amount == "0.5"


@pytest.mark.parametrize("amount", ["NaN", "Infinity", "-Infinity", "sNaN"])
def test_non_finite_amounts_are_rejected(amount) -> None:
    trade = {"maker_asset": "ETH", "taker_asset": "USDC", "maker_amount": amount}
    with pytest.raises(StrategyValidationError):
        validate_strategy(_strategy(trade=trade), mainnet_tokens())

    trade = {"maker_asset": "ETH", "taker_asset": "USDC", "maker_amount": "1", "taker_amount": amount}
    with pytest.raises(StrategyValidationError):
        validate_strategy(_strategy(trade=trade), mainnet_tokens())


@pytest.mark.parametrize("amount", ["NaN", "Infinity"])
def test_non_finite_base_unit_amounts_are_rejected(amount) -> None:
    with pytest.raises(StrategyValidationError):
        resolve_trade({"from": "WETH", "to": "USDC", "making_amount": amount}, mainnet_tokens())
