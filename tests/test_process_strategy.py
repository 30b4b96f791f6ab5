import pytest

from core.domain.enums.order_enums import OrderStatus
from core.domain.enums.strategy_enums import ExecutionOutcome, StrategyStatus

from tests.helpers.fakes import MAKER, Stack

LIMIT_TRADE = {"maker_asset": "WETH", "taker_asset": "USDC", "maker_amount": "1", "taker_amount": "3000"}
TAKE_PROFIT = {"operator": ">", "value": 3000}


# ---------------------------------------------------------------- LIMIT


@pytest.mark.asyncio
async def test_limit_order_fills_and_completes_when_triggered() -> None:
    stack = Stack(prices={"WETH/USDC": 3100.0})
    strategy = await stack.create("LIMIT_ORDER", TAKE_PROFIT, LIMIT_TRADE)

    result = await stack.run(strategy.id)

    assert result.outcome == ExecutionOutcome.ORDER_FILLED
    orders = stack.order_repo.all()
    assert len(orders) == 1
    order = orders[0]
    assert order.status == OrderStatus.FILLED.value
    assert order.maker_address == MAKER
    assert order.amount_in == 10**18
    assert order.amount_out == 3_000_000_000
    assert order.tx_hash == result.tx_hash
    assert order.block_number == 123
    assert order.gas_used == 90_000
    assert order.execution_price == pytest.approx(3000.0)
    assert order.signature is not None

    stored = await stack.strategy(strategy.id)
    assert stored.status == StrategyStatus.COMPLETED.value
    assert stored.completed_at == stack.clock()
    assert result.strategy.status == StrategyStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_limit_order_below_target_does_nothing() -> None:
    stack = Stack(prices={"WETH/USDC": 2900.0})
    strategy = await stack.create("LIMIT_ORDER", TAKE_PROFIT, LIMIT_TRADE)

    result = await stack.run(strategy.id)

    assert result.outcome == ExecutionOutcome.CONDITION_NOT_MET
    assert stack.order_repo.all() == []
    assert (await stack.strategy(strategy.id)).status == StrategyStatus.ACTIVE.value


@pytest.mark.asyncio
async def test_pair_defaults_to_resolved_symbols() -> None:
    stack = Stack(prices={"WETH/USDC": 3100.0})
    strategy = await stack.create("LIMIT_ORDER", TAKE_PROFIT, {**LIMIT_TRADE, "maker_asset": "ETH"})

    await stack.run(strategy.id)

    assert stack.oracle.calls == ["WETH/USDC"]


@pytest.mark.asyncio
async def test_taker_amount_derived_from_price_with_slippage() -> None:
    stack = Stack(prices={"ETH/USDC": 3000.0})
    strategy = await stack.create(
        "LIMIT_ORDER",
        {"max_slippage": 0.01},
        {"maker_asset": "WETH", "taker_asset": "USDC", "maker_amount": "1"},
        pair="ETH/USDC",
    )

    result = await stack.run(strategy.id)

    assert result.outcome == ExecutionOutcome.ORDER_FILLED
    assert stack.order_repo.all()[0].amount_out == 2_970_000_000


@pytest.mark.asyncio
async def test_price_unavailable_is_an_outcome() -> None:
    stack = Stack(prices={})
    strategy = await stack.create("LIMIT_ORDER", TAKE_PROFIT, LIMIT_TRADE)

    result = await stack.run(strategy.id)

    assert result.outcome == ExecutionOutcome.PRICE_UNAVAILABLE
    assert stack.order_repo.all() == []


@pytest.mark.asyncio
async def test_gas_estimation_revert_fails_the_order_not_the_strategy() -> None:
    stack = Stack(prices={"WETH/USDC": 3100.0})
    stack.protocol.revert_estimate = True
    strategy = await stack.create("LIMIT_ORDER", TAKE_PROFIT, LIMIT_TRADE)

    result = await stack.run(strategy.id)

    assert result.outcome == ExecutionOutcome.ORDER_FAILED
    order = stack.order_repo.all()[0]
    assert order.status == OrderStatus.FAILED.value
    assert "gas estimation failed" in order.error_message
    assert order.tx_hash is None
    assert stack.protocol.sent == []
    stored = await stack.strategy(strategy.id)
    assert stored.status == StrategyStatus.ACTIVE.value
    assert stored.executed_intervals == 0


@pytest.mark.asyncio
async def test_reverted_receipt_marks_order_failed() -> None:
    stack = Stack(prices={"WETH/USDC": 3100.0})
    stack.protocol.receipt_status = 0
    strategy = await stack.create("LIMIT_ORDER", TAKE_PROFIT, LIMIT_TRADE)

    result = await stack.run(strategy.id)

    assert result.outcome == ExecutionOutcome.ORDER_FAILED
    order = stack.order_repo.all()[0]
    assert order.status == OrderStatus.FAILED.value
    assert order.tx_hash == stack.protocol.sent[0]
    assert (await stack.strategy(strategy.id)).status == StrategyStatus.ACTIVE.value


@pytest.mark.asyncio
async def test_receipt_timeout_keeps_order_submitted_and_reconciles_later() -> None:
    stack = Stack(prices={"WETH/USDC": 3100.0})
    stack.protocol.receipt_error = TimeoutError("receipt not mined in time")
    strategy = await stack.create("LIMIT_ORDER", TAKE_PROFIT, LIMIT_TRADE)

    first = await stack.run(strategy.id)
    assert first.outcome == ExecutionOutcome.ORDER_PENDING
    assert stack.order_repo.all()[0].status == OrderStatus.SUBMITTED.value
    assert (await stack.strategy(strategy.id)).status == StrategyStatus.ACTIVE.value

    stack.protocol.receipt_error = None
    second = await stack.run(strategy.id)

    assert second.outcome == ExecutionOutcome.ORDER_FILLED
    orders = stack.order_repo.all()
    assert len(orders) == 1
    assert orders[0].status == OrderStatus.FILLED.value
    assert len(stack.protocol.sent) == 1
    assert (await stack.strategy(strategy.id)).status == StrategyStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_signing_failure_leaves_resumable_pending_order() -> None:
    stack = Stack(prices={"WETH/USDC": 3100.0})
    stack.protocol.fail_sign = True
    strategy = await stack.create("LIMIT_ORDER", TAKE_PROFIT, LIMIT_TRADE)

    first = await stack.run(strategy.id)
    assert first.outcome == ExecutionOutcome.ERROR
    pending = stack.order_repo.all()
    assert len(pending) == 1
    assert pending[0].status == OrderStatus.PENDING.value
    assert pending[0].signature is None

    stack.protocol.fail_sign = False
    second = await stack.run(strategy.id)

    assert second.outcome == ExecutionOutcome.ORDER_FILLED
    assert second.order_id == pending[0].id
    assert len(stack.order_repo.all()) == 1


@pytest.mark.asyncio
async def test_auto_execute_off_leaves_signed_order_pending() -> None:
    stack = Stack(prices={"WETH/USDC": 3100.0})
    strategy = await stack.create("LIMIT_ORDER", TAKE_PROFIT, LIMIT_TRADE, auto_execute=False)

    result = await stack.run(strategy.id)

    assert result.outcome == ExecutionOutcome.ORDER_PENDING
    order = stack.order_repo.all()[0]
    assert order.status == OrderStatus.PENDING.value
    assert order.signature is not None
    assert stack.protocol.sent == []
    assert (await stack.strategy(strategy.id)).status == StrategyStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_options_strategy_is_unsupported() -> None:
    stack = Stack(prices={"WETH/USDC": 3100.0})
    strategy = await stack.create("OPTIONS", {}, LIMIT_TRADE)

    result = await stack.run(strategy.id)

    assert result.outcome == ExecutionOutcome.UNSUPPORTED
    assert stack.order_repo.all() == []


@pytest.mark.asyncio
async def test_unresolvable_strategy_is_marked_failed() -> None:
    stack = Stack(prices={"WETH/USDC": 3100.0})
    strategy = await stack.create("LIMIT_ORDER", {}, {"maker_asset": "NOPE", "taker_asset": "USDC", "maker_amount": "1"})

    result = await stack.run(strategy.id)

    assert result.outcome == ExecutionOutcome.ERROR
    stored = await stack.strategy(strategy.id)
    assert stored.status == StrategyStatus.FAILED.value
    assert "unknown token" in stored.last_error


@pytest.mark.asyncio
async def test_fill_with_failed_bookkeeping_is_not_filled_again() -> None:
    stack = Stack(prices={"WETH/USDC": 3100.0})
    strategy = await stack.create("LIMIT_ORDER", TAKE_PROFIT, LIMIT_TRADE)

    stack.strategy_repo.failing_updates = 1
    with pytest.raises(RuntimeError):
        await stack.run(strategy.id)
    assert [o.status for o in stack.order_repo.all()] == [OrderStatus.FILLED.value]
    assert (await stack.strategy(strategy.id)).status == StrategyStatus.ACTIVE.value

    result = await stack.run(strategy.id)

    assert result.outcome == ExecutionOutcome.ORDER_FILLED
    assert result.order_id == stack.order_repo.all()[0].id
    assert len(stack.order_repo.all()) == 1
    assert len(stack.protocol.sent) == 1
    assert (await stack.strategy(strategy.id)).status == StrategyStatus.COMPLETED.value


# ---------------------------------------------------------------- TWAP


@pytest.mark.asyncio
async def test_twap_fires_once_per_window_and_completes() -> None:
    stack = Stack()
    strategy = await stack.create("TWAP", {"intervals": 4, "timeframe": 4000}, LIMIT_TRADE)

    stack.clock.advance(500)
    assert (await stack.run(strategy.id)).outcome == ExecutionOutcome.NOT_DUE

    stack.clock.advance(500)  # 1000 ms: first window
    assert (await stack.run(strategy.id)).outcome == ExecutionOutcome.ORDER_FILLED
    assert (await stack.strategy(strategy.id)).executed_intervals == 1

    stack.clock.advance(400)  # still first window
    assert (await stack.run(strategy.id)).outcome == ExecutionOutcome.NOT_DUE
    assert len(stack.order_repo.all()) == 1

    stack.clock.advance(700)  # 2100 ms
    assert (await stack.run(strategy.id)).outcome == ExecutionOutcome.ORDER_FILLED
    assert (await stack.strategy(strategy.id)).executed_intervals == 2

    stack.clock.advance(10_000)  # long past the timeframe
    assert (await stack.run(strategy.id)).outcome == ExecutionOutcome.ORDER_FILLED

    stored = await stack.strategy(strategy.id)
    assert stored.executed_intervals == 4
    assert stored.status == StrategyStatus.COMPLETED.value

    orders = stack.order_repo.all()
    assert [o.slot for o in orders] == [1, 2, 4]
    assert orders[0].amount_in == 250_000_000_000_000_000
    assert orders[0].amount_out == 750_000_000


@pytest.mark.asyncio
async def test_twap_last_slice_takes_the_remainder() -> None:
    stack = Stack()
    trade = {"maker_asset": "WETH", "taker_asset": "USDC", "making_amount": "10", "taking_amount": "30"}
    strategy = await stack.create("TWAP", {"intervals": 3, "timeframe": 3000}, trade)

    stack.clock.advance(1000)
    await stack.run(strategy.id)
    stack.clock.advance(2000)
    await stack.run(strategy.id)

    assert [o.amount_in for o in stack.order_repo.all()] == [3, 4]
    assert [o.amount_out for o in stack.order_repo.all()] == [10, 10]


@pytest.mark.asyncio
async def test_twap_failed_slice_is_retried_without_advancing() -> None:
    stack = Stack()
    stack.protocol.revert_estimate = True
    strategy = await stack.create("TWAP", {"intervals": 2, "timeframe": 2000}, LIMIT_TRADE)

    stack.clock.advance(1000)
    assert (await stack.run(strategy.id)).outcome == ExecutionOutcome.ORDER_FAILED
    assert (await stack.strategy(strategy.id)).executed_intervals == 0

    stack.protocol.revert_estimate = False
    assert (await stack.run(strategy.id)).outcome == ExecutionOutcome.ORDER_FILLED
    assert (await stack.strategy(strategy.id)).executed_intervals == 1


# ---------------------------------------------------------------- DCA


@pytest.mark.asyncio
async def test_dca_fires_every_interval_until_total() -> None:
    stack = Stack()
    strategy = await stack.create("DCA", {"interval": 1000, "total_executions": 2}, LIMIT_TRADE)

    stack.clock.advance(500)
    assert (await stack.run(strategy.id)).outcome == ExecutionOutcome.NOT_DUE

    stack.clock.advance(500)
    assert (await stack.run(strategy.id)).outcome == ExecutionOutcome.ORDER_FILLED
    stored = await stack.strategy(strategy.id)
    assert stored.executed_intervals == 1
    assert stored.last_executed_at == stack.clock()

    stack.clock.advance(999)
    assert (await stack.run(strategy.id)).outcome == ExecutionOutcome.NOT_DUE

    stack.clock.advance(1)
    assert (await stack.run(strategy.id)).outcome == ExecutionOutcome.ORDER_FILLED

    stored = await stack.strategy(strategy.id)
    assert stored.executed_intervals == 2
    assert stored.status == StrategyStatus.COMPLETED.value
    assert [o.slot for o in stack.order_repo.all()] == [1, 2]
    assert all(o.amount_in == 10**18 for o in stack.order_repo.all())


@pytest.mark.asyncio
async def test_dca_respects_optional_price_trigger() -> None:
    stack = Stack(prices={"WETH/USDC": 3500.0})
    strategy = await stack.create("DCA", {"interval": 1000, "operator": "<", "value": 3000}, LIMIT_TRADE)

    stack.clock.advance(1000)
    assert (await stack.run(strategy.id)).outcome == ExecutionOutcome.CONDITION_NOT_MET

    stack.oracle.prices["WETH/USDC"] = 2900.0
    assert (await stack.run(strategy.id)).outcome == ExecutionOutcome.ORDER_FILLED


# ---------------------------------------------------------------- GRID


@pytest.mark.asyncio
async def test_grid_fills_each_crossed_level_once() -> None:
    stack = Stack(prices={"WETH/USDC": 3000.0})
    strategy = await stack.create(
        "GRID",
        {"grid_levels": [2900, 3100]},
        {"maker_asset": "WETH", "taker_asset": "USDC", "maker_amount": "2"},
    )

    first = await stack.run(strategy.id)
    assert first.outcome == ExecutionOutcome.CONDITION_NOT_MET
    assert (await stack.strategy(strategy.id)).state["last_price"] == 3000.0

    stack.oracle.prices["WETH/USDC"] = 3150.0
    second = await stack.run(strategy.id)
    assert second.outcome == ExecutionOutcome.ORDER_FILLED
    orders = stack.order_repo.all()
    assert len(orders) == 1
    assert orders[0].slot == 1
    assert orders[0].amount_in == 10**18
    assert orders[0].amount_out == 3_100_000_000

    # back up through 3100 after it filled: nothing new
    stack.oracle.prices["WETH/USDC"] = 3050.0
    assert (await stack.run(strategy.id)).outcome == ExecutionOutcome.CONDITION_NOT_MET
    stack.oracle.prices["WETH/USDC"] = 3150.0
    assert (await stack.run(strategy.id)).outcome == ExecutionOutcome.CONDITION_NOT_MET

    stack.oracle.prices["WETH/USDC"] = 2850.0
    last = await stack.run(strategy.id)
    assert last.outcome == ExecutionOutcome.ORDER_FILLED

    stored = await stack.strategy(strategy.id)
    assert stored.status == StrategyStatus.COMPLETED.value
    assert stored.executed_intervals == 2
    assert stored.state["filled_levels"] == [0, 1]
    assert [o.slot for o in stack.order_repo.all()] == [1, 0]


@pytest.mark.asyncio
async def test_grid_retries_triggered_level_after_failure() -> None:
    stack = Stack(prices={"WETH/USDC": 3000.0})
    strategy = await stack.create(
        "GRID",
        {"grid_levels": [{"price": 3100, "maker_amount": "0.5", "taker_amount": "1600"}]},
        LIMIT_TRADE,
    )
    await stack.run(strategy.id)

    stack.protocol.revert_estimate = True
    stack.oracle.prices["WETH/USDC"] = 3200.0
    assert (await stack.run(strategy.id)).outcome == ExecutionOutcome.ORDER_FAILED
    assert (await stack.strategy(strategy.id)).state["triggered_levels"] == [0]

    stack.protocol.revert_estimate = False
    result = await stack.run(strategy.id)
    assert result.outcome == ExecutionOutcome.ORDER_FILLED

    orders = stack.order_repo.all()
    assert [o.status for o in orders] == [OrderStatus.FAILED.value, OrderStatus.FILLED.value]
    assert orders[1].amount_in == 5 * 10**17
    assert orders[1].amount_out == 1_600_000_000
    assert (await stack.strategy(strategy.id)).status == StrategyStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_grid_keeps_earlier_fills_when_a_later_level_fails() -> None:
    stack = Stack(prices={"WETH/USDC": 3000.0})
    strategy = await stack.create(
        "GRID",
        {"grid_levels": [2900, 2800]},
        {"maker_asset": "WETH", "taker_asset": "USDC", "maker_amount": "2"},
    )
    await stack.run(strategy.id)

    # both levels cross in one tick; signing the second one fails
    stack.oracle.prices["WETH/USDC"] = 2700.0
    stack.protocol.fail_sign_from = 2
    first = await stack.run(strategy.id)
    assert first.outcome == ExecutionOutcome.ERROR

    state = (await stack.strategy(strategy.id)).state
    assert state["filled_levels"] == [0]
    assert state["triggered_levels"] == [1]

    stack.protocol.fail_sign_from = None
    second = await stack.run(strategy.id)
    assert second.outcome == ExecutionOutcome.ORDER_FILLED

    orders = stack.order_repo.all()
    assert [(o.slot, o.status) for o in orders] == [
        (0, OrderStatus.FILLED.value),
        (1, OrderStatus.FILLED.value),
    ]
    assert len(stack.protocol.sent) == 2

    stored = await stack.strategy(strategy.id)
    assert stored.state["filled_levels"] == [0, 1]
    assert stored.status == StrategyStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_grid_level_filled_before_lost_state_is_not_refilled() -> None:
    stack = Stack(prices={"WETH/USDC": 3000.0})
    strategy = await stack.create(
        "GRID",
        {"grid_levels": [2900, 3100]},
        {"maker_asset": "WETH", "taker_asset": "USDC", "maker_amount": "2"},
    )
    await stack.run(strategy.id)

    # the fill lands but its state save does not
    stack.oracle.prices["WETH/USDC"] = 2850.0
    stack.strategy_repo.failing_updates = 1
    with pytest.raises(RuntimeError):
        await stack.run(strategy.id)
    assert (await stack.strategy(strategy.id)).state.get("filled_levels", []) == []

    result = await stack.run(strategy.id)

    assert result.outcome == ExecutionOutcome.ORDER_FILLED
    assert [(o.slot, o.status) for o in stack.order_repo.all()] == [(0, OrderStatus.FILLED.value)]
    assert len(stack.protocol.sent) == 1
    assert (await stack.strategy(strategy.id)).state["filled_levels"] == [0]
