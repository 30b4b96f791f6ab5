import logging
from typing import Any, Callable, Dict, List, Optional, Set

from pydantic import BaseModel

from core.clients.price_oracle import PriceOracle
from core.common.utils import now_ms
from core.domain.entities.order_entity import OrderEntity
from core.domain.entities.strategy_entity import StrategyEntity
from core.domain.enums.order_enums import OrderStatus
from core.domain.enums.strategy_enums import ExecutionOutcome, StrategyKind, StrategyStatus
from core.domain.exceptions import PriceUnavailableError, SigningError, StrategyValidationError

from ..repositories.order_repository import OrderRepository
from ..repositories.strategy_repository import StrategyRepository
from ..services.condition_evaluator import evaluate, has_price_trigger
from ..services.order_builder_service import OrderBuilderService
from ..services.order_submitter_service import OrderSubmitterService, SubmissionResult
from ..services.strategy_validator import parse_grid_levels
from ..services.token_registry import TokenRegistry
from ..services.trade_resolver import ResolvedTrade, taking_amount_at_price


class ExecutionResult(BaseModel):
    strategy_id: Optional[int] = None
    outcome: ExecutionOutcome
    order_id: Optional[int] = None
    order_ids: List[int] = []
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    # snapshot after this pass; None when the pass did not get to run
    strategy: Optional[StrategyEntity] = None


class _Fire(BaseModel):
    """Outcome of one attempt to turn a trigger into an order."""

    outcome: ExecutionOutcome
    order: Optional[OrderEntity] = None
    submission: Optional[SubmissionResult] = None

    @property
    def advanced(self) -> bool:
        # FILLED on-chain, or handed off PENDING for an external filler
        return self.outcome in (ExecutionOutcome.ORDER_FILLED, ExecutionOutcome.ORDER_PENDING) and (
            self.submission is None or self.submission.success
        ) and self.order is not None


class ProcessStrategyUseCase:
    """
    Runs one processing pass for one strategy: evaluates its trigger for its
    kind, fires orders through the builder/submitter, and persists the
    strategy bookkeeping that follows from the result.

    The caller holds the strategy lock; this class never touches the registry.

    Kinds:
      - LIMIT_ORDER: single shot, COMPLETED after the first fill.
      - TWAP: one slice per elapsed timeframe/N window, COMPLETED after N.
      - DCA: full trade every `interval` ms, optionally capped by total_executions.
      - GRID: one order per crossed level, COMPLETED when every level filled.
    """

    def __init__(
        self,
        strategy_repo: StrategyRepository,
        order_repo: OrderRepository,
        price_oracle: PriceOracle,
        order_builder: OrderBuilderService,
        order_submitter: OrderSubmitterService,
        clock: Callable[[], int] = now_ms,
        logger: Optional[logging.Logger] = None,
    ):
        self._strategy_repo = strategy_repo
        self._order_repo = order_repo
        self._oracle = price_oracle
        self._builder = order_builder
        self._submitter = order_submitter
        self._clock = clock
        self._logger = logger or logging.getLogger(self.__class__.__name__)

    async def execute(self, strategy: StrategyEntity) -> ExecutionResult:
        try:
            if strategy.kind == StrategyKind.LIMIT_ORDER:
                return await self._process_limit_order(strategy)
            if strategy.kind == StrategyKind.TWAP:
                return await self._process_twap(strategy)
            if strategy.kind == StrategyKind.DCA:
                return await self._process_dca(strategy)
            if strategy.kind == StrategyKind.GRID:
                return await self._process_grid(strategy)

            self._logger.error("Strategy %s has unsupported kind %s; skipping", strategy.id, strategy.kind)
            return ExecutionResult(
                strategy_id=strategy.id,
                outcome=ExecutionOutcome.UNSUPPORTED,
                error=f"unsupported kind {strategy.kind}",
                strategy=strategy,
            )

        except PriceUnavailableError as exc:
            self._logger.info("Strategy %s: %s; retrying next tick", strategy.id, exc)
            return ExecutionResult(
                strategy_id=strategy.id,
                outcome=ExecutionOutcome.PRICE_UNAVAILABLE,
                error=str(exc),
                strategy=strategy,
            )
        except SigningError as exc:
            self._logger.error("Strategy %s: %s", strategy.id, exc)
            return ExecutionResult(
                strategy_id=strategy.id,
                outcome=ExecutionOutcome.ERROR,
                error=str(exc),
                strategy=strategy,
            )
        except StrategyValidationError as exc:
            # Persisted strategy no longer resolves (unknown token, bad levels...)
            self._logger.error("Strategy %s is invalid, marking FAILED: %s", strategy.id, exc)
            updated = await self._apply(
                strategy,
                {"status": StrategyStatus.FAILED.value, "last_error": str(exc)},
            )
            return ExecutionResult(
                strategy_id=strategy.id,
                outcome=ExecutionOutcome.ERROR,
                error=str(exc),
                strategy=updated,
            )

    # ------------------------------------------------------------------ #
    # kinds
    # ------------------------------------------------------------------ #

    async def _process_limit_order(self, strategy: StrategyEntity) -> ExecutionResult:
        conditions = strategy.conditions or {}
        trade = self._builder.resolve(strategy)

        price: Optional[float] = None
        if has_price_trigger(conditions) or trade.taking_amount is None:
            price = await self._price(strategy, trade)
        if not evaluate(conditions, price):
            return self._result(strategy, ExecutionOutcome.CONDITION_NOT_MET)

        fire = await self._fire(strategy, slot=0, price=price)
        updated = strategy
        if fire.advanced:
            updated = await self._apply(strategy, self._completion_fields(executed_intervals=1))
        return self._result(updated, fire.outcome, fire)

    async def _process_twap(self, strategy: StrategyEntity) -> ExecutionResult:
        conditions = strategy.conditions or {}
        n = int(conditions["intervals"])
        timeframe = float(conditions["timeframe"])
        now = self._clock()

        if strategy.executed_intervals >= n:
            updated = await self._apply(strategy, self._completion_fields())
            return self._result(updated, ExecutionOutcome.NOT_DUE)

        elapsed = max(0, now - (strategy.created_at or now))
        current = min(n, int(elapsed // (timeframe / n)))
        if current <= strategy.executed_intervals:
            return self._result(strategy, ExecutionOutcome.NOT_DUE)

        trade = self._builder.resolve(strategy)
        price: Optional[float] = None
        if has_price_trigger(conditions) or trade.taking_amount is None:
            price = await self._price(strategy, trade)
        if not evaluate(conditions, price):
            return self._result(strategy, ExecutionOutcome.CONDITION_NOT_MET)

        last_slice = current == n
        making = self._slice(trade.making_amount, n, last_slice)
        taking = self._slice(trade.taking_amount, n, last_slice) if trade.taking_amount else None

        self._logger.info(
            "TWAP strategy %s firing interval %s/%s (executed=%s)",
            strategy.id, current, n, strategy.executed_intervals,
        )
        fire = await self._fire(strategy, slot=current, price=price, making_amount=making, taking_amount=taking)

        updated = strategy
        if fire.advanced:
            fields: Dict[str, Any] = {"executed_intervals": current, "last_executed_at": now}
            if current >= n:
                fields.update(self._completion_fields())
            updated = await self._apply(strategy, fields)
        return self._result(updated, fire.outcome, fire)

    async def _process_dca(self, strategy: StrategyEntity) -> ExecutionResult:
        conditions = strategy.conditions or {}
        interval = float(conditions["interval"])
        total = conditions.get("total_executions")
        total = int(total) if total is not None else None
        now = self._clock()

        if total is not None and strategy.executed_intervals >= total:
            updated = await self._apply(strategy, self._completion_fields())
            return self._result(updated, ExecutionOutcome.NOT_DUE)

        last = strategy.last_executed_at or strategy.created_at or now
        if now - last < interval:
            return self._result(strategy, ExecutionOutcome.NOT_DUE)

        trade = self._builder.resolve(strategy)
        price: Optional[float] = None
        if has_price_trigger(conditions) or trade.taking_amount is None:
            price = await self._price(strategy, trade)
        if not evaluate(conditions, price):
            return self._result(strategy, ExecutionOutcome.CONDITION_NOT_MET)

        slot = strategy.executed_intervals + 1
        fire = await self._fire(strategy, slot=slot, price=price)

        updated = strategy
        if fire.advanced:
            fields: Dict[str, Any] = {"executed_intervals": slot, "last_executed_at": now}
            if total is not None and slot >= total:
                fields.update(self._completion_fields())
            updated = await self._apply(strategy, fields)
        return self._result(updated, fire.outcome, fire)

    async def _process_grid(self, strategy: StrategyEntity) -> ExecutionResult:
        conditions = strategy.conditions or {}
        levels = parse_grid_levels(conditions)
        trade = self._builder.resolve(strategy)
        price = await self._price(strategy, trade)

        state = dict(strategy.state or {})
        last_price = state.get("last_price")
        filled = set(int(i) for i in state.get("filled_levels", []))
        triggered = set(int(i) for i in state.get("triggered_levels", []))

        if last_price is not None:
            for level in levels:
                if level.index in filled:
                    continue
                crossed_up = last_price < level.price <= price
                crossed_down = last_price > level.price >= price
                if crossed_up or crossed_down:
                    self._logger.info(
                        "GRID strategy %s crossed level %s @ %s (%s -> %s)",
                        strategy.id, level.index, level.price, last_price, price,
                    )
                    triggered.add(level.index)

        fires: List[_Fire] = []
        default_making = trade.making_amount // len(levels)
        for index in sorted(triggered - filled):
            level = levels[index]
            making = (
                TokenRegistry.to_base_units(level.maker_amount, trade.maker_token)
                if level.maker_amount is not None
                else default_making
            )
            if level.taker_amount is not None:
                taking = TokenRegistry.to_base_units(level.taker_amount, trade.taker_token)
            else:
                taking = taking_amount_at_price(making, trade.maker_token, trade.taker_token, level.price, 0)

            fire = await self._fire(
                strategy, slot=index, price=level.price, making_amount=making, taking_amount=taking
            )
            fires.append(fire)
            if fire.advanced:
                filled.add(index)
                # saved per level so a later level raising cannot lose this fill
                strategy = await self._apply(strategy, self._grid_fields(state, last_price, triggered, filled))

        fields = self._grid_fields(state, price, triggered, filled)
        if fires and any(f.advanced for f in fires):
            fields["last_executed_at"] = self._clock()
        if len(filled) == len(levels):
            fields.update(self._completion_fields())
        updated = await self._apply(strategy, fields)

        if not fires:
            return self._result(updated, ExecutionOutcome.CONDITION_NOT_MET)

        result = self._result(updated, self._grid_outcome(fires), fires[-1])
        result.order_ids = [f.order.id for f in fires if f.order is not None]
        return result

    @staticmethod
    def _grid_fields(
        state: Dict[str, Any],
        last_price: Optional[float],
        triggered: Set[int],
        filled: Set[int],
    ) -> Dict[str, Any]:
        state = dict(state)
        state.update(
            {
                "last_price": last_price,
                "triggered_levels": sorted(triggered - filled),
                "filled_levels": sorted(filled),
            }
        )
        return {"state": state, "executed_intervals": len(filled)}

    # ------------------------------------------------------------------ #
    # helpers
    # ------------------------------------------------------------------ #

    async def _price(self, strategy: StrategyEntity, trade: ResolvedTrade) -> float:
        return await self._oracle.get_price(strategy.pair or trade.pair)

    async def _fire(
        self,
        strategy: StrategyEntity,
        slot: int,
        price: Optional[float],
        making_amount: Optional[int] = None,
        taking_amount: Optional[int] = None,
    ) -> _Fire:
        built = await self._builder.build(
            strategy,
            slot=slot,
            price=price,
            making_amount=making_amount,
            taking_amount=taking_amount,
        )
        if built is None:
            # An earlier pass broadcast or filled this slot; settle it instead of issuing another order.
            in_flight = await self._order_repo.find_one(
                {
                    "strategy_id": strategy.id,
                    "slot": slot,
                    "status": {"$in": [OrderStatus.SUBMITTED.value, OrderStatus.FILLED.value]},
                }
            )
            if in_flight is None:
                return _Fire(outcome=ExecutionOutcome.ORDER_PENDING)
            if in_flight.status == OrderStatus.FILLED:
                self._logger.info(
                    "Strategy %s slot %s was already filled by order %s; catching up bookkeeping",
                    strategy.id, slot, in_flight.id,
                )
                return _Fire(outcome=ExecutionOutcome.ORDER_FILLED, order=in_flight)
            submission = await self._submitter.reconcile(in_flight)
            return _Fire(outcome=self._outcome(submission), order=in_flight, submission=submission)

        if not strategy.auto_execute:
            self._logger.info(
                "Strategy %s has auto_execute off; order %s left PENDING for an external filler",
                strategy.id, built.order.id,
            )
            return _Fire(outcome=ExecutionOutcome.ORDER_PENDING, order=built.order)

        submission = await self._submitter.submit(built.order, built.signature)
        return _Fire(outcome=self._outcome(submission), order=built.order, submission=submission)

    @staticmethod
    def _outcome(submission: SubmissionResult) -> ExecutionOutcome:
        if submission.success:
            return ExecutionOutcome.ORDER_FILLED
        if submission.in_flight:
            return ExecutionOutcome.ORDER_PENDING
        return ExecutionOutcome.ORDER_FAILED

    @staticmethod
    def _grid_outcome(fires: List[_Fire]) -> ExecutionOutcome:
        outcomes = [f.outcome for f in fires]
        for candidate in (
            ExecutionOutcome.ORDER_FILLED,
            ExecutionOutcome.ORDER_PENDING,
            ExecutionOutcome.ORDER_FAILED,
        ):
            if candidate in outcomes:
                return candidate
        return outcomes[-1]

    @staticmethod
    def _slice(total: int, n: int, last: bool) -> int:
        part = total // n
        if last:
            return total - part * (n - 1)
        return part

    def _completion_fields(self, **extra: Any) -> Dict[str, Any]:
        return {
            "status": StrategyStatus.COMPLETED.value,
            "completed_at": self._clock(),
            **extra,
        }

    async def _apply(self, strategy: StrategyEntity, fields: Dict[str, Any]) -> StrategyEntity:
        await self._strategy_repo.update(strategy.id, fields)
        if fields.get("status") == StrategyStatus.COMPLETED.value:
            self._logger.info("Strategy %s COMPLETED", strategy.id)
        return strategy.with_changes(**fields)

    @staticmethod
    def _result(strategy: StrategyEntity, outcome: ExecutionOutcome, fire: Optional[_Fire] = None) -> ExecutionResult:
        result = ExecutionResult(strategy_id=strategy.id, outcome=outcome, strategy=strategy)
        if fire is not None:
            if fire.order is not None:
                result.order_id = fire.order.id
                result.order_ids = [fire.order.id]
            if fire.submission is not None:
                result.tx_hash = fire.submission.tx_hash
                result.error = fire.submission.error
        return result
