import asyncio
import contextlib
import logging
from typing import Callable, List, Optional, Set

from core.common.utils import now_ms
from core.domain.entities.strategy_entity import StrategyEntity
from core.domain.enums.strategy_enums import ExecutionOutcome, StrategyStatus
from core.domain.exceptions import StrategyValidationError
from core.repositories.strategy_repository import StrategyRepository
from core.services.strategy_registry import StrategyRegistry
from core.services.strategy_validator import validate_strategy
from core.services.token_registry import TokenRegistry
from core.usecases.process_strategy_use_case import ExecutionResult, ProcessStrategyUseCase


class _Lease:
    def __init__(self, strategy_id: int, locked_at: int):
        self.strategy_id = strategy_id
        self.locked_at = locked_at
        self.done = asyncio.Event()


class ExecutionEngine:
    """
    Periodic driver for active strategies.

    - Keeps the working set in a StrategyRegistry (CRUD handlers add/remove).
    - A timer task starts one tick every `tick_interval_sec`; ticks are not
      awaited by the timer, so a slow tick never delays the schedule.
    - Each tick fans out over a snapshot of the registry, bounded by a semaphore.
    - Each strategy pass runs under the persisted is_executing lock, which is
      released in every outcome. A pass failing never affects the others.
    """

    def __init__(
        self,
        strategy_repo: StrategyRepository,
        processor: ProcessStrategyUseCase,
        tokens: TokenRegistry,
        registry: Optional[StrategyRegistry] = None,
        tick_interval_sec: float = 30.0,
        max_concurrency: int = 8,
        lock_ttl_sec: float = 600.0,
        clock: Callable[[], int] = now_ms,
        logger: Optional[logging.Logger] = None,
    ):
        self._strategy_repo = strategy_repo
        self._processor = processor
        self._tokens = tokens
        self._registry = registry or StrategyRegistry()
        self._tick_interval = tick_interval_sec
        self._max_concurrency = max(1, int(max_concurrency))
        self._lock_ttl_ms = int(lock_ttl_sec * 1000)
        self._clock = clock
        self._logger = logger or logging.getLogger(self.__class__.__name__)

        self._running = False
        self._stop_event: Optional[asyncio.Event] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._tick_tasks: Set[asyncio.Task] = set()
        self._in_flight: Set[int] = set()

    @property
    def registry(self) -> StrategyRegistry:
        return self._registry

    @property
    def tokens(self) -> TokenRegistry:
        return self._tokens

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------ #
    # lifecycle
    # ------------------------------------------------------------------ #

    async def start(self) -> None:
        """
        Clear locks abandoned by a previous process, load ACTIVE strategies
        and start the timer. Calling start() twice is a no-op.
        """
        if self._running:
            self._logger.info("Execution engine already running")
            return

        released = await self._strategy_repo.release_stale_locks(self._clock() - self._lock_ttl_ms)
        if released:
            self._logger.warning("Released %s stale strategy lock(s) on startup", released)

        loaded = await self.reload_all()

        self._stop_event = asyncio.Event()
        self._timer_task = asyncio.create_task(self._timer_loop())
        self._running = True
        self._logger.info(
            "Execution engine started: %s active strategies, tick=%ss, concurrency=%s",
            loaded, self._tick_interval, self._max_concurrency,
        )

    async def stop(self) -> None:
        """
        Stop the timer and let in-flight ticks finish so every lock gets released.
        """
        if not self._running:
            return
        self._running = False

        if self._stop_event:
            self._stop_event.set()
        if self._timer_task:
            self._timer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._timer_task
            self._timer_task = None

        if self._tick_tasks:
            self._logger.info("Waiting for %s in-flight tick(s)", len(self._tick_tasks))
            await asyncio.gather(*list(self._tick_tasks), return_exceptions=True)

        self._registry.clear()
        self._logger.info("Execution engine stopped")

    async def _timer_loop(self) -> None:
        while not self._stop_event.is_set():
            task = asyncio.create_task(self.tick())
            self._tick_tasks.add(task)
            task.add_done_callback(self._on_tick_done)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._tick_interval)
            except asyncio.TimeoutError:
                pass

    def _on_tick_done(self, task: asyncio.Task) -> None:
        self._tick_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error("tick failed: %r", exc)

    # ------------------------------------------------------------------ #
    # ticks
    # ------------------------------------------------------------------ #

    async def tick(self) -> List[ExecutionResult]:
        strategies = self._registry.snapshot()
        if not strategies:
            return []

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _bounded(strategy: StrategyEntity) -> ExecutionResult:
            async with semaphore:
                return await self._guarded(strategy)

        results = await asyncio.gather(*(_bounded(s) for s in strategies))

        counts: dict = {}
        for result in results:
            counts[result.outcome] = counts.get(result.outcome, 0) + 1
        self._logger.debug("tick done: %s strategies, outcomes=%s", len(results), counts)
        return list(results)

    async def execute_strategy(self, strategy: StrategyEntity) -> ExecutionResult:
        """
        Run one pass for `strategy` now, outside the schedule, under the same lock.
        """
        return await self._guarded(strategy)

    async def _guarded(self, strategy: StrategyEntity) -> ExecutionResult:
        try:
            return await self._run_strategy(strategy)
        except Exception as exc:
            self._logger.exception("Strategy %s pass crashed: %s", strategy.id, exc)
            return ExecutionResult(strategy_id=strategy.id, outcome=ExecutionOutcome.ERROR, error=str(exc))

    async def _run_strategy(self, strategy: StrategyEntity) -> ExecutionResult:
        if strategy.id in self._in_flight:
            self._logger.debug("Strategy %s already has a pass in flight here; skipping", strategy.id)
            return ExecutionResult(strategy_id=strategy.id, outcome=ExecutionOutcome.SKIPPED_LOCKED)

        self._in_flight.add(strategy.id)
        try:
            return await self._run_locked(strategy)
        finally:
            self._in_flight.discard(strategy.id)

    async def _run_locked(self, strategy: StrategyEntity) -> ExecutionResult:
        now = self._clock()
        acquired = await self._strategy_repo.try_acquire_lock(
            strategy.id, now, now - self._lock_ttl_ms
        )
        if not acquired:
            self._logger.debug("Strategy %s is already executing; skipping", strategy.id)
            return ExecutionResult(strategy_id=strategy.id, outcome=ExecutionOutcome.SKIPPED_LOCKED)

        lease = _Lease(strategy.id, now)
        renewer = asyncio.create_task(self._keep_lease(lease))
        try:
            result = await self._processor.execute(strategy)
        except Exception as exc:
            self._logger.exception("Strategy %s execution error: %s", strategy.id, exc)
            try:
                await self._strategy_repo.update(strategy.id, {"last_error": str(exc)})
            except Exception as update_exc:
                self._logger.warning("Could not record last_error for strategy %s: %s", strategy.id, update_exc)
            result = ExecutionResult(strategy_id=strategy.id, outcome=ExecutionOutcome.ERROR, error=str(exc))
        finally:
            lease.done.set()
            await renewer
            try:
                released = await self._strategy_repo.release_lock(strategy.id, lease.locked_at)
                if not released:
                    self._logger.warning("Lock for strategy %s was taken over before release", strategy.id)
            except Exception as exc:
                # Left for the stale-lock TTL to clear
                self._logger.exception("Failed to release lock for strategy %s: %s", strategy.id, exc)

        self._sync_registry(result)
        return result

    async def _keep_lease(self, lease: _Lease) -> None:
        """
        Push the lock lease forward every third of the TTL until the pass ends,
        so a long pass (several receipt waits) is never seen as abandoned.
        """
        interval = self._lock_ttl_ms / 3000
        while not lease.done.is_set():
            try:
                await asyncio.wait_for(lease.done.wait(), timeout=interval)
                return
            except asyncio.TimeoutError:
                pass
            now = self._clock()
            try:
                renewed = await self._strategy_repo.renew_lock(lease.strategy_id, lease.locked_at, now)
            except Exception as exc:
                self._logger.warning("Could not renew lock for strategy %s: %s", lease.strategy_id, exc)
                continue
            if not renewed:
                self._logger.warning("Lost lock for strategy %s during its pass", lease.strategy_id)
                return
            lease.locked_at = now

    def _sync_registry(self, result: ExecutionResult) -> None:
        snapshot = result.strategy
        if snapshot is None:
            return
        if snapshot.status != StrategyStatus.ACTIVE.value:
            if self._registry.remove(snapshot.id) is not None:
                self._logger.info("Strategy %s is %s; removed from engine", snapshot.id, snapshot.status)
            return
        self._registry.replace_if_present(
            snapshot.with_changes(is_executing=False, execution_locked_at=None)
        )

    # ------------------------------------------------------------------ #
    # registry management
    # ------------------------------------------------------------------ #

    def add_strategy(self, strategy: StrategyEntity) -> bool:
        """
        Register an ACTIVE strategy. Raises StrategyValidationError if it cannot run.
        """
        if strategy.status != StrategyStatus.ACTIVE.value:
            self._logger.info("Strategy %s is %s; not adding", strategy.id, strategy.status)
            return False
        validate_strategy(strategy, self._tokens)
        self._registry.put(strategy)
        self._logger.info("Strategy %s (%s) added to engine", strategy.id, strategy.kind)
        return True

    def remove_strategy(self, strategy_id: int) -> bool:
        removed = self._registry.remove(strategy_id) is not None
        if removed:
            self._logger.info("Strategy %s removed from engine", strategy_id)
        return removed

    def update_strategy(self, strategy: StrategyEntity) -> bool:
        """
        Swap in a newer snapshot; non-ACTIVE strategies leave the engine.
        """
        if strategy.status != StrategyStatus.ACTIVE.value:
            self.remove_strategy(strategy.id)
            return False
        return self.add_strategy(strategy)

    async def reload_all(self) -> int:
        """
        Rebuild the registry from the store: ACTIVE strategies that are not
        currently locked. Invalid strategies are skipped with a log.
        """
        strategies = await self._strategy_repo.find(
            {"status": StrategyStatus.ACTIVE.value, "is_executing": False}
        )
        self._registry.clear()
        for strategy in strategies:
            try:
                validate_strategy(strategy, self._tokens)
            except StrategyValidationError as exc:
                self._logger.warning("Skipping invalid strategy %s: %s", strategy.id, exc)
                continue
            self._registry.put(strategy)
        self._logger.info("Loaded %s active strategies (%s found)", len(self._registry), len(strategies))
        return len(self._registry)

    def get_stats(self) -> dict:
        return {
            "active_count": len(self._registry),
            "running": self._running,
            "in_flight": len(self._in_flight),
            "ids": self._registry.ids(),
        }
