import threading
from typing import Dict, List, Optional

from core.domain.entities.strategy_entity import StrategyEntity


class StrategyRegistry:
    """
    In-memory working set of active strategies, keyed by id.

    Holds frozen snapshots only. All access goes through a lock, and
    iteration happens over a copied list, so CRUD handlers may add or
    remove entries while a tick is walking the registry.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._items: Dict[int, StrategyEntity] = {}

    def put(self, strategy: StrategyEntity) -> None:
        if strategy.id is None:
            raise ValueError("cannot register a strategy without an id")
        with self._lock:
            self._items[int(strategy.id)] = strategy

    def remove(self, strategy_id: int) -> Optional[StrategyEntity]:
        """Idempotent: removing an unknown id returns None."""
        with self._lock:
            return self._items.pop(int(strategy_id), None)

    def replace_if_present(self, strategy: StrategyEntity) -> bool:
        """
        Store a newer snapshot only if the id is still registered, so a
        strategy removed mid-tick is not resurrected by its in-flight pass.
        """
        with self._lock:
            key = int(strategy.id)
            if key not in self._items:
                return False
            self._items[key] = strategy
            return True

    def get(self, strategy_id: int) -> Optional[StrategyEntity]:
        with self._lock:
            return self._items.get(int(strategy_id))

    def snapshot(self) -> List[StrategyEntity]:
        with self._lock:
            return list(self._items.values())

    def ids(self) -> List[int]:
        with self._lock:
            return sorted(self._items.keys())

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, strategy_id: object) -> bool:
        with self._lock:
            return strategy_id in self._items
