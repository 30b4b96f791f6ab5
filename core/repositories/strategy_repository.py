from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from core.domain.entities.strategy_entity import StrategyEntity


class StrategyRepository(ABC):
    """
    Repository interface for user strategies.
    """

    @abstractmethod
    async def ensure_indexes(self) -> None:
        """Indexes for status/owner lookups and lock scans."""
        raise NotImplementedError

    @abstractmethod
    async def create(self, strategy: StrategyEntity) -> StrategyEntity:
        """Insert a new strategy, allocating its numeric id."""
        raise NotImplementedError

    @abstractmethod
    async def get_by_id(self, strategy_id: int) -> Optional[StrategyEntity]:
        """Return one strategy by id."""
        raise NotImplementedError

    @abstractmethod
    async def find(self, filter: Dict[str, Any], limit: int = 0) -> List[StrategyEntity]:
        """Return strategies matching a Mongo-style equality filter."""
        raise NotImplementedError

    @abstractmethod
    async def update(self, strategy_id: int, fields: Dict[str, Any]) -> Optional[StrategyEntity]:
        """Set `fields` on the strategy and return the stored document."""
        raise NotImplementedError

    @abstractmethod
    async def try_acquire_lock(self, strategy_id: int, now_ms: int, stale_before_ms: int) -> bool:
        """
        Atomically flip is_executing false -> true.

        A lock taken before `stale_before_ms` is treated as abandoned and may be taken over.
        Returns True if the caller now holds the lock.
        """
        raise NotImplementedError

    @abstractmethod
    async def renew_lock(self, strategy_id: int, locked_at_ms: int, now_ms: int) -> bool:
        """
        Move the lease of a lock taken at `locked_at_ms` forward to `now_ms`.
        Returns False if the caller no longer holds that lock.
        """
        raise NotImplementedError

    @abstractmethod
    async def release_lock(self, strategy_id: int, locked_at_ms: int) -> bool:
        """Release the lock only if it is still the one taken at `locked_at_ms`."""
        raise NotImplementedError

    @abstractmethod
    async def release_stale_locks(self, stale_before_ms: int) -> int:
        """Clear locks taken before `stale_before_ms`. Returns how many were released."""
        raise NotImplementedError
