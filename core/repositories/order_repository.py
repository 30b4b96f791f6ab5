from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from core.domain.entities.order_entity import OrderEntity


class DuplicateOrderHashError(Exception):
    """Raised by `create` when the order hash already exists."""


class OrderRepository(ABC):

    @abstractmethod
    async def ensure_indexes(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def create(self, order: OrderEntity) -> OrderEntity:
        """
        Insert a new order and return it with its id.
        Raises DuplicateOrderHashError on an order_hash collision.
        """
        raise NotImplementedError

    @abstractmethod
    async def update(self, filter: Dict[str, Any], fields: Dict[str, Any]) -> int:
        """
        Set `fields` on every order matching `filter`. Returns the modified count.
        """
        raise NotImplementedError

    @abstractmethod
    async def get_by_id(self, order_id: int) -> Optional[OrderEntity]:
        raise NotImplementedError

    @abstractmethod
    async def find(self, filter: Dict[str, Any], limit: int = 100) -> List[OrderEntity]:
        """
        Newest first.
        """
        raise NotImplementedError

    @abstractmethod
    async def find_one(self, filter: Dict[str, Any]) -> Optional[OrderEntity]:
        raise NotImplementedError
