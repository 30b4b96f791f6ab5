from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from core.common.utils import ms_to_iso, now_ms, sanitize_for_bson
from core.domain.entities.order_entity import OrderEntity
from core.repositories.order_repository import DuplicateOrderHashError, OrderRepository

from .mongodb_client import next_sequence


class OrderRepositoryMongoDB(OrderRepository):
    """
    Mongo implementation for limit orders (PENDING -> SUBMITTED -> FILLED/FAILED).
    """

    COLLECTION = "orders"

    def __init__(self, db: AsyncIOMotorDatabase):
        self._db = db
        self._col = db[self.COLLECTION]

    async def ensure_indexes(self) -> None:
        await self._col.create_index([("order_hash", 1)], unique=True, name="ux_order_hash")
        await self._col.create_index(
            [("strategy_id", 1), ("slot", 1), ("status", 1)],
            name="ix_strategy_slot_status",
        )
        await self._col.create_index(
            [("status", 1), ("created_at", -1)],
            name="ix_status_created_at",
        )
        await self._col.create_index(
            [("owner_address", 1), ("created_at", -1)],
            name="ix_owner_created_at",
        )

    async def create(self, order: OrderEntity) -> OrderEntity:
        now = now_ms()
        now_iso = ms_to_iso(now)

        order_id = await next_sequence(self._db, self.COLLECTION)
        doc = order.to_mongo()
        doc.update(
            {
                "_id": order_id,
                "created_at": now,
                "created_at_iso": now_iso,
                "updated_at": now,
                "updated_at_iso": now_iso,
            }
        )
        try:
            await self._col.insert_one(sanitize_for_bson(doc))
        except DuplicateKeyError as exc:
            raise DuplicateOrderHashError(f"order hash {order.order_hash} already exists") from exc
        return OrderEntity.from_mongo(doc)

    async def update(self, filter: Dict[str, Any], fields: Dict[str, Any]) -> int:
        now = now_ms()
        res = await self._col.update_many(
            filter,
            {"$set": {**sanitize_for_bson(dict(fields)), "updated_at": now, "updated_at_iso": ms_to_iso(now)}},
        )
        return int(res.modified_count)

    async def get_by_id(self, order_id: int) -> Optional[OrderEntity]:
        doc = await self._col.find_one({"_id": int(order_id)})
        return OrderEntity.from_mongo(doc)

    async def find(self, filter: Dict[str, Any], limit: int = 100) -> List[OrderEntity]:
        cursor = self._col.find(filter or {}, sort=[("created_at", -1), ("_id", -1)], limit=limit)
        docs = await cursor.to_list(length=limit or None)
        return [OrderEntity.from_mongo(d) for d in docs if d]

    async def find_one(self, filter: Dict[str, Any]) -> Optional[OrderEntity]:
        doc = await self._col.find_one(filter, sort=[("created_at", -1), ("_id", -1)])
        return OrderEntity.from_mongo(doc)
