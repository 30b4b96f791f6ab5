from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from core.common.utils import ms_to_iso, now_ms, sanitize_for_bson
from core.domain.entities.strategy_entity import StrategyEntity
from core.repositories.strategy_repository import StrategyRepository

from .mongodb_client import next_sequence


def _now():
    now = now_ms()
    return now, ms_to_iso(now)


class StrategyRepositoryMongoDB(StrategyRepository):
    """
    Mongo implementation for strategies.

    The execution lock lives on the document itself (is_executing +
    execution_locked_at) so it is shared by every engine instance.
    """

    COLLECTION = "strategies"

    def __init__(self, db: AsyncIOMotorDatabase):
        self._db = db
        self._col = db[self.COLLECTION]

    async def ensure_indexes(self) -> None:
        await self._col.create_index([("status", 1), ("is_executing", 1)], name="ix_status_executing")
        await self._col.create_index([("owner_address", 1), ("created_at", -1)], name="ix_owner_created_at")
        await self._col.create_index(
            [("is_executing", 1), ("execution_locked_at", 1)],
            name="ix_lock",
        )

    async def create(self, strategy: StrategyEntity) -> StrategyEntity:
        now, now_iso = _now()
        strategy_id = await next_sequence(self._db, self.COLLECTION)

        doc = strategy.to_mongo()
        doc.update(
            {
                "_id": strategy_id,
                "is_executing": False,
                "execution_locked_at": None,
                "created_at": now,
                "created_at_iso": now_iso,
                "updated_at": now,
                "updated_at_iso": now_iso,
            }
        )
        await self._col.insert_one(sanitize_for_bson(doc))
        return StrategyEntity.from_mongo(doc)

    async def get_by_id(self, strategy_id: int) -> Optional[StrategyEntity]:
        doc = await self._col.find_one({"_id": int(strategy_id)})
        return StrategyEntity.from_mongo(doc)

    async def find(self, filter: Dict[str, Any], limit: int = 0) -> List[StrategyEntity]:
        cursor = self._col.find(filter or {}, sort=[("_id", 1)], limit=limit)
        docs = await cursor.to_list(length=None)
        return [StrategyEntity.from_mongo(d) for d in docs if d]

    async def update(self, strategy_id: int, fields: Dict[str, Any]) -> Optional[StrategyEntity]:
        now, now_iso = _now()
        doc = await self._col.find_one_and_update(
            {"_id": int(strategy_id)},
            {"$set": {**sanitize_for_bson(dict(fields)), "updated_at": now, "updated_at_iso": now_iso}},
            return_document=ReturnDocument.AFTER,
        )
        return StrategyEntity.from_mongo(doc)

    async def try_acquire_lock(self, strategy_id: int, now_ms: int, stale_before_ms: int) -> bool:
        doc = await self._col.find_one_and_update(
            {
                "_id": int(strategy_id),
                "$or": [
                    {"is_executing": {"$ne": True}},
                    {"execution_locked_at": {"$lt": int(stale_before_ms)}},
                ],
            },
            {"$set": {"is_executing": True, "execution_locked_at": int(now_ms)}},
            return_document=ReturnDocument.AFTER,
        )
        return doc is not None

    async def renew_lock(self, strategy_id: int, locked_at_ms: int, now_ms: int) -> bool:
        res = await self._col.update_one(
            {"_id": int(strategy_id), "is_executing": True, "execution_locked_at": int(locked_at_ms)},
            {"$set": {"execution_locked_at": int(now_ms)}},
        )
        return res.matched_count == 1

    async def release_lock(self, strategy_id: int, locked_at_ms: int) -> bool:
        res = await self._col.update_one(
            {"_id": int(strategy_id), "is_executing": True, "execution_locked_at": int(locked_at_ms)},
            {"$set": {"is_executing": False, "execution_locked_at": None}},
        )
        return res.matched_count == 1

    async def release_stale_locks(self, stale_before_ms: int) -> int:
        res = await self._col.update_many(
            {
                "is_executing": True,
                "$or": [
                    {"execution_locked_at": {"$lt": int(stale_before_ms)}},
                    {"execution_locked_at": None},
                ],
            },
            {"$set": {"is_executing": False, "execution_locked_at": None}},
        )
        return int(res.modified_count)
