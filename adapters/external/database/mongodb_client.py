"""
MongoDB client factory for api-strategies.

Provides a shared, properly configured AsyncIOMotorClient and the numeric
id sequences used by strategies and orders.
"""

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ReturnDocument

from config.settings import settings

COUNTERS_COLLECTION = "counters"


def get_mongo_client() -> AsyncIOMotorClient:
    """
    Create a configured AsyncIOMotorClient.

    Centralizes timeouts, pool size and options so all callers share the same behavior.
    """
    client = AsyncIOMotorClient(
        settings.MONGODB_URI,
        uuidRepresentation="standard",
        maxPoolSize=settings.MONGODB_MAX_POOL_SIZE,
        serverSelectionTimeoutMS=settings.MONGODB_SERVER_SELECTION_TIMEOUT_MS,
        connectTimeoutMS=settings.MONGODB_CONNECT_TIMEOUT_MS,
        socketTimeoutMS=settings.MONGODB_SOCKET_TIMEOUT_MS,
    )
    return client


async def next_sequence(db: AsyncIOMotorDatabase, name: str) -> int:
    """
    Atomically allocate the next integer id for `name` (1, 2, 3, ...).
    """
    doc = await db[COUNTERS_COLLECTION].find_one_and_update(
        {"_id": name},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return int(doc["seq"])
