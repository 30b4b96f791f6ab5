from fastapi import Request
from motor.motor_asyncio import AsyncIOMotorDatabase

from core.clients.price_oracle import PriceOracle
from workers.execution_engine import ExecutionEngine


def get_db(request: Request) -> AsyncIOMotorDatabase:
    db = getattr(request.app.state, "mongo_db", None)
    if db is None:
        raise RuntimeError("MongoDB database not initialized. Check app lifespan startup.")
    return db


def get_engine(request: Request) -> ExecutionEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise RuntimeError("Execution engine not initialized. Check app lifespan startup.")
    return engine


def get_price_oracle(request: Request) -> PriceOracle:
    oracle = getattr(request.app.state, "price_oracle", None)
    if oracle is None:
        raise RuntimeError("Price oracle not initialized. Check app lifespan startup.")
    return oracle
