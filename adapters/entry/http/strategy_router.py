import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, Field, field_validator

from core.domain.entities.strategy_entity import StrategyEntity
from core.domain.enums.order_enums import OrderStatus
from core.domain.enums.strategy_enums import ExecutionOutcome, StrategyKind, StrategyStatus
from core.domain.exceptions import StrategyNotFoundError
from core.services.strategy_validator import validate_strategy
from workers.execution_engine import ExecutionEngine

from .deps import get_db, get_engine
from ...external.database.order_repository_mongodb import OrderRepositoryMongoDB
from ...external.database.strategy_repository_mongodb import StrategyRepositoryMongoDB

router = APIRouter(prefix="/strategies", tags=["strategies"])

TERMINAL_STATUSES = {
    StrategyStatus.COMPLETED.value,
    StrategyStatus.CANCELLED.value,
    StrategyStatus.FAILED.value,
}


class StrategyCreateDTO(BaseModel):
    owner_address: str = Field(..., examples=["0x70997970c51812dc3a010c7d01b50e0d17dc79c8"])
    name: str = Field("", examples=["eth take-profit"])
    kind: StrategyKind
    pair: Optional[str] = Field(None, examples=["ETH/USDC"])
    conditions: Dict[str, Any] = Field(default_factory=dict)
    trade: Dict[str, Any]
    auto_execute: bool = True
    status: Literal["ACTIVE", "DRAFT"] = "ACTIVE"

    @field_validator("pair")
    @classmethod
    def upper_pair(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v else None


class StrategyOutDTO(BaseModel):
    id: int
    owner_address: str
    name: str
    kind: str
    pair: Optional[str] = None
    conditions: Dict[str, Any]
    trade: Dict[str, Any]
    status: str
    auto_execute: bool
    is_executing: bool
    executed_intervals: int
    last_executed_at: Optional[int] = None
    completed_at: Optional[int] = None
    last_error: Optional[str] = None
    state: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[int] = None
    created_at_iso: Optional[str] = None
    updated_at: Optional[int] = None


class ExecutionResultDTO(BaseModel):
    strategy_id: Optional[int] = None
    outcome: ExecutionOutcome
    order_id: Optional[int] = None
    order_ids: List[int] = Field(default_factory=list)
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    strategy_status: Optional[str] = None


def _out(strategy: StrategyEntity) -> StrategyOutDTO:
    return StrategyOutDTO.model_validate(strategy.model_dump())


async def _load(repo: StrategyRepositoryMongoDB, strategy_id: int) -> StrategyEntity:
    strategy = await repo.get_by_id(strategy_id)
    if not strategy:
        raise StrategyNotFoundError(f"strategy {strategy_id} not found")
    return strategy


@router.post("", response_model=StrategyOutDTO, status_code=201)
async def create_strategy(
    dto: StrategyCreateDTO,
    db: AsyncIOMotorDatabase = Depends(get_db),
    engine: ExecutionEngine = Depends(get_engine),
):
    """
    Validate and store a strategy. ACTIVE strategies join the engine immediately.
    """
    strategy = StrategyEntity(
        owner_address=dto.owner_address,
        name=dto.name,
        kind=dto.kind,
        pair=dto.pair,
        conditions=dto.conditions,
        trade=dto.trade,
        auto_execute=dto.auto_execute,
        status=dto.status,
    )
    trade = validate_strategy(strategy, engine.tokens)

    if not strategy.pair:
        strategy = strategy.with_changes(pair=trade.pair)

    repo = StrategyRepositoryMongoDB(db)
    stored = await repo.create(strategy)
    if stored.status == StrategyStatus.ACTIVE.value:
        engine.add_strategy(stored)
    return _out(stored)


@router.get("", response_model=List[StrategyOutDTO])
async def list_strategies(
    owner: Optional[str] = Query(None, description="owner address"),
    status: Optional[StrategyStatus] = None,
    kind: Optional[StrategyKind] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    filter: Dict[str, Any] = {}
    if owner:
        filter["owner_address"] = owner.strip().lower()
    if status:
        filter["status"] = status.value
    if kind:
        filter["kind"] = kind.value
    strategies = await StrategyRepositoryMongoDB(db).find(filter, limit=limit)
    return [_out(s) for s in strategies]


@router.get("/{strategy_id}", response_model=StrategyOutDTO)
async def get_strategy(strategy_id: int, db: AsyncIOMotorDatabase = Depends(get_db)):
    return _out(await _load(StrategyRepositoryMongoDB(db), strategy_id))


@router.post("/{strategy_id}/pause", response_model=StrategyOutDTO)
async def pause_strategy(
    strategy_id: int,
    db: AsyncIOMotorDatabase = Depends(get_db),
    engine: ExecutionEngine = Depends(get_engine),
):
    repo = StrategyRepositoryMongoDB(db)
    strategy = await _load(repo, strategy_id)
    if strategy.status != StrategyStatus.ACTIVE.value:
        raise HTTPException(status_code=409, detail=f"cannot pause a {strategy.status} strategy")

    updated = await repo.update(strategy_id, {"status": StrategyStatus.PAUSED.value})
    engine.remove_strategy(strategy_id)
    return _out(updated)


@router.post("/{strategy_id}/resume", response_model=StrategyOutDTO)
async def resume_strategy(
    strategy_id: int,
    db: AsyncIOMotorDatabase = Depends(get_db),
    engine: ExecutionEngine = Depends(get_engine),
):
    repo = StrategyRepositoryMongoDB(db)
    strategy = await _load(repo, strategy_id)
    if strategy.status not in (StrategyStatus.PAUSED.value, StrategyStatus.DRAFT.value):
        raise HTTPException(status_code=409, detail=f"cannot resume a {strategy.status} strategy")

    validate_strategy(strategy, engine.tokens)
    updated = await repo.update(strategy_id, {"status": StrategyStatus.ACTIVE.value})
    engine.update_strategy(updated)
    return _out(updated)


@router.post("/{strategy_id}/cancel", response_model=StrategyOutDTO)
async def cancel_strategy(
    strategy_id: int,
    db: AsyncIOMotorDatabase = Depends(get_db),
    engine: ExecutionEngine = Depends(get_engine),
):
    """
    Cancel the strategy and any of its orders that were never broadcast.
    Orders already SUBMITTED keep their on-chain lifecycle.
    """
    logger = logging.getLogger("CancelStrategy")
    repo = StrategyRepositoryMongoDB(db)
    strategy = await _load(repo, strategy_id)
    if strategy.status in TERMINAL_STATUSES:
        raise HTTPException(status_code=409, detail=f"strategy is already {strategy.status}")

    engine.remove_strategy(strategy_id)
    updated = await repo.update(strategy_id, {"status": StrategyStatus.CANCELLED.value})

    cancelled = await OrderRepositoryMongoDB(db).update(
        {
            "strategy_id": strategy_id,
            "status": OrderStatus.PENDING.value,
            "tx_hash": None,
        },
        {"status": OrderStatus.CANCELLED.value, "error_message": "strategy cancelled"},
    )
    logger.info("Strategy %s cancelled (%s pending order(s) cancelled)", strategy_id, cancelled)
    return _out(updated)


@router.post("/{strategy_id}/execute", response_model=ExecutionResultDTO)
async def execute_strategy(
    strategy_id: int,
    db: AsyncIOMotorDatabase = Depends(get_db),
    engine: ExecutionEngine = Depends(get_engine),
):
    """
    Run one processing pass now, under the same lock the scheduler uses.
    """
    strategy = await _load(StrategyRepositoryMongoDB(db), strategy_id)
    if strategy.status != StrategyStatus.ACTIVE.value:
        raise HTTPException(status_code=409, detail=f"cannot execute a {strategy.status} strategy")

    result = await engine.execute_strategy(strategy)
    return ExecutionResultDTO(
        strategy_id=result.strategy_id,
        outcome=result.outcome,
        order_id=result.order_id,
        order_ids=result.order_ids,
        tx_hash=result.tx_hash,
        error=result.error,
        strategy_status=result.strategy.status if result.strategy else None,
    )
