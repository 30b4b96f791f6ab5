from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from core.domain.entities.order_entity import OrderEntity
from core.domain.enums.order_enums import OrderStatus

from .deps import get_db
from ...external.database.order_repository_mongodb import OrderRepositoryMongoDB

router = APIRouter(prefix="/orders", tags=["orders"])


def _out(order: OrderEntity) -> Dict[str, Any]:
    data = order.model_dump(mode="json")
    data["order_data"] = order.order_data.model_dump(mode="json", by_alias=True)
    return data


@router.get("")
async def list_orders(
    strategy_id: Optional[int] = None,
    status: Optional[OrderStatus] = None,
    owner: Optional[str] = Query(None, description="owner address"),
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> List[Dict[str, Any]]:
    """Newest first."""
    filter: Dict[str, Any] = {}
    if strategy_id is not None:
        filter["strategy_id"] = strategy_id
    if status:
        filter["status"] = status.value
    if owner:
        filter["owner_address"] = owner.strip().lower()
    orders = await OrderRepositoryMongoDB(db).find(filter, limit=limit)
    return [_out(o) for o in orders]


@router.get("/{order_id}")
async def get_order(order_id: int, db: AsyncIOMotorDatabase = Depends(get_db)) -> Dict[str, Any]:
    order = await OrderRepositoryMongoDB(db).get_by_id(order_id)
    if not order:
        raise HTTPException(status_code=404, detail=f"order {order_id} not found")
    return _out(order)


@router.post("/{order_id}/cancel")
async def cancel_order(order_id: int, db: AsyncIOMotorDatabase = Depends(get_db)) -> Dict[str, Any]:
    """
    Off-chain cancel: only PENDING orders that were never broadcast.
    """
    repo = OrderRepositoryMongoDB(db)
    order = await repo.get_by_id(order_id)
    if not order:
        raise HTTPException(status_code=404, detail=f"order {order_id} not found")

    modified = await repo.update(
        {"_id": order_id, "status": OrderStatus.PENDING.value, "tx_hash": None},
        {"status": OrderStatus.CANCELLED.value, "error_message": "cancelled by user"},
    )
    if not modified:
        raise HTTPException(status_code=409, detail=f"cannot cancel a {order.status} order")
    return _out(await repo.get_by_id(order_id))
