from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from core.clients.price_oracle import PriceOracle
from core.domain.exceptions import PriceUnavailableError
from workers.execution_engine import ExecutionEngine

from .deps import get_engine, get_price_oracle

router = APIRouter(tags=["engine"])


@router.get("/engine/stats")
async def engine_stats(engine: ExecutionEngine = Depends(get_engine)) -> Dict[str, Any]:
    return engine.get_stats()


@router.post("/engine/reload")
async def engine_reload(engine: ExecutionEngine = Depends(get_engine)) -> Dict[str, Any]:
    """Rebuild the registry from the store."""
    loaded = await engine.reload_all()
    return {"loaded": loaded, **engine.get_stats()}


@router.get("/prices/{base}/{quote}")
async def get_price(
    base: str,
    quote: str,
    oracle: PriceOracle = Depends(get_price_oracle),
) -> Dict[str, Any]:
    pair = f"{base.upper()}/{quote.upper()}"
    try:
        price = await oracle.get_price(pair)
    except PriceUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return {"pair": pair, "price": price}
