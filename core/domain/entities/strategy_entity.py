from typing import Any, Dict, Optional
from pydantic import ConfigDict, Field, field_validator
from ..enums.strategy_enums import StrategyKind, StrategyStatus
from .base_entity import MongoEntity

class StrategyEntity(MongoEntity):
    """
    Immutable snapshot of a strategy document.

    The registry only ever holds instances of this class; progress changes
    produce a new snapshot via `with_changes`.
    """

    owner_address: str
    name: str = ""
    kind: StrategyKind
    pair: Optional[str] = None

    conditions: Dict[str, Any] = Field(default_factory=dict)
    trade: Dict[str, Any] = Field(default_factory=dict)

    status: StrategyStatus = StrategyStatus.ACTIVE
    auto_execute: bool = True

    is_executing: bool = False
    execution_locked_at: Optional[int] = None

    executed_intervals: int = 0
    last_executed_at: Optional[int] = None
    completed_at: Optional[int] = None
    last_error: Optional[str] = None

    # kind-specific progress (grid levels, last observed price, ...)
    state: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore", frozen=True, use_enum_values=True)

    @field_validator("owner_address")
    @classmethod
    def _lower_owner(cls, v: str) -> str:
        return (v or "").strip().lower()

    def with_changes(self, **fields: Any) -> "StrategyEntity":
        return self.model_copy(update=fields)
