from enum import Enum


class StrategyKind(str, Enum):
    LIMIT_ORDER = "LIMIT_ORDER"
    TWAP = "TWAP"
    DCA = "DCA"
    GRID = "GRID"
    OPTIONS = "OPTIONS"


class StrategyStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class ExecutionOutcome(str, Enum):
    """
    Result of one processing pass over a strategy.
    Only ORDER_FAILED and ERROR represent failures; the rest are normal outcomes.
    """

    SKIPPED_LOCKED = "SKIPPED_LOCKED"
    NOT_DUE = "NOT_DUE"
    CONDITION_NOT_MET = "CONDITION_NOT_MET"
    PRICE_UNAVAILABLE = "PRICE_UNAVAILABLE"
    ORDER_PENDING = "ORDER_PENDING"
    ORDER_FILLED = "ORDER_FILLED"
    ORDER_FAILED = "ORDER_FAILED"
    UNSUPPORTED = "UNSUPPORTED"
    ERROR = "ERROR"
