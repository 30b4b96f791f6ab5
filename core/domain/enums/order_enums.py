from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"


# Orders in these states still occupy their (strategy, slot)
UNRESOLVED_ORDER_STATUSES = (
    OrderStatus.PENDING,
    OrderStatus.SUBMITTED,
    OrderStatus.PARTIALLY_FILLED,
)

# A FILLED order also keeps its slot, so the slot is never traded twice
SLOT_OCCUPYING_STATUSES = UNRESOLVED_ORDER_STATUSES + (OrderStatus.FILLED,)
