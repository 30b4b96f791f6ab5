import logging
from typing import Any, Mapping, Optional

logger = logging.getLogger("ConditionEvaluator")

# relative tolerance for equality triggers (0.1%)
EQUALITY_TOLERANCE = 0.001

SUPPORTED_OPERATORS = (">", "<", ">=", "<=", "=", "==")

_TARGET_KEYS = ("value", "target_price", "targetPrice")


def get_target_price(conditions: Optional[Mapping[str, Any]]) -> Optional[Any]:
    if not conditions:
        return None
    for key in _TARGET_KEYS:
        if conditions.get(key) is not None:
            return conditions[key]
    return None


def has_price_trigger(conditions: Optional[Mapping[str, Any]]) -> bool:
    """True if the conditions carry an operator/target pair to check against a price."""
    if not conditions:
        return False
    return bool(conditions.get("operator")) and get_target_price(conditions) is not None


def evaluate(conditions: Optional[Mapping[str, Any]], current_price: Optional[float]) -> bool:
    """
    Decide whether a price trigger fires for `current_price`.

    Absent or empty conditions, or conditions without a price trigger, always fire.
    An unknown operator or an unparseable target never fires.
    """
    if not has_price_trigger(conditions):
        return True

    operator = str(conditions["operator"]).strip()
    try:
        target = float(get_target_price(conditions))
        current = float(current_price)
    except (TypeError, ValueError):
        logger.warning(
            "Unparseable price trigger target=%r current=%r",
            get_target_price(conditions),
            current_price,
        )
        return False

    if operator == ">":
        return current > target
    if operator == "<":
        return current < target
    if operator == ">=":
        return current >= target
    if operator == "<=":
        return current <= target
    if operator in ("=", "=="):
        return abs(current - target) < target * EQUALITY_TOLERANCE

    logger.warning("Unsupported condition operator %r; not triggering", operator)
    return False
