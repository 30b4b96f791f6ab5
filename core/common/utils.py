import time
from datetime import datetime, timezone


def now_ms() -> int:
    return int(time.time() * 1000)


def ms_to_iso(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def sanitize_for_bson(obj):
    if isinstance(obj, dict):
        return {k: sanitize_for_bson(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [sanitize_for_bson(x) for x in obj]
    if isinstance(obj, int) and not isinstance(obj, bool):
        # int64 bounds; token amounts beyond them are kept exact as strings
        MAX_I64 = 2**63 - 1
        MIN_I64 = -2**63
        if obj > MAX_I64 or obj < MIN_I64:
            return str(obj)
    return obj
