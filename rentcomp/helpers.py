import hmac
import math
import re
import time
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import HTTPException


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(float(ts), tz=timezone.utc).isoformat()


def is_valid_email(email: Optional[str]) -> bool:
    if not email:
        return False
    email = email.strip()
    # simple but effective email check
    return re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email) is not None


def ct_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


# ----------------------------
# Request body parsing
# ----------------------------
def require_str(payload: dict, key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise HTTPException(400, detail=f"{key} is required")
    return value.strip()


def require_int(payload: dict, key: str, *, minimum: int | None = None) -> int:
    value = payload.get(key)
    # bool is an int subclass; "true" is not an id
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise HTTPException(400, detail=f"{key} must be an integer")
    if isinstance(value, float) and not value.is_integer():
        raise HTTPException(400, detail=f"{key} must be an integer")
    value = int(value)
    if minimum is not None and value < minimum:
        raise HTTPException(400, detail=f"{key} must be at least {minimum}")
    return value


def parse_timestamp(value: Any, key: str) -> float:
    """ISO-8601 datetime -> epoch seconds. Naive values are taken as UTC."""
    if not isinstance(value, str):
        raise HTTPException(400, detail=f"Invalid {key}")
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(raw)
    except ValueError:
        raise HTTPException(400, detail=f"Invalid {key}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def parse_day_range(start: Any, end: Any) -> tuple[float, float]:
    """YYYY-MM-DD pair -> [start 00:00, day after end 00:00) in UTC."""
    try:
        d0 = date.fromisoformat(start)
    except (TypeError, ValueError):
        raise HTTPException(400, detail="Invalid start date format")
    try:
        d1 = date.fromisoformat(end)
    except (TypeError, ValueError):
        raise HTTPException(400, detail="Invalid end date format")
    if d1 < d0:
        raise HTTPException(400, detail="end_date must not be before start_date")
    t0 = datetime(d0.year, d0.month, d0.day, tzinfo=timezone.utc)
    t1 = datetime(d1.year, d1.month, d1.day, tzinfo=timezone.utc)
    return t0.timestamp(), (t1 + timedelta(days=1)).timestamp()


def billable_hours(start_ts: float, end_ts: float) -> int:
    # partial hours are not billed
    return int(math.floor((end_ts - start_ts) / 3600.0))
