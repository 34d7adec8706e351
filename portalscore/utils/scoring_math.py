"""
Small numeric and time helpers shared by both scoring engines.
"""
import math
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP, localcontext
from typing import Optional

SECONDS_PER_DAY = 86400


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def round_half_up(value: float, digits: int = 0) -> float:
    """Round half away from zero: 72.5 -> 73. Built-in round() gives 72."""
    if not math.isfinite(value):
        return value
    exact = Decimal(str(value))
    quantum = Decimal(1).scaleb(-digits)
    with localcontext() as ctx:
        # quantize fails when the result needs more digits than the context holds
        ctx.prec = max(ctx.prec, exact.adjusted() + digits + 2)
        rounded = exact.quantize(quantum, rounding=ROUND_HALF_UP)
    return float(rounded)


def round_int(value: float) -> int:
    return int(round_half_up(value, 0))


def round2(value: float) -> float:
    return round_half_up(value, 2)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC (SQLite drops tzinfo on the way back)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def days_between(start: Optional[datetime], end: datetime) -> float:
    """Fractional days from start to end. Never negative; 0 when start is missing."""
    if start is None:
        return 0.0
    delta = (ensure_utc(end) - ensure_utc(start)).total_seconds()
    return max(0.0, delta / SECONDS_PER_DAY)


def whole_days_between(start: Optional[datetime], end: datetime) -> int:
    return int(math.floor(days_between(start, end)))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
