"""
Small shared utilities.
"""
from __future__ import annotations

import datetime
import decimal
import math
import time
from contextlib import contextmanager
from typing import Any, Generator


@contextmanager
def timer() -> Generator[dict, None, None]:
    """Context manager that records elapsed wall-clock milliseconds."""
    result: dict = {}
    start = time.perf_counter()
    try:
        yield result
    finally:
        result["elapsed_ms"] = int((time.perf_counter() - start) * 1000)


class Deadline:
    """A fixed point in time a request must finish by.

    Connectors derive their per-call timeouts from the remaining budget so a
    single caller-supplied deadline bounds every I/O step of a request.
    """

    def __init__(self, seconds: float):
        self.seconds = seconds
        self._expires_at = time.monotonic() + seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0


def serialise_value(val: Any) -> Any:
    """Convert backend-native values to JSON-serialisable Python types."""
    if val is None:
        return None
    try:
        if val != val:  # NaN / NaT
            return None
    except (TypeError, ValueError):
        pass
    if isinstance(val, decimal.Decimal):
        return None if val.is_nan() else float(val)
    if isinstance(val, (datetime.date, datetime.datetime, datetime.time)):
        return val.isoformat()
    if isinstance(val, datetime.timedelta):
        return str(val)
    if isinstance(val, float) and math.isinf(val):
        return None
    if isinstance(val, bytes):
        return val.decode("utf-8", errors="replace")
    # numpy / pandas scalars expose .item() (and pandas Timestamp .isoformat())
    if hasattr(val, "isoformat"):
        return val.isoformat()
    if hasattr(val, "item") and not isinstance(val, (list, dict, str)):
        try:
            return serialise_value(val.item())
        except (TypeError, ValueError):
            return str(val)
    if isinstance(val, dict):
        return {k: serialise_value(v) for k, v in val.items()}
    if isinstance(val, (list, tuple)):
        return [serialise_value(v) for v in val]
    return val
