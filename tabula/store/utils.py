from __future__ import annotations

import datetime as dt
import time

DAY_MS = 24 * 60 * 60 * 1000


def now_ms() -> int:
    return int(time.time() * 1000)


def _local_datetime(reference_ms: int | None) -> dt.datetime:
    if reference_ms is None:
        reference_ms = now_ms()
    return dt.datetime.fromtimestamp(reference_ms / 1000)


def start_of_local_day_ms(reference_ms: int | None = None) -> int:
    """Epoch millis of local midnight on the day containing ``reference_ms``."""
    midnight = dt.datetime.combine(_local_datetime(reference_ms).date(), dt.time())
    return int(midnight.timestamp() * 1000)


def local_date_str(reference_ms: int | None = None) -> str:
    return _local_datetime(reference_ms).strftime("%Y-%m-%d")
