from __future__ import annotations

from typing import TYPE_CHECKING

from .types import TabRecord
from .utils import start_of_local_day_ms

if TYPE_CHECKING:
    from ._store import TabStore


def active_since(record: TabRecord, day_start: int) -> bool:
    if record.created_at >= day_start:
        return True
    return record.last_active_at is not None and record.last_active_at >= day_start


def open_tabs(store: TabStore) -> list[TabRecord]:
    return [record for record in store.all() if record.closed_at is None]


def today_tabs(store: TabStore, *, now: int | None = None) -> list[TabRecord]:
    """Tabs created or last active since local midnight, open or closed."""
    day_start = start_of_local_day_ms(now)
    return [record for record in store.all() if active_since(record, day_start)]


def today_closed_tabs(store: TabStore, *, now: int | None = None) -> list[TabRecord]:
    day_start = start_of_local_day_ms(now)
    result: list[TabRecord] = []
    for record in store.all():
        if record.closed_at is None:
            continue
        if record.closed_at >= day_start or active_since(record, day_start):
            result.append(record)
    return result
