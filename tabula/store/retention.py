from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from .types import StorageStats
from .utils import DAY_MS, now_ms

if TYPE_CHECKING:
    from ._store import TabStore

logger = logging.getLogger(__name__)


def cleanup_old_tabs(store: TabStore, max_age_days: int, *, now: int | None = None) -> int:
    """Evict closed tabs whose ``closedAt`` is older than ``max_age_days``.

    Open tabs are never evicted no matter how old. Returns the number removed.
    """
    current = now if now is not None else now_ms()
    cutoff = current - max_age_days * DAY_MS
    removed = 0
    with store.write_transaction() as tabs:
        for tab_id, record in list(tabs.items()):
            if record.closed_at is None or record.closed_at >= cutoff:
                continue
            del tabs[tab_id]
            store.snapshots.delete(tab_id)
            removed += 1
    if removed:
        logger.info("cleanup removed %s closed tabs older than %s days", removed, max_age_days)
    return removed


def reconcile_with_authority(
    store: TabStore, open_ids: Iterable[int], *, now: int | None = None
) -> int:
    """Correct drift against the browser's list of currently open tab ids.

    Open records missing from ``open_ids`` are either deleted outright (when
    they carry no snapshot and no suggestion) or marked closed. Returns the
    number of records touched.
    """
    authority = set(open_ids)
    closed_at = now if now is not None else now_ms()
    deleted = 0
    closed = 0
    with store.write_transaction() as tabs:
        for tab_id, record in list(tabs.items()):
            if record.closed_at is not None or tab_id in authority:
                continue
            if record.snapshot is None and record.suggestion is None:
                del tabs[tab_id]
                store.snapshots.delete(tab_id)
                deleted += 1
                continue
            working = record.copy()
            working.closed_at = closed_at
            working.is_active = False
            tabs[tab_id] = working
            closed += 1
    if deleted or closed:
        logger.info(
            "sync with %s open ids: deleted %s, closed %s", len(authority), deleted, closed
        )
    return deleted + closed


def stats(store: TabStore) -> StorageStats:
    with store.read_transaction() as tabs:
        total = len(tabs)
        open_count = sum(1 for record in tabs.values() if record.closed_at is None)
    return StorageStats(total=total, open=open_count, closed=total - open_count)
