"""Merge inbound browser events and captures into the tab store.

Field rules shared by every merge:

- ``windowId``, ``url``, ``title``, ``favIconUrl``, ``lastActiveAt`` and
  ``isActive`` are last-write-wins, including writes of null.
- ``description`` only changes when the incoming value is non-null.
- ``totalActiveMs`` takes the maximum of stored and incoming values.
- ``createdAt`` is set when the record is created and never afterwards.
- ``closedAt`` is never cleared; a ``removed`` event overwrites it with the
  event timestamp. See ``reopens_closed_record``.
- ``snapshot`` is replaced only by captures, ``suggestion`` never here.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import TYPE_CHECKING

from .types import CapturePayload, TabDescriptor, TabEvent, TabRecord, TabSnapshot
from .utils import start_of_local_day_ms
from .views import active_since

if TYPE_CHECKING:
    from ._store import TabStore

logger = logging.getLogger(__name__)

MERGE_EVENT_TYPES = frozenset({"created", "updated", "activated"})


def reopens_closed_record(record: TabRecord, event: TabEvent) -> bool:
    """Whether ``event`` should start a fresh record instead of merging into a
    closed one with the same id.

    Browsers may reuse a tab id before the old closed record is evicted.
    Identity is id-only, so such events merge into the closed record and
    ``closedAt`` stays set. Returning True here would replace the record.
    """
    return False


def new_record(tab: TabDescriptor) -> TabRecord:
    return TabRecord(id=tab.id, created_at=tab.created_at)


def merge_descriptor(record: TabRecord, tab: TabDescriptor) -> None:
    record.window_id = tab.window_id
    record.url = tab.url
    record.title = tab.title
    record.fav_icon_url = tab.fav_icon_url
    record.last_active_at = tab.last_active_at
    record.is_active = tab.is_active
    if tab.description is not None:
        record.description = tab.description
    record.total_active_ms = max(record.total_active_ms, tab.total_active_ms)


def apply_event(store: TabStore, event: TabEvent) -> TabRecord | None:
    """Apply one lifecycle event; returns the resulting record, or None for a
    ``removed`` event about an unknown tab."""
    if event.type == "removed":
        return _apply_removed(store, event)
    if event.type not in MERGE_EVENT_TYPES:
        raise ValueError(f"unknown event type: {event.type!r}")
    return _apply_merge(store, event)


def _apply_merge(store: TabStore, event: TabEvent) -> TabRecord:
    tab = event.tab
    with store.write_transaction() as tabs:
        existing = tabs.get(tab.id)
        if existing is None:
            working = new_record(tab)
        elif existing.is_closed and reopens_closed_record(existing, event):
            store.snapshots.delete(tab.id)
            working = new_record(tab)
        else:
            working = existing.copy()
        merge_descriptor(working, tab)
        tabs[tab.id] = working
        result = working.copy()
    logger.debug("tab %s merged from %s event", tab.id, event.type)
    return result


def _apply_removed(store: TabStore, event: TabEvent) -> TabRecord | None:
    tab_id = event.tab.id
    day_start = start_of_local_day_ms()
    with store.write_transaction() as tabs:
        existing = tabs.get(tab_id)
        if existing is None:
            return None
        working = existing.copy()
        working.closed_at = event.timestamp
        working.is_active = False
        if not active_since(working, day_start):
            # Only today's screenshots are needed for the daily report.
            store.snapshots.delete(tab_id)
            if working.snapshot is not None and working.snapshot.screenshot_path:
                working.snapshot = dataclasses.replace(working.snapshot, screenshot_path=None)
        tabs[tab_id] = working
        result = working.copy()
    logger.debug("tab %s closed at %s", tab_id, result.closed_at)
    return result


def apply_capture(store: TabStore, payload: CapturePayload) -> TabRecord:
    """Merge a full capture and replace the record's snapshot metadata.

    A screenshot that cannot be decoded or written is logged and dropped; the
    capture itself still succeeds with no screenshot path.
    """
    tab = payload.tab
    with store.snapshots.lock_for(tab.id):
        screenshot_path: str | None = None
        if payload.screenshot_base64:
            try:
                saved = store.snapshots.save_base64(tab.id, payload.screenshot_base64)
                screenshot_path = str(saved)
            except (OSError, ValueError) as exc:
                logger.warning(
                    "screenshot save failed for tab %s: %s", tab.id, exc, extra={"tab_id": tab.id}
                )
        with store.write_transaction() as tabs:
            existing = tabs.get(tab.id)
            working = existing.copy() if existing is not None else new_record(tab)
            merge_descriptor(working, tab)
            if screenshot_path is not None and not store.snapshots.exists(tab.id):
                screenshot_path = None
            working.snapshot = TabSnapshot(
                captured_at=payload.captured_at, screenshot_path=screenshot_path
            )
            tabs[tab.id] = working
            result = working.copy()
    logger.debug("tab %s captured (screenshot=%s)", tab.id, screenshot_path is not None)
    return result
