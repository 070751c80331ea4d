from __future__ import annotations

from ._store import TabStore
from .snapshots import SnapshotStore
from .types import (
    CapturePayload,
    DailyReport,
    Settings,
    StorageStats,
    SyncPayload,
    TabDescriptor,
    TabEvent,
    TabRecord,
    TabSnapshot,
    TabSuggestion,
)

__all__ = [
    "CapturePayload",
    "DailyReport",
    "Settings",
    "SnapshotStore",
    "StorageStats",
    "SyncPayload",
    "TabDescriptor",
    "TabEvent",
    "TabRecord",
    "TabSnapshot",
    "TabStore",
    "TabSuggestion",
]
