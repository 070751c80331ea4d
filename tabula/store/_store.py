from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path

from ..errors import StorageError
from . import reconcile as store_reconcile
from . import retention as store_retention
from . import views as store_views
from .documents import read_document, write_document
from .locks import ReadWriteLock
from .snapshots import SnapshotStore
from .types import (
    CapturePayload,
    DailyReport,
    Settings,
    StorageStats,
    TabEvent,
    TabRecord,
    TabSuggestion,
)
from .utils import now_ms

logger = logging.getLogger(__name__)

TABS_FILE = "tabs.json"
SETTINGS_FILE = "settings.json"
REPORT_FILE = "report.json"
SCREENSHOTS_DIR = "screenshots"

KEEP_REASON = "Marked as keep by user"

RecordMutator = Callable[[TabRecord], None]


class TabStore:
    """Authoritative mapping of tab id to ``TabRecord`` plus the settings and
    report documents, all persisted under one data directory.

    Every access to the mapping goes through one read-write lock. Mutating
    operations flush ``tabs.json`` while still holding the write lock, so
    concurrent flushes cannot overtake each other on disk.
    """

    def __init__(self, data_dir: Path | str, *, load: bool = True) -> None:
        self.data_dir = Path(data_dir).expanduser()
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.snapshots = SnapshotStore(self.data_dir / SCREENSHOTS_DIR)
        self._lock = ReadWriteLock()
        self._tabs: dict[int, TabRecord] = {}
        self._settings = Settings()
        self._report: DailyReport | None = None
        if load:
            self.load()
            self.snapshots.remove_legacy()

    @property
    def tabs_path(self) -> Path:
        return self.data_dir / TABS_FILE

    @property
    def settings_path(self) -> Path:
        return self.data_dir / SETTINGS_FILE

    @property
    def report_path(self) -> Path:
        return self.data_dir / REPORT_FILE

    # -- locking -----------------------------------------------------------

    @contextmanager
    def read_transaction(self) -> Iterator[Mapping[int, TabRecord]]:
        with self._lock.read():
            yield self._tabs

    @contextmanager
    def write_transaction(self, *, persist: bool = True) -> Iterator[dict[int, TabRecord]]:
        """Exclusive access to the live mapping; flushes it on normal exit."""
        with self._lock.write():
            yield self._tabs
            if persist:
                self._flush_tabs()

    # -- record access -----------------------------------------------------

    def get(self, tab_id: int) -> TabRecord | None:
        with self._lock.read():
            record = self._tabs.get(tab_id)
            return record.copy() if record else None

    def all(self) -> list[TabRecord]:
        with self._lock.read():
            return [record.copy() for record in self._tabs.values()]

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._tabs)

    def upsert(
        self,
        tab_id: int,
        mutator: RecordMutator,
        *,
        default: Callable[[], TabRecord] | None = None,
        persist: bool = False,
    ) -> TabRecord:
        """Fetch or create the record for ``tab_id`` and apply ``mutator`` to it.

        The mutator runs on a working copy which replaces the stored record only
        after it returns, so readers never see a half-applied change.
        """
        with self.write_transaction(persist=persist) as tabs:
            existing = tabs.get(tab_id)
            if existing is not None:
                working = existing.copy()
            elif default is not None:
                working = default()
            else:
                working = TabRecord(id=tab_id, created_at=now_ms())
            mutator(working)
            tabs[tab_id] = working
            return working.copy()

    def update(self, tab_id: int, mutator: RecordMutator, *, persist: bool = False) -> bool:
        """Like ``upsert`` but a silent no-op for unknown ids."""
        with self._lock.write():
            existing = self._tabs.get(tab_id)
            if existing is None:
                return False
            working = existing.copy()
            mutator(working)
            self._tabs[tab_id] = working
            if persist:
                self._flush_tabs()
            return True

    def remove(self, tab_id: int, *, persist: bool = False) -> bool:
        with self.write_transaction(persist=persist) as tabs:
            record = tabs.pop(tab_id, None)
            if record is None:
                return False
            self.snapshots.delete(tab_id)
            return True

    # -- reconciliation, retention, views ---------------------------------

    def apply_event(self, event: TabEvent) -> TabRecord | None:
        return store_reconcile.apply_event(self, event)

    def apply_capture(self, payload: CapturePayload) -> TabRecord:
        return store_reconcile.apply_capture(self, payload)

    def cleanup(self, max_age_days: int, *, now: int | None = None) -> int:
        return store_retention.cleanup_old_tabs(self, max_age_days, now=now)

    def reconcile_with_authority(self, open_ids: Iterable[int], *, now: int | None = None) -> int:
        return store_retention.reconcile_with_authority(self, open_ids, now=now)

    def stats(self) -> StorageStats:
        return store_retention.stats(self)

    def open_tabs(self) -> list[TabRecord]:
        return store_views.open_tabs(self)

    def today_tabs(self, *, now: int | None = None) -> list[TabRecord]:
        return store_views.today_tabs(self, now=now)

    def today_closed_tabs(self, *, now: int | None = None) -> list[TabRecord]:
        return store_views.today_closed_tabs(self, now=now)

    # -- user actions ------------------------------------------------------

    def close_tab(self, tab_id: int, *, now: int | None = None) -> bool:
        closed_at = now if now is not None else now_ms()

        def _close(record: TabRecord) -> None:
            record.closed_at = closed_at
            record.is_active = False

        return self.update(tab_id, _close, persist=True)

    def mark_keep(self, tab_id: int, *, now: int | None = None) -> bool:
        scored_at = now if now is not None else now_ms()

        def _keep(record: TabRecord) -> None:
            category = record.suggestion.category if record.suggestion else None
            record.suggestion = TabSuggestion(
                decision="keep",
                reason=KEEP_REASON,
                category=category,
                scored_at=scored_at,
            )

        return self.update(tab_id, _keep, persist=True)

    def apply_suggestions(self, suggestions: Mapping[int, TabSuggestion]) -> int:
        """Attach a whole classification result at once; unknown ids are skipped."""
        applied = 0
        with self.write_transaction() as tabs:
            for tab_id, suggestion in suggestions.items():
                record = tabs.get(tab_id)
                if record is None:
                    continue
                tabs[tab_id] = dataclasses.replace(record, suggestion=suggestion)
                applied += 1
        return applied

    def clear_suggestions(self) -> int:
        cleared = 0
        with self.write_transaction() as tabs:
            for tab_id, record in list(tabs.items()):
                if record.suggestion is None:
                    continue
                tabs[tab_id] = dataclasses.replace(record, suggestion=None)
                cleared += 1
        return cleared

    def clear_all(self) -> None:
        """Drop every record, every screenshot and the last report."""
        with self._lock.write():
            self._tabs.clear()
            self._report = None
            self.snapshots.clear()
            self._flush_tabs()
            self._flush_report()

    # -- settings and report documents -------------------------------------

    def get_settings(self) -> Settings:
        with self._lock.read():
            return dataclasses.replace(self._settings)

    def save_settings(self, settings: Settings) -> bool:
        with self._lock.write():
            self._settings = dataclasses.replace(settings)
            return self._flush_settings()

    def get_report(self) -> DailyReport | None:
        with self._lock.read():
            return self._report

    def save_report(self, report: DailyReport) -> bool:
        with self._lock.write():
            self._report = report
            return self._flush_report()

    # -- persistence ---------------------------------------------------------

    def load(self) -> None:
        tabs = self._load_tabs()
        settings = self._load_settings()
        report = self._load_report()
        with self._lock.write():
            self._tabs = tabs
            self._settings = settings
            self._report = report

    def persist(self, *, strict: bool = False) -> bool:
        with self._lock.write():
            ok = self._flush_tabs(strict=strict)
            ok = self._flush_settings(strict=strict) and ok
            return self._flush_report(strict=strict) and ok

    def _load_tabs(self) -> dict[int, TabRecord]:
        data = read_document(self.tabs_path)
        if data is None:
            return {}
        try:
            if not isinstance(data, dict):
                raise ValueError("tabs document must be an object")
            records = [TabRecord.from_dict(item) for item in data.values()]
        except (TypeError, ValueError) as exc:
            logger.warning("ignoring incompatible tabs document: %s", exc)
            return {}
        return {record.id: record for record in records}

    def _load_settings(self) -> Settings:
        data = read_document(self.settings_path)
        if data is None:
            return Settings()
        try:
            return Settings.from_dict(data)
        except (TypeError, ValueError) as exc:
            logger.warning("ignoring incompatible settings document: %s", exc)
            return Settings()

    def _load_report(self) -> DailyReport | None:
        data = read_document(self.report_path)
        if data is None:
            return None
        try:
            return DailyReport.from_dict(data)
        except (TypeError, ValueError) as exc:
            logger.warning("ignoring incompatible report document: %s", exc)
            return None

    def _flush_tabs(self, *, strict: bool = False) -> bool:
        payload = {str(tab_id): record.to_dict() for tab_id, record in self._tabs.items()}
        return self._write(self.tabs_path, payload, strict=strict)

    def _flush_settings(self, *, strict: bool = False) -> bool:
        return self._write(self.settings_path, self._settings.to_dict(), strict=strict)

    def _flush_report(self, *, strict: bool = False) -> bool:
        payload = self._report.to_dict() if self._report else None
        return self._write(self.report_path, payload, strict=strict)

    def _write(self, path: Path, payload: object, *, strict: bool) -> bool:
        try:
            write_document(path, payload)
        except (OSError, TypeError, ValueError) as exc:
            if strict:
                raise StorageError(f"failed to write {path.name}: {exc}") from exc
            logger.exception("failed to write %s", path.name, exc_info=exc)
            return False
        return True
