"""User-facing operations over the tab store.

Handlers never call the AI while holding the store lock: inputs are copied out
under a read, the model is called with the lock released, and the result is
applied in one write. A failed AI call leaves the store untouched.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence

from . import ai
from .commands_channel import CommandChannel, close_tab_command
from .store import (
    CapturePayload,
    DailyReport,
    Settings,
    StorageStats,
    TabEvent,
    TabRecord,
    TabStore,
    TabSuggestion,
)
from .store.utils import local_date_str, now_ms

logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_DAYS = 7

ClassifyFn = Callable[..., "dict[int, TabSuggestion]"]
SummarizeFn = Callable[..., str]


class TabService:
    def __init__(
        self,
        store: TabStore,
        commands: CommandChannel | None = None,
        *,
        ai_timeout_s: float = ai.DEFAULT_TIMEOUT_S,
        classify_fn: ClassifyFn | None = None,
        summarize_fn: SummarizeFn | None = None,
    ) -> None:
        self.store = store
        self.commands = commands or CommandChannel()
        self.ai_timeout_s = ai_timeout_s
        self._classify = classify_fn or ai.classify
        self._summarize = summarize_fn or ai.summarize

    # -- inbound from the extension ----------------------------------------

    def handle_event(self, event: TabEvent) -> TabRecord | None:
        record = self.store.apply_event(event)
        self._changed(f"event:{event.type}", event.tab.id)
        return record

    def handle_capture(self, payload: CapturePayload) -> TabRecord:
        record = self.store.apply_capture(payload)
        self._changed("capture", payload.tab.id)
        return record

    def sync(self, open_ids: Iterable[int], *, now: int | None = None) -> int:
        count = self.store.reconcile_with_authority(open_ids, now=now)
        if count:
            self._changed("sync", None)
        return count

    def _changed(self, source: str, tab_id: int | None) -> None:
        logger.debug("tabs changed", extra={"source": source, "tab_id": tab_id})

    # -- views ---------------------------------------------------------------

    def open_tabs(self) -> list[TabRecord]:
        return self.store.open_tabs()

    def today_tabs(self) -> list[TabRecord]:
        return self.store.today_tabs()

    def today_closed_tabs(self) -> list[TabRecord]:
        return self.store.today_closed_tabs()

    def stats(self) -> StorageStats:
        return self.store.stats()

    # -- settings and report -------------------------------------------------

    def get_settings(self) -> Settings:
        return self.store.get_settings()

    def save_settings(self, settings: Settings) -> bool:
        return self.store.save_settings(settings)

    def get_report(self) -> DailyReport | None:
        return self.store.get_report()

    def generate_report(self) -> DailyReport:
        tabs = self.store.today_tabs()
        settings = self.store.get_settings()
        content = self._summarize(tabs, settings, timeout=self.ai_timeout_s)
        report = DailyReport(date=local_date_str(), content=content, generated_at=now_ms())
        self.store.save_report(report)
        return report

    # -- classification ------------------------------------------------------

    def analyze_tabs(self) -> list[TabRecord]:
        """Classify every open tab and return the refreshed open-tab list."""
        tabs = self.store.open_tabs()
        self._run_classifier(tabs)
        return self.store.open_tabs()

    def analyze_batch(self, limit: int | None = None) -> tuple[list[TabRecord], int]:
        """Classify up to ``limit`` open tabs that have no suggestion yet."""
        settings = self.store.get_settings()
        if limit is None:
            limit = settings.resolved_batch_size()
        pending = [tab for tab in self.store.open_tabs() if tab.suggestion is None]
        batch = pending[: max(0, limit)]
        if not batch:
            return self.store.open_tabs(), 0
        self._run_classifier(batch, settings)
        return self.store.open_tabs(), len(batch)

    def _run_classifier(
        self, tabs: Sequence[TabRecord], settings: Settings | None = None
    ) -> int:
        if settings is None:
            settings = self.store.get_settings()
        suggestions = self._classify(
            tabs,
            settings,
            timeout=self.ai_timeout_s,
            screenshot_loader=self._load_screenshot,
        )
        applied = self.store.apply_suggestions(suggestions)
        if applied != len(suggestions):
            logger.info("ignored %s suggestions for unknown tabs", len(suggestions) - applied)
        return applied

    def _load_screenshot(self, tab: TabRecord) -> bytes | None:
        if tab.snapshot is None or not tab.snapshot.screenshot_path:
            return None
        return self.store.snapshots.read(tab.id)

    # -- user actions --------------------------------------------------------

    def close_tab(self, tab_id: int) -> bool:
        delivered = self.commands.publish(close_tab_command(tab_id))
        if not delivered:
            logger.info("no command listeners; tab %s closed locally only", tab_id)
        return self.store.close_tab(tab_id)

    def mark_keep(self, tab_id: int) -> bool:
        return self.store.mark_keep(tab_id)

    def clear_suggestions(self) -> int:
        return self.store.clear_suggestions()

    def clear_all_data(self) -> None:
        self.store.clear_all()
        logger.info("all tab data cleared")

    def cleanup(self, days: int | None = None) -> int:
        return self.store.cleanup(DEFAULT_CLEANUP_DAYS if days is None else days)

    def trigger_refresh(self) -> int:
        return self.commands.trigger_refresh()
