from __future__ import annotations

import logging
import threading

from .store import TabStore

logger = logging.getLogger(__name__)


class RetentionSweeper:
    """Background thread that periodically evicts old closed tabs."""

    def __init__(self, store: TabStore, *, retention_days: int, interval_s: int) -> None:
        self.store = store
        self.retention_days = retention_days
        self.interval_s = interval_s
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    def enabled(self) -> bool:
        return self.interval_s > 0

    def tick(self) -> int:
        removed = self.store.cleanup(self.retention_days)
        if removed:
            stats = self.store.stats()
            logger.info(
                "storage stats: total=%s open=%s closed=%s", stats.total, stats.open, stats.closed
            )
        return removed

    def start(self) -> None:
        if not self.enabled():
            return
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="tabula-retention", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        thread = self._thread
        self._thread = None
        if thread is not None:
            thread.join(timeout)

    def _run(self) -> None:
        while not self._stop.wait(self.interval_s):
            try:
                self.tick()
            except Exception as exc:
                logger.exception("retention sweep failed", exc_info=exc)
