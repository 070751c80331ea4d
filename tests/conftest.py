from __future__ import annotations

from pathlib import Path

import pytest

from tabula.store import TabStore
from tabula.store.utils import DAY_MS, start_of_local_day_ms


@pytest.fixture(autouse=True)
def _isolate_tabula_dirs(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TABULA_DATA_DIR", str(tmp_path / "tabula-data"))
    monkeypatch.setenv("TABULA_CONFIG", str(tmp_path / "config.json"))
    for name in (
        "TABULA_HOST",
        "TABULA_PORT",
        "TABULA_RETENTION_DAYS",
        "TABULA_CLEANUP_INTERVAL_S",
        "TABULA_AI_TIMEOUT_S",
        "TABULA_COMMAND_QUEUE_SIZE",
        "TABULA_LOG_LEVEL",
        "TABULA_SERVER_LOGS",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def store(tmp_path: Path) -> TabStore:
    return TabStore(tmp_path / "data")


@pytest.fixture
def today_noon() -> int:
    return start_of_local_day_ms() + DAY_MS // 2


@pytest.fixture
def yesterday_noon(today_noon: int) -> int:
    return today_noon - DAY_MS
