from __future__ import annotations

from typing import Any

import pytest

from factories import make_event, make_tab

from tabula.commands_channel import CommandChannel
from tabula.errors import AIRequestError, CommandChannelError
from tabula.service import TabService
from tabula.store import CapturePayload, Settings, TabStore, TabSuggestion


class RecordingClassifier:
    def __init__(self, extra_ids: tuple[int, ...] = ()) -> None:
        self.calls: list[dict[str, Any]] = []
        self.extra_ids = extra_ids

    def __call__(self, tabs, settings, **kwargs: Any) -> dict[int, TabSuggestion]:
        self.calls.append({"ids": [tab.id for tab in tabs], "settings": settings, **kwargs})
        ids = [tab.id for tab in tabs] + list(self.extra_ids)
        return {
            tab_id: TabSuggestion(decision="close", reason="idle", category="news", scored_at=5)
            for tab_id in ids
        }


def _failing_ai(*args: Any, **kwargs: Any) -> Any:
    raise AIRequestError("Request failed: boom")


def _seed(store: TabStore, count: int) -> None:
    for tab_id in range(1, count + 1):
        store.apply_event(make_event("created", make_tab(tab_id, title=f"Tab {tab_id}")))


def test_analyze_batch_limits_to_unscored_tabs(store: TabStore) -> None:
    _seed(store, 5)
    store.apply_suggestions({1: TabSuggestion(decision="keep", reason="mine", scored_at=1)})
    classifier = RecordingClassifier()
    service = TabService(store, ai_timeout_s=9, classify_fn=classifier)

    tabs, analyzed = service.analyze_batch(2)

    assert analyzed == 2
    assert classifier.calls[0]["ids"] == [2, 3]
    assert classifier.calls[0]["timeout"] == 9
    assert callable(classifier.calls[0]["screenshot_loader"])
    assert len(tabs) == 5
    assert store.get(1).suggestion.decision == "keep"  # type: ignore[union-attr]
    assert store.get(4).suggestion is None  # type: ignore[union-attr]


def test_analyze_batch_defaults_to_configured_size(store: TabStore) -> None:
    _seed(store, 4)
    store.save_settings(Settings(api_key="k", analyze_batch_size=3))
    classifier = RecordingClassifier()

    _, analyzed = TabService(store, classify_fn=classifier).analyze_batch()

    assert analyzed == 3


def test_analyze_batch_without_pending_tabs_skips_ai(store: TabStore) -> None:
    _seed(store, 1)
    store.apply_suggestions({1: TabSuggestion(decision="keep", reason="r", scored_at=1)})

    tabs, analyzed = TabService(store, classify_fn=_failing_ai).analyze_batch(10)

    assert analyzed == 0
    assert [tab.id for tab in tabs] == [1]


def test_analyze_tabs_ignores_unknown_ids(store: TabStore) -> None:
    _seed(store, 2)
    service = TabService(store, classify_fn=RecordingClassifier(extra_ids=(99,)))

    tabs = service.analyze_tabs()

    assert sorted(tab.id for tab in tabs) == [1, 2]
    assert all(tab.suggestion is not None for tab in tabs)
    assert store.get(99) is None


def test_failed_classification_leaves_store_untouched(store: TabStore) -> None:
    _seed(store, 2)
    before = store.all()

    with pytest.raises(AIRequestError):
        TabService(store, classify_fn=_failing_ai).analyze_tabs()

    assert store.all() == before


def test_screenshot_loader_reads_blob(store: TabStore) -> None:
    _seed(store, 1)
    seen: dict[int, bytes | None] = {}

    def _classify(tabs, settings, *, screenshot_loader, **kwargs):
        for tab in tabs:
            seen[tab.id] = screenshot_loader(tab)
        return {}

    store.apply_capture(CapturePayload(tab=make_tab(1), captured_at=3, screenshot_base64="aW1n"))
    TabService(store, classify_fn=_classify).analyze_tabs()

    assert seen == {1: b"img"}


def test_generate_report_saves_latest(store: TabStore, today_noon: int) -> None:
    store.apply_event(make_event("created", make_tab(1, created_at=today_noon)))
    captured: dict[str, Any] = {}

    def _summarize(tabs, settings, **kwargs):
        captured["ids"] = [tab.id for tab in tabs]
        return "# Today"

    report = TabService(store, summarize_fn=_summarize).generate_report()

    assert captured["ids"] == [1]
    assert report.content == "# Today"
    assert store.get_report() == report


def test_failed_report_keeps_previous(store: TabStore) -> None:
    service = TabService(store, summarize_fn=lambda *a, **k: "first")
    first = service.generate_report()

    with pytest.raises(AIRequestError):
        TabService(store, summarize_fn=_failing_ai).generate_report()

    assert store.get_report() == first


def test_close_tab_publishes_command_and_closes(store: TabStore) -> None:
    _seed(store, 1)
    channel = CommandChannel()
    listener = channel.subscribe()
    service = TabService(store, channel)

    assert service.close_tab(1) is True
    assert listener.get(timeout=0) == "close_tab:1"
    assert store.get(1).closed_at is not None  # type: ignore[union-attr]


def test_close_tab_without_listeners_still_closes(store: TabStore) -> None:
    _seed(store, 1)
    assert TabService(store).close_tab(1) is True
    assert TabService(store).close_tab(42) is False


def test_trigger_refresh_reports_missing_listeners(store: TabStore) -> None:
    service = TabService(store)
    with pytest.raises(CommandChannelError):
        service.trigger_refresh()
    service.commands.subscribe()
    assert service.trigger_refresh() == 1


def test_sync_and_event_handlers(store: TabStore) -> None:
    service = TabService(store)
    service.handle_event(make_event("created", make_tab(1)))
    service.handle_event(make_event("created", make_tab(2)))

    assert service.sync([2]) == 1
    assert [tab.id for tab in service.open_tabs()] == [2]
