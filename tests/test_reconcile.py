from __future__ import annotations

import base64
import itertools

import pytest

from factories import make_event, make_tab

from tabula.store import CapturePayload, TabStore, TabSuggestion
from tabula.store import reconcile


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def test_created_event_creates_open_record(store: TabStore) -> None:
    tab = make_tab(1, created_at=100, url="https://a.test", title="A", is_active=True)
    record = store.apply_event(make_event("created", tab))

    assert record is not None
    assert record.closed_at is None
    assert record.url == "https://a.test"
    assert record.is_active is True
    assert store.get(1) == record


def test_lower_active_time_does_not_regress(store: TabStore) -> None:
    store.apply_event(make_event("created", make_tab(1, created_at=100, total_active_ms=100)))
    update = make_event("updated", make_tab(1, created_at=100, total_active_ms=80))
    record = store.apply_event(update)

    assert record is not None
    assert record.total_active_ms == 100


def test_active_time_is_max_regardless_of_order(tmp_path) -> None:
    values = [30, 250, 10, 120]
    for index, order in enumerate(itertools.permutations(values)):
        store = TabStore(tmp_path / f"perm-{index}")
        for value in order:
            store.apply_event(make_event("updated", make_tab(1, total_active_ms=value)))
        assert store.get(1).total_active_ms == 250  # type: ignore[union-attr]


def test_null_description_does_not_erase(store: TabStore) -> None:
    store.apply_event(make_event("created", make_tab(1, description="About page")))
    store.apply_event(make_event("updated", make_tab(1, description=None, title="New")))

    record = store.get(1)
    assert record is not None
    assert record.description == "About page"
    assert record.title == "New"


def test_descriptive_fields_are_last_write_wins_even_when_null(store: TabStore) -> None:
    store.apply_event(
        make_event(
            "created",
            make_tab(1, window_id=1, url="https://a.test", title="A", fav_icon_url="f"),
        )
    )
    store.apply_event(make_event("activated", make_tab(1, window_id=2)))

    record = store.get(1)
    assert record is not None
    assert record.window_id == 2
    assert record.url is None
    assert record.title is None
    assert record.fav_icon_url is None


def test_created_at_is_never_rewritten(store: TabStore) -> None:
    store.apply_event(make_event("created", make_tab(1, created_at=100)))
    store.apply_event(make_event("updated", make_tab(1, created_at=999)))
    assert store.get(1).created_at == 100  # type: ignore[union-attr]


def test_lifecycle_events_keep_snapshot_and_suggestion(store: TabStore) -> None:
    store.apply_capture(CapturePayload(tab=make_tab(1), captured_at=50, screenshot_base64=None))
    store.apply_suggestions({1: TabSuggestion(decision="keep", reason="r", scored_at=1)})
    before = store.get(1)
    store.apply_event(make_event("updated", make_tab(1, title="T")))
    after = store.get(1)

    assert before is not None and after is not None
    assert after.snapshot == before.snapshot
    assert after.suggestion == before.suggestion


def test_removed_for_unknown_tab_is_noop(store: TabStore) -> None:
    assert store.apply_event(make_event("removed", make_tab(9), timestamp=5)) is None
    assert store.all() == []


def test_removed_tab_from_yesterday_loses_blob_but_stays_queryable(
    store: TabStore, yesterday_noon: int, today_noon: int
) -> None:
    tab = make_tab(1, created_at=yesterday_noon, last_active_at=yesterday_noon + 1_000)
    store.apply_capture(
        CapturePayload(tab=tab, captured_at=yesterday_noon, screenshot_base64=_b64(b"img"))
    )
    assert store.snapshots.exists(1)

    closed_at = yesterday_noon + 2_000
    record = store.apply_event(make_event("removed", tab, timestamp=closed_at))

    assert record is not None
    assert record.closed_at == closed_at
    assert record.is_active is False
    assert store.snapshots.exists(1) is False
    assert record.snapshot is not None
    assert record.snapshot.screenshot_path is None
    assert record.snapshot.captured_at == yesterday_noon
    assert store.get(1) is not None
    assert store.today_closed_tabs(now=today_noon) == []


def test_removed_tab_from_today_keeps_blob(store: TabStore, today_noon: int) -> None:
    tab = make_tab(1, created_at=today_noon)
    store.apply_capture(
        CapturePayload(tab=tab, captured_at=today_noon, screenshot_base64=_b64(b"img"))
    )

    record = store.apply_event(make_event("removed", tab, timestamp=today_noon + 10))

    assert record is not None
    assert store.snapshots.exists(1) is True
    assert record.snapshot is not None and record.snapshot.screenshot_path


def test_closed_record_is_not_reopened_by_later_events(store: TabStore, today_noon: int) -> None:
    tab = make_tab(1, created_at=today_noon)
    store.apply_event(make_event("created", tab))
    store.apply_event(make_event("removed", tab, timestamp=today_noon + 5))

    store.apply_event(make_event("created", make_tab(1, created_at=today_noon + 60, title="reuse")))
    store.apply_capture(CapturePayload(tab=make_tab(1, title="again"), captured_at=today_noon + 70))

    record = store.get(1)
    assert record is not None
    assert record.closed_at == today_noon + 5
    assert record.title == "again"
    assert record.created_at == today_noon


def test_repeated_removed_takes_latest_event_time(store: TabStore, today_noon: int) -> None:
    tab = make_tab(1, created_at=today_noon)
    store.apply_event(make_event("created", tab))
    store.apply_event(make_event("removed", tab, timestamp=today_noon + 5))
    store.apply_event(make_event("removed", tab, timestamp=today_noon + 50))
    assert store.get(1).closed_at == today_noon + 50  # type: ignore[union-attr]


def test_late_removed_replaces_sync_close_time(store: TabStore, today_noon: int) -> None:
    tab = make_tab(1, created_at=today_noon)
    store.apply_event(make_event("created", tab))
    store.apply_suggestions({1: TabSuggestion(decision="keep", reason="r", scored_at=1)})
    store.reconcile_with_authority([], now=today_noon + 60_000)
    assert store.get(1).closed_at == today_noon + 60_000  # type: ignore[union-attr]

    record = store.apply_event(make_event("removed", tab, timestamp=today_noon + 5_000))

    assert record is not None
    assert record.closed_at == today_noon + 5_000
    assert record.suggestion is not None


def test_capture_replaces_snapshot_with_latest_blob(store: TabStore) -> None:
    store.apply_capture(
        CapturePayload(tab=make_tab(2), captured_at=10, screenshot_base64=_b64(b"one"))
    )
    record = store.apply_capture(
        CapturePayload(tab=make_tab(2), captured_at=20, screenshot_base64=_b64(b"two"))
    )

    assert record.snapshot is not None
    assert record.snapshot.captured_at == 20
    assert record.snapshot.screenshot_path == str(store.snapshots.path_for(2))
    assert store.snapshots.read(2) == b"two"
    assert store.snapshots.ids() == {2}


def test_capture_with_bad_screenshot_still_records_attempt(store: TabStore) -> None:
    record = store.apply_capture(
        CapturePayload(
            tab=make_tab(3, title="T", total_active_ms=40),
            captured_at=33,
            screenshot_base64="%%%not-base64%%%",
        )
    )

    assert record.title == "T"
    assert record.total_active_ms == 40
    assert record.snapshot is not None
    assert record.snapshot.captured_at == 33
    assert record.snapshot.screenshot_path is None
    assert store.snapshots.exists(3) is False


def test_capture_merges_like_lifecycle_events(store: TabStore) -> None:
    store.apply_event(
        make_event("created", make_tab(4, created_at=5, total_active_ms=500, description="d"))
    )
    record = store.apply_capture(
        CapturePayload(
            tab=make_tab(4, created_at=6, total_active_ms=100, fav_icon_url="icon"),
            captured_at=7,
        )
    )

    assert record.created_at == 5
    assert record.total_active_ms == 500
    assert record.description == "d"
    assert record.fav_icon_url == "icon"


def test_reopen_policy_defaults_to_merge(store: TabStore) -> None:
    tab = make_tab(1)
    store.apply_event(make_event("created", tab))
    store.close_tab(1, now=10)
    closed = store.get(1)
    assert closed is not None
    assert reconcile.reopens_closed_record(closed, make_event("created", tab)) is False


def test_capture_racing_removal_does_not_record_missing_blob(
    store: TabStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    store.apply_event(make_event("created", make_tab(5)))
    real_save = store.snapshots.save

    def _save_then_remove(tab_id: int, data: bytes):
        path = real_save(tab_id, data)
        store.remove(tab_id)
        return path

    monkeypatch.setattr(store.snapshots, "save", _save_then_remove)

    record = store.apply_capture(
        CapturePayload(tab=make_tab(5), captured_at=12, screenshot_base64=_b64(b"img"))
    )

    assert record.snapshot is not None
    assert record.snapshot.captured_at == 12
    assert record.snapshot.screenshot_path is None
    assert store.snapshots.exists(5) is False
    assert store.get(5) == record
