from __future__ import annotations

import datetime as dt
from collections.abc import Callable

import typer
from rich import print
from rich.markup import escape

from ..errors import AIRequestError, ConfigurationError
from ..service import TabService
from ..store import Settings, TabRecord, TabStore

StoreFactory = Callable[[str | None], TabStore]


def _format_ms(value: int | None) -> str:
    if value is None:
        return "-"
    return dt.datetime.fromtimestamp(value / 1000).strftime("%Y-%m-%d %H:%M")


def _print_tab(record: TabRecord) -> None:
    title = escape(record.title or "Untitled")
    state = "closed" if record.is_closed else ("active" if record.is_active else "open")
    print(f"[bold]{record.id}[/bold] {title} [dim]({state})[/dim]")
    if record.url:
        print(f"  {escape(record.url)}")
    print(
        f"  created {_format_ms(record.created_at)}, last active "
        f"{_format_ms(record.last_active_at)}, active {record.total_active_ms // 1000}s"
    )
    if record.suggestion:
        category = record.suggestion.category or "uncategorized"
        print(
            f"  [cyan]{record.suggestion.decision}[/cyan] [{escape(category)}] "
            f"{escape(record.suggestion.reason)}"
        )


def stats_cmd(*, store_from_path: StoreFactory, data_dir: str | None) -> None:
    store = store_from_path(data_dir)
    stats = store.stats()
    print("[bold]Tabs[/bold]")
    print(f"- Data dir: {store.data_dir}")
    print(f"- Total: {stats.total}")
    print(f"- Open: {stats.open}")
    print(f"- Closed: {stats.closed}")
    print(f"- Screenshots: {len(store.snapshots.ids())}")


def tabs_cmd(
    *, store_from_path: StoreFactory, data_dir: str | None, closed: bool, today: bool
) -> None:
    store = store_from_path(data_dir)
    if closed:
        records = store.today_closed_tabs()
    elif today:
        records = store.today_tabs()
    else:
        records = store.open_tabs()
    if not records:
        print("No tabs")
        return
    for record in sorted(records, key=lambda item: item.last_active_at or item.created_at):
        _print_tab(record)


def cleanup_cmd(*, store_from_path: StoreFactory, data_dir: str | None, days: int) -> None:
    store = store_from_path(data_dir)
    removed = store.cleanup(days)
    print(f"Removed {removed} closed tabs older than {days} days")


def sync_cmd(*, store_from_path: StoreFactory, data_dir: str | None, ids: list[int]) -> None:
    store = store_from_path(data_dir)
    affected = store.reconcile_with_authority(ids)
    print(f"Reconciled against {len(set(ids))} open tabs: {affected} records affected")


def clear_suggestions_cmd(*, store_from_path: StoreFactory, data_dir: str | None) -> None:
    store = store_from_path(data_dir)
    print(f"Cleared {store.clear_suggestions()} suggestions")


def clear_data_cmd(*, store_from_path: StoreFactory, data_dir: str | None, yes: bool) -> None:
    store = store_from_path(data_dir)
    if not yes and not typer.confirm(f"Delete all tabs and screenshots in {store.data_dir}?"):
        raise typer.Exit(code=1)
    store.clear_all()
    print("All tab data cleared")


def _run_ai(action: Callable[[], object]) -> None:
    try:
        action()
    except ConfigurationError as exc:
        print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=2) from exc
    except AIRequestError as exc:
        print(f"[red]AI request failed: {escape(str(exc))}[/red]")
        raise typer.Exit(code=1) from exc


def analyze_cmd(
    *,
    store_from_path: StoreFactory,
    data_dir: str | None,
    batch: int | None,
    ai_timeout_s: int,
) -> None:
    service = TabService(store_from_path(data_dir), ai_timeout_s=ai_timeout_s)

    def _analyze() -> None:
        if batch is None:
            tabs = service.analyze_tabs()
            print(f"Analyzed {len(tabs)} open tabs")
        else:
            tabs, analyzed = service.analyze_batch(batch)
            print(f"Analyzed {analyzed} of {len(tabs)} open tabs")
        for record in tabs:
            _print_tab(record)

    _run_ai(_analyze)


def report_cmd(
    *, store_from_path: StoreFactory, data_dir: str | None, generate: bool, ai_timeout_s: int
) -> None:
    service = TabService(store_from_path(data_dir), ai_timeout_s=ai_timeout_s)
    if generate:
        _run_ai(service.generate_report)
    report = service.get_report()
    if report is None:
        print("No report yet; run with --generate")
        return
    generated = _format_ms(report.generated_at)
    print(f"[bold]Daily report {report.date}[/bold] [dim](generated {generated})[/dim]")
    print(escape(report.content))


def settings_show_cmd(*, store_from_path: StoreFactory, data_dir: str | None) -> None:
    settings = store_from_path(data_dir).get_settings()
    data = settings.to_dict()
    if data.get("openaiApiKey"):
        data["openaiApiKey"] = "***"
    for key, value in data.items():
        print(f"{key}: {escape(str(value)) if value is not None else '-'}")


def settings_set_cmd(
    *,
    store_from_path: StoreFactory,
    data_dir: str | None,
    api_key: str | None,
    base_url: str | None,
    model: str | None,
    user_context: str | None,
    batch_size: int | None,
) -> None:
    store = store_from_path(data_dir)
    current = store.get_settings()
    updated = Settings(
        api_key=api_key if api_key is not None else current.api_key,
        base_url=base_url if base_url is not None else current.base_url,
        model=model if model is not None else current.model,
        user_context=user_context if user_context is not None else current.user_context,
        analyze_batch_size=batch_size if batch_size is not None else current.analyze_batch_size,
    )
    if not store.save_settings(updated):
        print("[red]Failed to write settings[/red]")
        raise typer.Exit(code=1)
    print("Settings saved")
