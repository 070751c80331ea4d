from __future__ import annotations

import typer
from rich import print

from . import __version__
from .commands.server_cmds import serve_cmd
from .commands.tab_cmds import (
    analyze_cmd,
    cleanup_cmd,
    clear_data_cmd,
    clear_suggestions_cmd,
    report_cmd,
    settings_set_cmd,
    settings_show_cmd,
    stats_cmd,
    sync_cmd,
    tabs_cmd,
)
from .config import get_config_path, load_config
from .store import TabStore

app = typer.Typer(help="tabula: local tab lifecycle tracker for your browser")
settings_app = typer.Typer(help="Show or edit AI settings")
app.add_typer(settings_app, name="settings")

DATA_DIR_HELP = "Data directory (defaults to config data_dir)"


def _store(data_dir: str | None) -> TabStore:
    return TabStore(data_dir or load_config().data_path)


@app.command()
def version() -> None:
    """Print the installed version."""

    print(__version__)


@app.command("config-path")
def config_path() -> None:
    """Print the config file path in use."""

    print(str(get_config_path()))


@app.command()
def serve(
    host: str = typer.Option(None, help="Bind host"),
    port: int = typer.Option(None, help="Bind port"),
    data_dir: str = typer.Option(None, help=DATA_DIR_HELP),
) -> None:
    """Run the HTTP server the browser extension talks to."""

    serve_cmd(config=load_config(), host=host, port=port, data_dir=data_dir)


@app.command()
def stats(data_dir: str = typer.Option(None, help=DATA_DIR_HELP)) -> None:
    """Show tab counts."""

    stats_cmd(store_from_path=_store, data_dir=data_dir)


@app.command()
def tabs(
    closed: bool = typer.Option(False, "--closed", help="Tabs closed today"),
    today: bool = typer.Option(False, "--today", help="Tabs active today, open or closed"),
    data_dir: str = typer.Option(None, help=DATA_DIR_HELP),
) -> None:
    """List open tabs."""

    tabs_cmd(store_from_path=_store, data_dir=data_dir, closed=closed, today=today)


@app.command()
def cleanup(
    days: int = typer.Option(None, help="Max age in days of closed tabs to keep"),
    data_dir: str = typer.Option(None, help=DATA_DIR_HELP),
) -> None:
    """Evict closed tabs (and their screenshots) older than N days."""

    if days is None:
        days = load_config().retention_days
    cleanup_cmd(store_from_path=_store, data_dir=data_dir, days=days)


@app.command()
def sync(
    ids: list[int] = typer.Argument(..., help="Ids of the tabs the browser has open"),
    data_dir: str = typer.Option(None, help=DATA_DIR_HELP),
) -> None:
    """Close or drop records for tabs missing from IDS."""

    sync_cmd(store_from_path=_store, data_dir=data_dir, ids=ids)


@app.command("clear-suggestions")
def clear_suggestions(data_dir: str = typer.Option(None, help=DATA_DIR_HELP)) -> None:
    """Remove every AI suggestion."""

    clear_suggestions_cmd(store_from_path=_store, data_dir=data_dir)


@app.command("clear-data")
def clear_data(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    data_dir: str = typer.Option(None, help=DATA_DIR_HELP),
) -> None:
    """Delete all tabs, screenshots and the last report."""

    clear_data_cmd(store_from_path=_store, data_dir=data_dir, yes=yes)


@app.command()
def analyze(
    batch: int = typer.Option(None, help="Only classify up to N tabs without a suggestion"),
    data_dir: str = typer.Option(None, help=DATA_DIR_HELP),
) -> None:
    """Classify open tabs with the configured model."""

    analyze_cmd(
        store_from_path=_store,
        data_dir=data_dir,
        batch=batch,
        ai_timeout_s=load_config().ai_timeout_s,
    )


@app.command()
def report(
    generate: bool = typer.Option(False, "--generate", help="Generate a new report first"),
    data_dir: str = typer.Option(None, help=DATA_DIR_HELP),
) -> None:
    """Show the daily report."""

    report_cmd(
        store_from_path=_store,
        data_dir=data_dir,
        generate=generate,
        ai_timeout_s=load_config().ai_timeout_s,
    )


@settings_app.command("show")
def settings_show(data_dir: str = typer.Option(None, help=DATA_DIR_HELP)) -> None:
    """Show AI settings (API key masked)."""

    settings_show_cmd(store_from_path=_store, data_dir=data_dir)


@settings_app.command("set")
def settings_set(
    api_key: str = typer.Option(None, help="OpenAI-compatible API key"),
    base_url: str = typer.Option(None, help="API base URL"),
    model: str = typer.Option(None, help="Model name"),
    user_context: str = typer.Option(None, help="Free-form context about your work"),
    batch_size: int = typer.Option(None, help="Tabs per analyze batch"),
    data_dir: str = typer.Option(None, help=DATA_DIR_HELP),
) -> None:
    """Update AI settings; omitted options keep their current value."""

    settings_set_cmd(
        store_from_path=_store,
        data_dir=data_dir,
        api_key=api_key,
        base_url=base_url,
        model=model,
        user_context=user_context,
        batch_size=batch_size,
    )


def main() -> None:
    app()


if __name__ == "__main__":
    main()
