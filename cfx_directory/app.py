"""Typer CLI entrypoint for cfx-directory."""

from __future__ import annotations

import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich import box
from rich.console import Console
from rich.table import Table

from .config import Category, ConfigRepository, DirectoryConfig
from .directory import ServerDirectory
from .engine.normalize import region_of
from .engine.query import DirectoryStats, QueryResult, SortField, SortOrder
from .engine.records import Entity
from .logging_conf import (
    available_source_logs,
    configure_logging,
    main_log_path,
    source_log_path,
    source_logger,
    tail_log,
)
from .ui import LoadProgressReporter

app = typer.Typer(
    help="Browse the live FiveM / RedM server directory.",
    no_args_is_help=True,
    rich_markup_mode=None,
)
config_app = typer.Typer(
    name="config",
    help="Inspect or create the configuration file.",
    no_args_is_help=True,
    rich_markup_mode=None,
)
log_app = typer.Typer(
    name="log",
    help="Inspect log files.",
    no_args_is_help=True,
    rich_markup_mode=None,
)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    config: DirectoryConfig
    directory: ServerDirectory


def build_state(verbose: bool) -> AppState:
    repository = ConfigRepository()
    config = repository.load()
    logger = configure_logging(verbose=verbose)
    directory = ServerDirectory(
        config,
        logger=logger,
        source_log=lambda name: source_logger(name, verbose=verbose),
    )
    return AppState(repository=repository, config=config, directory=directory)


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _progress_default_enabled() -> bool:
    return bool(getattr(sys.stdout, "isatty", lambda: False)())


def _load_directory(state: AppState, progress: bool) -> None:
    reporter = LoadProgressReporter(enabled=progress)
    reporter.start("servers")
    try:
        state.directory.load(reporter.update)
    finally:
        reporter.close()
    if state.directory.error:
        console.print(state.directory.error, style="red")
        raise typer.Exit(code=1)


def _occupancy(entity: Entity) -> str:
    return f"{entity.occupancy.current}/{entity.occupancy.max}"


def _render_servers_table(result: QueryResult) -> Table:
    table = Table(
        title=f"Servers · {result.total_matched} matched of {result.total_all}",
        box=box.SIMPLE_HEAD,
    )
    table.add_column("#", style="dim", justify="right")
    table.add_column("Name", style="cyan", overflow="fold")
    table.add_column("Players", style="green", justify="right")
    table.add_column("Game", style="magenta")
    table.add_column("Region", style="yellow")
    table.add_column("Upvotes", justify="right")
    table.add_column("Endpoint", style="dim", no_wrap=True)
    offset = (result.page - 1) * result.page_size
    for position, entity in enumerate(result.items, start=offset + 1):
        table.add_row(
            str(position),
            entity.display_name,
            _occupancy(entity),
            entity.category.label,
            region_of(entity.locale) or "-",
            str(entity.upvote_power),
            entity.id,
        )
    return table


def _render_stats_table(stats: DirectoryStats, title: str = "Directory stats") -> Table:
    table = Table(title=title, box=box.SIMPLE_HEAD)
    table.add_column("Servers", style="cyan", justify="right")
    table.add_column("Players", style="green", justify="right")
    table.add_column("Slots", style="magenta", justify="right")
    table.add_row(str(stats.server_count), str(stats.player_count), str(stats.slot_count))
    return table


def _render_entity(entity: Entity) -> Table:
    table = Table(title=entity.display_name or entity.id, box=box.SIMPLE_HEAD, show_header=False)
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value", overflow="fold")
    rows = [
        ("Endpoint", entity.id),
        ("Players", _occupancy(entity)),
        ("Game", entity.category.label),
        ("Game type", entity.gametype or "-"),
        ("Map", entity.mapname or "-"),
        ("Locale", entity.locale or "-"),
        ("Tags", ", ".join(entity.tags) or "-"),
        ("Project", entity.project_name or "-"),
        ("Description", entity.project_description or "-"),
        ("Owner", entity.owner_name or "-"),
        ("Upvotes", str(entity.upvote_power)),
        ("Server version", entity.server_version or "-"),
        ("OneSync", "yes" if entity.onesync_enabled else "no"),
        ("Private", "yes" if entity.private else "no"),
        ("Icon", entity.icon_url or "-"),
        ("Banner", entity.banner_url or "-"),
        ("Connect", ", ".join(entity.connect_endpoints) or "-"),
        ("Resources", str(len(entity.resources))),
    ]
    for label, value in rows:
        table.add_row(label, value)
    return table


app.add_typer(config_app, name="config", help="Inspect or create the configuration file")
app.add_typer(log_app, name="log", help="Inspect log files")


@app.callback()
def main(
    ctx: typer.Context, verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging", is_flag=True)
) -> None:
    ctx.obj = build_state(verbose)
    ctx.call_on_close(ctx.obj.directory.close)


@app.command("servers", help="Query the server list.")
def servers(
    ctx: typer.Context,
    search: str = typer.Option("", "--search", "-s", help="Free-text match on name, game type, map or endpoint."),
    category: Optional[Category] = typer.Option(None, "--category", "-c", help="fivem or redm."),
    region: str = typer.Option("", "--region", "-r", help="Region code such as TH or US."),
    hide_empty: bool = typer.Option(False, "--hide-empty", help="Hide servers without players."),
    hide_full: bool = typer.Option(False, "--hide-full", help="Hide full servers."),
    hide_private: bool = typer.Option(False, "--hide-private", help="Hide private servers."),
    sort: SortField = typer.Option(SortField.PLAYERS, "--sort", help="Sort field."),
    order: SortOrder = typer.Option(SortOrder.DESC, "--order", help="Sort order."),
    page: int = typer.Option(1, "--page", min=1, help="Page number (1-based)."),
    per_page: Optional[int] = typer.Option(None, "--per-page", min=1, help="Servers per page."),
    progress: Optional[bool] = typer.Option(None, "--progress/--no-progress", help="Show load progress."),
) -> None:
    state = _get_state(ctx)
    directory = state.directory
    directory.set_filter(
        search=search,
        category=category or state.config.default_category,
        region=region,
        hide_empty=hide_empty,
        hide_full=hide_full,
        hide_private=hide_private,
    )
    directory.set_sort(sort, order)
    directory.set_page(page, per_page)
    _load_directory(state, _progress_default_enabled() if progress is None else progress)

    result = directory.query()
    if not result.items:
        console.print("No servers match the current filters.", style="yellow")
        return
    console.print(_render_servers_table(result))
    console.print(
        f"Page {result.page}/{max(result.total_pages, 1)} · "
        f"{result.stats.player_count} players on {result.stats.server_count} servers",
        style="dim",
    )


@app.command("stats", help="Show aggregate players and slots.")
def stats(
    ctx: typer.Context,
    category: Optional[Category] = typer.Option(None, "--category", "-c", help="Restrict to fivem or redm."),
    progress: Optional[bool] = typer.Option(None, "--progress/--no-progress", help="Show load progress."),
) -> None:
    state = _get_state(ctx)
    state.directory.set_filter(category=category)
    _load_directory(state, _progress_default_enabled() if progress is None else progress)
    label = category.label if category else "all games"
    console.print(_render_stats_table(state.directory.stats(), title=f"Directory stats · {label}"))
    if state.directory.last_updated:
        console.print(f"Updated {state.directory.last_updated.isoformat()}", style="dim")


@app.command("show", help="Show one server by endpoint id.")
def show(ctx: typer.Context, endpoint: str = typer.Argument(..., help="Endpoint id, e.g. abc123.")) -> None:
    state = _get_state(ctx)
    entity = state.directory.lookup(endpoint)
    if entity is None:
        console.print(f"Server {endpoint} could not be loaded.", style="red")
        raise typer.Exit(code=1)
    console.print(_render_entity(entity))


@app.command("counts", help="Show global player counters.")
def counts(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    values = state.directory.player_counts()
    table = Table(title="Players online", box=box.SIMPLE_HEAD)
    table.add_column("Game", style="cyan")
    table.add_column("Players", style="green", justify="right")
    for category, value in values.items():
        table.add_row(category.label, str(value))
    console.print(table)


@app.command("watch", help="Keep the directory refreshed and print stats each interval.")
def watch(
    ctx: typer.Context,
    interval: Optional[float] = typer.Option(None, "--interval", min=0.01, help="Seconds between refreshes."),
    iterations: int = typer.Option(0, "--iterations", min=0, help="Stop after N reports (0 runs until interrupted)."),
) -> None:
    state = _get_state(ctx)
    directory = state.directory
    period = interval or state.config.refresh_interval
    _load_directory(state, _progress_default_enabled())
    directory.start_auto_refresh(period)
    reports = 0
    try:
        while True:
            console.print(_render_stats_table(directory.stats()))
            reports += 1
            if iterations and reports >= iterations:
                break
            time.sleep(period)
    except KeyboardInterrupt:
        console.print("Stopped.", style="dim")
    finally:
        directory.stop_auto_refresh()


@config_app.command("show", help="Print the active configuration.")
def config_show(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    console.print(f"# {state.repository.locator.config_path()}", style="dim", soft_wrap=True)
    console.print(
        yaml.safe_dump(state.config.model_dump(mode="json"), sort_keys=False),
        markup=False,
        highlight=False,
        soft_wrap=True,
    )


@config_app.command("init", help="Write the default configuration file.")
def config_init(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file."),
    path: Optional[Path] = typer.Option(None, "--path", help="Target file (.yaml or .json)."),
) -> None:
    state = _get_state(ctx)
    target = path or state.repository.locator.config_path()
    if target.exists() and not force:
        console.print(f"{target} already exists; use --force to overwrite.", style="yellow")
        raise typer.Exit(code=1)
    written = state.repository.save(DirectoryConfig(), target)
    console.print(f"Wrote {written}", style="green")


@log_app.command("list", help="List available log files.")
def log_list() -> None:
    logs = list(available_source_logs())
    console.print("Log files:", style="cyan")
    if not logs:
        console.print("No per-source logs yet.", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("File", style="green")
    for path in logs:
        table.add_row(path.name)
    console.print(table)


@log_app.command("show", help="Print the tail of a log file.")
def log_show(
    name: Optional[str] = typer.Option(None, "--source", help="Source name (main log when omitted)."),
    tail: int = typer.Option(100, "--tail", min=1, help="Number of lines."),
) -> None:
    path = source_log_path(name) if name else main_log_path()
    lines = tail_log(path, tail)
    if not lines:
        console.print("No log entries yet.", style="dim")
        return
    console.print(f"{path.name} · last {len(lines)} lines", style="cyan")
    console.print("".join(lines), markup=False, highlight=False, soft_wrap=True)


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
