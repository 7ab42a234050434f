"""CLI entry-point for the thread archiver."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from dataclasses import replace
from datetime import datetime, timezone

import click
from dotenv import find_dotenv, load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .api import FourChanAPI
from .config import ArchiverConfig, ConfigError, FourChanConfig, StorageConfig, WatchConfig
from .models import ThreadSummary
from .search import CatalogSearch
from .sync import SyncOutcome
from .watcher import Archiver

console = Console()


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )
    # Suppress noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _print_stats(stats: dict) -> None:
    table = Table(title="Archive Summary", show_header=True, header_style="bold cyan")
    table.add_column("Metric", style="bold")
    table.add_column("Count", justify="right")
    for key, val in stats.items():
        table.add_row(key.capitalize(), str(val))
    console.print(table)


def _print_matches(board: str, matches: list[ThreadSummary]) -> None:
    table = Table(title=f"/{board}/ Matches", show_header=True, header_style="bold cyan")
    table.add_column("No", style="bold", justify="right")
    table.add_column("Subject", max_width=40)
    table.add_column("Replies", justify="right")
    table.add_column("Last Modified")
    for t in matches:
        modified = datetime.fromtimestamp(t.last_modified, tz=timezone.utc)
        table.add_row(str(t.no), (t.subject or t.body or "")[:40], str(t.replies), f"{modified:%Y-%m-%d %H:%M}")
    console.print(table)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Thread archiver – watch 4chan threads matching a keyword.

    Matching threads are saved as JSON and HTML snapshots together with
    their media, and polled for changes with adaptive backoff.
    """
    load_dotenv(find_dotenv(usecwd=True))
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    try:
        ctx.obj["fourchan_cfg"] = FourChanConfig.from_env()
        ctx.obj["watch_cfg"] = WatchConfig.from_env()
        ctx.obj["storage_cfg"] = StorageConfig.from_env()
    except ConfigError as exc:
        raise click.UsageError(str(exc)) from exc


def _make_config(
    ctx: click.Context,
    *,
    fourchan: dict[str, object] | None = None,
    watch: dict[str, object] | None = None,
    storage: dict[str, object] | None = None,
) -> ArchiverConfig:
    """Environment config with any CLI options that were given applied on top."""

    def _overrides(values: dict[str, object] | None) -> dict[str, object]:
        return {k: v for k, v in (values or {}).items() if v not in (None, ())}

    try:
        return ArchiverConfig(
            fourchan=replace(ctx.obj["fourchan_cfg"], **_overrides(fourchan)),
            watch=replace(ctx.obj["watch_cfg"], **_overrides(watch)),
            storage=replace(ctx.obj["storage_cfg"], **_overrides(storage)),
        )
    except ConfigError as exc:
        raise click.UsageError(str(exc)) from exc


async def _watch(cfg: ArchiverConfig) -> dict[str, int]:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl-C still cancels.
            pass
    async with Archiver(cfg) as archiver:
        await archiver.run(stop)
        return dict(archiver.stats)


async def _thread(cfg: ArchiverConfig, board: str, thread_no: int) -> tuple[SyncOutcome, dict[str, int]]:
    async with Archiver(cfg) as archiver:
        outcome = await archiver.sync_thread(board, thread_no)
        return outcome, dict(archiver.stats)


async def _search(cfg: FourChanConfig, board: str, keyword: str) -> list[ThreadSummary]:
    async with FourChanAPI(cfg) as api:
        return await CatalogSearch(api).search(board, keyword)


async def _boards(cfg: FourChanConfig) -> list[dict]:
    async with FourChanAPI(cfg) as api:
        return await api.get_boards()


# ─── Commands ────────────────────────────────────────────────────


@cli.command()
@click.option("-b", "--board", "boards", multiple=True, help="Board to search (repeatable; default: all boards)")
@click.option("-k", "--keyword", "keywords", multiple=True, help="Search keyword (repeatable; default: $SEARCHTERM)")
@click.option("--all", "download_all", is_flag=True, help="Archive every thread, ignoring keywords")
@click.option("-o", "--output", "output_dir", type=click.Path(file_okay=False), help="Download folder")
@click.option("--db", "db_path", type=click.Path(dir_okay=False), help="Dedup database path")
@click.option("--interval", "base_interval", type=float, help="Base poll interval in seconds")
@click.option("--max-interval", type=float, help="Upper bound for the poll backoff in seconds")
@click.option("--search-interval", type=float, help="Seconds between catalog searches")
@click.option("--request-delay", type=float, help="Seconds between API requests")
@click.option("--no-media", is_flag=True, help="Skip media downloads")
@click.pass_context
def watch(
    ctx: click.Context,
    boards: tuple[str, ...],
    keywords: tuple[str, ...],
    download_all: bool,
    output_dir: str | None,
    db_path: str | None,
    base_interval: float | None,
    max_interval: float | None,
    search_interval: float | None,
    request_delay: float | None,
    no_media: bool,
) -> None:
    """Search and watch matching threads until interrupted.

    Example: archiver watch -b g -k rocket --interval 30
    """
    cfg = _make_config(
        ctx,
        fourchan={"request_delay": request_delay},
        watch={
            "boards": boards,
            "keywords": keywords,
            "download_all": True if download_all else None,
            "base_interval": base_interval,
            "max_interval": max_interval,
            "search_interval": search_interval,
            "download_media": False if no_media else None,
        },
        storage={"output_dir": output_dir, "db_path": db_path},
    )
    if not cfg.watch.keywords and not cfg.watch.download_all:
        raise click.UsageError("No keywords: pass --keyword, set SEARCHTERM, or use --all")
    boards_label = ", ".join(f"/{b}/" for b in cfg.watch.boards) or "all boards"
    console.print(f"[bold]Watching {boards_label} for {', '.join(cfg.watch.keywords) or 'everything'}...[/bold]")
    try:
        stats = asyncio.run(_watch(cfg))
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        return
    console.print("[green]✓[/green] Dedup store closed")
    _print_stats(stats)


@cli.command()
@click.argument("board")
@click.argument("thread_no", type=int)
@click.option("-o", "--output", "output_dir", type=click.Path(file_okay=False), help="Download folder")
@click.option("--db", "db_path", type=click.Path(dir_okay=False), help="Dedup database path")
@click.option("--no-media", is_flag=True, help="Skip media downloads")
@click.pass_context
def thread(ctx: click.Context, board: str, thread_no: int, output_dir: str | None, db_path: str | None, no_media: bool) -> None:
    """Archive a single thread once.

    Example: archiver thread g 12345678
    """
    cfg = _make_config(
        ctx,
        watch={"download_media": False if no_media else None},
        storage={"output_dir": output_dir, "db_path": db_path},
    )
    console.print(f"[bold]Archiving [cyan]/{board}/{thread_no}[/cyan]...[/bold]")
    outcome, stats = asyncio.run(_thread(cfg, board, thread_no))
    if outcome is SyncOutcome.ERROR:
        console.print(f"[red]✗[/red] Thread /{board}/{thread_no} could not be archived")
        _print_stats(stats)
        sys.exit(1)
    if outcome is SyncOutcome.UNCHANGED:
        console.print(f"[green]✓[/green] Thread /{board}/{thread_no} unchanged since last capture")
    else:
        console.print(f"[green]✓[/green] Thread /{board}/{thread_no} archived")
    _print_stats(stats)


@cli.command()
@click.argument("board")
@click.argument("keyword")
@click.pass_context
def search(ctx: click.Context, board: str, keyword: str) -> None:
    """Search a board's catalog without archiving.

    Example: archiver search x rocket
    """
    matches = asyncio.run(_search(ctx.obj["fourchan_cfg"], board, keyword))
    if not matches:
        console.print(f"No threads on /{board}/ match {keyword!r}")
        return
    _print_matches(board, matches)


@cli.command(name="list-boards")
@click.pass_context
def list_boards(ctx: click.Context) -> None:
    """List all available 4chan boards."""
    boards = asyncio.run(_boards(ctx.obj["fourchan_cfg"]))
    table = Table(title="4chan Boards", show_header=True, header_style="bold cyan")
    table.add_column("Board", style="bold")
    table.add_column("Title")
    table.add_column("SFW", justify="center")
    for b in sorted(boards, key=lambda x: x.get("board", "")):
        sfw = "✓" if b.get("ws_board", 0) else "✗"
        table.add_row(f"/{b['board']}/", b.get("title", ""), sfw)
    console.print(table)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
