"""Command-line interface for listing-crawler."""

import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from listing_crawler import __version__
from listing_crawler.checkpoint import CheckpointStore
from listing_crawler.config import AppConfig, OutputFormat
from listing_crawler.orchestrator import Orchestrator, RunState
from listing_crawler.partitions import filter_partitions, load_partitions
from listing_crawler.presets import PresetRegistry
from listing_crawler.reporting import ProgressReporter

app = typer.Typer(
    name="listing-crawler",
    help="Resumable crawler for paginated listing sites.",
    rich_markup_mode="rich",
    no_args_is_help=True,
)

console = Console()

EXIT_CODES = {
    RunState.COMPLETED: 0,
    RunState.STOPPED: 130,
    RunState.FAILED: 1,
}


def version_callback(value: bool):
    if value:
        console.print(f"listing-crawler version {__version__}")
        raise typer.Exit()


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _load_config(config_file: Optional[Path]) -> AppConfig:
    if config_file is None:
        return AppConfig()
    if not config_file.exists():
        console.print(f"[red]Config file not found: {config_file}[/red]")
        raise typer.Exit(1)
    return AppConfig.from_toml(config_file)


def _override(config: AppConfig, updates: dict) -> AppConfig:
    """Apply command-line overrides, validating them like the config file."""
    data = config.model_dump()
    for key, value in updates.items():
        if isinstance(value, dict):
            data[key] = {**data[key], **value}
        else:
            data[key] = value
    return AppConfig.model_validate(data)


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
):
    """Crawl paginated listings into CSV or JSONL, with resumable checkpoints."""
    pass


async def _run(orchestrator: Orchestrator, resume: bool) -> RunState:
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, orchestrator.stop)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Not available on this platform; Ctrl+C falls back to KeyboardInterrupt
            pass
    try:
        return await orchestrator.start(resume=resume)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


@app.command()
def crawl(
    partitions_file: Optional[Path] = typer.Argument(
        None, help="JSON file listing the partitions (entry URLs) to crawl"
    ),
    resume: bool = typer.Option(
        True,
        "--resume/--fresh",
        help="Continue from the checkpoint (default) or start over",
    ),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Output file path"
    ),
    fmt: Optional[OutputFormat] = typer.Option(
        None, "--format", "-f", help="Output format: 'csv' or 'jsonl'"
    ),
    checkpoint: Optional[Path] = typer.Option(
        None, "--checkpoint", "-c", help="Checkpoint file path"
    ),
    config_file: Optional[Path] = typer.Option(
        None, "--config", help="TOML config file"
    ),
    preset: Optional[str] = typer.Option(
        None, "--preset", "-p", help="Site preset (see list-presets)"
    ),
    only: Optional[list[str]] = typer.Option(
        None, "--only", help="Only crawl partitions whose name contains this (repeatable)"
    ),
    max_concurrent: Optional[int] = typer.Option(
        None, "--max-concurrent", help="Maximum concurrent detail-page fetches"
    ),
    delay: Optional[float] = typer.Option(
        None, "--delay", help="Delay between listing pages in seconds"
    ),
    js: Optional[bool] = typer.Option(
        None, "--js/--no-js", help="Fetch every page with a headless browser"
    ),
    browser_fallback: Optional[bool] = typer.Option(
        None, "--browser-fallback/--no-browser-fallback", help="Retry failed or empty pages in a browser"
    ),
    partition_concurrency: Optional[int] = typer.Option(
        None, "--partition-concurrency", help="Partitions crawled at the same time"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose output"
    ),
):
    """
    Crawl every partition, writing one record per detail page.

    Progress is checkpointed after every batch; interrupt with Ctrl+C and
    run the same command again to continue.

    Examples:

        listing-crawler crawl states.json --preset tribe-events

        listing-crawler crawl states.json --fresh -o shows.jsonl -f jsonl

        listing-crawler crawl states.json --only texas --only ohio
    """
    config = _load_config(config_file)
    setup_logging(verbose or config.verbose)

    updates: dict = {}
    if preset is not None:
        updates["preset"] = preset
    if verbose:
        updates["verbose"] = True
    if output is not None or fmt is not None:
        updates["output"] = {
            k: v for k, v in (("path", output), ("format", fmt)) if v is not None
        }
    if checkpoint is not None:
        updates["checkpoint"] = {"path": checkpoint}
    crawl_updates = {
        k: v
        for k, v in (
            ("max_concurrent", max_concurrent),
            ("page_delay", delay),
            ("partition_concurrency", partition_concurrency),
        )
        if v is not None
    }
    if crawl_updates:
        updates["crawl"] = crawl_updates
    fetcher_updates = {
        k: v for k, v in (("use_js", js), ("browser_fallback", browser_fallback)) if v is not None
    }
    if fetcher_updates:
        updates["fetcher"] = fetcher_updates
    try:
        config = _override(config, updates)
    except ValidationError as e:
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"])
            console.print(f"[red]Invalid value for {field}: {escape(error['msg'])}[/red]")
        raise typer.Exit(1)

    source = partitions_file or config.partitions_file
    if source is None:
        console.print("[red]No partitions file given (argument or partitions_file in config).[/red]")
        raise typer.Exit(1)
    try:
        partitions = load_partitions(source)
    except (OSError, ValueError) as e:
        console.print(f"[red]Could not load partitions: {e}[/red]")
        raise typer.Exit(1)
    if only:
        partitions = filter_partitions(partitions, only)
    if not partitions:
        console.print("[yellow]No partitions to crawl.[/yellow]")
        raise typer.Exit(1)

    try:
        orchestrator = Orchestrator(config, partitions)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    reporter = ProgressReporter(console, len(partitions))
    orchestrator.subscribe(reporter)

    state = RunState.FAILED
    try:
        with reporter:
            state = asyncio.run(_run(orchestrator, resume))
    except KeyboardInterrupt:
        console.print("\n[yellow]Crawl interrupted.[/yellow]")
        raise typer.Exit(130)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        if verbose:
            console.print_exception()
    finally:
        reporter.print_summary()
        if orchestrator.resume_degraded:
            console.print(
                "[bold yellow]Warning: checkpoint writes failed, an interrupted run may redo work[/bold yellow]"
            )

    raise typer.Exit(EXIT_CODES.get(state, 1))


@app.command()
def status(
    checkpoint: Path = typer.Option(
        Path("./output/checkpoint.json"), "--checkpoint", "-c", help="Checkpoint file path"
    ),
    config_file: Optional[Path] = typer.Option(None, "--config", help="TOML config file"),
):
    """Show progress recorded in the checkpoint."""
    if config_file is not None:
        checkpoint = _load_config(config_file).checkpoint.path
    setup_logging(False)
    state = CheckpointStore(checkpoint).load()
    if state is None:
        console.print(f"[yellow]No usable checkpoint at {checkpoint}.[/yellow]")
        raise typer.Exit(1)

    saved = state.saved_at.strftime("%Y-%m-%d %H:%M:%S %Z") if state.saved_at else "unknown"
    console.print(f"[bold]Checkpoint[/bold] {checkpoint} (saved {saved})")
    console.print(f"  Records found:     {state.records_found}")
    console.print(f"  Records processed: [green]{state.records_processed}[/green]")
    console.print(f"  Known URLs:        {len(state.dedup)}")
    console.print(f"  Completed:         {len(state.completed_partitions)}")
    if state.failed_items:
        console.print(f"  Failed items:      [red]{len(state.failed_items)}[/red]")
    console.print()

    table = Table(title="Partitions")
    table.add_column("Partition", style="cyan")
    table.add_column("Next page", justify="right")
    table.add_column("Pages", justify="right")
    table.add_column("Records", justify="right")
    table.add_column("Last outcome")
    table.add_column("Done", justify="center")
    for pid, cursor in state.cursors.items():
        table.add_row(
            pid,
            str(cursor.page_number),
            str(cursor.pages_fetched),
            str(cursor.records_written),
            cursor.last_outcome.value,
            "Yes" if state.is_completed(pid) else "No",
        )
    console.print(table)


@app.command("list-partitions")
def list_partitions(
    partitions_file: Path = typer.Argument(..., help="JSON file listing the partitions"),
    only: Optional[list[str]] = typer.Option(None, "--only", help="Filter by name (repeatable)"),
):
    """List the partitions in a partitions file."""
    try:
        partitions = load_partitions(partitions_file)
    except (OSError, ValueError) as e:
        console.print(f"[red]Could not load partitions: {e}[/red]")
        raise typer.Exit(1)
    if only:
        partitions = filter_partitions(partitions, only)

    table = Table(title=f"Partitions ({len(partitions)})")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("URL")
    for partition in partitions:
        table.add_row(partition.id, partition.name, partition.url)
    console.print(table)


@app.command()
def reset(
    checkpoint: Path = typer.Option(
        Path("./output/checkpoint.json"), "--checkpoint", "-c", help="Checkpoint file path"
    ),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file to delete too"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Delete the checkpoint (and optionally the output) to start over."""
    if not yes:
        typer.confirm(f"Delete {checkpoint}" + (f" and {output}" if output else "") + "?", abort=True)
    setup_logging(False)
    removed = CheckpointStore(checkpoint).clear()
    if output is not None and output.exists():
        output.unlink()
        console.print(f"[green]Removed {output}[/green]")
    if removed:
        console.print(f"[green]Removed {checkpoint}[/green]")
    else:
        console.print(f"[dim]No checkpoint at {checkpoint}[/dim]")


@app.command("list-presets")
def list_presets():
    """List available site presets."""
    table = Table(title="Available Site Presets")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Browser Fallback", justify="center")

    for preset in PresetRegistry.list_presets():
        table.add_row(
            preset.name,
            preset.description,
            "Yes" if preset.browser_fallback else "No",
        )

    console.print(table)


@app.command("init-config")
def init_config(
    path: Path = typer.Argument(Path("listing-crawler.toml"), help="Where to write the config"),
    preset: Optional[str] = typer.Option(None, "--preset", "-p", help="Site preset to start from"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file"),
):
    """Write a TOML config file with the default settings."""
    if path.exists() and not force:
        console.print(f"[red]{path} already exists (use --force to overwrite).[/red]")
        raise typer.Exit(1)
    config = AppConfig(preset=preset)
    if preset is not None and PresetRegistry.get(preset) is None:
        console.print(f"[red]Unknown preset: {preset}[/red]")
        raise typer.Exit(1)
    path.write_text(config.to_toml(), encoding="utf-8")
    console.print(f"[green]Wrote {path}[/green]")


if __name__ == "__main__":
    app()
