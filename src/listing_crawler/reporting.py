"""Rich progress display and end-of-run summary."""

import time
from collections import Counter

from rich.console import Console, Group
from rich.live import Live
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table
from rich.text import Text

from listing_crawler.errors import ERROR_SUGGESTIONS, ErrorCategory
from listing_crawler.events import (
    ItemError,
    PageScraped,
    PartitionCompleted,
    ProgressEvent,
    RunCompleted,
    RunFailed,
    RunStats,
    RunStopped,
)


def _truncate_url(url: str, max_len: int) -> str:
    """Truncate URL for display, keeping the end visible."""
    if len(url) <= max_len:
        return url
    return "..." + url[-(max_len - 3) :]


class ProgressReporter:
    """Progress listener that renders a live bar and prints a summary.

    Subscribe it to an orchestrator and use it as a context manager around
    the run so the live display is started and torn down cleanly.
    """

    def __init__(self, console: Console, partitions_total: int, partitions_done: int = 0):
        self.console = console
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
        )
        self.task: TaskID = self.progress.add_task(
            "Partitions", total=partitions_total, completed=partitions_done
        )
        self.start_time = time.monotonic()
        self.pages = 0
        self.records = 0
        self.skipped = 0
        self.errors: list[ItemError] = []
        self.recent: list[PageScraped] = []
        self.final: RunStats | None = None
        self.outcome: str | None = None
        self.failure: str | None = None
        self.live = Live(self._render(), console=console, refresh_per_second=4)

    def __enter__(self) -> "ProgressReporter":
        self.live.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.live.stop()

    def __call__(self, event: ProgressEvent) -> None:
        if isinstance(event, PageScraped):
            self.pages += 1
            self.records += event.succeeded
            self.skipped += event.skipped
            self.recent = (self.recent + [event])[-3:]
        elif isinstance(event, PartitionCompleted):
            self.progress.advance(self.task)
        elif isinstance(event, ItemError):
            self.errors.append(event)
        elif isinstance(event, RunCompleted):
            self.final, self.outcome = event.stats, "completed"
        elif isinstance(event, RunStopped):
            self.final, self.outcome = event.stats, "stopped"
        elif isinstance(event, RunFailed):
            self.final, self.outcome, self.failure = event.stats, "failed", event.error
        self.live.update(self._render())

    def _render(self) -> Group:
        table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
        table.add_column("Partition", min_width=20, overflow="ellipsis", no_wrap=True)
        table.add_column("Page", width=6, justify="right")
        table.add_column("New", width=6, justify="right")
        table.add_column("Saved", width=6, justify="right")
        table.add_column("Failed", width=6, justify="right")
        for event in self.recent:
            table.add_row(
                event.partition_id,
                str(event.page_number),
                str(event.new_links),
                Text(str(event.succeeded), style="green"),
                Text(str(event.failed), style="red" if event.failed else "dim"),
            )

        elements: list[Progress | Text | Table] = [self.progress]
        if self.records:
            elapsed = time.monotonic() - self.start_time
            if elapsed > 0:
                elements.append(Text(f"  {self.records / elapsed:.1f} records/sec", style="dim"))
        elements.append(table)
        return Group(*elements)

    def print_summary(self) -> None:
        """Print a post-run summary report."""
        self.console.print()
        if self.outcome == "completed":
            self.console.print("[bold green]Crawl complete[/bold green]")
        elif self.outcome == "stopped":
            self.console.print("[bold yellow]Crawl stopped, resume with --resume[/bold yellow]")
        elif self.outcome == "failed":
            self.console.print(f"[bold red]Crawl failed:[/bold red] {self.failure}")
        self.console.print()

        if self.final is not None:
            self.console.print(
                f"  Partitions:      {self.final.partitions_done}/{self.final.partitions_total}"
            )
            self.console.print(f"  Records found:   {self.final.records_found}")
            self.console.print(f"  Records saved:   [green]{self.final.records_processed}[/green]")
        self.console.print(f"  Pages this run:  {self.pages}")
        if self.skipped:
            self.console.print(f"  Already seen:    [yellow]{self.skipped}[/yellow]")
        elapsed = time.monotonic() - self.start_time
        self.console.print(f"  Elapsed:         {elapsed:.1f}s")

        if not self.errors:
            return
        self.console.print()
        category_counts: Counter[ErrorCategory] = Counter(e.category for e in self.errors)
        self.console.print("[bold red]Errors[/bold red]")
        for cat, count in category_counts.most_common():
            self.console.print(f"  {cat.value:<15s} {count}")
        top_cat = category_counts.most_common(1)[0][0]
        suggestion = ERROR_SUGGESTIONS.get(top_cat)
        if suggestion:
            self.console.print(f"  [dim]Suggestion: {suggestion}[/dim]")
        self.console.print()
        for error in self.errors[:10]:
            where = _truncate_url(error.url, 50) if error.url else error.partition_id or "run"
            self.console.print(f"  [red]{where}[/red]: {error.message}")
        if len(self.errors) > 10:
            self.console.print(f"  [dim]... and {len(self.errors) - 10} more errors[/dim]")
