import threading
from typing import Optional
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from medorg.domain.events import (
    ContactSheetFinished, DuplicateFound, FileRenamed, ItemFailed,
    JobCompleted, JobFailed, JobInterrupted, JobStarted, WorkflowFinished,
)
from medorg.domain.models import WorkflowSummary
from medorg.infrastructure.event_bus import EventBus


def build_summary_table(summary: WorkflowSummary) -> Table:
    title = f"medorg {summary.workflow}"
    if summary.cancelled:
        title += " (cancelled)"
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Result")
    table.add_column("Count", justify="right")

    table.add_row("Total", str(summary.total))
    table.add_row("[green]Succeeded[/]", str(summary.succeeded))
    if summary.degraded:
        table.add_row("[yellow]Degraded[/]", str(summary.degraded))
    table.add_row("[dim]Skipped[/]", str(summary.skipped))
    table.add_row("[red]Failed[/]" if summary.failed else "Failed", str(summary.failed))
    for key in sorted(summary.details):
        table.add_row(f"[dim]{key.replace('_', ' ')}[/]", str(summary.details[key]))
    return table


class ConsoleReporter:
    """Subscribes to EventBus and prints one line per notable event."""

    def __init__(self, bus: EventBus, console: Optional[Console] = None, verbose: bool = False):
        self.bus = bus
        self.console = console or Console()
        self.verbose = verbose
        self.summary: Optional[WorkflowSummary] = None
        # Events arrive from worker threads
        self._lock = threading.Lock()
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(JobStarted, self.on_job_started)
        self.bus.subscribe(JobCompleted, self.on_job_completed)
        self.bus.subscribe(JobFailed, self.on_job_failed)
        self.bus.subscribe(JobInterrupted, self.on_job_interrupted)
        self.bus.subscribe(DuplicateFound, self.on_duplicate_found)
        self.bus.subscribe(ContactSheetFinished, self.on_contact_sheet_finished)
        self.bus.subscribe(FileRenamed, self.on_file_renamed)
        self.bus.subscribe(ItemFailed, self.on_item_failed)
        self.bus.subscribe(WorkflowFinished, self.on_workflow_finished)

    def _print(self, message: str):
        with self._lock:
            self.console.print(message, highlight=False)

    def on_job_started(self, event: JobStarted):
        if self.verbose:
            self._print(f"[cyan]▶[/] {event.job.source_path.name}")

    def on_job_completed(self, event: JobCompleted):
        self._print(f"[green]✓[/] {event.job.source_path.name} → {event.job.output_path.name}")

    def on_job_failed(self, event: JobFailed):
        self._print(f"[red]✗[/] {event.job.source_path.name}: {event.error_message}")

    def on_job_interrupted(self, event: JobInterrupted):
        self._print(f"[yellow]■[/] {event.job.source_path.name} interrupted")

    def on_duplicate_found(self, event: DuplicateFound):
        self._print(f"[magenta]≡[/] {event.path.name} duplicates {event.original.name}")

    def on_contact_sheet_finished(self, event: ContactSheetFinished):
        if event.degraded:
            self._print(
                f"[yellow]✓[/] {event.sheet_path.name} "
                f"[yellow]({event.tiles}/{event.expected_tiles} tiles)[/]"
            )
        else:
            self._print(f"[green]✓[/] {event.sheet_path.name}")

    def on_file_renamed(self, event: FileRenamed):
        marker = "[dim]~[/]" if event.dry_run else "[blue]→[/]"
        self._print(f"{marker} {escape(event.path.name)} → {escape(event.new_path.name)}")

    def on_item_failed(self, event: ItemFailed):
        self._print(f"[red]✗[/] {event.path.name}: {event.error_message}")

    def on_workflow_finished(self, event: WorkflowFinished):
        self.summary = event.summary
        with self._lock:
            self.console.print()
            self.console.print(build_summary_table(event.summary))
