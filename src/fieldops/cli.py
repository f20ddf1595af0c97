"""
Operator CLI for the durable offline queue.

Commands:
    fieldops queue list          Show queued actions
    fieldops queue sync          Replay queued actions now
    fieldops queue retry ID      Reset a dead-lettered action
    fieldops queue drop ID       Discard a queued action
    fieldops job durations ID    Time spent in each status
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from fieldops import __version__
from fieldops.application.action_handlers import build_action_handlers
from fieldops.application.orchestrator import OfflineOrchestrator
from fieldops.application.reports import ReportService
from fieldops.config import FieldOpsConfig, load_config
from fieldops.domain.exceptions import FieldOpsError
from fieldops.domain.interfaces import (
    ActionQueueInterface,
    ConnectivityInterface,
    DataGatewayInterface,
    NotifierInterface,
)
from fieldops.domain.job_state import format_duration, status_durations
from fieldops.infrastructure.connectivity import HttpConnectivityProbe, ManualConnectivity
from fieldops.infrastructure.gateway.rest import RestGateway
from fieldops.infrastructure.notify import ConsoleNotifier
from fieldops.infrastructure.persistence.queue import SQLiteActionQueue
from fieldops.infrastructure.reports import PdfReportRenderer
from fieldops.logging_setup import setup_logging

console = Console()
error_console = Console(stderr=True)


def print_error(message: str, hint: str | None = None) -> None:
    """Print formatted error message to stderr."""
    content = Text(f"ERROR: {message}", style="bold red")
    if hint:
        content.append(f"\n\nHint: {hint}", style="yellow")
    error_console.print(Panel(content, title="Error", border_style="red"))


@dataclass
class Services:
    """
    Adapters used by the commands, built on first use.

    Tests pass a pre-populated instance as the click context object.
    """

    config: FieldOpsConfig
    gateway: DataGatewayInterface | None = None
    queue: ActionQueueInterface | None = None
    connectivity: ConnectivityInterface | None = None
    notifier: NotifierInterface | None = None

    def get_gateway(self) -> DataGatewayInterface:
        if self.gateway is None:
            self.gateway = RestGateway.from_config(self.config)
        return self.gateway

    def get_queue(self) -> ActionQueueInterface:
        if self.queue is None:
            self.queue = SQLiteActionQueue(self.config.queue_path)
        return self.queue

    def orchestrator(self) -> OfflineOrchestrator:
        gateway = self.get_gateway()
        if self.connectivity is None:
            self.connectivity = (
                HttpConnectivityProbe(self.config.health_url, timeout=self.config.request_timeout)
                if self.config.health_url
                else ManualConnectivity(online=True)
            )
        return OfflineOrchestrator(
            queue=self.get_queue(),
            connectivity=self.connectivity,
            notifier=self.notifier or ConsoleNotifier(),
            handlers=build_action_handlers(
                gateway, ReportService(gateway, PdfReportRenderer())
            ),
            gateway=gateway,
            max_replay_attempts=self.config.max_replay_attempts,
        )


@click.group()
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to a JSON config file",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose (DEBUG) logging to console")
@click.version_option(__version__, prog_name="fieldops")
@click.pass_context
def main(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """Field operations maintenance commands."""
    if ctx.obj is None:
        try:
            ctx.obj = Services(config=load_config(config_path))
        except FieldOpsError as e:
            print_error(str(e), hint="Check the config file and FIELDOPS_* variables.")
            sys.exit(1)
    setup_logging(log_file=ctx.obj.config.log_file, verbose=verbose)


# =============================================================================
# QUEUE
# =============================================================================


@main.group()
def queue() -> None:
    """Inspect and repair the offline action queue."""


@queue.command("list")
@click.pass_obj
def queue_list(services: Services) -> None:
    """Show queued actions in replay order."""
    items = services.get_queue().list_all()
    if not items:
        console.print("[green]Queue is empty.[/green]")
        return

    table = Table(title=f"Queued actions ({len(items)})")
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("Action")
    table.add_column("Created")
    table.add_column("Attempts", justify="right")
    table.add_column("Status")
    table.add_column("Last error", style="dim")
    for item in items:
        status = "[red]dead letter[/red]" if item.is_dead_letter else "pending"
        table.add_row(
            str(item.action_id),
            item.action,
            item.created_at,
            str(item.attempts),
            status,
            item.last_error or "",
        )
    console.print(table)


@queue.command("sync")
@click.pass_obj
def queue_sync(services: Services) -> None:
    """Replay queued actions now."""
    try:
        report = services.orchestrator().sync_outbox()
    except FieldOpsError as e:
        print_error(str(e))
        sys.exit(1)

    console.print(f"Applied {report.applied}, remaining {report.remaining}.")
    if not report.complete:
        if report.stopped_at is not None:
            print_error(
                f"Stopped at #{report.stopped_at.action_id} "
                f"'{report.stopped_at.action}': {report.error}",
                hint="Use 'fieldops queue retry ID' or 'fieldops queue drop ID'.",
            )
        sys.exit(1)


@queue.command("retry")
@click.argument("action_id", type=int)
@click.pass_obj
def queue_retry(services: Services, action_id: int) -> None:
    """Give a dead-lettered action a fresh retry budget."""
    try:
        item = services.orchestrator().retry_dead_letter(action_id)
    except KeyError as e:
        print_error(e.args[0], hint="Use 'fieldops queue list' to see queued actions.")
        sys.exit(1)
    console.print(f"Reset #{action_id} '{item.action}'.")


@queue.command("drop")
@click.argument("action_id", type=int)
@click.confirmation_option(prompt="Discard this action without applying it?")
@click.pass_obj
def queue_drop(services: Services, action_id: int) -> None:
    """Discard a queued action without applying it."""
    try:
        item = services.orchestrator().discard(action_id)
    except KeyError as e:
        print_error(e.args[0], hint="Use 'fieldops queue list' to see queued actions.")
        sys.exit(1)
    console.print(f"Discarded #{action_id} '{item.action}'.")


# =============================================================================
# JOBS
# =============================================================================


@main.group()
def job() -> None:
    """Job reports."""


@job.command("durations")
@click.argument("job_id")
@click.pass_obj
def job_durations(services: Services, job_id: str) -> None:
    """Time spent in each status."""
    try:
        events = services.get_gateway().list_job_events(job_id)
    except FieldOpsError as e:
        print_error(str(e))
        sys.exit(1)

    totals = status_durations(events)
    if not totals:
        console.print("No completed status periods yet.")
        return
    table = Table(title=f"Time in status for job {job_id}")
    table.add_column("Status", style="cyan")
    table.add_column("Time", justify="right")
    for status, seconds in totals.items():
        table.add_row(status.replace("_", " "), format_duration(seconds))
    console.print(table)


if __name__ == "__main__":
    main()
