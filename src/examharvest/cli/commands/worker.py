"""
Background worker commands.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich.console import Console

from examharvest.cli.bootstrap import bootstrap

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    help="Run the background job worker",
    no_args_is_help=True,
)

ConfigOption = typer.Option(None, "--config", "-c", help="Path to app.yaml")


@app.command("start")
def start_worker(config_path: Path | None = ConfigOption) -> None:
    """Start the worker in foreground mode.

    Polls for pending jobs and periodically recovers stuck ones.
    Press Ctrl+C to stop.
    """
    from examharvest.core.scheduler import DurableJobSource, WorkerLoop, WorkerService

    config = bootstrap(config_path)
    service = WorkerService(config, WorkerLoop(config, DurableJobSource()))

    console.print("[bold]Starting worker...[/bold]")
    console.print(f"[dim]Poll interval:[/dim] {config.worker.poll_interval_seconds:g}s")
    console.print(f"[dim]Sweep interval:[/dim] {config.worker.sweep_interval_minutes:g} min")
    console.print("[dim]Press Ctrl+C to stop[/dim]")

    try:
        asyncio.run(service.start())
    except KeyboardInterrupt:
        console.print("\n[yellow]Worker stopped[/yellow]")


@app.command("run-once")
def run_once(config_path: Path | None = ConfigOption) -> None:
    """Claim and process a single pending job, then exit."""
    from examharvest.core.scheduler import DurableJobSource, WorkerLoop

    config = bootstrap(config_path)
    worker = WorkerLoop(config, DurableJobSource())

    outcome = asyncio.run(worker.process_next_job())

    if outcome is None:
        console.print("[dim]No pending job processed.[/dim]")
        return

    summary = outcome.to_dict()
    style = "green" if outcome.succeeded else "red"
    console.print(f"[{style}]{summary['status']}[/{style}] after {summary['attempts']} attempt(s)")
    console.print(f"  Questions: {summary['records']}  Exams: {summary['units_done']}")
    if summary["error"]:
        console.print(f"  [red]{summary['error']}[/red]")
    if not outcome.succeeded:
        raise typer.Exit(1)
