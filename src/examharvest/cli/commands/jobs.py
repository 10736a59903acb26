"""
Durable import job commands.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from examharvest.cli.bootstrap import bootstrap

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    help="Manage durable import jobs",
    no_args_is_help=True,
)

ConfigOption = typer.Option(None, "--config", "-c", help="Path to app.yaml")

STATUS_STYLES = {
    "PENDING": "yellow",
    "PROCESSING": "cyan",
    "COMPLETED": "green",
    "FAILED": "red",
}

LOG_STYLES = {
    "info": "default",
    "success": "green",
    "warning": "yellow",
    "error": "red",
}


def _styled_status(status: str) -> str:
    style = STATUS_STYLES.get(status, "default")
    return f"[{style}]{status}[/{style}]"


@app.command("list")
def list_jobs(
    status: str | None = typer.Option(
        None,
        "--status",
        "-s",
        help="Filter by status (PENDING, PROCESSING, COMPLETED, FAILED)",
    ),
    owner: str | None = typer.Option(None, "--owner", "-o", help="Filter by owner id"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum rows"),
    config_path: Path | None = ConfigOption,
) -> None:
    """List import jobs, newest first."""
    from examharvest.core.config.models import JobStatus
    from examharvest.core.orchestrator.sinks import JobProgress
    from examharvest.persistence.db import get_session
    from examharvest.persistence.repo import JobRepository

    bootstrap(config_path, with_logging=False)

    if status is not None:
        try:
            status = JobStatus(status.upper()).value
        except ValueError:
            err_console.print(f"[red]Unknown status:[/red] {status}")
            raise typer.Exit(1)

    with get_session() as session:
        jobs = JobRepository(session).list_jobs(status=status, owner_id=owner, limit=limit)

        if not jobs:
            console.print("[dim]No jobs found.[/dim]")
            return

        table = Table(title="Import Jobs", show_header=True, header_style="bold magenta")
        table.add_column("ID", style="cyan")
        table.add_column("Owner")
        table.add_column("Status", justify="center")
        table.add_column("Found", justify="right")
        table.add_column("Skipped", justify="right")
        table.add_column("Created")
        table.add_column("Updated")

        for job in jobs:
            metrics = JobProgress.from_dict(job.logs).metrics
            table.add_row(
                job.id[:8],
                job.owner_id,
                _styled_status(job.status),
                str(metrics.found),
                str(metrics.skipped),
                job.created_at.strftime("%Y-%m-%d %H:%M"),
                job.updated_at.strftime("%Y-%m-%d %H:%M"),
            )

        console.print(table)


@app.command("enqueue")
def enqueue_job(
    owner_id: str = typer.Argument(..., help="Owner the harvested questions belong to"),
    login: str = typer.Argument(..., help="Portal login (user name or e-mail)"),
    password: str = typer.Option(
        ...,
        "--password",
        "-p",
        prompt=True,
        hide_input=True,
        help="Portal password (stored encrypted)",
    ),
    config_path: Path | None = ConfigOption,
) -> None:
    """Queue a background harvest for an owner."""
    from examharvest.core.crypto import encrypt_credential
    from examharvest.core.errors import PersistenceError
    from examharvest.core.scheduler.job_source import DurableJobSource

    config = bootstrap(config_path, with_logging=False)

    credential = encrypt_credential(password, config.security.encryption_key)
    try:
        job = DurableJobSource().enqueue(owner_id, login, credential)
    except PersistenceError as e:
        err_console.print(f"[red]Could not enqueue job:[/red] {e.message}")
        raise typer.Exit(1)

    console.print(f"[green]OK[/green] Queued job [cyan]{job.id}[/cyan] for {owner_id}")


@app.command("show")
def show_job(
    job_id: str = typer.Argument(..., help="Job ID"),
    tail: int = typer.Option(30, "--tail", "-t", help="Number of log lines to show"),
    config_path: Path | None = ConfigOption,
) -> None:
    """Show a job's status, counters and progress log."""
    from examharvest.core.orchestrator.sinks import JobProgress
    from examharvest.persistence.db import get_session
    from examharvest.persistence.repo import JobRepository

    bootstrap(config_path, with_logging=False)

    with get_session() as session:
        job = JobRepository(session).get_by_id(job_id)

        if job is None:
            err_console.print(f"[red]Job not found:[/red] {job_id}")
            raise typer.Exit(1)

        progress = JobProgress.from_dict(job.logs)
        metrics = progress.metrics

        console.print()
        console.print(f"[bold]Job[/bold] [cyan]{job.id}[/cyan]")
        console.print(f"  Owner:     {job.owner_id}")
        console.print(f"  Login:     {job.login}")
        console.print(f"  Status:    {_styled_status(job.status)}")
        console.print(f"  Created:   {job.created_at:%Y-%m-%d %H:%M:%S}")
        console.print(f"  Updated:   {job.updated_at:%Y-%m-%d %H:%M:%S}")
        if job.completed_at:
            console.print(f"  Completed: {job.completed_at:%Y-%m-%d %H:%M:%S}")
        console.print(
            f"  Found: {metrics.found}  Imported: {metrics.imported}  "
            f"Skipped: {metrics.skipped}  XP: {metrics.xp}"
        )
        console.print()

        if not progress.logs:
            console.print("[dim]No log entries yet.[/dim]")
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Time", style="dim")
        table.add_column("Message")

        for entry in progress.logs[-tail:]:
            style = LOG_STYLES.get(entry.type.value, "default")
            table.add_row(entry.time, f"[{style}]{entry.msg}[/{style}]")

        console.print(table)


@app.command("sweep")
def sweep_jobs(
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        help="Minutes without progress before a job counts as stuck",
    ),
    config_path: Path | None = ConfigOption,
) -> None:
    """Return stuck PROCESSING jobs to the queue."""
    from examharvest.core.scheduler.job_source import DurableJobSource

    config = bootstrap(config_path, with_logging=False)
    minutes = timeout if timeout is not None else config.worker.stuck_timeout_minutes

    recovered = DurableJobSource().sweep_stuck(timedelta(minutes=minutes))

    if recovered:
        console.print(f"[green]OK[/green] Recovered {recovered} stuck job(s)")
    else:
        console.print(f"[dim]No jobs stuck for more than {minutes:g} minutes.[/dim]")


@app.command("cancel")
def cancel_job(
    job_id: str = typer.Argument(..., help="Job ID"),
    config_path: Path | None = ConfigOption,
) -> None:
    """Cancel a pending or running job.

    A running worker stops at its next phase boundary.
    """
    from examharvest.persistence.db import get_session
    from examharvest.persistence.repo import JobRepository

    bootstrap(config_path, with_logging=False)

    with get_session() as session:
        cancelled = JobRepository(session).cancel(job_id)

    if not cancelled:
        err_console.print(f"[red]Job not found or already finished:[/red] {job_id}")
        raise typer.Exit(1)

    console.print(f"[green]OK[/green] Cancelled job [cyan]{job_id}[/cyan]")
