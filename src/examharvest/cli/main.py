"""
ExamHarvest CLI - Main entry point.

Runs the harvest API, the background job worker, and the job and
database maintenance commands.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.traceback import install as install_rich_traceback

from examharvest import __app_name__, __version__

from .bootstrap import bootstrap

# Load environment variables from .env (if present)
load_dotenv()

# Install rich traceback for better error display
install_rich_traceback(show_locals=False, width=120)

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name=__app_name__,
    help="Exam question harvester: live API, background worker and job tools",
    rich_markup_mode="rich",
    no_args_is_help=True,
    pretty_exceptions_show_locals=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold cyan]{__app_name__}[/bold cyan] version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """ExamHarvest - Exam question harvester."""
    pass


# =============================================================================
# Import and register subcommand modules
# =============================================================================

from .commands import db, jobs, worker  # noqa: E402

app.add_typer(db.app, name="db", help="Database operations")
app.add_typer(jobs.app, name="jobs", help="Manage durable import jobs")
app.add_typer(worker.app, name="worker", help="Run the background job worker")


# =============================================================================
# Init Command
# =============================================================================


DEFAULT_APP_CONFIG = """\
# ExamHarvest Configuration
# Environment variables override: ENVIRONMENT, DATABASE_URL, TARGET_URL,
# ENCRYPT_KEY, SERVICE_API_KEY, PORT, LOG_LEVEL

environment: dev
data_dir: data

database:
  url: sqlite:///data/examharvest.db
  echo: false

logging:
  level: INFO
  file: logs/examharvest.log
  json_format: true
  rich_console: true

site:
  target_url: ${TARGET_URL:-https://sei.univesp.br/index.xhtml}

retry:
  max_attempts: 3
  base_delay_seconds: 5

admission:
  max_concurrency: 3
  heartbeat_seconds: 15

worker:
  poll_interval_seconds: 10
  sweep_interval_minutes: 60
  stuck_timeout_minutes: 30
  cancel_poll_seconds: 15
  flush_every_records: 2

api:
  host: 0.0.0.0
  port: 3033
"""


@app.command()
def init(
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing configuration",
    ),
) -> None:
    """Initialize ExamHarvest database and configuration.

    Creates required directories, a default configuration file,
    and initializes the database schema.
    """
    from rich.progress import Progress, SpinnerColumn, TextColumn

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Creating directories...", total=None)

        for dir_path in (Path("configs"), Path("data"), Path("logs"), Path("snapshots")):
            dir_path.mkdir(parents=True, exist_ok=True)

        progress.update(task, description="Creating default configuration...")

        app_config_path = Path("configs/app.yaml")
        if not app_config_path.exists() or force:
            app_config_path.write_text(DEFAULT_APP_CONFIG, encoding="utf-8")

        progress.update(task, description="Initializing database...")

        from examharvest.persistence.db import init_db

        config = bootstrap(app_config_path, with_logging=False)
        init_db(config.database.url)

        progress.update(task, description="Done!")

    console.print()
    console.print(Panel.fit(
        "[bold green]OK - ExamHarvest initialized successfully![/bold green]\n\n"
        "Created:\n"
        "  - [cyan]configs/app.yaml[/cyan] - Application configuration\n"
        "  - [cyan]data/[/cyan] - Database storage\n"
        "  - [cyan]logs/[/cyan] - Log files\n"
        "  - [cyan]snapshots/[/cyan] - Error screenshots\n\n"
        "Next steps:\n"
        "  1. Set [yellow]ENCRYPT_KEY[/yellow] and [yellow]SERVICE_API_KEY[/yellow] in .env\n"
        "  2. Start the API: [yellow]examharvest serve[/yellow]\n"
        "  3. Or queue a job: [yellow]examharvest jobs enqueue <owner> <login>[/yellow]",
        title="[bold]Initialization Complete[/bold]",
        border_style="green",
    ))


# =============================================================================
# Status Command
# =============================================================================


@app.command()
def status(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to app.yaml"),
) -> None:
    """Show job queue and harvest statistics."""
    from rich.table import Table
    from sqlalchemy.exc import OperationalError

    from examharvest.persistence.db import display_url, get_session
    from examharvest.persistence.repo import JobRepository, QuestionRepository

    config = bootstrap(config_path, with_logging=False)

    console.print()
    console.print("[bold]ExamHarvest Status[/bold]")
    console.print(f"[dim]Environment:[/dim] {config.environment.value}")
    console.print(f"[dim]Database:[/dim] {display_url(config.database.url)}")
    console.print()

    try:
        with get_session() as session:
            counts = JobRepository(session).count_by_status()
            questions = QuestionRepository(session).count()
    except OperationalError:
        err_console.print("[red]Database not initialized. Run:[/red] examharvest init")
        raise typer.Exit(1)

    if counts:
        table = Table(title="Import Jobs", show_header=True, header_style="bold magenta")
        table.add_column("Status", style="cyan")
        table.add_column("Count", justify="right")

        for job_status, count in sorted(counts.items()):
            table.add_row(job_status, str(count))

        console.print(table)
    else:
        console.print("[dim]No import jobs yet.[/dim]")

    console.print()
    console.print(f"[bold]Questions stored:[/bold] {questions}")


# =============================================================================
# Serve Command
# =============================================================================


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default from config)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port (default from config)"),
    with_worker: bool = typer.Option(
        True,
        "--with-worker/--no-worker",
        help="Also run the background job worker in this process",
    ),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to app.yaml"),
) -> None:
    """Serve the live harvest API."""
    import uvicorn

    from examharvest.api.app import create_app

    config = bootstrap(config_path)
    bind_host = host or config.api.host
    bind_port = port or config.api.port

    if not config.api.api_key:
        err_console.print("[yellow]Warning:[/yellow] SERVICE_API_KEY is not set; the API is unauthenticated")

    console.print(f"[bold]Serving on[/bold] http://{bind_host}:{bind_port}")
    uvicorn.run(
        create_app(config, run_worker=with_worker),
        host=bind_host,
        port=bind_port,
        log_level=config.logging.level.lower(),
    )


# =============================================================================
# Entry Point
# =============================================================================


def run() -> None:
    """Run the CLI application."""
    app()


if __name__ == "__main__":
    run()
