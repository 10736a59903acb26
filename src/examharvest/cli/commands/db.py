"""
Database schema commands.

Alembic is configured in code from the app configuration, so the commands
work from any directory without an alembic.ini.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Callable

import typer
from rich.console import Console

from examharvest.cli.bootstrap import bootstrap

if TYPE_CHECKING:
    from alembic.config import Config

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    help="Database schema and migrations",
    no_args_is_help=True,
)

ConfigOption = typer.Option(None, "--config", "-c", help="Path to app.yaml")

MIGRATIONS_DIR = Path(__file__).resolve().parents[2] / "persistence" / "migrations"


def alembic_config(url: str) -> "Config":
    """Alembic Config pointing at the bundled migrations and ``url``."""
    from alembic.config import Config

    from examharvest.persistence.db import normalize_url

    cfg = Config()
    cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
    # ConfigParser interpolation treats % specially
    cfg.set_main_option("sqlalchemy.url", normalize_url(url).replace("%", "%%"))
    return cfg


def _run_alembic(
    action: str,
    command: Callable[["Config", str], None],
    revision: str,
    config_path: Path | None,
) -> None:
    config = bootstrap(config_path, with_logging=False)
    console.print(f"{action} to revision [cyan]{revision}[/cyan]...")

    try:
        command(alembic_config(config.database.url), revision)
    except Exception as e:
        err_console.print(f"[red]{action} failed:[/red] {e}")
        raise typer.Exit(1)

    console.print(f"[green]OK[/green] {action} complete")


@app.command("init")
def init_database(
    drop_existing: bool = typer.Option(
        False,
        "--drop",
        help="Drop existing tables before creating",
    ),
    config_path: Path | None = ConfigOption,
) -> None:
    """Create the schema directly from the models.

    Meant for development and tests; deployments use ``db migrate``.
    """
    from examharvest.persistence.db import drop_db, init_db
    from examharvest.persistence.models import Base

    config = bootstrap(config_path, with_logging=False)

    if drop_existing:
        if not typer.confirm("This will DELETE ALL harvested questions and jobs. Continue?", default=False):
            raise typer.Abort()

        console.print("[yellow]Dropping existing tables...[/yellow]")
        drop_db(config.database.url)

    init_db(config.database.url)

    tables = ", ".join(sorted(Base.metadata.tables))
    console.print(f"[green]OK[/green] Database ready ({tables})")


@app.command("migrate")
def run_migrations(
    revision: str = typer.Option(
        "head",
        "--revision",
        "-r",
        help="Target revision (default: head)",
    ),
    config_path: Path | None = ConfigOption,
) -> None:
    """Upgrade the schema with Alembic."""
    from alembic import command

    _run_alembic("Upgrade", command.upgrade, revision, config_path)


@app.command("downgrade")
def downgrade_database(
    revision: str = typer.Argument(..., help="Target revision (e.g. base or -1)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    config_path: Path | None = ConfigOption,
) -> None:
    """Downgrade the schema to an earlier revision."""
    from alembic import command

    if not yes and not typer.confirm(f"Downgrade to revision '{revision}'? This may lose data."):
        raise typer.Abort()

    _run_alembic("Downgrade", command.downgrade, revision, config_path)


@app.command("current")
def show_current(config_path: Path | None = ConfigOption) -> None:
    """Show the revision the database is at."""
    from alembic import command

    from examharvest.persistence.db import display_url

    config = bootstrap(config_path, with_logging=False)

    console.print(f"[bold]Database:[/bold] {display_url(config.database.url)}")
    command.current(alembic_config(config.database.url), verbose=True)
