"""
Shared start-up for CLI commands: configuration, logging and database.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from examharvest.core.config.loader import ConfigError, load_app_config
from examharvest.core.config.models import AppConfig

err_console = Console(stderr=True)


def bootstrap(config_path: Path | None = None, with_logging: bool = True) -> AppConfig:
    """Load configuration and bind the process-wide database engine.

    Exits with status 1 on an invalid configuration.
    """
    from examharvest.core.logging import setup_logging
    from examharvest.persistence.db import get_engine

    try:
        config = load_app_config(config_path)
    except ConfigError as e:
        err_console.print(f"[red]Configuration error:[/red] {e}")
        if e.details:
            err_console.print(f"[dim]{e.details}[/dim]")
        raise typer.Exit(1)

    config.ensure_directories()

    if with_logging:
        setup_logging(
            level=config.logging.level,
            log_file=config.logging.file,
            json_format=config.logging.json_format,
            rich_console=config.logging.rich_console,
        )

    get_engine(
        config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
    )
    return config
