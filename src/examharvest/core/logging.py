"""
Logging for ExamHarvest.

Everything logs under the ``examharvest`` logger. setup_logging() attaches
a rich console handler (or a plain stream handler) and, optionally, a
JSON-lines file handler. Harvests log through a ContextualLogger so that
every line carries the durable job and owner, or the live request ticket.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

import orjson

if TYPE_CHECKING:
    from rich.console import Console


ROOT_LOGGER = "examharvest"

# Record attributes copied into JSON lines when present
CONTEXT_FIELDS = ("job_id", "owner_id", "ticket", "attempt")

LEVEL_STYLES = {
    logging.DEBUG: "dim",
    logging.INFO: "default",
    logging.WARNING: "yellow",
    logging.ERROR: "red",
    logging.CRITICAL: "bold red",
}

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("apscheduler", "sqlalchemy.engine", "playwright", "sse_starlette")

PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def json_dumps(obj: Any) -> str:
    return orjson.dumps(obj, default=str).decode("utf-8")


# =============================================================================
# Formatters and handlers
# =============================================================================


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with harvest context fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "source": f"{record.module}:{record.lineno}",
            "message": record.getMessage(),
        }
        entry.update(
            (key, getattr(record, key)) for key in CONTEXT_FIELDS if hasattr(record, key)
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json_dumps(entry)


def context_prefix(record: logging.LogRecord) -> str:
    """Short rich-markup tag naming the job or live request a line belongs to."""
    if hasattr(record, "job_id"):
        return f"[cyan][job {str(record.job_id)[:8]}][/cyan] "
    if hasattr(record, "ticket"):
        return f"[magenta][live #{record.ticket}][/magenta] "
    return ""


class RichConsoleHandler(logging.Handler):
    """Handler printing level-coloured lines to a rich console."""

    def __init__(self, console: "Console | None" = None, level: int = logging.INFO):
        super().__init__(level)
        if console is None:
            from rich.console import Console
            console = Console(stderr=True)
        self.console = console

    def emit(self, record: logging.LogRecord) -> None:
        try:
            style = LEVEL_STYLES.get(record.levelno, "default")
            self.console.print(
                f"{context_prefix(record)}[{style}]{self.format(record)}[/{style}]",
                markup=True,
                highlight=False,
            )
            if record.exc_info:
                self.console.print_exception()
        except Exception:
            self.handleError(record)


def _console_handler(rich_console: bool) -> logging.Handler:
    if rich_console:
        handler: logging.Handler = RichConsoleHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))
    return handler


def _file_handler(log_file: Path | str, json_format: bool) -> logging.Handler:
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


# =============================================================================
# Setup
# =============================================================================


def setup_logging(
    level: str = "INFO",
    log_file: Path | str | None = None,
    json_format: bool = True,
    rich_console: bool = True,
) -> logging.Logger:
    """Configure the ``examharvest`` logger.

    Args:
        level: Console log level (DEBUG, INFO, WARNING, ERROR)
        log_file: JSON-lines (or plain) log file; the file gets every level
        json_format: Use JSON lines for the file
        rich_console: Use rich for console output

    Returns:
        The ``examharvest`` logger
    """
    numeric_level = getattr(logging, level.upper())

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG if log_file else numeric_level)
    logger.handlers.clear()

    console = _console_handler(rich_console)
    console.setLevel(numeric_level)
    logger.addHandler(console)

    if log_file:
        logger.addHandler(_file_handler(log_file, json_format))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    """Logger under the ``examharvest`` root.

    Both ``"worker"`` and ``"examharvest.worker"`` name the same logger.
    """
    if not name:
        return logging.getLogger(ROOT_LOGGER)
    if name == ROOT_LOGGER or name.startswith(f"{ROOT_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


# =============================================================================
# Contextual logging
# =============================================================================


class ContextualLogger(logging.LoggerAdapter):
    """Adapter that stamps fixed context (job, owner, ticket...) onto every record.

    Context passed per call through ``extra`` wins over the bound context.
    """

    def __init__(self, logger: logging.Logger, **context: Any):
        super().__init__(logger, {k: v for k, v in context.items() if v is not None})

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_contextual_logger(
    name: str | None = None,
    job_id: str | None = None,
    owner_id: str | None = None,
    ticket: int | None = None,
) -> ContextualLogger:
    """Get a logger carrying durable-job or live-request context.

    Args:
        name: Logger name under ``examharvest``
        job_id: Durable job being processed
        owner_id: Owner of that job
        ticket: Admission ticket of a live request
    """
    return ContextualLogger(get_logger(name), job_id=job_id, owner_id=owner_id, ticket=ticket)
