"""
Pydantic configuration models for ExamHarvest.

These models provide type-safe configuration with validation for:
- Application settings
- Browser session settings
- Target site settings
- Retry, admission and worker tuning
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# Enums
# =============================================================================


class Environment(str, Enum):
    """Deployment environment."""

    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class JobStatus(str, Enum):
    """Durable import job lifecycle status."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class LogType(str, Enum):
    """Category of a job log entry."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Step(str, Enum):
    """Status step identifiers emitted during a run."""

    QUEUED = "QUEUED"
    INIT = "INIT"
    NAVIGATE = "NAVIGATE"
    LOGIN = "LOGIN"
    ANALYZING = "ANALYZING"
    PROCESSING = "PROCESSING"
    FOUND = "FOUND"
    INFO = "INFO"
    SKIPPED = "SKIPPED"
    WARNING = "WARNING"
    EXAM_DONE = "EXAM_DONE"
    DONE = "DONE"
    CLEANUP = "CLEANUP"
    ERROR = "ERROR"


# =============================================================================
# Browser Configuration
# =============================================================================


class BrowserConfig(BaseModel):
    """Playwright browser session settings."""

    headless: bool | None = Field(
        default=None,
        description="Run headless (default: headed only in the dev environment)",
    )
    browser: str = Field(
        default="chromium",
        description="Browser to use: chromium, firefox, webkit",
    )
    viewport_width: int = Field(default=1920, ge=320, le=3840)
    viewport_height: int = Field(default=1080, ge=240, le=2160)
    user_agent: str | None = Field(
        default=None,
        description="Custom user agent string",
    )
    locale: str = Field(default="pt-BR")
    timezone_id: str = Field(default="America/Sao_Paulo")
    navigation_timeout_ms: int = Field(
        default=30000,
        ge=1000,
        le=300000,
        description="Timeout for page navigation",
    )
    action_timeout_ms: int = Field(
        default=10000,
        ge=500,
        le=120000,
        description="Timeout for individual actions and element waits",
    )
    unit_select_timeout_ms: int = Field(
        default=120000,
        ge=1000,
        le=600000,
        description="Timeout for selecting an exam (the portal is slow here)",
    )
    settle_delay_ms: int = Field(
        default=1500,
        ge=0,
        le=30000,
        description="Stability pause after AJAX-driven selections",
    )
    blocked_resource_types: list[str] = Field(
        default_factory=lambda: ["image", "font"],
        description="Resource types aborted by the request router",
    )
    screenshots_on_error: bool = Field(default=True)
    screenshots_path: Path = Field(default=Path("snapshots"))


# =============================================================================
# Site Configuration
# =============================================================================


class SiteConfig(BaseModel):
    """Target portal settings."""

    target_url: str = Field(
        default="https://sei.univesp.br/index.xhtml",
        description="Login page of the student portal",
    )
    excluded_unit_markers: list[str] = Field(
        default_factory=lambda: ["INT100", "LET100", "MATE100", "MMB002"],
        description="Exam label substrings skipped in the dev environment",
    )


# =============================================================================
# Orchestration Configuration
# =============================================================================


class RetryConfig(BaseModel):
    """Whole-run and per-record retry settings."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay_seconds: float = Field(
        default=5.0,
        ge=0.0,
        le=600.0,
        description="Delay before retry n is base_delay * n",
    )
    persistence_attempts: int = Field(default=3, ge=1, le=10)
    persistence_max_wait_seconds: float = Field(default=2.0, ge=0.0, le=60.0)


class AdmissionConfig(BaseModel):
    """Interactive admission settings."""

    max_concurrency: int = Field(default=3, ge=1, le=50)
    heartbeat_seconds: float = Field(default=15.0, gt=0.0, le=300.0)


class WorkerConfig(BaseModel):
    """Durable job worker settings."""

    poll_interval_seconds: float = Field(default=10.0, gt=0.0, le=3600.0)
    sweep_interval_minutes: float = Field(default=60.0, gt=0.0, le=1440.0)
    stuck_timeout_minutes: float = Field(default=30.0, gt=0.0, le=1440.0)
    cancel_poll_seconds: float = Field(default=15.0, gt=0.0, le=600.0)
    flush_every_records: int = Field(
        default=2,
        ge=1,
        le=100,
        description="Persist the job log on every Nth record",
    )


class ApiConfig(BaseModel):
    """HTTP entry point settings."""

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3033, ge=1, le=65535)
    api_key: str | None = Field(
        default=None,
        description="Required X-API-Key value (disabled when unset)",
    )


class SecurityConfig(BaseModel):
    """Credential encryption settings."""

    encryption_key: str = Field(
        default="default_secret_key_32_bytes_long",
        description="Shared secret the submitting application encrypts with",
    )


# =============================================================================
# Database Configuration
# =============================================================================


class DatabaseConfig(BaseModel):
    """Database connection settings."""

    url: str = Field(
        default="sqlite:///data/examharvest.db",
        description="SQLAlchemy database URL",
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL statements (debugging)",
    )
    pool_size: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Connection pool size",
    )


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
    )
    file: Path | None = Field(
        default=Path("logs/examharvest.log"),
        description="Log file path",
    )
    json_format: bool = Field(
        default=True,
        description="Use JSON format for file logs",
    )
    rich_console: bool = Field(
        default=True,
        description="Use Rich for console output",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Ensure the level is one logging understands."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


# =============================================================================
# Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """Root application configuration.

    This is the main configuration object loaded from app.yaml.
    """

    environment: Environment = Field(
        default=Environment.DEV,
        description="Deployment environment",
    )
    data_dir: Path = Field(
        default=Path("data"),
        description="Data storage directory",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    site: SiteConfig = Field(default_factory=SiteConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    admission: AdmissionConfig = Field(default_factory=AdmissionConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)

    @property
    def is_dev(self) -> bool:
        return self.environment == Environment.DEV

    @property
    def headless(self) -> bool:
        """Resolve headless mode, defaulting to headed only in dev."""
        if self.browser.headless is not None:
            return self.browser.headless
        return not self.is_dev

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

        if self.logging.file:
            self.logging.file.parent.mkdir(parents=True, exist_ok=True)
