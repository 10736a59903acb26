"""Configuration loading and validation."""

from .models import (
    # Enums
    Environment,
    JobStatus,
    LogType,
    Step,
    # Config models
    AppConfig,
    AdmissionConfig,
    ApiConfig,
    BrowserConfig,
    DatabaseConfig,
    LoggingConfig,
    RetryConfig,
    SecurityConfig,
    SiteConfig,
    WorkerConfig,
)
from .loader import ConfigError, load_app_config

__all__ = [
    # Enums
    "Environment",
    "JobStatus",
    "LogType",
    "Step",
    # Config models
    "AppConfig",
    "AdmissionConfig",
    "ApiConfig",
    "BrowserConfig",
    "DatabaseConfig",
    "LoggingConfig",
    "RetryConfig",
    "SecurityConfig",
    "SiteConfig",
    "WorkerConfig",
    # Loaders
    "ConfigError",
    "load_app_config",
]
