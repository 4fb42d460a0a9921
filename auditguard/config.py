"""
Configuration management using pydantic-settings.
All settings loaded from environment variables (12-factor app).
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ONE_GIB = 1024 * 1024 * 1024


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Store
    db_path: str = Field(default="./data/audit.sqlite", description="Live audit store file path")
    db_size_limit_bytes: int = Field(
        default=ONE_GIB, ge=1, description="On-disk size ceiling before archival"
    )
    archive_after_days: int = Field(
        default=365, ge=1, description="Hot-table records older than this are archived"
    )

    # Backups
    backup_dir: str = Field(default="backups", description="Backup artifact directory")
    backup_key_path: str = Field(
        default="./.backup_key", description="Symmetric key file (outside backup_dir)"
    )
    backup_retention_days: int = Field(
        default=30, ge=1, description="Retention horizon for backup artifacts"
    )

    # Watchdog cadences
    fast_interval_seconds: float = Field(default=60, gt=0, description="Liveness/threshold cadence")
    medium_interval_seconds: float = Field(default=300, gt=0, description="Structural check cadence")
    slow_interval_seconds: float = Field(default=3600, gt=0, description="Optimization sweep cadence")
    enable_watchdog: bool = Field(default=True, description="Start timers with the application")

    # Thresholds
    metrics_window_minutes: int = Field(default=5, ge=1, description="Threshold check window")
    latency_metric_name: str = Field(
        default="audit_search_duration_ms", description="Latency metric consulted by the probe"
    )
    error_metric_name: str = Field(default="audit_error_count", description="Error counter metric")
    request_metric_name: str = Field(
        default="audit_request_count", description="Request counter metric"
    )
    response_time_threshold_ms: float = Field(default=1000.0, gt=0)
    error_rate_threshold: float = Field(default=0.05, ge=0.0, le=1.0)
    memory_ratio_threshold: float = Field(default=0.90, gt=0.0, le=1.0)
    memory_restart_ratio: float = Field(default=0.95, gt=0.0, le=1.0)
    memory_limit_bytes: int = Field(
        default=0, ge=0, description="Memory ratio denominator (0 = physical memory)"
    )
    index_seek_ratio_ceiling: float = Field(default=0.5, gt=0.0)
    index_min_entries: int = Field(default=1000, ge=0)

    # Remediation
    step_timeout_seconds: float = Field(default=300, gt=0, description="Per-step timeout")
    error_pattern_min_occurrences: int = Field(default=3, ge=1)
    attempt_history_size: int = Field(default=50, ge=1)

    # API
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")

    # Logging
    log_level: str = Field(default="info", description="Log level")
    log_format: str = Field(default="json", description="Log format (json|console)")

    # Development
    dev_mode: bool = Field(default=True, description="Development mode")
    testing: bool = Field(default=False, description="Testing mode")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalise and validate the log level name."""
        level = v.strip().lower()
        if level not in {"debug", "info", "warning", "error", "critical"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("memory_restart_ratio")
    @classmethod
    def validate_restart_ratio(cls, v: float, info) -> float:
        """Restart must never trigger below the detection threshold."""
        threshold = info.data.get("memory_ratio_threshold")
        if threshold is not None and v < threshold:
            raise ValueError("memory_restart_ratio must be >= memory_ratio_threshold")
        return v

    @property
    def backup_path(self) -> Path:
        """Backup directory as a resolved path."""
        return Path(self.backup_dir).resolve()

    @property
    def key_path(self) -> Path:
        """Key file as a resolved path."""
        return Path(self.backup_key_path).resolve()


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to ensure singleton behavior.
    """
    return Settings()
