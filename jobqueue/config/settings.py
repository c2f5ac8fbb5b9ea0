from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BackoffType(str, Enum):
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


class BackoffConfig(BaseModel):
    """Delay policy applied before a failed job becomes claimable again."""

    type: BackoffType = Field(
        default=BackoffType.EXPONENTIAL, description="Backoff strategy"
    )
    delay_ms: int = Field(default=2000, ge=0, description="Base delay in milliseconds")
    jitter: float = Field(
        default=0.0, ge=0.0, le=1.0, description="Random +/- fraction of the delay"
    )
    max_delay_ms: int | None = Field(
        default=None, ge=0, description="Upper bound for a single delay"
    )


class QueueConfig(BaseModel):
    """Per-queue configuration, passed when a queue is created."""

    name: str = Field(..., min_length=1, description="Queue name")
    concurrency: int = Field(default=1, ge=1, description="Worker count")
    max_attempts: int = Field(default=3, ge=1, description="Default attempts per job")
    backoff: BackoffConfig = Field(default_factory=BackoffConfig)
    keep_completed: int = Field(
        default=10, ge=0, description="Completed records retained"
    )
    keep_failed: int = Field(default=50, ge=0, description="Failed records retained")
    log_limit: int = Field(
        default=1000, ge=1, description="Log entries kept per attempt"
    )
    lease_timeout_s: float | None = Field(
        default=None,
        gt=0,
        description="Reclaim active jobs whose heartbeat is older than this",
    )
    timeout_ms: int | None = Field(
        default=None, gt=0, description="Fail an attempt running longer than this"
    )
    poll_interval_ms: int = Field(default=250, ge=1, description="Initial idle wait")
    max_poll_interval_ms: int = Field(
        default=2000, ge=1, description="Idle wait ceiling"
    )


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="jobqueue", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment")
    debug: bool = Field(default=False, description="Debug mode")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./jobqueue.db",
        description="Database connection URL",
    )
    db_pool_size: int = Field(default=10, description="Database connection pool size")
    db_max_overflow: int = Field(
        default=20, description="Database max overflow connections"
    )
    db_pool_timeout: int = Field(
        default=30, description="Database pool timeout in seconds"
    )
    db_pool_recycle: int = Field(
        default=3600, description="Database connection recycle time in seconds"
    )
    db_echo: bool = Field(default=False, description="Echo SQL statements")

    # Queue defaults
    job_concurrency: int = Field(default=1, description="Workers per queue")
    job_max_attempts: int = Field(default=3, description="Attempts per job")
    job_backoff_type: BackoffType = Field(
        default=BackoffType.EXPONENTIAL, description="Retry backoff strategy"
    )
    job_backoff_base_ms: int = Field(default=2000, description="Retry base delay")
    job_backoff_jitter: float = Field(default=0.0, description="Retry delay jitter")
    job_max_backoff_ms: int | None = Field(
        default=None, description="Retry delay ceiling"
    )
    job_keep_completed: int = Field(default=10, description="Completed jobs kept")
    job_keep_failed: int = Field(default=50, description="Failed jobs kept")
    job_log_limit: int = Field(default=1000, description="Log entries per attempt")
    job_lease_timeout_s: float | None = Field(
        default=None, description="Stalled job lease in seconds, off when unset"
    )
    job_timeout_ms: int | None = Field(
        default=None, description="Attempt time limit in milliseconds, off when unset"
    )
    job_poll_interval_ms: int = Field(default=250, description="Idle poll interval")
    job_max_poll_interval_ms: int = Field(
        default=2000, description="Idle poll interval ceiling"
    )
    job_validate_types: bool = Field(
        default=True, description="Reject submissions without a registered handler"
    )
    queues: dict[str, QueueConfig] = Field(
        default_factory=dict, description="Per-queue overrides keyed by name"
    )

    # Store outage handling
    store_retry_base_ms: int = Field(
        default=500, description="Worker wait after a store failure"
    )
    store_retry_max_ms: int = Field(
        default=10000, description="Worker wait ceiling after store failures"
    )
    shutdown_grace_ms: int = Field(
        default=30000,
        description="How long a stopping worker keeps trying to record an outcome",
    )

    # Health thresholds
    health_failed_threshold: int = Field(
        default=10, description="Failed jobs above which a queue is flagged"
    )
    health_active_threshold: int = Field(
        default=50, description="Active jobs above which a queue is flagged"
    )

    def model_post_init(self, __context) -> None:
        """Validate settings after initialization."""
        if self.environment == "production" and self.debug:
            raise ValueError("DEBUG=true is not allowed in production environment.")

        if self.job_max_attempts < 1:
            raise ValueError("JOB_MAX_ATTEMPTS must be at least 1")

        if self.job_keep_completed < 0 or self.job_keep_failed < 0:
            raise ValueError("Retention caps must not be negative")

        if self.job_max_poll_interval_ms < self.job_poll_interval_ms:
            raise ValueError(
                "JOB_MAX_POLL_INTERVAL_MS must not be lower than JOB_POLL_INTERVAL_MS"
            )

    def queue_config(self, name: str, **overrides) -> QueueConfig:
        """Build the configuration of a queue from the defaults and overrides."""
        values = {
            "name": name,
            "concurrency": self.job_concurrency,
            "max_attempts": self.job_max_attempts,
            "backoff": BackoffConfig(
                type=self.job_backoff_type,
                delay_ms=self.job_backoff_base_ms,
                jitter=self.job_backoff_jitter,
                max_delay_ms=self.job_max_backoff_ms,
            ),
            "keep_completed": self.job_keep_completed,
            "keep_failed": self.job_keep_failed,
            "log_limit": self.job_log_limit,
            "lease_timeout_s": self.job_lease_timeout_s,
            "timeout_ms": self.job_timeout_ms,
            "poll_interval_ms": self.job_poll_interval_ms,
            "max_poll_interval_ms": self.job_max_poll_interval_ms,
        }

        configured = self.queues.get(name)
        if configured is not None:
            values.update(configured.model_dump(exclude_unset=True))

        values.update(overrides)
        values["name"] = name
        return QueueConfig(**values)


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the process-wide settings read from the environment."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
