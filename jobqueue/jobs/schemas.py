"""
Job system Pydantic schemas.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from jobqueue.jobs.models import JobState


class JobOptions(BaseModel):
    """Per-submission options."""

    max_attempts: int | None = Field(
        default=None, ge=1, description="Attempt ceiling, queue default when unset"
    )
    delay_ms: int = Field(
        default=0, ge=0, description="Wait before the job becomes claimable"
    )


class BulkJob(BaseModel):
    """One entry of a bulk submission."""

    job_type: str = Field(..., min_length=1, description="Job type")
    payload: Any = Field(default=None, description="Handler input")
    options: JobOptions = Field(default_factory=JobOptions)


class JobResult(BaseModel):
    """Outcome of one attempt as reported by a worker."""

    success: bool
    data: Any = None
    error: str | None = None
    error_type: str | None = Field(
        default=None, description="Exception class name of a failure"
    )
    retryable: bool = Field(
        default=True, description="False forces a terminal failure"
    )
    duration_ms: int = Field(default=0, ge=0, description="Handler wall-clock time")
    completed_at: datetime

    def stored(self) -> dict[str, Any]:
        """JSON form kept on the job record; retry hints are not persisted."""
        return self.model_dump(mode="json", exclude={"retryable"})


class LogEntry(BaseModel):
    """One line of a job log."""

    model_config = ConfigDict(from_attributes=True)

    attempt: int
    logged_at: datetime
    message: str


class JobSnapshot(BaseModel):
    """Read-only view of a job record."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID
    queue_name: str
    job_type: str
    payload: Any = None
    state: JobState
    progress: int
    attempts: int
    max_attempts: int
    next_eligible_at: datetime

    locked_by: str | None = None
    started_at: datetime | None = None
    heartbeat_at: datetime | None = None

    result: dict[str, Any] | None = None
    last_error: str | None = None
    duration_ms: int | None = None

    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None

    log: list[LogEntry] = Field(
        default_factory=list, description="Entries of the current attempt"
    )


class QueueMetrics(BaseModel):
    """Counters and timings of one queue."""

    queue: str
    waiting: int
    active: int
    completed: int
    failed: int
    delayed: int
    paused: bool
    total_processed: int
    throughput: int = Field(description="Jobs finished in the last hour")
    average_processing_time_ms: int


class QueueHealth(BaseModel):
    status: str = Field(description="healthy|warning|error")
    issues: list[str] = Field(default_factory=list)


class HealthReport(BaseModel):
    healthy: bool
    queues: dict[str, QueueHealth]
