"""
Job record models.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from jobqueue.infra.database import Base, UTCDateTime


class JobState(str, Enum):
    """Job state enumeration."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


def utcnow() -> datetime:
    return datetime.now(UTC)


class Job(Base):
    """
    A unit of work routed by (queue name, job type).

    Lifecycle:
    - pending: waiting until next_eligible_at, claimable
    - active: owned by exactly one worker for the current attempt
    - completed / failed: terminal, removed only by retention trimming
    """

    __tablename__ = "jobs"

    # Identity
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    queue_name: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Queue the job belongs to"
    )
    job_type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Job type identifier"
    )
    payload: Mapped[Any] = mapped_column(
        JSON, nullable=True, comment="Opaque handler input"
    )

    # Job state
    state: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobState.PENDING.value,
        comment="Job state: pending|active|completed|failed",
    )
    progress: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=0, comment="Progress 0-100"
    )
    attempts: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=0, comment="Number of claims made"
    )
    max_attempts: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=3, comment="Attempt ceiling"
    )
    next_eligible_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, comment="Earliest claim time"
    )

    # Worker coordination
    locked_by: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Worker ID that claimed the job"
    )
    started_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="Start of the current attempt"
    )
    heartbeat_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="Last sign of life from the worker"
    )

    # Outcome
    result: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Structured result, terminal states only"
    )
    last_error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last failure message"
    )
    duration_ms: Mapped[int | None] = mapped_column(
        Integer, nullable=True, comment="Wall-clock time of the last attempt"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "state IN ('pending', 'active', 'completed', 'failed')",
            name="jobs_state_check",
        ),
        CheckConstraint("progress BETWEEN 0 AND 100", name="jobs_progress_check"),
        CheckConstraint("attempts <= max_attempts", name="jobs_attempts_check"),
        Index("ix_jobs_claim", "queue_name", "state", "next_eligible_at"),
        Index("ix_jobs_finished", "queue_name", "state", "completed_at"),
    )

    def is_active(self) -> bool:
        return self.state == JobState.ACTIVE.value


class JobLog(Base):
    """One timestamped log line of a job attempt."""

    __tablename__ = "job_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False
    )
    attempt: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    logged_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (Index("ix_job_logs_job_attempt", "job_id", "attempt", "id"),)


class JobQueueState(Base):
    """Persistent per-queue switches shared by every worker process."""

    __tablename__ = "job_queues"

    name: Mapped[str] = mapped_column(Text, primary_key=True)
    paused: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
