"""
Durable queue store backed by SQLAlchemy.

Every operation runs in its own transaction. Claiming is a single conditional
UPDATE ... RETURNING over the oldest eligible row (FOR UPDATE SKIP LOCKED on
Postgres), so two workers can never own the same job. On SQLite, which allows
one writer at a time, store calls are additionally serialized per process.
"""

import asyncio
import contextlib
import random
from collections.abc import AsyncIterator, Callable, Sequence
from datetime import datetime, timedelta
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from jobqueue.config.logging import get_logger
from jobqueue.config.settings import QueueConfig
from jobqueue.core.exceptions import (
    InvalidProgressError,
    JobNotFoundError,
    NotActiveError,
    StoreUnavailable,
    UnknownQueueError,
)
from jobqueue.infra.database import Database
from jobqueue.jobs.backoff import backoff_delay, should_retry
from jobqueue.jobs.models import Job, JobLog, JobQueueState, JobState, utcnow
from jobqueue.jobs.schemas import BulkJob, JobResult, JobSnapshot, LogEntry

logger = get_logger(__name__)

TERMINAL_STATES = (JobState.COMPLETED.value, JobState.FAILED.value)


class QueueStore(Protocol):
    """What the engine needs from a queue store."""

    async def enqueue(
        self,
        queue_name: str,
        job_type: str,
        payload: Any = None,
        *,
        max_attempts: int | None = None,
        delay_ms: int = 0,
    ) -> UUID: ...

    async def claim_next(
        self, queue_name: str, worker_id: str | None = None
    ) -> JobSnapshot | None: ...

    async def report_progress(
        self, job_id: UUID, percent: int, attempt: int | None = None
    ) -> None: ...

    async def append_log(
        self,
        job_id: UUID,
        message: str,
        attempt: int | None = None,
        logged_at: datetime | None = None,
    ) -> None: ...

    async def finalize(
        self, job_id: UUID, result: JobResult, attempt: int | None = None
    ) -> JobSnapshot: ...

    async def list_by_state(
        self, queue_name: str, state: JobState, limit: int = 50
    ) -> list[JobSnapshot]: ...

    async def get(self, job_id: UUID) -> JobSnapshot | None: ...


def _snapshot(job: Job, log: Sequence[JobLog] = ()) -> JobSnapshot:
    data = {column.key: getattr(job, column.key) for column in Job.__table__.columns}
    data["log"] = [LogEntry.model_validate(entry) for entry in log]
    return JobSnapshot.model_validate(data)


class SQLAlchemyQueueStore:
    """Queue store on any SQLAlchemy async backend (SQLite, Postgres)."""

    def __init__(
        self,
        database: Database,
        rand: Callable[[], float] = random.random,
    ):
        self.database = database
        self._rand = rand
        self._queues: dict[str, QueueConfig] = {}
        self._write_lock = asyncio.Lock() if database.is_sqlite else None

    # Queue configuration

    def configure_queue(self, config: QueueConfig) -> None:
        """Make a queue known to this store, replacing any earlier config."""
        self._queues[config.name] = config

    def queue_config(self, queue_name: str) -> QueueConfig:
        try:
            return self._queues[queue_name]
        except KeyError:
            raise UnknownQueueError(queue_name) from None

    def queues(self) -> list[str]:
        return list(self._queues.keys())

    @contextlib.asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        """
        Run a unit of work, mapping connectivity failures to StoreUnavailable.

        Integrity and programming errors are deterministic and propagate as is.
        """
        lock = self._write_lock or contextlib.nullcontext()
        try:
            async with lock:
                async with self.database.SessionLocal() as session:
                    async with session.begin():
                        yield session
        except (OperationalError, InterfaceError, PoolTimeoutError, OSError) as e:
            raise StoreUnavailable(
                f"Queue store unavailable: {e.__class__.__name__}",
                {"error": str(e)},
            ) from e

    # Submission

    async def enqueue(
        self,
        queue_name: str,
        job_type: str,
        payload: Any = None,
        *,
        max_attempts: int | None = None,
        delay_ms: int = 0,
    ) -> UUID:
        """Add a pending job; it becomes claimable after delay_ms."""
        job_ids = await self.enqueue_many(
            queue_name,
            [
                BulkJob(
                    job_type=job_type,
                    payload=payload,
                    options={"max_attempts": max_attempts, "delay_ms": delay_ms},
                )
            ],
        )
        return job_ids[0]

    async def enqueue_many(self, queue_name: str, jobs: Sequence[BulkJob]) -> list[UUID]:
        """Add several pending jobs in one transaction."""
        config = self.queue_config(queue_name)
        now = utcnow()

        records = [
            Job(
                queue_name=queue_name,
                job_type=entry.job_type,
                payload=entry.payload,
                state=JobState.PENDING.value,
                progress=0,
                attempts=0,
                max_attempts=entry.options.max_attempts or config.max_attempts,
                next_eligible_at=now + timedelta(milliseconds=entry.options.delay_ms),
                created_at=now,
                updated_at=now,
            )
            for entry in jobs
        ]

        async with self._transaction() as session:
            session.add_all(records)
            await session.flush()

        for record in records:
            logger.info(
                "Job enqueued",
                job_id=str(record.id),
                queue=queue_name,
                job_type=record.job_type,
                max_attempts=record.max_attempts,
            )

        return [record.id for record in records]

    # Worker operations

    async def claim_next(
        self, queue_name: str, worker_id: str | None = None
    ) -> JobSnapshot | None:
        """
        Atomically take the oldest eligible pending job of a queue.

        Returns None when nothing is eligible or the queue is paused.
        """
        now = utcnow()

        async with self._transaction() as session:
            if await self._is_paused(session, queue_name):
                return None

            pending = aliased(Job)
            candidate = (
                select(pending.id)
                .where(
                    pending.queue_name == queue_name,
                    pending.state == JobState.PENDING.value,
                    pending.next_eligible_at <= now,
                    pending.attempts < pending.max_attempts,
                )
                .order_by(pending.next_eligible_at, pending.created_at)
                .limit(1)
                .with_for_update(skip_locked=True)
                .scalar_subquery()
            )

            claimed = await session.execute(
                update(Job)
                .where(Job.id == candidate, Job.state == JobState.PENDING.value)
                .values(
                    state=JobState.ACTIVE.value,
                    attempts=Job.attempts + 1,
                    progress=0,
                    locked_by=worker_id,
                    started_at=now,
                    heartbeat_at=now,
                    updated_at=now,
                )
                .returning(Job)
                .execution_options(synchronize_session=False)
            )
            job = claimed.scalars().first()
            if job is None:
                return None

            snapshot = _snapshot(job)

        logger.info(
            "Job claimed",
            job_id=str(snapshot.id),
            queue=queue_name,
            job_type=snapshot.job_type,
            attempt=snapshot.attempts,
            worker_id=worker_id,
        )
        return snapshot

    async def report_progress(
        self, job_id: UUID, percent: int, attempt: int | None = None
    ) -> None:
        """Set the progress of an active job; it may only grow within an attempt."""
        if isinstance(percent, bool) or not isinstance(percent, int):
            raise InvalidProgressError(f"Progress must be an integer, got {percent!r}")
        if not 0 <= percent <= 100:
            raise InvalidProgressError(f"Progress must be within 0-100, got {percent}")

        now = utcnow()
        async with self._transaction() as session:
            job = await self._owned_job(session, job_id, attempt)
            if percent < job.progress:
                raise InvalidProgressError(
                    f"Progress cannot go backwards ({job.progress} -> {percent})"
                )
            job.progress = percent
            job.heartbeat_at = now
            job.updated_at = now

    async def append_log(
        self,
        job_id: UUID,
        message: str,
        attempt: int | None = None,
        logged_at: datetime | None = None,
    ) -> None:
        """Append a line to the live log of an active job."""
        now = utcnow()
        async with self._transaction() as session:
            job = await self._owned_job(session, job_id, attempt)
            session.add(
                JobLog(
                    job_id=job.id,
                    attempt=job.attempts,
                    logged_at=logged_at or now,
                    message=message,
                )
            )
            job.heartbeat_at = now

    async def heartbeat(self, job_ids: Sequence[UUID]) -> int:
        """Refresh the lease of active jobs; returns how many were touched."""
        if not job_ids:
            return 0

        async with self._transaction() as session:
            touched = await session.execute(
                update(Job)
                .where(Job.id.in_(list(job_ids)), Job.state == JobState.ACTIVE.value)
                .values(heartbeat_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            return touched.rowcount or 0

    async def finalize(
        self, job_id: UUID, result: JobResult, attempt: int | None = None
    ) -> JobSnapshot:
        """
        Close the current attempt of an active job.

        Success completes the job. Failure sends it back to pending after the
        queue's backoff while attempts remain and the failure is retryable,
        otherwise fails it for good. Terminal transitions trigger retention
        trimming of the job's queue.
        """
        async with self._transaction() as session:
            job = await self._owned_job(session, job_id, attempt)
            config = self.queue_config(job.queue_name)
            self._apply_result(job, result, config)
            await session.flush()

            if job.state in TERMINAL_STATES:
                await self._trim(session, config)

            logs = await self._live_log(session, job)
            snapshot = _snapshot(job, logs)

        logger.info(
            "Job finalized",
            job_id=str(job_id),
            queue=snapshot.queue_name,
            state=snapshot.state.value,
            attempt=snapshot.attempts,
            max_attempts=snapshot.max_attempts,
            duration_ms=result.duration_ms,
        )
        return snapshot

    def _apply_result(self, job: Job, result: JobResult, config: QueueConfig) -> None:
        now = utcnow()
        job.duration_ms = result.duration_ms
        job.locked_by = None
        job.heartbeat_at = None
        job.updated_at = now

        if result.success:
            job.state = JobState.COMPLETED.value
            job.result = result.stored()
            job.completed_at = now
        elif should_retry(job.attempts, job.max_attempts, result.retryable):
            job.state = JobState.PENDING.value
            job.last_error = result.error
            job.started_at = None
            job.next_eligible_at = now + backoff_delay(
                job.attempts, config.backoff, self._rand
            )
        else:
            job.state = JobState.FAILED.value
            job.result = result.stored()
            job.last_error = result.error
            job.completed_at = now

    async def recover_stalled(
        self, queue_name: str, lease_timeout_s: float
    ) -> list[UUID]:
        """
        Fail the current attempt of active jobs whose lease expired.

        The attempt counts; the job is retried or failed like any other
        failure.
        """
        cutoff = utcnow() - timedelta(seconds=lease_timeout_s)
        recovered = await self._fail_active(
            queue_name,
            Job.heartbeat_at < cutoff,
            error=f"Lease expired after {lease_timeout_s:g}s without heartbeat",
            error_type="LeaseExpired",
        )

        if recovered:
            logger.warning(
                "Recovered stalled jobs",
                queue=queue_name,
                job_ids=[str(job_id) for job_id in recovered],
                lease_timeout_s=lease_timeout_s,
            )
        return recovered

    async def recover_orphaned(self, queue_name: str, worker_name: str) -> list[UUID]:
        """
        Fail the current attempt of active jobs left behind by a worker pool.

        `worker_name` is the pool name; its workers lock jobs as
        `<worker_name>-<n>`. Only call this before the pool starts claiming.
        """
        recovered = await self._fail_active(
            queue_name,
            Job.locked_by.startswith(f"{worker_name}-", autoescape=True),
            error="Worker stopped before recording the outcome",
            error_type="WorkerLost",
        )

        if recovered:
            logger.warning(
                "Recovered orphaned jobs",
                queue=queue_name,
                worker=worker_name,
                job_ids=[str(job_id) for job_id in recovered],
            )
        return recovered

    async def _fail_active(
        self, queue_name: str, condition: Any, error: str, error_type: str
    ) -> list[UUID]:
        config = self.queue_config(queue_name)
        now = utcnow()

        async with self._transaction() as session:
            result = await session.execute(
                select(Job)
                .where(
                    Job.queue_name == queue_name,
                    Job.state == JobState.ACTIVE.value,
                    condition,
                )
                .with_for_update(skip_locked=True)
            )
            jobs = result.scalars().all()

            for job in jobs:
                started = job.started_at or job.heartbeat_at or now
                self._apply_result(
                    job,
                    JobResult(
                        success=False,
                        error=error,
                        error_type=error_type,
                        duration_ms=int((now - started).total_seconds() * 1000),
                        completed_at=now,
                    ),
                    config,
                )

            if jobs:
                await session.flush()
                await self._trim(session, config)

            return [job.id for job in jobs]

    # Queries

    async def get(self, job_id: UUID) -> JobSnapshot | None:
        """Snapshot of a job with the log of its current attempt."""
        async with self._transaction() as session:
            job = await session.get(Job, job_id)
            if job is None:
                return None
            logs = await self._live_log(session, job)
            return _snapshot(job, logs)

    async def get_logs(self, job_id: UUID, attempt: int | None = None) -> list[LogEntry]:
        """Log of one attempt, the current one by default."""
        async with self._transaction() as session:
            job = await session.get(Job, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            logs = await self._live_log(session, job, attempt)
            return [LogEntry.model_validate(entry) for entry in logs]

    async def list_by_state(
        self, queue_name: str, state: JobState, limit: int = 50
    ) -> list[JobSnapshot]:
        """Jobs of a queue in one state; finished jobs newest first."""
        state = JobState(state)
        query = select(Job).where(
            Job.queue_name == queue_name, Job.state == state.value
        )

        if state.is_terminal:
            query = query.order_by(Job.completed_at.desc(), Job.created_at.desc())
        elif state == JobState.ACTIVE:
            query = query.order_by(Job.started_at, Job.created_at)
        else:
            query = query.order_by(Job.next_eligible_at, Job.created_at)

        async with self._transaction() as session:
            result = await session.execute(query.limit(limit))
            return [_snapshot(job) for job in result.scalars().all()]

    async def counts(self, queue_name: str) -> dict[str, int]:
        """Job counts per state; pending split into waiting and delayed."""
        now = utcnow()
        async with self._transaction() as session:
            by_state = dict(
                (
                    await session.execute(
                        select(Job.state, func.count(Job.id))
                        .where(Job.queue_name == queue_name)
                        .group_by(Job.state)
                    )
                ).all()
            )
            delayed = (
                await session.execute(
                    select(func.count(Job.id)).where(
                        Job.queue_name == queue_name,
                        Job.state == JobState.PENDING.value,
                        Job.next_eligible_at > now,
                    )
                )
            ).scalar() or 0

        pending = by_state.get(JobState.PENDING.value, 0)
        return {
            "waiting": pending - delayed,
            "delayed": delayed,
            "active": by_state.get(JobState.ACTIVE.value, 0),
            "completed": by_state.get(JobState.COMPLETED.value, 0),
            "failed": by_state.get(JobState.FAILED.value, 0),
        }

    async def recent_durations(self, queue_name: str, since: datetime) -> list[int]:
        """Durations of jobs of a queue completed since the given time."""
        async with self._transaction() as session:
            result = await session.execute(
                select(Job.duration_ms).where(
                    Job.queue_name == queue_name,
                    Job.state == JobState.COMPLETED.value,
                    Job.completed_at >= since,
                )
            )
            return [duration or 0 for duration in result.scalars().all()]

    # Administration

    async def retry(self, job_id: UUID) -> bool:
        """Put a failed job back to pending with a fresh attempt budget."""
        now = utcnow()
        async with self._transaction() as session:
            job = await session.get(Job, job_id, with_for_update=True)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.state != JobState.FAILED.value:
                return False

            job.state = JobState.PENDING.value
            job.attempts = 0
            job.progress = 0
            job.result = None
            job.completed_at = None
            job.started_at = None
            job.next_eligible_at = now
            job.updated_at = now

        logger.info("Job retried", job_id=str(job_id))
        return True

    async def remove(self, job_id: UUID) -> bool:
        """Delete a job that is not currently owned by a worker."""
        async with self._transaction() as session:
            job = await session.get(Job, job_id, with_for_update=True)
            if job is None:
                return False
            if job.is_active():
                raise NotActiveError(job_id, job.state)
            await self._delete(session, [job.id])

        logger.info("Job removed", job_id=str(job_id))
        return True

    async def clean(
        self,
        queue_name: str,
        state: JobState,
        grace_ms: int = 0,
        limit: int = 100,
    ) -> int:
        """Delete up to `limit` finished jobs older than the grace period."""
        state = JobState(state)
        if not state.is_terminal:
            raise ValueError(f"Only finished jobs can be cleaned, got {state.value}")

        cutoff = utcnow() - timedelta(milliseconds=grace_ms)
        async with self._transaction() as session:
            result = await session.execute(
                select(Job.id)
                .where(
                    Job.queue_name == queue_name,
                    Job.state == state.value,
                    Job.completed_at <= cutoff,
                )
                .order_by(Job.completed_at)
                .limit(limit)
            )
            job_ids = list(result.scalars().all())
            await self._delete(session, job_ids)

        if job_ids:
            logger.info(
                "Cleaned queue", queue=queue_name, state=state.value, count=len(job_ids)
            )
        return len(job_ids)

    async def trim(self, queue_name: str) -> int:
        """Apply the retention caps of a queue; returns evicted job count."""
        config = self.queue_config(queue_name)
        async with self._transaction() as session:
            return await self._trim(session, config)

    async def set_paused(self, queue_name: str, paused: bool) -> None:
        async with self._transaction() as session:
            state = await session.get(JobQueueState, queue_name, with_for_update=True)
            if state is None:
                state = JobQueueState(name=queue_name)
                session.add(state)
            state.paused = paused
            state.updated_at = utcnow()

        logger.info("Queue paused" if paused else "Queue resumed", queue=queue_name)

    async def is_paused(self, queue_name: str) -> bool:
        async with self._transaction() as session:
            return await self._is_paused(session, queue_name)

    # Helpers

    async def _is_paused(self, session: AsyncSession, queue_name: str) -> bool:
        paused = await session.scalar(
            select(JobQueueState.paused).where(JobQueueState.name == queue_name)
        )
        return bool(paused)

    async def _owned_job(
        self, session: AsyncSession, job_id: UUID, attempt: int | None
    ) -> Job:
        """Load an active job, checking the caller's attempt still owns it."""
        job = await session.get(Job, job_id, with_for_update=True)
        if job is None:
            raise JobNotFoundError(job_id)
        if not job.is_active():
            raise NotActiveError(job_id, job.state)
        if attempt is not None and job.attempts != attempt:
            raise NotActiveError(job_id, f"attempt {job.attempts} owns the job")
        return job

    async def _live_log(
        self, session: AsyncSession, job: Job, attempt: int | None = None
    ) -> Sequence[JobLog]:
        attempt = job.attempts if attempt is None else attempt
        result = await session.execute(
            select(JobLog)
            .where(JobLog.job_id == job.id, JobLog.attempt == attempt)
            .order_by(JobLog.id)
        )
        return result.scalars().all()

    async def _trim(self, session: AsyncSession, config: QueueConfig) -> int:
        evicted: list[UUID] = []
        for state, keep in (
            (JobState.COMPLETED, config.keep_completed),
            (JobState.FAILED, config.keep_failed),
        ):
            result = await session.execute(
                select(Job.id)
                .where(Job.queue_name == config.name, Job.state == state.value)
                .order_by(Job.completed_at.desc(), Job.created_at.desc())
                .offset(keep)
            )
            evicted.extend(result.scalars().all())

        await self._delete(session, evicted)
        if evicted:
            logger.debug("Retention trimmed jobs", queue=config.name, count=len(evicted))
        return len(evicted)

    async def _delete(self, session: AsyncSession, job_ids: Sequence[UUID]) -> None:
        if not job_ids:
            return
        await session.execute(
            delete(JobLog)
            .where(JobLog.job_id.in_(job_ids))
            .execution_options(synchronize_session=False)
        )
        await session.execute(
            delete(Job)
            .where(Job.id.in_(job_ids))
            .execution_options(synchronize_session=False)
        )
