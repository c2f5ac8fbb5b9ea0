"""
Job service: the submission, status and administration surface of the engine.
"""

from collections.abc import Sequence
from datetime import timedelta
from typing import Any
from uuid import UUID

from jobqueue.config.logging import get_logger
from jobqueue.config.settings import QueueConfig, Settings
from jobqueue.core.exceptions import (
    JobNotFoundError,
    StoreUnavailable,
    UnregisteredJobTypeError,
)
from jobqueue.core.registries import JobHandler, ProcessorRegistry
from jobqueue.jobs.models import JobState, utcnow
from jobqueue.jobs.schemas import (
    BulkJob,
    HealthReport,
    JobOptions,
    JobSnapshot,
    LogEntry,
    QueueHealth,
    QueueMetrics,
)
from jobqueue.jobs.store import SQLAlchemyQueueStore
from jobqueue.jobs.worker import WorkerPool

logger = get_logger(__name__)

METRICS_WINDOW = timedelta(hours=1)


class JobService:
    """Service for submitting, inspecting and managing jobs."""

    def __init__(
        self,
        settings: Settings,
        store: SQLAlchemyQueueStore,
        registry: ProcessorRegistry | None = None,
    ):
        self.settings = settings
        self.store = store
        self.registry = registry or ProcessorRegistry()

    # Wiring

    def create_queue(self, name: str, **overrides: Any) -> QueueConfig:
        """Create (or reconfigure) a queue from the settings defaults."""
        config = self.settings.queue_config(name, **overrides)
        self.store.configure_queue(config)
        logger.info(
            "Queue created",
            queue=name,
            concurrency=config.concurrency,
            max_attempts=config.max_attempts,
            keep_completed=config.keep_completed,
            keep_failed=config.keep_failed,
        )
        return config

    def register(self, queue_name: str, job_type: str, handler: JobHandler) -> None:
        """Register the handler of a job type on an existing queue."""
        self.store.queue_config(queue_name)
        self.registry.register(queue_name, job_type, handler)

    def queues(self) -> list[str]:
        return self.store.queues()

    # Submission

    async def submit(
        self,
        queue_name: str,
        job_type: str,
        payload: Any = None,
        options: JobOptions | None = None,
    ) -> UUID:
        """
        Submit one job.

        Raises:
            UnknownQueueError: the queue was never created
            UnregisteredJobTypeError: no handler for the type (when validating)
        """
        options = options or JobOptions()
        self._validate(queue_name, [job_type])
        return await self.store.enqueue(
            queue_name,
            job_type,
            payload,
            max_attempts=options.max_attempts,
            delay_ms=options.delay_ms,
        )

    async def submit_bulk(self, queue_name: str, jobs: Sequence[BulkJob]) -> list[UUID]:
        """Submit several jobs atomically; nothing is stored if one is invalid."""
        if not jobs:
            return []
        self._validate(queue_name, [job.job_type for job in jobs])
        job_ids = await self.store.enqueue_many(queue_name, jobs)
        logger.info("Bulk jobs submitted", queue=queue_name, count=len(job_ids))
        return job_ids

    def _validate(self, queue_name: str, job_types: Sequence[str]) -> None:
        self.store.queue_config(queue_name)
        if not self.settings.job_validate_types:
            return
        for job_type in job_types:
            if not self.registry.has(queue_name, job_type):
                raise UnregisteredJobTypeError(queue_name, job_type)

    # Status

    async def get_job(self, job_id: UUID) -> JobSnapshot:
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def get_job_logs(
        self, job_id: UUID, attempt: int | None = None
    ) -> list[LogEntry]:
        return await self.store.get_logs(job_id, attempt)

    async def list_by_state(
        self, queue_name: str, state: JobState | str, limit: int = 50
    ) -> list[JobSnapshot]:
        self.store.queue_config(queue_name)
        return await self.store.list_by_state(queue_name, JobState(state), limit)

    async def queue_metrics(self, queue_name: str) -> QueueMetrics:
        """Counters of a queue plus throughput over the last hour."""
        self.store.queue_config(queue_name)
        counts = await self.store.counts(queue_name)
        paused = await self.store.is_paused(queue_name)
        durations = await self.store.recent_durations(
            queue_name, utcnow() - METRICS_WINDOW
        )

        return QueueMetrics(
            queue=queue_name,
            paused=paused,
            total_processed=counts["completed"] + counts["failed"],
            throughput=len(durations),
            average_processing_time_ms=(
                round(sum(durations) / len(durations)) if durations else 0
            ),
            **counts,
        )

    async def all_queue_metrics(self) -> list[QueueMetrics]:
        return [await self.queue_metrics(name) for name in self.store.queues()]

    async def health_check(self) -> HealthReport:
        """Flag paused queues, failure build-ups and overloaded queues."""
        queues: dict[str, QueueHealth] = {}

        for name in self.store.queues():
            try:
                metrics = await self.queue_metrics(name)
            except StoreUnavailable as e:
                logger.error("Health check failed", queue=name, error=e.message)
                queues[name] = QueueHealth(status="error", issues=[e.message])
                continue

            issues = []
            if metrics.paused:
                issues.append("Queue is paused")
            if metrics.failed > self.settings.health_failed_threshold:
                issues.append(f"High number of failed jobs: {metrics.failed}")
            if metrics.active > self.settings.health_active_threshold:
                issues.append(f"High number of active jobs: {metrics.active}")

            queues[name] = QueueHealth(
                status="warning" if issues else "healthy", issues=issues
            )

        return HealthReport(
            healthy=all(queue.status == "healthy" for queue in queues.values()),
            queues=queues,
        )

    # Administration

    async def pause_queue(self, queue_name: str) -> None:
        self.store.queue_config(queue_name)
        await self.store.set_paused(queue_name, True)

    async def resume_queue(self, queue_name: str) -> None:
        self.store.queue_config(queue_name)
        await self.store.set_paused(queue_name, False)

    async def retry_job(self, job_id: UUID) -> bool:
        """Give a failed job a fresh attempt budget; False if it is not failed."""
        return await self.store.retry(job_id)

    async def remove_job(self, job_id: UUID) -> bool:
        return await self.store.remove(job_id)

    async def clean_queue(
        self,
        queue_name: str,
        state: JobState | str = JobState.COMPLETED,
        grace_ms: int = 0,
        limit: int = 100,
    ) -> int:
        """Delete finished jobs older than the grace period."""
        self.store.queue_config(queue_name)
        return await self.store.clean(queue_name, JobState(state), grace_ms, limit)

    # Processing

    def worker_pool(self, queue_name: str, concurrency: int | None = None) -> WorkerPool:
        """Build the worker pool of a queue; start it with `run()` or `start()`."""
        return WorkerPool(
            self.store,
            self.registry,
            self.store.queue_config(queue_name),
            self.settings,
            concurrency=concurrency,
        )
