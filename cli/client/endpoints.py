"""Engine operation wrappers - typed calls used by the CLI commands"""

import asyncio
import signal
from typing import Any
from uuid import UUID

from jobqueue.jobs.models import JobState
from jobqueue.jobs.schemas import (
    HealthReport,
    JobOptions,
    JobSnapshot,
    LogEntry,
    QueueMetrics,
)
from jobqueue.jobs.worker import WorkerPool

from ..utils.config_manager import config
from .base import EngineClient, JobQueueCLIError

__all__ = ["JobQueueClient", "JobQueueCLIError"]


class JobQueueClient:
    """High-level client with typed engine operations"""

    def __init__(
        self,
        database_url: str | None = None,
        setup: str | None = None,
        log_level: str | None = None,
    ):
        # Use config values if not provided
        self.engine = EngineClient(
            database_url=database_url or config.get("database.url"),
            setup=setup or config.get("worker.setup"),
            log_level=log_level or config.get("display.log_level", "WARNING"),
        )

    def __enter__(self):
        self.engine.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.engine.__exit__(exc_type, exc_val, exc_tb)

    @property
    def service(self):
        return self.engine.service

    # Status
    def queues(self) -> list[str]:
        return self.service.queues()

    def metrics(self, queue: str | None = None) -> list[QueueMetrics]:
        """Metrics of one queue or of all queues"""
        if queue:
            return [self.engine.run(self.service.queue_metrics(queue))]
        return self.engine.run(self.service.all_queue_metrics())

    def health_check(self) -> HealthReport:
        return self.engine.run(self.service.health_check())

    # Jobs
    def enqueue(
        self,
        queue: str,
        job_type: str,
        payload: Any = None,
        max_attempts: int | None = None,
        delay_ms: int = 0,
    ) -> UUID:
        options = JobOptions(max_attempts=max_attempts, delay_ms=delay_ms)
        return self.engine.run(self.service.submit(queue, job_type, payload, options))

    def list_jobs(self, queue: str, state: str, limit: int = 20) -> list[JobSnapshot]:
        return self.engine.run(
            self.service.list_by_state(queue, JobState(state), limit)
        )

    def get_job(self, job_id: UUID) -> JobSnapshot:
        return self.engine.run(self.service.get_job(job_id))

    def get_job_logs(self, job_id: UUID, attempt: int | None = None) -> list[LogEntry]:
        return self.engine.run(self.service.get_job_logs(job_id, attempt))

    def retry_job(self, job_id: UUID) -> bool:
        return self.engine.run(self.service.retry_job(job_id))

    def remove_job(self, job_id: UUID) -> bool:
        return self.engine.run(self.service.remove_job(job_id))

    # Queues
    def pause_queue(self, queue: str) -> None:
        self.engine.run(self.service.pause_queue(queue))

    def resume_queue(self, queue: str) -> None:
        self.engine.run(self.service.resume_queue(queue))

    def clean_queue(self, queue: str, state: str, grace_ms: int, limit: int) -> int:
        return self.engine.run(
            self.service.clean_queue(queue, JobState(state), grace_ms, limit)
        )

    # Workers
    def run_worker(
        self, queue: str, concurrency: int | None = None, drain: bool = False
    ) -> WorkerPool:
        """
        Run a worker pool in the foreground.

        With drain, process eligible jobs and return; otherwise run until
        SIGINT or SIGTERM, letting running jobs finish.
        """
        pool = self.service.worker_pool(queue, concurrency)
        if drain:
            self.engine.run(pool.run_until_idle())
        else:
            self.engine.run(_run_until_signalled(pool))
        return pool


async def _run_until_signalled(pool: WorkerPool) -> None:
    loop = asyncio.get_running_loop()
    signals = (signal.SIGINT, signal.SIGTERM)

    await pool.start()
    for sig in signals:
        loop.add_signal_handler(sig, pool.request_stop)
    try:
        await pool.wait()
    finally:
        for sig in signals:
            loop.remove_signal_handler(sig)
