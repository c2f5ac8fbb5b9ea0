"""
Worker pool: concurrent claim -> dispatch -> finalize loops for one queue.
"""

import asyncio
import inspect
import os
import socket
import time
from typing import Any
from uuid import UUID

from jobqueue.config.logging import bind_job_context, clear_job_context, get_logger
from jobqueue.config.settings import QueueConfig, Settings
from jobqueue.core.exceptions import (
    HandlerError,
    NotActiveError,
    StoreUnavailable,
    UnregisteredJobTypeError,
)
from jobqueue.core.registries import JobHandler, ProcessorRegistry
from jobqueue.jobs.models import utcnow
from jobqueue.jobs.reporter import Reporter
from jobqueue.jobs.schemas import JobResult, JobSnapshot
from jobqueue.jobs.store import SQLAlchemyQueueStore

logger = get_logger(__name__)

_JOB_CONTEXT = ("job_id", "queue", "job_type", "attempt", "worker_id")


def _is_async(handler: JobHandler) -> bool:
    return inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(
        getattr(handler, "__call__", None)
    )


class WorkerPool:
    """
    Runs `concurrency` workers against one queue.

    Features:
    - Atomic claims through the queue store, one job per worker at a time
    - Sync handlers run in threads, async handlers on the loop
    - Handler failures become failure results, never worker crashes
    - Idle and store-outage backoff
    - Optional per-attempt timeout, heartbeats and stalled job recovery
    - Graceful shutdown: running jobs finish, no new claims
    - Jobs this pool left active (outcome lost at shutdown) are failed over
      on the next start
    """

    def __init__(
        self,
        store: SQLAlchemyQueueStore,
        registry: ProcessorRegistry,
        config: QueueConfig,
        settings: Settings,
        concurrency: int | None = None,
    ):
        self.store = store
        self.registry = registry
        self.config = config
        self.settings = settings
        self.concurrency = concurrency or config.concurrency
        self.name = f"{socket.gethostname()}-{os.getpid()}-{config.name}"
        self.running = False
        self.active_jobs: dict[UUID, str] = {}
        self._stopping = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def queue_name(self) -> str:
        return self.config.name

    def worker_ids(self) -> list[str]:
        return [f"{self.name}-{i + 1}" for i in range(self.concurrency)]

    async def start(self) -> None:
        """Spawn the worker tasks; returns immediately."""
        if self.running:
            raise RuntimeError("Worker pool is already running")

        self.registry.freeze()
        await self._recover_own_jobs()
        self.running = True
        self._stopping.clear()

        logger.info(
            "Starting worker pool",
            queue=self.queue_name,
            concurrency=self.concurrency,
            lease_timeout_s=self.config.lease_timeout_s,
            job_types=self.registry.handlers_for(self.queue_name),
        )

        self._tasks = [
            asyncio.create_task(self._worker_loop(worker_id), name=worker_id)
            for worker_id in self.worker_ids()
        ]
        if self.config.lease_timeout_s:
            self._tasks.append(asyncio.create_task(self._heartbeat_loop()))
            self._tasks.append(asyncio.create_task(self._stuck_job_recovery_loop()))

    async def wait(self) -> None:
        """Wait until every worker task has exited."""
        try:
            await asyncio.gather(*self._tasks)
        finally:
            self.running = False

    async def run(self) -> None:
        await self.start()
        await self.wait()

    def request_stop(self) -> None:
        """Ask the workers to exit after their running job; safe in signal handlers."""
        if self._stopping.is_set():
            return
        logger.info(
            "Stopping worker pool",
            queue=self.queue_name,
            active_jobs=len(self.active_jobs),
        )
        self._stopping.set()

    async def stop(self) -> None:
        """Stop claiming and wait for running jobs to finish."""
        self.request_stop()
        if self._tasks:
            await self.wait()

    async def run_until_idle(self) -> None:
        """Process jobs until none is eligible, then return."""
        self.registry.freeze()
        await self._recover_own_jobs()
        if self.config.lease_timeout_s:
            await self.store.recover_stalled(
                self.queue_name, self.config.lease_timeout_s
            )
        await asyncio.gather(
            *(
                self._worker_loop(worker_id, exit_when_idle=True)
                for worker_id in self.worker_ids()
            )
        )

    async def _worker_loop(self, worker_id: str, exit_when_idle: bool = False) -> None:
        """Claim and process jobs until stopped."""
        idle_ms = self.config.poll_interval_ms
        store_wait_ms = self.settings.store_retry_base_ms

        while not self._stopping.is_set():
            try:
                job = await self.store.claim_next(self.queue_name, worker_id=worker_id)
            except StoreUnavailable:
                logger.exception(
                    "Queue store unavailable, backing off",
                    worker_id=worker_id,
                    wait_ms=store_wait_ms,
                )
                await self._sleep(store_wait_ms)
                store_wait_ms = min(store_wait_ms * 2, self.settings.store_retry_max_ms)
                continue

            store_wait_ms = self.settings.store_retry_base_ms

            if job is None:
                if exit_when_idle:
                    return
                await self._sleep(idle_ms)
                idle_ms = min(idle_ms * 2, self.config.max_poll_interval_ms)
                continue

            idle_ms = self.config.poll_interval_ms
            await self._process_job(job, worker_id)

        logger.info("Worker stopped", worker_id=worker_id)

    async def _process_job(self, job: JobSnapshot, worker_id: str) -> None:
        """Run one attempt of a claimed job and record its outcome."""
        self.active_jobs[job.id] = worker_id
        bind_job_context(
            job_id=str(job.id),
            queue=job.queue_name,
            job_type=job.job_type,
            attempt=job.attempts,
            worker_id=worker_id,
        )
        try:
            result = await self._execute(job)
            await self._finalize(job, result)
        finally:
            self.active_jobs.pop(job.id, None)
            clear_job_context(*_JOB_CONTEXT)

    async def _execute(self, job: JobSnapshot) -> JobResult:
        try:
            handler = self.registry.resolve(job.queue_name, job.job_type)
        except UnregisteredJobTypeError as e:
            logger.error("No handler registered for job", error=e.message)
            return JobResult(
                success=False,
                error=e.message,
                error_type="ConfigurationError",
                retryable=False,
                completed_at=utcnow(),
            )

        reporter = Reporter(
            self.store,
            job,
            log_limit=self.config.log_limit,
            stopping=self._stopping,
            retry_base_ms=self.settings.store_retry_base_ms,
            retry_max_ms=self.settings.store_retry_max_ms,
        )
        timeout_ms = self.config.timeout_ms
        started = time.monotonic()
        logger.info("Processing job started")

        if _is_async(handler):
            call = handler(job.payload, reporter)
        else:
            # A timed out thread keeps running; its reporter is closed by then
            call = asyncio.to_thread(handler, job.payload, reporter)

        deadline = asyncio.timeout(timeout_ms / 1000 if timeout_ms else None)
        try:
            async with deadline:
                data = await call
        except TimeoutError as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            if deadline.expired():
                logger.error("Processing job timed out", timeout_ms=timeout_ms)
                result = JobResult(
                    success=False,
                    error=f"Job timed out after {timeout_ms}ms",
                    error_type="Timeout",
                    duration_ms=duration_ms,
                    completed_at=utcnow(),
                )
            else:
                result = self._failure(e, duration_ms)
        except Exception as e:
            result = self._failure(e, int((time.monotonic() - started) * 1000))
        else:
            duration_ms = int((time.monotonic() - started) * 1000)
            result = self._success(data, duration_ms)
        finally:
            await reporter.close()

        return result

    def _failure(self, error: Exception, duration_ms: int) -> JobResult:
        logger.exception("Processing job failed", duration_ms=duration_ms)
        return JobResult(
            success=False,
            error=str(error) or error.__class__.__name__,
            error_type=error.__class__.__name__,
            retryable=error.retryable if isinstance(error, HandlerError) else True,
            duration_ms=duration_ms,
            completed_at=utcnow(),
        )

    def _success(self, data: Any, duration_ms: int) -> JobResult:
        result = JobResult(
            success=True, data=data, duration_ms=duration_ms, completed_at=utcnow()
        )
        try:
            result.stored()
        except ValueError as e:
            logger.error("Handler returned a result that cannot be stored", error=str(e))
            return JobResult(
                success=False,
                error="Handler returned a result that cannot be serialized to JSON",
                error_type="ResultSerializationError",
                retryable=False,
                duration_ms=duration_ms,
                completed_at=result.completed_at,
            )

        logger.info("Processing job completed successfully", duration_ms=duration_ms)
        return result

    async def _finalize(self, job: JobSnapshot, result: JobResult) -> None:
        """
        Record the outcome, riding out store outages.

        Once the pool is stopping, keep trying for `shutdown_grace_ms`; a job
        whose outcome is still lost then stays active until this pool's next
        start fails it over.
        """
        wait_ms = self.settings.store_retry_base_ms
        give_up_at: float | None = None

        while True:
            try:
                snapshot = await self.store.finalize(
                    job.id, result, attempt=job.attempts
                )
            except StoreUnavailable:
                logger.exception("Queue store unavailable while finalizing job")
                if self._stopping.is_set():
                    now = time.monotonic()
                    if give_up_at is None:
                        give_up_at = now + self.settings.shutdown_grace_ms / 1000
                    if now >= give_up_at:
                        logger.error(
                            "Could not record job outcome before shutdown",
                            success=result.success,
                        )
                        return
                    await asyncio.sleep(min(wait_ms / 1000, give_up_at - now))
                else:
                    await self._sleep(wait_ms)
                wait_ms = min(wait_ms * 2, self.settings.store_retry_max_ms)
                continue
            except NotActiveError as e:
                logger.warning("Job no longer owned by this worker", error=e.message)
                return

            if snapshot.state.is_terminal:
                logger.info(
                    "Job finished",
                    state=snapshot.state.value,
                    attempts=snapshot.attempts,
                )
            else:
                logger.info(
                    "Job scheduled for retry",
                    next_eligible_at=snapshot.next_eligible_at.isoformat(),
                    error=snapshot.last_error,
                )
            return

    async def _recover_own_jobs(self) -> None:
        """Fail over jobs an earlier run of this pool left active."""
        try:
            await self.store.recover_orphaned(self.queue_name, self.name)
        except StoreUnavailable:
            logger.exception("Could not recover orphaned jobs", queue=self.queue_name)

    async def _heartbeat_loop(self) -> None:
        """Refresh the lease of running jobs."""
        interval_ms = self.config.lease_timeout_s * 1000 / 3
        while not self._stopping.is_set():
            try:
                await self.store.heartbeat(list(self.active_jobs))
            except StoreUnavailable:
                logger.exception("Error updating heartbeats", queue=self.queue_name)
            await self._sleep(interval_ms)

    async def _stuck_job_recovery_loop(self) -> None:
        """Reclaim jobs whose worker stopped heart-beating."""
        lease = self.config.lease_timeout_s
        while not self._stopping.is_set():
            try:
                await self.store.recover_stalled(self.queue_name, lease)
            except StoreUnavailable:
                logger.exception("Error in stuck job recovery", queue=self.queue_name)
            await self._sleep(lease * 1000)

    async def _sleep(self, ms: float) -> None:
        """Sleep, waking up early when the pool is stopping."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=ms / 1000)
        except TimeoutError:
            pass
