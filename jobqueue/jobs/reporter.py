"""
Per-attempt progress and log reporting for handlers.
"""

import asyncio
import threading
from typing import Any
from uuid import UUID

from jobqueue.config.logging import get_logger
from jobqueue.core.exceptions import (
    InvalidProgressError,
    NotActiveError,
    StoreUnavailable,
)
from jobqueue.jobs.models import utcnow
from jobqueue.jobs.schemas import JobSnapshot
from jobqueue.jobs.store import QueueStore

logger = get_logger(__name__)

_CLOSE = object()


class Reporter:
    """
    Handle given to a handler for one attempt of one job.

    `progress()` and `log()` are plain synchronous calls that validate
    immediately and never block on the store: writes are queued and applied
    in call order by a single writer task on the worker's event loop. They
    may be called from async handlers and from sync handlers running in a
    worker thread.

    Logs are capped at `log_limit` entries per attempt; further entries are
    dropped (the newest are lost, the beginning of the log is kept) and a
    warning is logged once. Writes hitting a store outage are retried with a
    doubling wait until they land or the pool shuts down.
    """

    def __init__(
        self,
        store: QueueStore,
        job: JobSnapshot,
        log_limit: int = 1000,
        stopping: asyncio.Event | None = None,
        retry_base_ms: int = 500,
        retry_max_ms: int = 10000,
    ):
        self.job_id: UUID = job.id
        self.queue: str = job.queue_name
        self.job_type: str = job.job_type
        self.attempt: int = job.attempts

        self._store = store
        self._log_limit = log_limit
        self._stopping = stopping
        self._retry_base_ms = retry_base_ms
        self._retry_max_ms = retry_max_ms

        self._lock = threading.Lock()
        self._closed = False
        self._last_progress = 0
        self._log_count = 0
        self._dropped = 0

        self._loop = asyncio.get_running_loop()
        self._writes: asyncio.Queue[Any] = asyncio.Queue()
        self._writer = self._loop.create_task(self._write_loop())
        self.write_errors: list[Exception] = []

    @property
    def last_progress(self) -> int:
        return self._last_progress

    @property
    def dropped_logs(self) -> int:
        return self._dropped

    @property
    def stopping(self) -> bool:
        """True once the worker pool is shutting down; long handlers may exit early."""
        return self._stopping is not None and self._stopping.is_set()

    def progress(self, percent: int) -> None:
        """Report progress 0-100, never lower than the last value."""
        if isinstance(percent, bool) or not isinstance(percent, int):
            raise InvalidProgressError(f"Progress must be an integer, got {percent!r}")

        with self._lock:
            self._ensure_open()
            if not 0 <= percent <= 100:
                raise InvalidProgressError(
                    f"Progress must be within 0-100, got {percent}"
                )
            if percent < self._last_progress:
                raise InvalidProgressError(
                    f"Progress cannot go backwards ({self._last_progress} -> {percent})"
                )
            self._last_progress = percent
            self._submit(("progress", percent))

    def log(self, message: str) -> None:
        """Append a timestamped line to the job log."""
        with self._lock:
            self._ensure_open()
            if self._log_count >= self._log_limit:
                self._dropped += 1
                if self._dropped == 1:
                    logger.warning(
                        "Job log limit reached, dropping new entries",
                        job_id=str(self.job_id),
                        log_limit=self._log_limit,
                    )
                return
            self._log_count += 1
            self._submit(("log", str(message), utcnow()))

    async def close(self) -> None:
        """Stop accepting reports and wait until queued writes reached the store."""
        with self._lock:
            if self._closed:
                return
            self._closed = True

        await self._writes.put(_CLOSE)
        await self._writer

    def _ensure_open(self) -> None:
        if self._closed:
            raise NotActiveError(self.job_id, "attempt finished")

    def _submit(self, write: tuple) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self._writes.put_nowait(write)
        else:
            self._loop.call_soon_threadsafe(self._writes.put_nowait, write)

    async def _write_loop(self) -> None:
        while True:
            write = await self._writes.get()
            if write is _CLOSE:
                return

            try:
                await self._apply(write)
            except Exception as e:
                self.write_errors.append(e)
                logger.exception(
                    "Failed to record job report",
                    job_id=str(self.job_id),
                    kind=write[0],
                )

    async def _apply(self, write: tuple) -> None:
        """Send one report to the store, waiting out store outages."""
        wait_ms = self._retry_base_ms

        while True:
            try:
                if write[0] == "progress":
                    await self._store.report_progress(
                        self.job_id, write[1], attempt=self.attempt
                    )
                else:
                    await self._store.append_log(
                        self.job_id, write[1], attempt=self.attempt, logged_at=write[2]
                    )
                return
            except StoreUnavailable:
                if self.stopping:
                    raise
                logger.warning(
                    "Queue store unavailable, retrying job report",
                    job_id=str(self.job_id),
                    kind=write[0],
                    wait_ms=wait_ms,
                )
                await asyncio.sleep(wait_ms / 1000)
                wait_ms = min(wait_ms * 2, self._retry_max_ms)
