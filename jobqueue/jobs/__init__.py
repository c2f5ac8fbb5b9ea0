"""
Job queue engine.

This package provides:
- A durable queue store on SQLAlchemy (SQLite or Postgres) with atomic claims
- A registry of handlers keyed by (queue name, job type)
- Worker pools running sync and async handlers concurrently
- Retry with exponential or fixed backoff, retention of finished jobs
- Per-attempt progress and log reporting
"""

from jobqueue.jobs.models import JobState
from jobqueue.jobs.reporter import Reporter
from jobqueue.jobs.schemas import BulkJob, JobOptions, JobResult, JobSnapshot
from jobqueue.jobs.service import JobService
from jobqueue.jobs.store import SQLAlchemyQueueStore
from jobqueue.jobs.worker import WorkerPool

__all__ = [
    "BulkJob",
    "JobOptions",
    "JobResult",
    "JobService",
    "JobSnapshot",
    "JobState",
    "Reporter",
    "SQLAlchemyQueueStore",
    "WorkerPool",
]
