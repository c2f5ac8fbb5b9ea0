import asyncio
from collections.abc import AsyncGenerator

import pytest

from jobqueue.config.settings import BackoffConfig, Settings
from jobqueue.core.registries import ProcessorRegistry
from jobqueue.infra.database import Database
from jobqueue.jobs.schemas import JobResult
from jobqueue.jobs.models import utcnow
from jobqueue.jobs.service import JobService
from jobqueue.jobs.store import SQLAlchemyQueueStore

# Retries become claimable immediately
NO_BACKOFF = BackoffConfig(delay_ms=0, jitter=0.0)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a per-test SQLite file with fast polling."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}",
        job_backoff_jitter=0.0,
        job_poll_interval_ms=10,
        job_max_poll_interval_ms=20,
        store_retry_base_ms=10,
        store_retry_max_ms=50,
    )


@pytest.fixture
async def database(settings) -> AsyncGenerator[Database, None]:
    db = Database(settings)
    await db.create_all()
    yield db
    await db.close()


@pytest.fixture
def store(database, settings) -> SQLAlchemyQueueStore:
    store = SQLAlchemyQueueStore(database)
    store.configure_queue(settings.queue_config("default"))
    return store


@pytest.fixture
def service(settings, store) -> JobService:
    return JobService(settings, store, ProcessorRegistry())


def success(data=None) -> JobResult:
    return JobResult(success=True, data=data, duration_ms=5, completed_at=utcnow())


def failure(error: str = "boom", retryable: bool = True) -> JobResult:
    return JobResult(
        success=False,
        error=error,
        error_type="RuntimeError",
        retryable=retryable,
        duration_ms=5,
        completed_at=utcnow(),
    )


async def wait_for_state(service, job_id, state, timeout: float = 5.0):
    """Poll a job until it reaches the given state."""

    async def poll():
        while True:
            job = await service.get_job(job_id)
            if job.state == state:
                return job
            await asyncio.sleep(0.01)

    return await asyncio.wait_for(poll(), timeout)
