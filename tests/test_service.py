from uuid import uuid4

import pytest

from conftest import NO_BACKOFF
from jobqueue.config.settings import Settings
from jobqueue.core.exceptions import (
    ConfigurationError,
    JobNotFoundError,
    UnknownQueueError,
    UnregisteredJobTypeError,
)
from jobqueue.jobs.models import JobState
from jobqueue.jobs.registry_init import CLEANUP_QUEUE, register_builtin_handlers
from jobqueue.jobs.schemas import BulkJob, JobOptions
from jobqueue.main import create_service, load_setup


def resize(payload, reporter):
    reporter.progress(100)
    return {"id": payload["id"]}


def broken(payload, reporter):
    raise RuntimeError("broken")


@pytest.fixture
def media(service):
    service.create_queue("media", backoff=NO_BACKOFF, max_attempts=1)
    service.register("media", "resize", resize)
    service.register("media", "broken", broken)
    return "media"


async def test_submit_and_get_job(service, media):
    job_id = await service.submit(
        media, "resize", {"id": 1}, JobOptions(max_attempts=4, delay_ms=0)
    )

    job = await service.get_job(job_id)
    assert job.state == JobState.PENDING
    assert job.max_attempts == 4
    assert job.payload == {"id": 1}


async def test_submit_to_unknown_queue(service):
    with pytest.raises(UnknownQueueError):
        await service.submit("missing", "resize")


async def test_submit_unregistered_type_fails_fast(service, media):
    """Test that a type without handler is rejected before anything is stored."""
    with pytest.raises(UnregisteredJobTypeError):
        await service.submit(media, "crop", {"id": 1})

    metrics = await service.queue_metrics(media)
    assert metrics.waiting == 0


async def test_submit_unregistered_type_when_validation_is_off(tmp_path):
    settings = Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'lenient.db'}",
        job_validate_types=False,
    )
    service = create_service(settings)
    await service.store.database.create_all()
    service.create_queue("media")

    try:
        job_id = await service.submit("media", "crop")
        assert (await service.get_job(job_id)).state == JobState.PENDING
    finally:
        await service.store.database.close()


async def test_submit_bulk_is_all_or_nothing(service, media):
    with pytest.raises(UnregisteredJobTypeError):
        await service.submit_bulk(
            media,
            [BulkJob(job_type="resize", payload={"id": 1}), BulkJob(job_type="crop")],
        )
    assert (await service.queue_metrics(media)).waiting == 0

    job_ids = await service.submit_bulk(
        media,
        [
            BulkJob(job_type="resize", payload={"id": n}, options={"delay_ms": 60_000})
            for n in range(3)
        ],
    )

    assert len(job_ids) == 3
    metrics = await service.queue_metrics(media)
    assert metrics.delayed == 3
    assert await service.submit_bulk(media, []) == []


async def test_register_requires_existing_queue(service):
    with pytest.raises(UnknownQueueError):
        service.register("missing", "resize", resize)


async def test_get_missing_job(service):
    with pytest.raises(JobNotFoundError):
        await service.get_job(uuid4())


async def test_queue_metrics(service, media):
    """Test counters, throughput and average processing time."""
    for n in range(3):
        await service.submit(media, "resize", {"id": n})
    await service.submit(media, "broken")
    await service.submit(media, "resize", {"id": 9}, JobOptions(delay_ms=60_000))

    await service.worker_pool(media).run_until_idle()
    metrics = await service.queue_metrics(media)

    assert metrics.queue == "media"
    assert metrics.completed == 3
    assert metrics.failed == 1
    assert metrics.delayed == 1
    assert metrics.waiting == 0
    assert metrics.active == 0
    assert metrics.paused is False
    assert metrics.total_processed == 4
    assert metrics.throughput == 3
    assert metrics.average_processing_time_ms >= 0

    all_metrics = await service.all_queue_metrics()
    assert [m.queue for m in all_metrics] == ["default", "media"]


async def test_list_by_state_and_logs(service, media):
    job_id = await service.submit(media, "broken")
    await service.worker_pool(media).run_until_idle()

    failed = await service.list_by_state(media, "failed")
    assert [job.id for job in failed] == [job_id]
    assert failed[0].last_error == "broken"

    assert await service.get_job_logs(job_id) == []
    with pytest.raises(UnknownQueueError):
        await service.list_by_state("missing", JobState.FAILED)


async def test_pause_and_resume(service, media):
    job_id = await service.submit(media, "resize", {"id": 1})

    await service.pause_queue(media)
    await service.worker_pool(media).run_until_idle()
    assert (await service.get_job(job_id)).state == JobState.PENDING
    assert (await service.queue_metrics(media)).paused is True

    await service.resume_queue(media)
    await service.worker_pool(media).run_until_idle()
    assert (await service.get_job(job_id)).state == JobState.COMPLETED


async def test_retry_remove_and_clean(service, media):
    failed_id = await service.submit(media, "broken")
    done_id = await service.submit(media, "resize", {"id": 1})
    await service.worker_pool(media).run_until_idle()

    assert await service.retry_job(failed_id) is True
    assert (await service.get_job(failed_id)).state == JobState.PENDING
    assert await service.remove_job(failed_id) is True

    assert await service.clean_queue(media, JobState.COMPLETED) == 1
    with pytest.raises(JobNotFoundError):
        await service.get_job(done_id)


async def test_health_check(settings, store):
    """Test that paused queues and failure build-ups are reported."""
    settings.health_failed_threshold = 0
    service = create_service_from(settings, store)
    service.create_queue("media", max_attempts=1)
    service.create_queue("email")
    service.register("media", "broken", broken)

    report = await service.health_check()
    assert report.healthy

    await service.submit("media", "broken")
    await service.worker_pool("media").run_until_idle()
    await service.pause_queue("email")

    report = await service.health_check()
    assert not report.healthy
    assert report.queues["media"].status == "warning"
    assert "High number of failed jobs: 1" in report.queues["media"].issues
    assert report.queues["email"].issues == ["Queue is paused"]
    assert report.queues["default"].status == "healthy"


async def test_cleanup_handler(service, media):
    """Test the built-in maintenance job cleaning another queue."""
    register_builtin_handlers(service)
    for n in range(2):
        await service.submit(media, "resize", {"id": n})
    await service.submit(media, "broken")
    await service.worker_pool(media).run_until_idle()

    job_id = await service.submit(
        CLEANUP_QUEUE,
        "clean-queue",
        {"queues": [media], "states": ["completed", "failed"]},
    )
    await service.worker_pool(CLEANUP_QUEUE).run_until_idle()

    job = await service.get_job(job_id)
    assert job.state == JobState.COMPLETED
    assert job.progress == 100
    assert job.result["data"]["results"] == {media: {"completed": 2, "failed": 1}}
    assert [entry.message for entry in job.log] == [
        "media: cleaned 2 completed jobs",
        "media: cleaned 1 failed jobs",
    ]

    metrics = await service.queue_metrics(media)
    assert metrics.completed == 0
    assert metrics.failed == 0


async def test_cleanup_handler_rejects_bad_payload(service):
    register_builtin_handlers(service)
    job_id = await service.submit(CLEANUP_QUEUE, "clean-queue", {"states": ["active"]})

    await service.worker_pool(CLEANUP_QUEUE).run_until_idle()

    job = await service.get_job(job_id)
    assert job.state == JobState.FAILED
    assert job.result["error_type"] == "ValidationError"


async def test_noop_handler(service):
    register_builtin_handlers(service)
    ok = await service.submit(CLEANUP_QUEUE, "noop", {"sleep_ms": 5})
    bad = await service.submit(CLEANUP_QUEUE, "noop", {"fail": "requested"})

    await service.worker_pool(CLEANUP_QUEUE).run_until_idle()

    assert (await service.get_job(ok)).result["data"] == {"echo": {"sleep_ms": 5}}
    failed = await service.get_job(bad)
    assert failed.state == JobState.FAILED
    assert failed.attempts == 1
    assert failed.result["error_type"] == "TransientFailure"


def test_load_setup():
    hook = load_setup("jobqueue.jobs.registry_init:register_builtin_handlers")
    assert hook is register_builtin_handlers

    with pytest.raises(ConfigurationError, match="expected 'module:function'"):
        load_setup("jobqueue.jobs.registry_init")
    with pytest.raises(ConfigurationError, match="Cannot import"):
        load_setup("jobqueue.does_not_exist:setup")
    with pytest.raises(ConfigurationError, match="not callable"):
        load_setup("jobqueue.jobs.registry_init:CLEANUP_QUEUE")


def test_create_service_registers_builtins(settings):
    service = create_service(settings)

    assert CLEANUP_QUEUE in service.queues()
    assert sorted(service.registry.handlers_for(CLEANUP_QUEUE)) == ["clean-queue", "noop"]
    assert service.store.queue_config(CLEANUP_QUEUE).keep_completed == 5


def create_service_from(settings, store):
    from jobqueue.core.registries import ProcessorRegistry
    from jobqueue.jobs.service import JobService

    return JobService(settings, store, ProcessorRegistry())
