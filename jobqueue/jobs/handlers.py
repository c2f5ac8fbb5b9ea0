"""
Built-in job handlers.

Handlers are plain callables taking `(payload, reporter)`; async ones run on
the worker's event loop, sync ones in a worker thread.
"""

import time
from typing import Any

from jobqueue.config.logging import get_logger
from jobqueue.core.exceptions import TransientFailure, ValidationError
from jobqueue.core.registries import Reporter
from jobqueue.jobs.models import JobState

logger = get_logger(__name__)


class MaintenanceCleanupHandler:
    """
    Job handler that deletes finished jobs of one or more queues.

    Payload expected:
    {
        "queues": ["media", "email"],  # optional, defaults to every queue
        "states": ["completed", "failed"],  # optional
        "grace_ms": 3600000,  # optional, only jobs finished before this
        "limit": 1000,  # optional, per queue and state
        "dry_run": false  # optional
    }
    """

    def __init__(self, service):
        self.service = service

    async def __call__(
        self, payload: dict[str, Any] | None, reporter: Reporter
    ) -> dict[str, Any]:
        payload = payload or {}
        queues = payload.get("queues") or self.service.queues()
        grace_ms = payload.get("grace_ms", 0)
        limit = payload.get("limit", 1000)
        dry_run = payload.get("dry_run", False)

        try:
            states = [JobState(state) for state in payload.get("states", ["completed"])]
        except ValueError as e:
            raise ValidationError(str(e), retryable=False) from e
        if any(not state.is_terminal for state in states):
            raise ValidationError(
                "Only completed and failed jobs can be cleaned", retryable=False
            )
        if not isinstance(grace_ms, int) or grace_ms < 0:
            raise ValidationError(f"Invalid grace_ms: {grace_ms!r}", retryable=False)

        logger.info(
            "Starting maintenance cleanup",
            queues=queues,
            states=[state.value for state in states],
            dry_run=dry_run,
        )

        results: dict[str, dict[str, int]] = {}
        steps = len(queues) * len(states)
        done = 0

        for queue_name in queues:
            results[queue_name] = {}
            for state in states:
                if dry_run:
                    metrics = await self.service.queue_metrics(queue_name)
                    count = getattr(metrics, state.value)
                    reporter.log(f"{queue_name}: would clean up to {count} {state.value} jobs")
                else:
                    count = await self.service.clean_queue(
                        queue_name, state, grace_ms=grace_ms, limit=limit
                    )
                    reporter.log(f"{queue_name}: cleaned {count} {state.value} jobs")

                results[queue_name][state.value] = count
                done += 1
                reporter.progress(done * 100 // steps)

        logger.info("Maintenance cleanup completed", results=results, dry_run=dry_run)

        return {"dry_run": dry_run, "results": results}


def noop_handler(payload: dict[str, Any] | None, reporter: Reporter) -> dict[str, Any]:
    """
    Diagnostics handler: optionally sleeps, then echoes its payload.

    `{"sleep_ms": 100}` simulates work, `{"fail": "message"}` raises a
    retryable failure.
    """
    payload = payload or {}

    if payload.get("fail"):
        raise TransientFailure(str(payload["fail"]))

    sleep_ms = payload.get("sleep_ms", 0)
    if sleep_ms:
        reporter.log(f"Sleeping {sleep_ms}ms")
        time.sleep(sleep_ms / 1000)

    reporter.progress(100)
    return {"echo": payload}
