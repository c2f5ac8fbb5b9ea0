"""
Registration of the built-in queues and handlers.
"""

from jobqueue.config.logging import get_logger
from jobqueue.jobs.handlers import MaintenanceCleanupHandler, noop_handler

logger = get_logger(__name__)

CLEANUP_QUEUE = "cleanup"


def register_builtin_handlers(service) -> None:
    """Create the maintenance queue and register the built-in handlers."""

    logger.info("Registering built-in job handlers")

    # Maintenance jobs keep little history and are never retried
    service.create_queue(
        CLEANUP_QUEUE, keep_completed=5, keep_failed=5, max_attempts=1
    )
    service.register(CLEANUP_QUEUE, "clean-queue", MaintenanceCleanupHandler(service))
    service.register(CLEANUP_QUEUE, "noop", noop_handler)

    logger.info(
        "Built-in job handlers registered",
        registered_handlers=service.registry.handlers_for(CLEANUP_QUEUE),
    )
