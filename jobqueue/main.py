"""
Engine assembly: settings -> database -> store -> service.
"""

import importlib
from collections.abc import Callable

from jobqueue.config.logging import get_logger, setup_logging
from jobqueue.config.settings import Settings
from jobqueue.core.exceptions import ConfigurationError
from jobqueue.core.registries import ProcessorRegistry
from jobqueue.infra.database import Database
from jobqueue.jobs.registry_init import register_builtin_handlers
from jobqueue.jobs.service import JobService
from jobqueue.jobs.store import SQLAlchemyQueueStore

logger = get_logger(__name__)


def create_service(settings: Settings | None = None) -> JobService:
    """Create and wire a job service with the built-in handlers registered."""
    settings = settings or Settings()

    database = Database(settings)
    store = SQLAlchemyQueueStore(database)
    service = JobService(settings, store, ProcessorRegistry())

    register_builtin_handlers(service)

    # Queues configured in settings exist without explicit creation
    for name in settings.queues:
        service.create_queue(name)

    return service


async def init_service(
    settings: Settings | None = None, setup: str | None = None
) -> JobService:
    """Create the service, load an application setup hook and create tables."""
    settings = settings or Settings()
    setup_logging(settings)

    service = create_service(settings)
    if setup:
        load_setup(setup)(service)

    await service.store.database.create_all()
    logger.info(
        "Job service initialized",
        environment=settings.environment,
        queues=service.queues(),
    )
    return service


def load_setup(path: str) -> Callable[[JobService], None]:
    """
    Import a setup hook given as "package.module:function".

    The hook receives the service and creates queues and registers handlers.
    """
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(
            f"Invalid setup path '{path}', expected 'module:function'"
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(
            f"Cannot import setup module '{module_name}'", {"error": str(e)}
        ) from e

    hook = getattr(module, attr, None)
    if not callable(hook):
        raise ConfigurationError(f"Setup hook '{path}' is not callable")
    return hook
