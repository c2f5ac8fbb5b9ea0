from collections.abc import Hashable
from typing import Any, Generic, Protocol, TypeVar

from jobqueue.core.exceptions import (
    DuplicateHandlerError,
    RegistryFrozenError,
    UnregisteredJobTypeError,
)

# Base registry implementation
K = TypeVar("K", bound=Hashable)
T = TypeVar("T")


class Registry(Generic[K, T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[K, T] = {}
        self._frozen = False

    def register(self, key: K, implementation: T) -> None:
        """Register an implementation under a key."""
        if self._frozen:
            raise RegistryFrozenError(
                f"Cannot register {key!r} in {self.name.lower()} registry: "
                "registry is frozen"
            )
        if key in self._implementations:
            raise self._duplicate(key)
        self._implementations[key] = implementation

    def get(self, key: K) -> T:
        """Get an implementation by key."""
        if key not in self._implementations:
            raise self._missing(key)
        return self._implementations[key]

    def __contains__(self, key: object) -> bool:
        return key in self._implementations

    def list(self) -> list[K]:
        """List all registered keys."""
        return list(self._implementations.keys())

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen

    def _duplicate(self, key: K) -> Exception:
        return KeyError(
            f"{self.name} implementation already registered with key: {key!r}"
        )

    def _missing(self, key: K) -> Exception:
        return KeyError(
            f"No {self.name.lower()} implementation registered with key: {key!r}"
        )


# Processor Registry - job handlers keyed by (queue name, job type)
class Reporter(Protocol):
    """What a handler sees of its running job."""

    def progress(self, percent: int) -> None: ...

    def log(self, message: str) -> None: ...


class JobHandler(Protocol):
    """Protocol for job handlers.

    A handler is any callable, plain or async, taking the job payload and the
    reporter bound to the running attempt. Its return value becomes the
    `data` of the job result; raising fails the attempt.
    """

    def __call__(self, payload: Any, reporter: Reporter) -> Any: ...


class ProcessorRegistry(Registry[tuple[str, str], JobHandler]):
    """Registry mapping (queue name, job type) to a handler.

    Filled once at startup and frozen when workers start.
    """

    def __init__(self):
        super().__init__("Processor")

    def register(  # type: ignore[override]
        self, queue_name: str, job_type: str, handler: JobHandler
    ) -> None:
        if not callable(handler):
            raise TypeError(f"Handler for {queue_name}:{job_type} is not callable")
        super().register((queue_name, job_type), handler)

    def resolve(self, queue_name: str, job_type: str) -> JobHandler:
        """Return the handler for a job or raise UnregisteredJobTypeError."""
        return self.get((queue_name, job_type))

    def has(self, queue_name: str, job_type: str) -> bool:
        return (queue_name, job_type) in self

    def handlers_for(self, queue_name: str) -> list[str]:
        """Job types with a handler on the given queue."""
        return [job_type for queue, job_type in self.list() if queue == queue_name]

    def _duplicate(self, key: tuple[str, str]) -> Exception:
        return DuplicateHandlerError(*key)

    def _missing(self, key: tuple[str, str]) -> Exception:
        return UnregisteredJobTypeError(*key)
