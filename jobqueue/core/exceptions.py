from typing import Any


class JobQueueError(Exception):
    """Base exception for the job engine."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(JobQueueError):
    """Raised for wiring defects: queues or handlers that are missing or clash.

    Jobs failing with a configuration error are never retried.
    """


class DuplicateHandlerError(ConfigurationError):
    """Raised when a (queue, job type) pair already has a handler."""

    def __init__(self, queue_name: str, job_type: str):
        super().__init__(
            f"Handler already registered for {queue_name}:{job_type}",
            {"queue": queue_name, "job_type": job_type},
        )


class UnregisteredJobTypeError(ConfigurationError):
    """Raised when no handler exists for a (queue, job type) pair."""

    def __init__(self, queue_name: str, job_type: str):
        super().__init__(
            f"No handler registered for {queue_name}:{job_type}",
            {"queue": queue_name, "job_type": job_type},
        )


class UnknownQueueError(ConfigurationError):
    """Raised when a queue has not been created."""

    def __init__(self, queue_name: str):
        super().__init__(f"Queue '{queue_name}' not found", {"queue": queue_name})


class RegistryFrozenError(ConfigurationError):
    """Raised when registering into a registry that is already in use."""


class JobNotFoundError(JobQueueError):
    """Raised when a job id does not exist (or was evicted)."""

    def __init__(self, job_id: Any):
        super().__init__(f"Job {job_id} not found", {"job_id": str(job_id)})


class NotActiveError(JobQueueError):
    """Raised when mutating a job the caller does not currently own.

    Typically a handler reporting after it returned, or a second finalize.
    """

    def __init__(self, job_id: Any, state: str | None = None):
        message = f"Job {job_id} is not active"
        if state:
            message = f"{message} (state: {state})"
        super().__init__(message, {"job_id": str(job_id), "state": state})


class InvalidProgressError(JobQueueError):
    """Raised when progress is out of range or goes backwards."""


class StoreUnavailable(JobQueueError):
    """Raised when the queue store cannot be reached.

    Not counted against job attempts; workers back off and try again.
    """


class HandlerError(JobQueueError):
    """Base class for errors raised by handlers.

    Any exception fails the attempt; subclasses of this one can additionally
    mark the failure as permanent with retryable=False.
    """

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        details: dict[str, Any] | None = None,
    ):
        self.retryable = retryable
        super().__init__(message, details)


class ValidationError(HandlerError):
    """Raised by a handler that rejects its payload."""


class TransientFailure(HandlerError):
    """Raised by a handler for I/O or upstream failures worth retrying."""
