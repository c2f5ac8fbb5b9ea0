"""Engine client base - runs engine coroutines for synchronous commands"""

import asyncio
from collections.abc import Coroutine
from typing import Any, TypeVar

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from jobqueue.config.settings import get_settings
from jobqueue.core.exceptions import JobQueueError
from jobqueue.jobs.service import JobService
from jobqueue.main import init_service

console = Console()

T = TypeVar("T")


class JobQueueCLIError(Exception):
    """Base exception for errors reported to the CLI user"""

    pass


class EngineClient:
    """Owns an event loop and a job service for the lifetime of a command"""

    def __init__(
        self,
        database_url: str,
        setup: str | None = None,
        log_level: str = "WARNING",
    ):
        # Environment knobs (JOB_*, DB_*) apply; the CLI config picks the database
        self.settings = get_settings().model_copy(
            update={"database_url": database_url, "log_level": log_level}
        )
        self.setup = setup
        self.service: JobService | None = None
        self._runner = asyncio.Runner()

    def __enter__(self):
        try:
            self.service = self.run(init_service(self.settings, self.setup))
        except BaseException:
            self._runner.close()
            raise
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if self.service is not None:
                self._runner.run(self.service.store.database.close())
        finally:
            self._runner.close()

    def run(self, coro: Coroutine[Any, Any, T]) -> T:
        """Run an engine coroutine, turning engine errors into CLI errors"""
        try:
            return self._runner.run(coro)
        except JobQueueError as e:
            console.print(Panel(f"[red]{escape(e.message)}[/red]", title="Engine Error"))
            raise JobQueueCLIError(e.message) from e
