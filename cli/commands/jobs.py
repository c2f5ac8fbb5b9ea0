"""Jobs Commands - Inspect and manage individual jobs"""

from typing import Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm

from jobqueue.core.exceptions import JobQueueError
from jobqueue.jobs.models import JobState

from ..client.endpoints import JobQueueClient, JobQueueCLIError
from ..utils.config_manager import config
from ..utils.formatting import (
    create_job_panel,
    create_jobs_table,
    create_log_table,
    print_error,
    print_info,
    print_success,
    print_warning,
)

console = Console()
app = typer.Typer(name="jobs", help="Job inspection and management commands")


@app.command("list")
def list_jobs(
    queue: str = typer.Argument(..., help="Queue name"),
    state: JobState = typer.Option(
        JobState.PENDING, "--state", "-s", help="Job state to list"
    ),
    limit: Optional[int] = typer.Option(
        None, "--limit", "-l", min=1, help="Number of jobs to show"
    ),
):
    """📋 List jobs of a queue in one state"""
    limit = limit or config.get("display.jobs_per_page", 20)

    try:
        with JobQueueClient() as client:
            jobs = client.list_jobs(queue, state.value, limit)
    except (JobQueueCLIError, JobQueueError) as e:
        print_error(f"Failed to list jobs: {e}")
        raise typer.Exit(1) from None

    if not jobs:
        console.print(Panel(
            f"📭 [yellow]No {state.value} jobs in '{queue}'[/yellow]",
            title="Empty Results",
            border_style="yellow"
        ))
        return

    console.print(create_jobs_table(jobs, title=f"{queue} - {state.value}"))
    if len(jobs) == limit:
        console.print(f"💡 Use [cyan]--limit {limit * 2}[/cyan] to see more")


@app.command("show")
def show_job(
    job_id: UUID = typer.Argument(..., help="Job ID"),
    attempt: Optional[int] = typer.Option(
        None, "--attempt", "-a", min=1, help="Show the log of an earlier attempt"
    ),
):
    """🔍 Show a job with its log"""
    try:
        with JobQueueClient() as client:
            job = client.get_job(job_id)
            entries = (
                client.get_job_logs(job_id, attempt) if attempt else job.log
            )
    except (JobQueueCLIError, JobQueueError) as e:
        print_error(f"Failed to load job: {e}")
        raise typer.Exit(1) from None

    console.print(create_job_panel(job))
    if entries:
        console.print(create_log_table(entries, attempt or job.attempts))
    else:
        print_info("No log entries")


@app.command("retry")
def retry_job(job_id: UUID = typer.Argument(..., help="Job ID")):
    """🔁 Retry a failed job with a fresh attempt budget"""
    try:
        with JobQueueClient() as client:
            retried = client.retry_job(job_id)
    except (JobQueueCLIError, JobQueueError) as e:
        print_error(f"Failed to retry job: {e}")
        raise typer.Exit(1) from None

    if retried:
        print_success(f"Job {job_id} is pending again")
    else:
        print_warning(f"Job {job_id} is not failed, nothing to retry")
        raise typer.Exit(1)


@app.command("remove")
def remove_job(
    job_id: UUID = typer.Argument(..., help="Job ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """🗑️ Remove a job that is not running"""
    if not yes and not Confirm.ask(f"Remove job {job_id}?"):
        console.print("Removal cancelled.")
        return

    try:
        with JobQueueClient() as client:
            removed = client.remove_job(job_id)
    except (JobQueueCLIError, JobQueueError) as e:
        print_error(f"Failed to remove job: {e}")
        raise typer.Exit(1) from None

    if removed:
        print_success(f"Removed job {job_id}")
    else:
        print_warning(f"Job {job_id} not found")
        raise typer.Exit(1)
