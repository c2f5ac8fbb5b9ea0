"""Queues Commands - Pause, resume and clean queues"""

import typer
from rich.console import Console

from jobqueue.core.exceptions import JobQueueError
from jobqueue.jobs.models import JobState

from ..client.endpoints import JobQueueClient, JobQueueCLIError
from ..utils.formatting import print_error, print_info, print_success

console = Console()
app = typer.Typer(name="queues", help="Queue administration commands")


@app.command("list")
def list_queues():
    """📋 List configured queues"""
    try:
        with JobQueueClient() as client:
            names = client.queues()
    except (JobQueueCLIError, JobQueueError) as e:
        print_error(f"Failed to list queues: {e}")
        raise typer.Exit(1) from None

    for name in names:
        console.print(f"• [cyan]{name}[/cyan]")


@app.command("pause")
def pause_queue(queue: str = typer.Argument(..., help="Queue name")):
    """⏸️ Stop workers from claiming jobs of a queue"""
    try:
        with JobQueueClient() as client:
            client.pause_queue(queue)
    except (JobQueueCLIError, JobQueueError) as e:
        print_error(f"Failed to pause queue: {e}")
        raise typer.Exit(1) from None

    print_success(f"Queue '{queue}' paused")
    print_info("Running jobs finish; pending jobs wait until the queue is resumed")


@app.command("resume")
def resume_queue(queue: str = typer.Argument(..., help="Queue name")):
    """▶️ Resume a paused queue"""
    try:
        with JobQueueClient() as client:
            client.resume_queue(queue)
    except (JobQueueCLIError, JobQueueError) as e:
        print_error(f"Failed to resume queue: {e}")
        raise typer.Exit(1) from None

    print_success(f"Queue '{queue}' resumed")


@app.command("clean")
def clean_queue(
    queue: str = typer.Argument(..., help="Queue name"),
    state: JobState = typer.Option(
        JobState.COMPLETED, "--state", "-s", help="completed or failed"
    ),
    grace_ms: int = typer.Option(
        0, "--grace-ms", "-g", min=0, help="Keep jobs finished within this window"
    ),
    limit: int = typer.Option(100, "--limit", "-l", min=1, help="Jobs to delete"),
):
    """🧹 Delete finished jobs of a queue"""
    if not state.is_terminal:
        print_error("Only completed and failed jobs can be cleaned")
        raise typer.Exit(1)

    try:
        with JobQueueClient() as client:
            count = client.clean_queue(queue, state.value, grace_ms, limit)
    except (JobQueueCLIError, JobQueueError) as e:
        print_error(f"Failed to clean queue: {e}")
        raise typer.Exit(1) from None

    print_success(f"Deleted {count} {state.value} jobs from '{queue}'")
