"""jobqueue CLI - Main Entry Point"""

import json
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from jobqueue.core.exceptions import JobQueueError

# Import command modules
from .commands import config, jobs, queues, worker
from .utils.config_manager import config as config_manager
from .utils.formatting import (
    create_health_panel,
    create_metrics_table,
    print_error,
    print_info,
    print_success,
)
from .client.endpoints import JobQueueClient, JobQueueCLIError

console = Console()

# Create main Typer app
app = typer.Typer(
    name="jobqueue",
    help="⚙️ jobqueue - background job engine CLI",
    rich_markup_mode="rich",
)

# Add command subapps
app.add_typer(jobs.app, name="jobs")
app.add_typer(queues.app, name="queues")
app.add_typer(worker.app, name="worker")
app.add_typer(config.app, name="config")


@app.command()
def status(
    queue: Optional[str] = typer.Option(None, "--queue", "-q", help="Only this queue"),
):
    """📊 Show queue metrics"""
    database_url = config_manager.get("database.url")
    print_info(f"Database: {database_url}")

    try:
        with JobQueueClient(database_url) as client:
            metrics = client.metrics(queue)
    except (JobQueueCLIError, JobQueueError) as e:
        print_error(f"Failed to load queue metrics: {e}")
        raise typer.Exit(1) from None

    if not metrics:
        console.print(Panel(
            "📭 [yellow]No queues configured![/yellow]\n\n"
            "Queues are created by the setup hook:\n"
            "[cyan]jobqueue config set worker.setup package.module:function[/cyan]",
            title="Empty",
            border_style="yellow"
        ))
        return

    console.print(create_metrics_table(metrics))


@app.command()
def health():
    """🩺 Check queue health"""
    try:
        with JobQueueClient() as client:
            report = client.health_check()
    except (JobQueueCLIError, JobQueueError) as e:
        print_error(f"Health check failed: {e}")
        raise typer.Exit(1) from None

    console.print(create_health_panel(report))
    if not report.healthy:
        raise typer.Exit(1)


@app.command()
def enqueue(
    queue: str = typer.Argument(..., help="Queue name"),
    job_type: str = typer.Argument(..., help="Job type"),
    payload: Optional[str] = typer.Option(
        None, "--payload", "-p", help="JSON payload"
    ),
    max_attempts: Optional[int] = typer.Option(
        None, "--max-attempts", "-a", min=1, help="Attempt ceiling"
    ),
    delay_ms: int = typer.Option(
        0, "--delay-ms", "-d", min=0, help="Delay before the job is claimable"
    ),
):
    """➕ Submit a job"""
    try:
        data = json.loads(payload) if payload is not None else None
    except json.JSONDecodeError as e:
        print_error(f"Payload is not valid JSON: {e}")
        raise typer.Exit(1) from None

    try:
        with JobQueueClient() as client:
            job_id = client.enqueue(queue, job_type, data, max_attempts, delay_ms)
    except (JobQueueCLIError, JobQueueError) as e:
        print_error(f"Failed to enqueue job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Enqueued {queue}:{job_type}")
    console.print(f"Job ID: [cyan]{job_id}[/cyan]")
    console.print(f"💡 Track it with [cyan]jobqueue jobs show {job_id}[/cyan]")


@app.command()
def version():
    """📎 Show CLI version information"""
    from . import __version__

    console.print(Panel(
        f"⚙️ [bold cyan]jobqueue CLI[/bold cyan]\n\n"
        f"• Version: [green]{__version__}[/green]\n"
        f"• Database: [blue]{config_manager.get('database.url')}[/blue]",
        title="Version Info",
        border_style="cyan"
    ))


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None, "--version", "-v", help="Show version and exit"
    ),
):
    """
    ⚙️ jobqueue CLI - inspect queues, submit jobs and run workers
    """
    if version:
        from . import __version__
        console.print(f"jobqueue CLI v{__version__}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit()


if __name__ == "__main__":
    app()
