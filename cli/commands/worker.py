"""Worker Commands - Run job processing in the foreground"""

from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from jobqueue.core.exceptions import JobQueueError

from ..client.endpoints import JobQueueClient, JobQueueCLIError
from ..utils.config_manager import config
from ..utils.formatting import create_metrics_table, print_error, print_success

console = Console()
app = typer.Typer(name="worker", help="Worker processes")


@app.command("start")
def start_worker(
    queue: str = typer.Option(..., "--queue", "-q", help="Queue to process"),
    concurrency: Optional[int] = typer.Option(
        None, "--concurrency", "-c", min=1, help="Number of concurrent workers"
    ),
    setup: Optional[str] = typer.Option(
        None,
        "--setup",
        help="Setup hook 'package.module:function' creating queues and handlers",
    ),
    drain: bool = typer.Option(
        False, "--drain", help="Process eligible jobs, then exit"
    ),
):
    """🚀 Start a worker pool for a queue"""
    log_level = config.get("worker.log_level", "INFO")

    try:
        with JobQueueClient(setup=setup, log_level=log_level) as client:
            console.print(Panel(
                f"🚀 [green]Worker pool starting[/green]\n\n"
                f"• Queue: [cyan]{queue}[/cyan]\n"
                f"• Concurrency: [yellow]{concurrency or 'queue default'}[/yellow]\n"
                f"• Mode: [blue]{'drain' if drain else 'until interrupted'}[/blue]",
                title="Worker",
                border_style="green"
            ))
            client.run_worker(queue, concurrency, drain=drain)
            metrics = client.metrics(queue)
    except (JobQueueCLIError, JobQueueError) as e:
        print_error(f"Worker failed: {e}")
        raise typer.Exit(1) from None

    print_success("Worker pool stopped")
    console.print(create_metrics_table(metrics))
