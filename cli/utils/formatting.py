"""Rich Formatting Utilities for CLI Output"""

import json
from datetime import datetime
from typing import Any

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from jobqueue.jobs.schemas import HealthReport, JobSnapshot, LogEntry, QueueMetrics

console = Console()

STATE_STYLES = {
    "pending": "yellow",
    "active": "blue",
    "completed": "green",
    "failed": "red",
}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def create_metrics_table(metrics: list[QueueMetrics]) -> Table:
    """Create a formatted table of queue metrics"""
    table = Table(title="Queues", box=box.ROUNDED)

    table.add_column("Queue", justify="left", style="cyan", no_wrap=True)
    table.add_column("Waiting", justify="right", style="yellow")
    table.add_column("Delayed", justify="right", style="yellow")
    table.add_column("Active", justify="right", style="blue")
    table.add_column("Completed", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Jobs/h", justify="right", style="magenta")
    table.add_column("Avg ms", justify="right", style="white")

    for m in metrics:
        name = f"{m.queue} [dim](paused)[/dim]" if m.paused else m.queue
        table.add_row(
            name,
            str(m.waiting),
            str(m.delayed),
            str(m.active),
            str(m.completed),
            str(m.failed),
            str(m.throughput),
            str(m.average_processing_time_ms),
        )

    return table


def create_jobs_table(jobs: list[JobSnapshot], title: str = "Jobs") -> Table:
    """Create a formatted table for a list of jobs"""
    table = Table(title=title, box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("State", justify="center")
    table.add_column("Attempts", justify="center", style="yellow")
    table.add_column("Progress", justify="right")
    table.add_column("Updated", justify="left", style="dim")
    table.add_column("Last Error", justify="left", style="red")

    for job in jobs:
        style = STATE_STYLES.get(job.state.value, "white")
        table.add_row(
            str(job.id),
            job.job_type,
            f"[{style}]{job.state.value}[/{style}]",
            f"{job.attempts}/{job.max_attempts}",
            f"{job.progress}%",
            _format_time(job.updated_at),
            escape(_truncate(job.last_error or "—", 40)),
        )

    return table


def create_job_panel(job: JobSnapshot) -> Panel:
    """Create formatted panel for one job record"""
    style = STATE_STYLES.get(job.state.value, "white")
    lines = [
        f"• ID: [cyan]{job.id}[/cyan]",
        f"• Queue: [blue]{job.queue_name}[/blue]",
        f"• Type: [magenta]{job.job_type}[/magenta]",
        f"• State: [{style}]{job.state.value}[/{style}]",
        f"• Progress: [yellow]{job.progress}%[/yellow]",
        f"• Attempts: [yellow]{job.attempts}/{job.max_attempts}[/yellow]",
        f"• Created: {_format_time(job.created_at)}",
        f"• Next eligible: {_format_time(job.next_eligible_at)}",
    ]
    if job.locked_by:
        lines.append(f"• Worker: [dim]{job.locked_by}[/dim]")
    if job.completed_at:
        lines.append(f"• Completed: {_format_time(job.completed_at)}")
    if job.duration_ms is not None:
        lines.append(f"• Duration: [cyan]{job.duration_ms}ms[/cyan]")
    if job.last_error:
        lines.append(f"• Last error: [red]{escape(job.last_error)}[/red]")
    if job.payload is not None:
        lines.append(f"\n[bold]Payload[/bold]\n{escape(_to_json(job.payload))}")
    if job.result is not None:
        lines.append(f"\n[bold]Result[/bold]\n{escape(_to_json(job.result))}")

    return Panel("\n".join(lines), title="Job", border_style=style)


def create_log_table(entries: list[LogEntry], attempt: int) -> Table:
    """Create formatted table for a job log"""
    table = Table(title=f"Log (attempt {attempt})", box=box.SIMPLE)

    table.add_column("Time", justify="left", style="dim", no_wrap=True)
    table.add_column("Message", justify="left", style="white")

    for entry in entries:
        table.add_row(_format_time(entry.logged_at), escape(entry.message))

    return table


def create_health_panel(report: HealthReport) -> Panel:
    """Create formatted panel for a health report"""
    styles = {"healthy": "green", "warning": "yellow", "error": "red"}
    lines = []

    for name, health in report.queues.items():
        style = styles.get(health.status, "white")
        lines.append(f"• [cyan]{name}[/cyan]: [{style}]{health.status}[/{style}]")
        for issue in health.issues:
            lines.append(f"    [dim]- {escape(issue)}[/dim]")

    if not lines:
        lines.append("[dim]No queues configured[/dim]")

    return Panel(
        "\n".join(lines),
        title="Healthy" if report.healthy else "Unhealthy",
        border_style="green" if report.healthy else "red",
    )


def _format_time(value: datetime | None) -> str:
    if value is None:
        return "—"
    return value.strftime("%Y-%m-%d %H:%M:%S")


def _truncate(text: str, length: int) -> str:
    return text[:length] + "..." if len(text) > length else text


def _to_json(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)
