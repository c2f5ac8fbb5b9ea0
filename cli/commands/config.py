"""Configuration Commands - CLI settings management"""

from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm

from ..utils.config_manager import config
from ..utils.formatting import print_error, print_info, print_success

console = Console()
app = typer.Typer(name="config", help="CLI configuration management")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@app.command("set")
def set_config(
    key: str = typer.Argument(..., help="Configuration key (e.g., 'database.url')"),
    value: str = typer.Argument(..., help="Configuration value"),
):
    """⚙️ Set a configuration value"""
    # Validate common keys
    if key == "database.url" and "://" not in value:
        print_error("Database URL must look like 'sqlite+aiosqlite:///./jobqueue.db'")
        raise typer.Exit(1)

    if key == "worker.setup" and ":" not in value:
        print_error("Setup hook must look like 'package.module:function'")
        raise typer.Exit(1)

    if key.endswith(".log_level") and value.upper() not in LOG_LEVELS:
        print_error(f"Log level must be one of {', '.join(LOG_LEVELS)}")
        raise typer.Exit(1)

    stored: str | int = value
    if key.endswith(".log_level"):
        stored = value.upper()
    elif key == "display.jobs_per_page":
        if not value.isdigit() or int(value) < 1:
            print_error("jobs_per_page must be a positive number")
            raise typer.Exit(1)
        stored = int(value)

    try:
        config.set(key, stored)
    except OSError as e:
        print_error(f"Failed to set configuration: {e}")
        raise typer.Exit(1) from None

    print_success(f"Set {key} = {stored}")

    # Show helpful tips for common keys
    if key == "database.url":
        print_info("Check it with: jobqueue status")
    elif key == "worker.setup":
        print_info("Queues and handlers from the hook are loaded by every command")


@app.command("get")
def get_config(
    key: Optional[str] = typer.Argument(
        None, help="Configuration key (optional - shows all if omitted)"
    ),
):
    """📋 Get configuration value(s)"""
    if not key:
        show_all_config(raw=False)
        return

    value = config.get(key)
    if value is None:
        console.print(f"[yellow]Key '{key}' not found[/yellow]")
        console.print("Use [cyan]jobqueue config show[/cyan] to see all available keys")
    else:
        console.print(f"[cyan]{key}[/cyan] = [yellow]{value}[/yellow]")


@app.command("show")
def show_all_config(
    raw: bool = typer.Option(False, "--raw", help="Print the YAML document"),
):
    """📊 Show all configuration settings"""
    if raw:
        config.show_all()
        return

    console.print(
        Panel(
            "[bold cyan]jobqueue CLI Configuration[/bold cyan]\n\n"
            f"[dim]Configuration is stored in {config.config_file}[/dim]",
            title="Configuration",
            border_style="blue",
        )
    )
    _display_config_section(config.load_config())


@app.command("reset")
def reset_config(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """🔄 Reset configuration to defaults"""
    if not yes and not Confirm.ask(
        "⚠️ This will reset ALL configuration to defaults. Continue?"
    ):
        console.print("Configuration reset cancelled.")
        return

    try:
        config.reset()
    except OSError as e:
        print_error(f"Failed to reset configuration: {e}")
        raise typer.Exit(1) from None

    print_success("Configuration reset to defaults")
    console.print("💡 Use [cyan]jobqueue config show[/cyan] to see current settings")


@app.command("path")
def show_config_path():
    """📁 Show configuration file path"""
    console.print(f"Configuration file: [cyan]{config.config_file}[/cyan]")
    console.print(f"Configuration directory: [blue]{config.config_dir}[/blue]")

    if config.config_file.exists():
        size = config.config_file.stat().st_size
        console.print(f"File size: [yellow]{size} bytes[/yellow]")
    else:
        console.print("[dim]Configuration file will be created on first change[/dim]")


def _display_config_section(data, indent: int = 0):
    """Recursively display configuration sections"""
    indent_str = "  " * indent

    for key, value in data.items():
        if isinstance(value, dict):
            console.print(f"{indent_str}[bold blue]{key}:[/bold blue]")
            _display_config_section(value, indent + 1)
            continue

        if isinstance(value, bool):
            color = "green" if value else "red"
            display_value = f"[{color}]{value}[/{color}]"
        elif isinstance(value, int | float):
            display_value = f"[cyan]{value}[/cyan]"
        elif value is None:
            display_value = "[dim]unset[/dim]"
        else:
            display_value = f"[yellow]{value}[/yellow]"

        console.print(f"{indent_str}[cyan]{key}[/cyan]: {display_value}")
