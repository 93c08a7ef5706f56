"""CLI output utilities for consistent messaging."""

from rich.console import Console
from rich.table import Table

_console = Console()


def success(message: str) -> None:
    """Print a success message with green checkmark."""
    _console.print(f"[green]✓[/green] {message}")


def error(message: str) -> None:
    """Print an error message with red X."""
    _console.print(f"[red]✗[/red] {message}")


def warning(message: str) -> None:
    """Print a warning message with yellow exclamation."""
    _console.print(f"[yellow]![/yellow] {message}")


def step(message: str) -> None:
    """Print a pipeline step (pull, mutate, push)."""
    _console.print(f"[cyan]→[/cyan] {message}")


def info(message: str) -> None:
    _console.print(message)


def dim(message: str) -> None:
    _console.print(f"[dim]{message}[/dim]")


def table(title: str, columns: list[str], rows: list[list[str]]) -> None:
    """Render rows as a rich table. Nothing is printed for an empty row list."""
    if not rows:
        return
    output = Table(title=title)
    for column in columns:
        output.add_column(column)
    for row in rows:
        output.add_row(*row)
    _console.print(output)
