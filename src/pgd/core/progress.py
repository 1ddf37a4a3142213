"""User-facing feedback for CLI operations.

Usage::

    from pgd.core.progress import spinner, status

    status("Config written", style="success")  # ✓ Config written
    status("Port 5432 is taken", style="warning")  # ! Port 5432 is taken

    with spinner("Starting container"):
        controller.start(root)  # structlog console output suppressed here
"""

from __future__ import annotations

import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

_console = Console(stderr=True)

_STYLES = {
    "success": "[green]✓[/green] ",
    "error": "[red]✗[/red] ",
    "warning": "[yellow]![/yellow] ",
    "info": "  ",
    "none": "",
}

_suppress_console_logs = threading.local()


def is_console_suppressed() -> bool:
    """Check if console logging is currently suppressed."""
    return getattr(_suppress_console_logs, "active", False)


@contextmanager
def suppress_console_logs() -> Iterator[None]:
    """Suppress structlog console output while a live display is shown."""
    _suppress_console_logs.active = True
    try:
        yield
    finally:
        _suppress_console_logs.active = False


def _get_logger() -> BoundLogger:
    from pgd.core.logging import get_logger

    return get_logger("progress")


def _is_tty() -> bool:
    return hasattr(sys.stderr, "isatty") and sys.stderr.isatty()


def get_console() -> Console:
    """Get the shared Rich console instance."""
    return _console


def status(message: str, *, style: str = "info", indent: int = 0) -> None:
    """Print a styled status message to stderr. ``message`` is plain text, not markup."""
    prefix = _STYLES.get(style, "")
    padding = " " * indent
    _console.print(f"{padding}{prefix}{escape(message)}", highlight=False)

    _get_logger().debug("status", message=message, style=style)


@contextmanager
def spinner(message: str, *, indent: int = 0) -> Iterator[None]:
    """Show a spinner for the duration of the block (plain line when not a TTY)."""
    padding = " " * indent
    if _is_tty():
        with (
            suppress_console_logs(),
            _console.status(f"{padding}[cyan]{message}[/cyan]", spinner="dots"),
        ):
            yield
    else:
        _console.print(f"{padding}{message}...", highlight=False)
        yield


def make_kv_table(title: str, rows: list[tuple[str, str]], *, dim_keys: frozenset[str] = frozenset()) -> Table:
    """Two-column rounded table used for config and connection summaries."""
    table = Table(box=box.ROUNDED, show_header=True, header_style="bold")
    table.add_column(title)
    table.add_column("")
    for key, value in rows:
        value_style = "dim" if key in dim_keys else "bold"
        table.add_row(escape(key), f"[{value_style}]{escape(value)}[/{value_style}]")
    return table
