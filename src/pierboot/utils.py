import logging
import platform
import shutil
import subprocess
import time
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from typing_extensions import override

console = Console(legacy_windows=False)

RULE_WIDTH = 64


def format_elapsed_ms(start_time_perf: float) -> str:
    """Format elapsed time since start_time_perf.

    If under 1 second, return milliseconds. Otherwise, return seconds and remaining milliseconds.
    """
    elapsed_seconds = time.perf_counter() - start_time_perf
    if elapsed_seconds < 1:
        return f"{int(elapsed_seconds * 1000)}ms"
    seconds = int(elapsed_seconds)
    remaining_ms = int((elapsed_seconds - seconds) * 1000)
    return f"{seconds}s {remaining_ms}ms"


@contextmanager
def progress_spinner(description: str, success_message: str):
    """Context manager for a transient progress spinner with completion message.

    Args:
        description: The description to show while the task is running
        success_message: The message to show after completion (timing is appended)

    Yields:
        The start time (perf_counter) for the operation
    """
    phase_start = time.perf_counter()

    with Progress(
        SpinnerColumn(finished_text=""),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task(description, total=None)
        yield phase_start

    console.print(f"{success_message} ({format_elapsed_ms(phase_start)})")


# === Operator messages ===


def print_step(text: str) -> None:
    console.print(f"[bold green]==>[/] [bold]{escape(text)}[/]")


def print_info(text: str) -> None:
    console.print(f"[cyan]    {escape(text)}[/]")


def print_error(text: str) -> None:
    console.print(f"[red]Error: {escape(text)}[/]")


def print_rule(color: str) -> None:
    console.print(f"[{color}]{'═' * RULE_WIDTH}[/]")


def print_banner(label: str, value: str, color: str = "blue") -> None:
    """Print a highlighted `✓ label value` line between two rules."""
    console.print()
    print_rule(color)
    console.print(f"[bold green]✓ {escape(label)}[/] [bold yellow]{escape(value)}[/]")
    print_rule(color)
    console.print()


def print_with_prefix(prefix: str, text: str, color: str, width: int = 12):
    """Print text with a timestamp and a colored prefix, one console line per text line."""
    current_time = time.time()
    timestamp = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(current_time))
    milliseconds = int((current_time % 1) * 1000)
    timestamp_with_ms = f"{timestamp}.{milliseconds:03d}"

    padded_prefix = escape(prefix).ljust(width)

    for line in text.split("\n"):
        console.print(
            f"[dim]{timestamp_with_ms}[/] | [{color}]{padded_prefix}[/] | {escape(line)}"
        )


class PrefixedLogHandler(logging.Handler):
    """A logging handler that uses print_with_prefix to output log messages."""

    def __init__(self, prefix: str, color: str, width: int = 12):
        super().__init__()
        self.prefix: str = prefix
        self.color: str = color
        self.width: int = width

    @override
    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            color = self.color
            if record.levelno >= logging.ERROR:
                color = "red"
            elif record.levelno >= logging.WARNING:
                color = "yellow"

            print_with_prefix(self.prefix, msg, color, width=self.width)
        except Exception:
            self.handleError(record)


# === Host helpers ===


def is_tool_installed(name: str) -> bool:
    """Check if an executable is on PATH."""
    return shutil.which(name) is not None


def ensure_dir(path: Path) -> None:
    """Create directory if it doesn't exist."""
    path.mkdir(parents=True, exist_ok=True)


def copy_to_clipboard(text: str) -> str | None:
    """Copy text to the system clipboard.

    Returns a label for the clipboard used, or None when no clipboard tool is
    available or the copy failed.
    """
    if platform.system() == "Darwin":
        cmd, label = ["pbcopy"], "macOS clipboard"
    elif is_tool_installed("xclip"):
        cmd, label = ["xclip", "-selection", "clipboard"], "Linux clipboard"
    else:
        return None

    try:
        result = subprocess.run(cmd, input=text, text=True, capture_output=True)
    except (OSError, subprocess.SubprocessError):
        return None
    return label if result.returncode == 0 else None


def open_in_browser(url: str) -> bool:
    """Open url with the platform viewer (xdg-open / open). Never raises."""
    try:
        return typer.launch(url) == 0
    except Exception:
        return False
