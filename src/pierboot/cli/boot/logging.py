"""Centralized logging for `pierboot boot` (component loggers and CLI formatting)."""

from __future__ import annotations

import logging
from enum import Enum

from rich.markup import escape

from pierboot.constants import LOG_MARKER
from pierboot.utils import PrefixedLogHandler, console


class BootLogComponent(str, Enum):
    """Where a log originated (used for prefixes and per-component levels)."""

    SESSION = "session"
    WATCHER = "watcher"
    DETECT = "detect"
    ORCHESTRATOR = "orchestrator"
    CONTROL = "control"
    INSTALL = "install"
    RETRY = "retry"


_COMPONENT_COLOR: dict[BootLogComponent, str] = {
    BootLogComponent.SESSION: "magenta",
    BootLogComponent.WATCHER: "bright_black",
    BootLogComponent.DETECT: "cyan",
    BootLogComponent.ORCHESTRATOR: "bright_blue",
    BootLogComponent.CONTROL: "bright_blue",
    BootLogComponent.INSTALL: "green",
    BootLogComponent.RETRY: "yellow",
}

_configured: bool = False


def configure_boot_logging(*, verbose: bool = False) -> None:
    """Route every component logger to the rich console with a colored prefix."""
    global _configured

    level = logging.DEBUG if verbose else logging.WARNING
    for component in BootLogComponent:
        logger = logging.getLogger(f"pierboot.boot.{component.value}")
        logger.setLevel(level)
        logger.handlers.clear()
        handler = PrefixedLogHandler(
            prefix=f"[{component.value}]", color=_COMPONENT_COLOR[component]
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.propagate = False

    _configured = True


def get_logger(component: BootLogComponent) -> logging.Logger:
    """Get a boot logger for a component (do not call stdlib logging directly)."""
    logger = logging.getLogger(f"pierboot.boot.{component.value}")
    if not _configured and not logger.handlers:
        # Avoid "No handlers could be found" warnings when logging isn't configured.
        logger.addHandler(logging.NullHandler())
    return logger


def print_log_line(line: str) -> None:
    """Print one watched runtime log line, dimmed and marked."""
    console.print(f"[dim]{escape(LOG_MARKER)} {escape(line)}[/dim]", highlight=False)
