"""Boot command group for the pierboot CLI."""

from pierboot.cli.boot.orchestrator import BootOrchestrator
from pierboot.cli.boot.session import SessionManager
from pierboot.cli.boot.watcher import LogWatcher, WatcherSlot

__all__ = [
    "BootOrchestrator",
    "LogWatcher",
    "SessionManager",
    "WatcherSlot",
]
