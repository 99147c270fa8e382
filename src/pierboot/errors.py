"""Errors raised while launching and supervising a pier.

Every error carries the operator-facing ``hint`` printed under the message and
the process ``exit_code`` the CLI terminates with.
"""

from __future__ import annotations


class LaunchError(Exception):
    """Base class for all launch failures."""

    exit_code: int = 1

    def __init__(self, message: str, hint: str | None = None):
        super().__init__(message)
        self.hint: str | None = hint


class DependencyMissingError(LaunchError):
    """A required external tool is not on PATH."""

    def __init__(self, tool: str):
        super().__init__(
            f"'{tool}' missing.",
            hint=f"Install '{tool}' using your preferred package manager",
        )
        self.tool: str = tool


class UnsupportedPlatformError(LaunchError):
    """No runtime build exists for this OS/architecture."""

    def __init__(self, system: str, machine: str):
        super().__init__(f"Unsupported system: {system} {machine}.")
        self.system: str = system
        self.machine: str = machine


class DuplicateSessionError(LaunchError):
    """A session with the configured name is already running."""

    def __init__(self, session_name: str):
        super().__init__(
            f"Session '{session_name}' already running.",
            hint=f"Attach with: screen -r {session_name}",
        )
        self.session_name: str = session_name


class SessionStartError(LaunchError):
    """The session vanished right after creation (the runtime crashed on launch)."""

    def __init__(self, session_name: str, log_file: str | None = None):
        super().__init__(
            f"Screen session '{session_name}' died immediately.",
            hint=f"Check {log_file} for the runtime's output" if log_file else None,
        )
        self.session_name: str = session_name


class SessionNotFoundError(LaunchError):
    """The session is no longer active."""

    def __init__(self, session_name: str):
        super().__init__(f"Screen session '{session_name}' died unexpectedly.")
        self.session_name: str = session_name


class DetectionTimeoutError(LaunchError):
    """A log pattern did not show up before its deadline."""

    def __init__(self, name: str, timeout: float):
        super().__init__(f"Timeout waiting for {name} after {timeout:g}s.")
        self.name: str = name
        self.timeout: float = timeout


class DownloadError(LaunchError):
    """The runtime could not be downloaded or unpacked."""
