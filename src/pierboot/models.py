"""Centralized Pydantic models, enums, and type aliases for pierboot."""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field

from pierboot.constants import (
    BROWSER_DELAY,
    CODE_ANCHOR,
    CODE_COMMAND,
    CODE_PATTERN,
    CODE_POLL_INTERVAL,
    CODE_TIMEOUT,
    CODE_WINDOW,
    DEFAULT_PIER_NAME,
    DEFAULT_SESSION_NAME,
    DEFAULT_WORK_DIR_NAME,
    DOJO_SETTLE_DELAY,
    INTEREST_PATTERNS,
    LIVENESS_INTERVAL,
    LOG_FILE_NAME,
    READINESS_PATTERN,
    READINESS_POLL_INTERVAL,
    READINESS_TIMEOUT,
    REQUIRED_TOOLS,
    RUNTIME_BINARY_NAME,
    SCREENRC_FILE_NAME,
    START_GRACE_PERIOD,
    WATCHER_POLL_INTERVAL,
)


# === Enums ===


class BootMode(str, Enum):
    """Whether the runtime creates a new pier or resumes an existing one."""

    create = "create"
    resume = "resume"


class SessionState(str, Enum):
    """Lifecycle of a named screen session, as seen from `screen -list`."""

    absent = "absent"
    running = "running"
    dead = "dead"


class BootState(str, Enum):
    """States of the boot orchestrator."""

    init = "init"
    launching = "launching"
    awaiting_readiness = "awaiting_readiness"
    handing_off = "handing_off"
    awaiting_code = "awaiting_code"
    monitoring = "monitoring"
    terminated = "terminated"


class ControlAction(str, Enum):
    """What the operator asked for from the monitor loop."""

    quit = "quit"
    kill = "kill"

    @classmethod
    def from_key(cls, key: str) -> ControlAction | None:
        return _KEY_ACTIONS.get(key)


_KEY_ACTIONS: dict[str, ControlAction] = {
    "q": ControlAction.quit,
    "x": ControlAction.kill,
}


# === Value Models ===


class BootTarget(BaseModel):
    """The pier to boot and how. Resolved once, before the session starts."""

    pier_name: str
    mode: BootMode

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)

    @classmethod
    def resolve(cls, work_dir: Path, pier_name: str) -> BootTarget:
        """Resume when the pier directory already exists, create otherwise."""
        mode = BootMode.resume if (work_dir / pier_name).is_dir() else BootMode.create
        return cls(pier_name=pier_name, mode=mode)

    def command(self, runtime: str = f"./{RUNTIME_BINARY_NAME}") -> str:
        """Shell command that boots this target inside the session."""
        if self.mode == BootMode.create:
            return f"{runtime} -c {self.pier_name}"
        return f"{runtime} {self.pier_name}"


class DetectionEvent(BaseModel):
    """A pattern to look for in the log, with its deadline and poll cadence.

    When ``anchor`` is set only the anchor lines and the ``window`` lines
    following each of them are searched.
    """

    name: str
    pattern: re.Pattern[str]
    group: int = 1
    timeout: float
    poll_interval: float
    anchor: re.Pattern[str] | None = None
    window: int = 0

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)


def default_readiness_event() -> DetectionEvent:
    return DetectionEvent(
        name="web interface URL",
        pattern=re.compile(READINESS_PATTERN),
        timeout=READINESS_TIMEOUT,
        poll_interval=READINESS_POLL_INTERVAL,
    )


def default_code_event() -> DetectionEvent:
    return DetectionEvent(
        name="login code",
        pattern=re.compile(CODE_PATTERN),
        timeout=CODE_TIMEOUT,
        poll_interval=CODE_POLL_INTERVAL,
        anchor=re.compile(CODE_ANCHOR),
        window=CODE_WINDOW,
    )


class PlatformInfo(BaseModel):
    """Host OS/architecture and the runtime build that matches it."""

    system: str
    machine: str
    download_url: str

    @property
    def is_macos(self) -> bool:
        return self.system == "Darwin"


class SessionInfo(BaseModel):
    """One entry from `screen -list`."""

    pid: int
    name: str
    state: SessionState
    status: str = ""


# === Configuration ===


class LaunchConfig(BaseModel):
    """Complete configuration for one boot run.

    This is the single source of truth for launch configuration.
    All default values are defined here and should not be repeated elsewhere.
    """

    session_name: str = DEFAULT_SESSION_NAME
    pier_name: str = DEFAULT_PIER_NAME
    work_dir: Path = Field(
        default_factory=lambda: Path.home() / DEFAULT_WORK_DIR_NAME
    )
    runtime_binary: str = RUNTIME_BINARY_NAME
    log_file_name: str = LOG_FILE_NAME
    screenrc_name: str = SCREENRC_FILE_NAME
    required_tools: tuple[str, ...] = REQUIRED_TOOLS
    interest_patterns: tuple[str, ...] = INTEREST_PATTERNS
    readiness: DetectionEvent = Field(default_factory=default_readiness_event)
    code: DetectionEvent = Field(default_factory=default_code_event)
    code_command: str = CODE_COMMAND
    start_grace: float = START_GRACE_PERIOD
    settle_delay: float = DOJO_SETTLE_DELAY
    browser_delay: float = BROWSER_DELAY
    watcher_poll_interval: float = WATCHER_POLL_INTERVAL
    liveness_interval: float = LIVENESS_INTERVAL
    open_browser: bool = True
    copy_code: bool = True

    @property
    def log_file(self) -> Path:
        return self.work_dir / self.log_file_name

    @property
    def screenrc_path(self) -> Path:
        return self.work_dir / self.screenrc_name

    @property
    def pier_dir(self) -> Path:
        return self.work_dir / self.pier_name

    @property
    def runtime_path(self) -> Path:
        return self.work_dir / self.runtime_binary


class BootOutcome(BaseModel):
    """Result of a completed boot run."""

    target: BootTarget
    url: str
    code: str | None = None
    action: ControlAction
