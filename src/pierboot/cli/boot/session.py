"""Named screen sessions hosting the runtime.

The session is owned by the host's screen server; pierboot only creates,
queries, types into and quits it by name.
"""

from __future__ import annotations

import re
import subprocess
import time
from pathlib import Path

from pierboot.cli.boot.logging import BootLogComponent, get_logger
from pierboot.cli.boot.process_control import (
    stop_session_tree,
    track_session,
    wait_for_session_exit,
)
from pierboot.constants import SCREEN_SCROLLBACK
from pierboot.errors import SessionNotFoundError, SessionStartError
from pierboot.models import SessionInfo, SessionState

logger = get_logger(BootLogComponent.SESSION)

# "\t12345.urbit-session\t(10/17/2026 09:12:01 AM)\t(Detached)"
_LIST_LINE = re.compile(r"^\s*(\d+)\.(\S+)\s*(.*)$")


def parse_screen_list(output: str) -> list[SessionInfo]:
    """Parse `screen -list` output into session entries."""
    sessions: list[SessionInfo] = []
    for line in output.splitlines():
        match = _LIST_LINE.match(line)
        if match is None:
            continue
        pid, name, status = match.groups()
        state = SessionState.dead if "Dead" in status else SessionState.running
        sessions.append(
            SessionInfo(pid=int(pid), name=name, state=state, status=status.strip())
        )
    return sessions


def render_screenrc(log_file: Path) -> str:
    """Screen config that logs the window to log_file, flushing every write."""
    return (
        f"logfile {log_file}\n"
        "logfile flush 0\n"
        f"defscrollback {SCREEN_SCROLLBACK}\n"
        "msgwait 0\n"
    )


class SessionManager:
    """Create, query, type into and terminate named screen sessions."""

    def __init__(self, screen_bin: str = "screen"):
        self.screen_bin: str = screen_bin

    def _screen(
        self, *args: str, cwd: Path | None = None
    ) -> subprocess.CompletedProcess[str]:
        cmd = [self.screen_bin, *args]
        logger.debug(f"Running {' '.join(cmd)}")
        return subprocess.run(cmd, cwd=cwd, capture_output=True, text=True)

    def list_sessions(self) -> list[SessionInfo]:
        # `screen -list` exits non-zero whenever no session is attached, so the
        # return code carries no signal here.
        result = self._screen("-list")
        return parse_screen_list(result.stdout)

    def get(self, name: str) -> SessionInfo | None:
        for info in self.list_sessions():
            if info.name == name:
                return info
        return None

    def state(self, name: str) -> SessionState:
        info = self.get(name)
        return info.state if info is not None else SessionState.absent

    def exists(self, name: str) -> bool:
        """True when a live session with exactly this name is listed."""
        return self.state(name) == SessionState.running

    def create(
        self,
        name: str,
        command: str,
        *,
        log_file: Path,
        screenrc: Path,
        cwd: Path,
        grace: float = 2.0,
    ) -> SessionInfo:
        """Start command detached under session name, logging to log_file.

        Raises SessionStartError when the session is gone after the grace
        period, which means the command crashed on launch.
        """
        screenrc.write_text(render_screenrc(log_file))

        result = self._screen(
            "-L",
            "-c",
            str(screenrc),
            "-dmS",
            name,
            "bash",
            "-c",
            f"{command}; exec bash",
            cwd=cwd,
        )
        if result.returncode != 0:
            logger.error(f"screen exited with {result.returncode}: {result.stderr.strip()}")
            raise SessionStartError(name, str(log_file))

        if grace > 0:
            time.sleep(grace)

        info = self.get(name)
        if info is None or info.state != SessionState.running:
            raise SessionStartError(name, str(log_file))
        logger.info(f"Session '{name}' running (pid={info.pid})")
        return info

    def send_keys(self, name: str, text: str) -> None:
        """Type text followed by Enter into the session's first window."""
        if not self.exists(name):
            raise SessionNotFoundError(name)
        result = self._screen("-S", name, "-p", "0", "-X", "stuff", f"{text}\r")
        if result.returncode != 0:
            raise SessionNotFoundError(name)

    def terminate(self, name: str, timeout: float = 2.0) -> None:
        """Ask the session to quit and make sure its process tree follows.

        Best-effort: returns without confirming the runtime has fully exited.
        """
        info = self.get(name)
        self._screen("-S", name, "-X", "quit")
        if info is None:
            return

        tracked = track_session(info)
        if tracked is None:
            return
        if not wait_for_session_exit(tracked, timeout=timeout):
            logger.warning(f"Session '{name}' survived quit; stopping pid {info.pid}")
            stop_session_tree(tracked)

    def wait_until_gone(self, name: str, timeout: float, poll: float = 0.2) -> bool:
        """Return True once no live session with this name is listed."""
        deadline = time.monotonic() + timeout
        while self.exists(name):
            if time.monotonic() >= deadline:
                return False
            time.sleep(poll)
        return True
