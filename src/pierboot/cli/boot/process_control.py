"""Process-tree shutdown for the screen server behind a session.

`screen -X quit` normally takes the runtime down with it. When it doesn't
(a wedged runtime ignoring SIGHUP) the tree is stopped here, targeting only
the server pid listed for the session.
"""

from __future__ import annotations

import signal
import time
from typing import ClassVar

import psutil
from pydantic import BaseModel, ConfigDict

from pierboot.cli.boot.logging import BootLogComponent, get_logger
from pierboot.models import SessionInfo

logger = get_logger(BootLogComponent.SESSION)


class TrackedSession(BaseModel):
    """The screen server of a named session, pinned to its start time.

    create_time protects against PID reuse between `screen -list` and signalling.
    """

    name: str
    pid: int
    create_time: float

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)


def track_session(info: SessionInfo) -> TrackedSession | None:
    """Pin a listed session to its server process, or None if it already exited."""
    try:
        created = psutil.Process(info.pid).create_time()
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return None
    return TrackedSession(name=info.name, pid=info.pid, create_time=float(created))


def server_process(tracked: TrackedSession) -> psutil.Process | None:
    """The live server process, unless its pid now belongs to something else."""
    try:
        proc = psutil.Process(tracked.pid)
        if abs(float(proc.create_time()) - tracked.create_time) > 0.001:
            return None
        return proc
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return None


def _terminate_tree(root: psutil.Process, timeout: float) -> None:
    """Terminate root and its descendants, escalating to SIGKILL (best-effort)."""
    try:
        children = root.children(recursive=True)
    except psutil.Error:
        children = []

    # Children first so the root gets a chance to exit cleanly.
    for proc in [*children, root]:
        try:
            proc.terminate()
        except psutil.Error:
            pass

    _, alive = psutil.wait_procs([*children, root], timeout=timeout)
    if alive:
        for proc in alive:
            try:
                proc.kill()
            except psutil.Error:
                pass
        psutil.wait_procs(alive, timeout=max(0.5, timeout / 2))


def stop_session_tree(
    tracked: TrackedSession,
    *,
    sighup_timeout: float = 1.0,
    sigterm_timeout: float = 1.5,
) -> None:
    """Stop the session's server and everything running under it.

    SIGHUP first (what a closing terminal sends), then SIGTERM/SIGKILL on the tree.
    """
    proc = server_process(tracked)
    if proc is None:
        return
    logger.debug(f"Stopping session '{tracked.name}' pid={tracked.pid}")

    try:
        proc.send_signal(signal.SIGHUP)
    except psutil.Error:
        pass
    if wait_for_session_exit(tracked, timeout=sighup_timeout):
        return

    proc = server_process(tracked)
    if proc is not None:
        _terminate_tree(proc, timeout=sigterm_timeout)


def wait_for_session_exit(
    tracked: TrackedSession, *, timeout: float = 5.0, poll: float = 0.1
) -> bool:
    """Return True once the server is gone (a zombie counts as gone)."""
    deadline = time.time() + timeout
    while True:
        proc = server_process(tracked)
        if proc is None:
            return True
        try:
            if proc.status() == psutil.STATUS_ZOMBIE:
                return True
        except psutil.Error:
            return True
        if time.time() >= deadline:
            return False
        time.sleep(poll)
