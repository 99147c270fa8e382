"""Interactive monitor loop: `q` detaches, `x` kills the session.

Keys are read from the controlling terminal, never from the session, and the
terminal is restored on every exit path.
"""

from __future__ import annotations

import asyncio
import os
import termios
import tty
from collections.abc import Callable
from typing import Protocol

from pierboot.cli.boot.logging import BootLogComponent, get_logger
from pierboot.errors import SessionNotFoundError
from pierboot.models import ControlAction

logger = get_logger(BootLogComponent.CONTROL)


class KeySource(Protocol):
    async def read_key(self) -> str: ...


class TerminalKeySource:
    """Single unechoed keystrokes from /dev/tty, delivered through the event loop.

    Use as a context manager inside a running loop. Without a controlling
    terminal `read_key` never returns.
    """

    def __init__(self, tty_path: str = "/dev/tty"):
        self.tty_path: str = tty_path
        self._fd: int | None = None
        self._saved: list | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[str] = asyncio.Queue()

    def __enter__(self) -> TerminalKeySource:
        self._loop = asyncio.get_running_loop()
        try:
            fd = os.open(self.tty_path, os.O_RDONLY | os.O_NONBLOCK)
        except OSError as e:
            logger.warning(f"No controlling terminal ({e}); press Ctrl+C to detach")
            return self

        try:
            self._saved = termios.tcgetattr(fd)
            tty.setcbreak(fd)
        except termios.error as e:
            logger.warning(f"{self.tty_path} is not a terminal ({e})")
            os.close(fd)
            return self

        self._fd = fd
        self._loop.add_reader(fd, self._on_readable)
        return self

    def _on_readable(self) -> None:
        assert self._fd is not None
        try:
            data = os.read(self._fd, 64)
        except BlockingIOError:
            return
        if not data:
            assert self._loop is not None
            self._loop.remove_reader(self._fd)
            return
        for key in data.decode("utf-8", errors="ignore"):
            self._queue.put_nowait(key)

    async def read_key(self) -> str:
        return await self._queue.get()

    def __exit__(self, *exc_info: object) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        if self._loop is not None:
            self._loop.remove_reader(fd)
        try:
            if self._saved is not None:
                termios.tcsetattr(fd, termios.TCSADRAIN, self._saved)
        finally:
            os.close(fd)


class InteractiveController:
    """Waits for the operator's quit/kill key while checking the session is alive."""

    def __init__(
        self,
        keys: KeySource,
        *,
        session_name: str,
        session_alive: Callable[[], bool] | None = None,
        liveness_interval: float = 5.0,
    ):
        self.keys: KeySource = keys
        self.session_name: str = session_name
        self.session_alive: Callable[[], bool] | None = session_alive
        self.liveness_interval: float = liveness_interval

    async def _next_action(self) -> ControlAction:
        while True:
            key = await self.keys.read_key()
            action = ControlAction.from_key(key)
            if action is not None:
                return action
            logger.debug(f"Ignoring key {key!r}")

    async def _wait_session_gone(self) -> None:
        assert self.session_alive is not None
        while True:
            await asyncio.sleep(self.liveness_interval)
            if not await asyncio.to_thread(self.session_alive):
                return

    async def run(self) -> ControlAction:
        """Return the operator's action.

        Raises:
            SessionNotFoundError: the session died before a key was pressed
        """
        key_task = asyncio.create_task(self._next_action(), name="keys")
        tasks: set[asyncio.Task] = {key_task}
        live_task: asyncio.Task | None = None
        if self.session_alive is not None:
            live_task = asyncio.create_task(self._wait_session_gone(), name="liveness")
            tasks.add(live_task)

        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        if key_task in done:
            return key_task.result()
        assert live_task is not None
        live_task.result()
        raise SessionNotFoundError(self.session_name)
