"""Filtered tail of the runtime log.

The pipeline is three independent stages:

- `follow_lines` reads lines from the log as it grows (producer)
- `filter_lines` strips terminal control sequences and keeps lines matching
  the interest patterns (transform)
- a sink such as `print_log_line` displays them (consumer)

`LogWatcher` runs the pipeline as a background asyncio task and `WatcherSlot`
guarantees at most one watcher is printing and that it is stopped on exit.
"""

from __future__ import annotations

import asyncio
import os
import re
from collections.abc import AsyncIterator, Callable, Iterable
from pathlib import Path
from typing import BinaryIO

from pierboot.cli.boot.logging import BootLogComponent, get_logger, print_log_line
from pierboot.constants import WATCHER_POLL_INTERVAL

logger = get_logger(BootLogComponent.WATCHER)

LineSink = Callable[[str], None]

_CONTROL_SEQUENCES = re.compile(
    r"\x1b\[[0-?]*[ -/]*[@-~]"  # CSI: colors, cursor movement
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)?"  # OSC: window titles
    r"|\x1b[@-Z\\-_]"  # two-byte escapes
    r"|[\x00-\x08\x0b-\x1f\x7f]"  # remaining C0 controls, including \r and bare ESC
)


def strip_control_sequences(line: str) -> str:
    return _CONTROL_SEQUENCES.sub("", line)


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace")


class LineFilter:
    """Case-sensitive alternation of interest patterns.

    An empty pattern set keeps every line.
    """

    def __init__(self, patterns: Iterable[str]):
        self.patterns: tuple[str, ...] = tuple(patterns)
        self._regex: re.Pattern[str] | None = (
            re.compile("|".join(f"(?:{p})" for p in self.patterns))
            if self.patterns
            else None
        )

    def matches(self, line: str) -> bool:
        if self._regex is None:
            return True
        return self._regex.search(line) is not None


async def follow_lines(
    path: Path,
    *,
    poll_interval: float = WATCHER_POLL_INTERVAL,
    backlog: int | None = None,
) -> AsyncIterator[str]:
    """Yield complete lines appended to path, forever.

    A missing file is polled until it appears. When the file is truncated or
    replaced it is reopened and read from the start. With ``backlog`` set, the
    first open yields only the last ``backlog`` existing lines and then
    follows, like `tail -f`; otherwise the whole file is yielded.
    """
    handle: BinaryIO | None = None
    inode: int | None = None
    position = 0
    pending = b""
    first_open = True

    try:
        while True:
            if handle is None:
                try:
                    handle = path.open("rb")
                except FileNotFoundError:
                    await asyncio.sleep(poll_interval)
                    continue
                inode = os.fstat(handle.fileno()).st_ino
                position = 0
                pending = b""

                if first_open and backlog is not None:
                    data = handle.read()
                    position = len(data)
                    complete, _, pending = data.rpartition(b"\n")
                    existing = complete.split(b"\n") if complete else []
                    for raw in existing[-backlog:] if backlog > 0 else []:
                        yield _decode(raw)
                first_open = False

            try:
                stat = path.stat()
            except FileNotFoundError:
                stat = None
            if stat is None or stat.st_ino != inode or stat.st_size < position:
                logger.debug(f"{path} was truncated or replaced; reopening")
                handle.close()
                handle = None
                if stat is None:
                    await asyncio.sleep(poll_interval)
                continue

            chunk = handle.read()
            if not chunk:
                await asyncio.sleep(poll_interval)
                continue

            position += len(chunk)
            *lines, pending = (pending + chunk).split(b"\n")
            for raw in lines:
                yield _decode(raw)
    finally:
        if handle is not None:
            handle.close()


async def filter_lines(
    lines: AsyncIterator[str], line_filter: LineFilter
) -> AsyncIterator[str]:
    """Strip control sequences and keep only lines of interest."""
    async for raw in lines:
        line = strip_control_sequences(raw)
        if line_filter.matches(line):
            yield line


class LogWatcher:
    """Background task feeding filtered log lines into a sink.

    `stop` is idempotent: stopping a watcher that never started or already
    stopped does nothing.
    """

    def __init__(
        self,
        log_file: Path,
        patterns: Iterable[str],
        *,
        sink: LineSink = print_log_line,
        poll_interval: float = WATCHER_POLL_INTERVAL,
        backlog: int | None = None,
        name: str = "log-watcher",
    ):
        self.log_file: Path = log_file
        self.line_filter: LineFilter = LineFilter(patterns)
        self.sink: LineSink = sink
        self.poll_interval: float = poll_interval
        self.backlog: int | None = backlog
        self.name: str = name
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def lines(self) -> AsyncIterator[str]:
        return filter_lines(
            follow_lines(
                self.log_file, poll_interval=self.poll_interval, backlog=self.backlog
            ),
            self.line_filter,
        )

    async def _run(self) -> None:
        async for line in self.lines():
            self.sink(line)

    def start(self) -> LogWatcher:
        if self._task is not None:
            raise RuntimeError(f"{self.name} is already started")
        logger.debug(f"Starting {self.name} on {self.log_file}")
        self._task = asyncio.create_task(self._run(), name=self.name)
        return self

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            # Only the watcher's own cancellation ends here.
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
        except Exception:
            logger.exception(f"{self.name} failed")
        logger.debug(f"Stopped {self.name}")


class WatcherSlot:
    """Async context holding at most one running LogWatcher.

    Installing a watcher stops the previous one first; leaving the context
    stops whatever is installed, on every exit path.
    """

    def __init__(self) -> None:
        self._watcher: LogWatcher | None = None

    @property
    def watcher(self) -> LogWatcher | None:
        return self._watcher

    async def install(self, watcher: LogWatcher) -> LogWatcher:
        await self.clear()
        self._watcher = watcher.start()
        return watcher

    async def clear(self) -> None:
        watcher, self._watcher = self._watcher, None
        if watcher is not None:
            await watcher.stop()

    async def __aenter__(self) -> WatcherSlot:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.clear()
