"""Bounded-timeout detection of values in the runtime log.

Each poll rereads the whole log and takes the last match in file order: the
log only grows during a run, so later lines supersede earlier ones.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_delay,
    wait_fixed,
)

from pierboot.cli.boot.logging import BootLogComponent, get_logger
from pierboot.cli.boot.watcher import strip_control_sequences
from pierboot.errors import DetectionTimeoutError
from pierboot.models import DetectionEvent

logger = get_logger(BootLogComponent.DETECT)

T = TypeVar("T")


class _NotFoundYet(Exception):
    pass


def candidate_lines(lines: list[str], event: DetectionEvent) -> list[str]:
    """Lines eligible for matching: all of them, or only anchor windows."""
    if event.anchor is None:
        return lines

    keep: set[int] = set()
    for index, line in enumerate(lines):
        if event.anchor.search(line):
            keep.update(range(index, min(index + event.window + 1, len(lines))))
    return [lines[i] for i in sorted(keep)]


def find_last_match(content: str, event: DetectionEvent) -> str | None:
    """Return the captured value of the last match of event in content."""
    lines = [strip_control_sequences(line) for line in content.splitlines()]
    for line in reversed(candidate_lines(lines, event)):
        matches = list(event.pattern.finditer(line))
        if matches:
            return matches[-1].group(event.group)
    return None


async def poll_until(
    probe: Callable[[], T | None],
    *,
    timeout: float,
    poll_interval: float,
    name: str,
) -> T:
    """Call probe every poll_interval until it returns a value or timeout passes.

    Raises:
        DetectionTimeoutError: probe kept returning None until the deadline
    """

    def log_attempt(retry_state: RetryCallState) -> None:
        logger.debug(
            f"{name}: not found after attempt {retry_state.attempt_number} "
            f"({retry_state.seconds_since_start:.1f}s)"
        )

    retrying = AsyncRetrying(
        stop=stop_after_delay(timeout),
        wait=wait_fixed(poll_interval),
        retry=retry_if_exception_type(_NotFoundYet),
        before_sleep=log_attempt,
    )

    value: T | None = None
    try:
        async for attempt in retrying:
            with attempt:
                value = probe()
                if value is None:
                    raise _NotFoundYet()
    except RetryError:
        raise DetectionTimeoutError(name, timeout) from None

    assert value is not None
    return value


def read_log(log_file: Path) -> str | None:
    try:
        return log_file.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return None


async def wait_for(log_file: Path, event: DetectionEvent) -> str:
    """Block until event matches in log_file and return the captured value.

    Returns as soon as a poll finds a match; raises DetectionTimeoutError
    once event.timeout has elapsed without one.
    """

    def probe() -> str | None:
        content = read_log(log_file)
        if content is None:
            return None
        return find_last_match(content, event)

    start = time.perf_counter()
    value = await poll_until(
        probe,
        timeout=event.timeout,
        poll_interval=event.poll_interval,
        name=event.name,
    )
    logger.info(f"Found {event.name} after {time.perf_counter() - start:.1f}s")
    return value
