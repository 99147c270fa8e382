from __future__ import annotations

import asyncio
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path

import pytest

from pierboot.errors import SessionNotFoundError
from pierboot.models import LaunchConfig


class FakeSessions:
    """Stands in for SessionManager: the "runtime" writes canned lines to the log."""

    def __init__(
        self,
        log_file: Path,
        *,
        boot_lines: Iterable[str] = (),
        code_lines: Iterable[str] = (),
        running: Iterable[str] = (),
    ):
        self.log_file: Path = log_file
        self.boot_lines: list[str] = list(boot_lines)
        self.code_lines: list[str] = list(code_lines)
        self.running: set[str] = set(running)
        self.created: list[str] = []
        self.keys: list[str] = []
        self.terminated: list[str] = []

    def _append(self, lines: list[str]) -> None:
        with self.log_file.open("a") as f:
            for line in lines:
                f.write(line + "\n")

    def exists(self, name: str) -> bool:
        return name in self.running

    def create(self, name, command, *, log_file, screenrc, cwd, grace=0.0):
        self.created.append(command)
        self.running.add(name)
        self._append(self.boot_lines)

    def send_keys(self, name: str, text: str) -> None:
        if name not in self.running:
            raise SessionNotFoundError(name)
        self.keys.append(text)
        self._append(self.code_lines)

    def terminate(self, name: str, timeout: float = 2.0) -> None:
        self.terminated.append(name)
        self.running.discard(name)


class FakeKeys:
    """Key source replaying scripted keys, then blocking forever."""

    def __init__(self, keys: Iterable[str] = (), delay: float = 0.05):
        self._keys: list[str] = list(keys)
        self.delay: float = delay

    async def read_key(self) -> str:
        await asyncio.sleep(self.delay)
        if self._keys:
            return self._keys.pop(0)
        await asyncio.Event().wait()
        raise AssertionError("unreachable")


def key_source(*keys: str):
    @contextmanager
    def factory() -> Iterator[FakeKeys]:
        yield FakeKeys(keys)

    return factory


@pytest.fixture
def config(tmp_path: Path) -> LaunchConfig:
    """A launch config with every delay scaled down to test speed."""
    (tmp_path / "urbit").write_text("#!/bin/sh\n")
    defaults = LaunchConfig()
    return LaunchConfig(
        work_dir=tmp_path,
        readiness=defaults.readiness.model_copy(
            update={"timeout": 2.0, "poll_interval": 0.05}
        ),
        code=defaults.code.model_copy(update={"timeout": 0.5, "poll_interval": 0.05}),
        start_grace=0.0,
        settle_delay=0.0,
        browser_delay=0.0,
        watcher_poll_interval=0.02,
        liveness_interval=0.05,
    )
