"""Tests for the boot state machine, driven against a fake session."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import Mock

import pytest

from pierboot.cli.boot.orchestrator import BootOrchestrator
from pierboot.errors import (
    DependencyMissingError,
    DetectionTimeoutError,
    DuplicateSessionError,
    LaunchError,
    SessionNotFoundError,
)
from pierboot.models import BootMode, BootState, ControlAction, LaunchConfig

from .conftest import FakeSessions, key_source

BOOT_LINES = [
    "urbit 3.1",
    "\x1b[32mboot: home is /piers/my-comet\x1b[0m",
    "ames: czar zod.urbit.org: ip .1.2.3.4",
    "http: web interface live on http://localhost:8080",
]
CODE_LINES = [
    "~dasres-ragnep-lislyt-ritpur--fadmel-fabhep-dozzod-marzod:dojo> +code",
    "lidlut-tabwed-pillex-ridrup",
]


def other_tasks() -> set[asyncio.Task]:
    return {t for t in asyncio.all_tasks() if t is not asyncio.current_task()}


def make(
    config: LaunchConfig,
    sessions: FakeSessions,
    keys: tuple[str, ...] = ("q",),
    **kwargs,
) -> tuple[BootOrchestrator, list[str]]:
    seen: list[str] = []
    kwargs.setdefault("clipboard", Mock(return_value="Linux clipboard"))
    kwargs.setdefault("opener", Mock(return_value=True))
    orchestrator = BootOrchestrator(
        config,
        sessions=sessions,  # pyright: ignore[reportArgumentType]
        key_source=key_source(*keys),
        sink=seen.append,
        tool_check=lambda tool: True,
        **kwargs,
    )
    return orchestrator, seen


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_boot_then_quit(self, config: LaunchConfig) -> None:
        sessions = FakeSessions(
            config.log_file, boot_lines=BOOT_LINES, code_lines=CODE_LINES
        )
        orchestrator, seen = make(config, sessions, keys=("z", "q"))

        outcome = await orchestrator.run()

        assert outcome.url == "http://localhost:8080"
        assert outcome.code == "lidlut-tabwed-pillex-ridrup"
        assert outcome.action == ControlAction.quit
        assert outcome.target.mode == BootMode.create
        assert sessions.created == ["./urbit -c my-comet"]
        assert sessions.keys == ["+code"]
        assert sessions.terminated == []
        assert "urbit-session" in sessions.running
        orchestrator.clipboard.assert_called_once_with("lidlut-tabwed-pillex-ridrup")
        orchestrator.opener.assert_called_once_with("http://localhost:8080")
        assert orchestrator.state == BootState.terminated
        assert other_tasks() == set()

        assert "http: web interface live on http://localhost:8080" in seen
        assert "boot: home is /piers/my-comet" in seen
        assert not any("ames" in line or "dojo" in line for line in seen)

    @pytest.mark.asyncio
    async def test_kill_terminates_session(self, config: LaunchConfig) -> None:
        sessions = FakeSessions(
            config.log_file, boot_lines=BOOT_LINES, code_lines=CODE_LINES
        )
        orchestrator, _ = make(config, sessions, keys=("x",))

        outcome = await orchestrator.run()

        assert outcome.action == ControlAction.kill
        assert sessions.terminated == ["urbit-session"]
        assert other_tasks() == set()

    @pytest.mark.asyncio
    async def test_resumes_existing_pier(self, config: LaunchConfig) -> None:
        config.pier_dir.mkdir()
        sessions = FakeSessions(config.log_file, boot_lines=BOOT_LINES)
        orchestrator, _ = make(config, sessions)

        outcome = await orchestrator.run()

        assert outcome.target.mode == BootMode.resume
        assert sessions.created == ["./urbit my-comet"]

    @pytest.mark.asyncio
    async def test_log_is_truncated_before_launch(self, config: LaunchConfig) -> None:
        config.log_file.write_text(
            "http: web interface live on http://localhost:9999\n"
        )
        sessions = FakeSessions(config.log_file, boot_lines=BOOT_LINES)
        orchestrator, _ = make(config, sessions)

        outcome = await orchestrator.run()

        assert outcome.url == "http://localhost:8080"
        assert "9999" not in config.log_file.read_text()


class TestDegradedHandoff:
    @pytest.mark.asyncio
    async def test_missing_code_is_not_fatal(self, config: LaunchConfig) -> None:
        sessions = FakeSessions(config.log_file, boot_lines=BOOT_LINES)
        orchestrator, _ = make(config, sessions)

        outcome = await orchestrator.run()

        assert outcome.code is None
        assert outcome.action == ControlAction.quit
        orchestrator.clipboard.assert_not_called()

    @pytest.mark.asyncio
    async def test_clipboard_and_browser_failures_are_ignored(
        self, config: LaunchConfig
    ) -> None:
        sessions = FakeSessions(
            config.log_file, boot_lines=BOOT_LINES, code_lines=CODE_LINES
        )
        orchestrator, _ = make(
            config,
            sessions,
            clipboard=Mock(return_value=None),
            opener=Mock(return_value=False),
        )

        outcome = await orchestrator.run()

        assert outcome.code == "lidlut-tabwed-pillex-ridrup"

    @pytest.mark.asyncio
    async def test_browser_disabled(self, config: LaunchConfig) -> None:
        config = config.model_copy(update={"open_browser": False})
        sessions = FakeSessions(config.log_file, boot_lines=BOOT_LINES)
        orchestrator, _ = make(config, sessions)

        await orchestrator.run()

        orchestrator.opener.assert_not_called()


class TestFatalPaths:
    @pytest.mark.asyncio
    async def test_duplicate_session_touches_nothing(self, config: LaunchConfig) -> None:
        config.log_file.write_text("previous run\n")
        sessions = FakeSessions(config.log_file, running={"urbit-session"})
        orchestrator, _ = make(config, sessions)

        with pytest.raises(DuplicateSessionError) as exc_info:
            await orchestrator.run()

        assert sessions.created == []
        assert config.log_file.read_text() == "previous run\n"
        assert exc_info.value.hint == "Attach with: screen -r urbit-session"
        assert orchestrator.state == BootState.terminated

    @pytest.mark.asyncio
    async def test_missing_dependency(self, config: LaunchConfig) -> None:
        sessions = FakeSessions(config.log_file)
        orchestrator = BootOrchestrator(
            config,
            sessions=sessions,  # pyright: ignore[reportArgumentType]
            tool_check=lambda tool: False,
        )

        with pytest.raises(DependencyMissingError) as exc_info:
            await orchestrator.run()

        assert exc_info.value.tool == "screen"
        assert sessions.created == []

    @pytest.mark.asyncio
    async def test_missing_runtime(self, config: LaunchConfig) -> None:
        config.runtime_path.unlink()
        sessions = FakeSessions(config.log_file)
        orchestrator, _ = make(config, sessions)

        with pytest.raises(LaunchError, match="Runtime not found"):
            await orchestrator.run()
        assert sessions.created == []

    @pytest.mark.asyncio
    async def test_readiness_timeout_stops_watcher(self, config: LaunchConfig) -> None:
        config = config.model_copy(
            update={"readiness": config.readiness.model_copy(update={"timeout": 0.3})}
        )
        sessions = FakeSessions(config.log_file, boot_lines=["urbit 3.1"])
        orchestrator, seen = make(config, sessions)

        with pytest.raises(DetectionTimeoutError):
            await orchestrator.run()

        assert seen == ["urbit 3.1"]
        assert sessions.keys == []
        assert orchestrator.state == BootState.terminated
        assert other_tasks() == set()

    @pytest.mark.asyncio
    async def test_session_dies_during_monitoring(self, config: LaunchConfig) -> None:
        sessions = FakeSessions(config.log_file, boot_lines=BOOT_LINES)

        def crash(url: str) -> bool:
            sessions.running.discard(config.session_name)
            return True

        orchestrator, _ = make(config, sessions, keys=(), opener=crash)

        with pytest.raises(SessionNotFoundError):
            await orchestrator.run()

        assert other_tasks() == set()

    @pytest.mark.asyncio
    async def test_session_dies_before_code_request(
        self, config: LaunchConfig, tmp_path: Path
    ) -> None:
        sessions = FakeSessions(config.log_file, boot_lines=BOOT_LINES)
        orchestrator, _ = make(config, sessions)
        original_create = sessions.create

        def create_then_die(name, command, **kwargs):
            original_create(name, command, **kwargs)
            sessions.running.discard(name)

        sessions.create = create_then_die  # type: ignore[method-assign]

        with pytest.raises(SessionNotFoundError):
            await orchestrator.run()
        assert other_tasks() == set()
