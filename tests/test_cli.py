"""Tests for the pierboot command surface."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from pierboot import __version__
from pierboot.__main__ import app
from pierboot.cli.boot.commands import build_config
from pierboot.cli.boot.orchestrator import BootOrchestrator
from pierboot.cli.boot.session import SessionManager
from pierboot.models import BootState, PlatformInfo, SessionInfo, SessionState

runner: CliRunner = CliRunner()

LINUX = PlatformInfo(
    system="Linux",
    machine="x86_64",
    download_url="https://urbit.org/install/linux-x86_64/latest",
)


def test_version() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_build_config_defaults_and_overrides(tmp_path: Path) -> None:
    default = build_config()
    assert default.session_name == "urbit-session"
    assert default.pier_name == "my-comet"
    assert default.readiness.timeout == 600
    assert default.code.timeout == 20

    custom = build_config(
        pier="sampel-palnet",
        work_dir=tmp_path,
        readiness_timeout=30,
        code_timeout=5,
        open_browser=False,
    )
    assert custom.pier_dir == tmp_path / "sampel-palnet"
    assert custom.log_file == tmp_path / "urbit-boot.log"
    assert custom.readiness.timeout == 30
    assert custom.readiness.poll_interval == default.readiness.poll_interval
    assert custom.code.timeout == 5
    assert custom.open_browser is False


class TestBoot:
    def test_duplicate_session_exits_without_launching(self, tmp_path: Path) -> None:
        (tmp_path / "urbit").write_text("")
        log_file = tmp_path / "urbit-boot.log"
        log_file.write_text("previous run\n")

        with (
            patch("pierboot.cli.boot.commands.detect_platform", return_value=LINUX),
            patch("pierboot.utils.shutil.which", return_value="/usr/bin/screen"),
            patch.object(SessionManager, "exists", return_value=True),
            patch.object(SessionManager, "create") as create,
        ):
            result = runner.invoke(
                app, ["boot", "--work-dir", str(tmp_path), "--skip-download"]
            )

        assert result.exit_code == 1
        assert "already running" in result.output
        assert "screen -r urbit-session" in result.output
        create.assert_not_called()
        assert log_file.read_text() == "previous run\n"

    def test_missing_screen(self, tmp_path: Path) -> None:
        with (
            patch("pierboot.cli.boot.commands.detect_platform", return_value=LINUX),
            patch("pierboot.utils.shutil.which", return_value=None),
            patch("pierboot.cli.boot.commands.ensure_runtime") as ensure,
        ):
            result = runner.invoke(app, ["boot", "--work-dir", str(tmp_path)])

        assert result.exit_code == 1
        assert "'screen' missing" in result.output
        ensure.assert_not_called()

    def test_unsupported_platform(self, tmp_path: Path) -> None:
        with patch("pierboot.cli.install.platform.system", return_value="Plan9"):
            result = runner.invoke(app, ["boot", "--work-dir", str(tmp_path)])

        assert result.exit_code == 1
        assert "Unsupported system" in result.output

    @pytest.mark.parametrize(
        ("phase", "exit_code", "message"),
        [
            (BootState.awaiting_readiness, 130, "Interrupted while awaiting readiness."),
            (BootState.awaiting_code, 130, "Interrupted while awaiting code."),
            (BootState.monitoring, 0, "Detached from monitor."),
        ],
    )
    def test_ctrl_c_detaches_only_from_monitor(
        self, tmp_path: Path, phase: BootState, exit_code: int, message: str
    ) -> None:
        async def interrupted_run(orchestrator: BootOrchestrator) -> None:
            try:
                orchestrator._transition(phase)
                raise KeyboardInterrupt
            finally:
                orchestrator._transition(BootState.terminated)

        with (
            patch("pierboot.cli.boot.commands.detect_platform", return_value=LINUX),
            patch("pierboot.utils.shutil.which", return_value="/usr/bin/screen"),
            patch.object(BootOrchestrator, "run", interrupted_run),
        ):
            result = runner.invoke(
                app, ["boot", "--work-dir", str(tmp_path), "--skip-download"]
            )

        assert result.exit_code == exit_code
        assert message in result.output
        assert "screen -r urbit-session" in result.output

    def test_ctrl_c_during_download_exits_non_zero(self, tmp_path: Path) -> None:
        with (
            patch("pierboot.cli.boot.commands.detect_platform", return_value=LINUX),
            patch("pierboot.utils.shutil.which", return_value="/usr/bin/screen"),
            patch(
                "pierboot.cli.boot.commands.ensure_runtime",
                side_effect=KeyboardInterrupt,
            ),
        ):
            result = runner.invoke(app, ["boot", "--work-dir", str(tmp_path)])

        assert result.exit_code == 130
        assert "Interrupted while init." in result.output
        assert "Detached" not in result.output


class TestStatus:
    def test_running_session(self, tmp_path: Path) -> None:
        info = SessionInfo(
            pid=4242,
            name="urbit-session",
            state=SessionState.running,
            status="(10/17/2026 09:12:01 AM)\t(Detached)",
        )
        with patch.object(SessionManager, "get", return_value=info):
            result = runner.invoke(app, ["status", "--work-dir", str(tmp_path)])

        assert result.exit_code == 0
        assert "running" in result.output
        assert "4242" in result.output
        assert "(Detached)" in result.output
        assert "screen -r urbit-session" in result.output

    def test_absent_session(self, tmp_path: Path) -> None:
        with patch.object(SessionManager, "get", return_value=None):
            result = runner.invoke(app, ["status", "--work-dir", str(tmp_path)])

        assert result.exit_code == 0
        assert "absent" in result.output
        assert "pierboot boot" in result.output


class TestStop:
    def test_no_session(self, tmp_path: Path) -> None:
        with (
            patch.object(SessionManager, "exists", return_value=False),
            patch.object(SessionManager, "terminate") as terminate,
        ):
            result = runner.invoke(app, ["stop", "--work-dir", str(tmp_path)])

        assert result.exit_code == 0
        assert "No session" in result.output
        terminate.assert_not_called()

    def test_terminates(self, tmp_path: Path) -> None:
        with (
            patch.object(SessionManager, "exists", return_value=True),
            patch.object(SessionManager, "terminate") as terminate,
            patch.object(SessionManager, "wait_until_gone", return_value=True),
        ):
            result = runner.invoke(app, ["stop", "--work-dir", str(tmp_path)])

        assert result.exit_code == 0
        terminate.assert_called_once_with("urbit-session")
        assert "Session stopped" in result.output

    def test_session_survives(self, tmp_path: Path) -> None:
        with (
            patch.object(SessionManager, "exists", return_value=True),
            patch.object(SessionManager, "terminate"),
            patch.object(SessionManager, "wait_until_gone", return_value=False),
        ):
            result = runner.invoke(app, ["stop", "--work-dir", str(tmp_path)])

        assert result.exit_code == 1


class TestLogs:
    def test_filtered(self, tmp_path: Path) -> None:
        (tmp_path / "urbit-boot.log").write_text(
            "ames: czar lookup\n"
            "\x1b[32mhttp: web interface live on http://localhost:8080\x1b[0m\n"
            "pier (7): live\n"
        )
        result = runner.invoke(app, ["logs", "--work-dir", str(tmp_path)])

        assert result.exit_code == 0
        assert "[LOG] http: web interface live on http://localhost:8080" in result.output
        assert "pier (7): live" in result.output
        assert "ames" not in result.output
        assert "Showed 2 log lines" in result.output

    def test_all(self, tmp_path: Path) -> None:
        (tmp_path / "urbit-boot.log").write_text("ames: czar lookup\n")
        result = runner.invoke(app, ["logs", "--all", "--work-dir", str(tmp_path)])

        assert "ames: czar lookup" in result.output

    def test_missing_log(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["logs", "--work-dir", str(tmp_path)])

        assert result.exit_code == 0
        assert "No log file" in result.output
