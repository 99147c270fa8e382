"""Boot orchestration: launch the session, wait for the web interface, fetch
the login code, then hand over to the interactive monitor.

States: init -> launching -> awaiting_readiness -> handing_off ->
awaiting_code -> monitoring -> terminated. Fatal errors before monitoring
propagate straight out of `run`; the active log watcher is stopped on every
path by the `WatcherSlot` it lives in.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import AbstractContextManager
from functools import partial

from pierboot.cli.boot.controller import (
    InteractiveController,
    KeySource,
    TerminalKeySource,
)
from pierboot.cli.boot.detect import wait_for
from pierboot.cli.boot.logging import BootLogComponent, get_logger, print_log_line
from pierboot.cli.boot.session import SessionManager
from pierboot.cli.boot.watcher import LineSink, LogWatcher, WatcherSlot
from pierboot.constants import WATCHER_BACKLOG
from pierboot.errors import (
    DependencyMissingError,
    DetectionTimeoutError,
    DuplicateSessionError,
    LaunchError,
)
from pierboot.models import (
    BootMode,
    BootOutcome,
    BootState,
    BootTarget,
    ControlAction,
    LaunchConfig,
)
from pierboot.utils import (
    console,
    copy_to_clipboard,
    ensure_dir,
    is_tool_installed,
    open_in_browser,
    print_banner,
    print_info,
    print_rule,
    print_step,
)

logger = get_logger(BootLogComponent.ORCHESTRATOR)

KeySourceFactory = Callable[[], AbstractContextManager[KeySource]]


class BootOrchestrator:
    """Runs one boot of the configured pier from launch to operator exit."""

    def __init__(
        self,
        config: LaunchConfig,
        *,
        sessions: SessionManager | None = None,
        key_source: KeySourceFactory = TerminalKeySource,
        sink: LineSink = print_log_line,
        clipboard: Callable[[str], str | None] = copy_to_clipboard,
        opener: Callable[[str], bool] = open_in_browser,
        tool_check: Callable[[str], bool] = is_tool_installed,
    ):
        self.config: LaunchConfig = config
        self.sessions: SessionManager = sessions or SessionManager()
        self.key_source: KeySourceFactory = key_source
        self.sink: LineSink = sink
        self.clipboard: Callable[[str], str | None] = clipboard
        self.opener: Callable[[str], bool] = opener
        self.tool_check: Callable[[str], bool] = tool_check
        self.state: BootState = BootState.init
        self._previous: BootState = BootState.init

    @property
    def last_active_state(self) -> BootState:
        """The phase the run was in before it terminated (or the current one)."""
        if self.state == BootState.terminated:
            return self._previous
        return self.state

    def _transition(self, state: BootState) -> None:
        logger.debug(f"{self.state.value} -> {state.value}")
        self._previous, self.state = self.state, state

    def _new_watcher(self, backlog: int | None = None) -> LogWatcher:
        return LogWatcher(
            self.config.log_file,
            self.config.interest_patterns,
            sink=self.sink,
            poll_interval=self.config.watcher_poll_interval,
            backlog=backlog,
        )

    # ------------------------------------------------------------------
    # Init
    # ------------------------------------------------------------------

    def check_dependencies(self) -> None:
        for tool in self.config.required_tools:
            if not self.tool_check(tool):
                raise DependencyMissingError(tool)

    def prepare(self) -> BootTarget:
        """Validate the host and resolve what to boot. Touches nothing on failure."""
        self.check_dependencies()
        ensure_dir(self.config.work_dir)

        if not self.config.runtime_path.exists():
            raise LaunchError(
                f"Runtime not found at {self.config.runtime_path}.",
                hint="Run 'pierboot boot' without --skip-download to fetch it",
            )

        if self.sessions.exists(self.config.session_name):
            raise DuplicateSessionError(self.config.session_name)

        return BootTarget.resolve(self.config.work_dir, self.config.pier_name)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _launch(self, target: BootTarget, slot: WatcherSlot) -> str:
        cfg = self.config
        self._transition(BootState.launching)

        if target.mode == BootMode.resume:
            print_step(f"Resuming existing ship '{target.pier_name}'...")
        else:
            print_step(f"Creating new Comet '{target.pier_name}'...")

        # Everything in the log from here on belongs to this run.
        cfg.log_file.write_bytes(b"")

        print_step(f"Launching screen session '{cfg.session_name}'...")
        await asyncio.to_thread(
            partial(
                self.sessions.create,
                cfg.session_name,
                target.command(f"./{cfg.runtime_binary}"),
                log_file=cfg.log_file,
                screenrc=cfg.screenrc_path,
                cwd=cfg.work_dir,
                grace=cfg.start_grace,
            )
        )

        console.print()
        print_rule("yellow")
        print_step("Urbit is running. Booting...")
        print_info(
            "(The script will stay open. Press 'q' to stop monitoring, Urbit will keep running)"
        )
        print_rule("yellow")
        console.print()

        await slot.install(self._new_watcher())

        self._transition(BootState.awaiting_readiness)
        return await wait_for(cfg.log_file, cfg.readiness)

    async def _retrieve_code(self) -> str | None:
        cfg = self.config
        self._transition(BootState.awaiting_code)

        print_step(f"Waiting for Dojo to retrieve {cfg.code_command}...")
        await asyncio.sleep(cfg.settle_delay)
        await asyncio.to_thread(
            self.sessions.send_keys, cfg.session_name, cfg.code_command
        )

        try:
            code = await wait_for(cfg.log_file, cfg.code)
        except DetectionTimeoutError as e:
            logger.warning(str(e))
            print_step("Could not retrieve code automatically.")
            return None

        print_banner("LOGIN CODE:", code)
        if cfg.copy_code:
            label = self.clipboard(code)
            if label:
                print_info(f"(Copied to {label})")
        return code

    async def _monitor(self, url: str, slot: WatcherSlot) -> ControlAction:
        cfg = self.config
        self._transition(BootState.monitoring)

        if cfg.open_browser:
            console.print()
            print_step("Opening Browser...")
            await asyncio.sleep(cfg.browser_delay)
            if not self.opener(url):
                print_info(f"Open {url} in your browser")

        await slot.install(self._new_watcher(backlog=WATCHER_BACKLOG))

        console.print()
        print_rule("yellow")
        console.print(
            f"[bold]Urbit is running in background session '{cfg.session_name}'.[/bold]"
        )
        console.print("[dim]Showing live logs below (mdns registration, etc)...[/dim]")
        console.print("[cyan]Press 'q' to quit this script (Urbit keeps running).[/cyan]")
        console.print("[red]Press 'x' to kill Urbit and exit.[/red]")
        print_rule("yellow")
        console.print()

        with self.key_source() as keys:
            controller = InteractiveController(
                keys,
                session_name=cfg.session_name,
                session_alive=partial(self.sessions.exists, cfg.session_name),
                liveness_interval=cfg.liveness_interval,
            )
            return await controller.run()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self) -> BootOutcome:
        """Run the whole boot. Raises LaunchError subclasses on fatal conditions."""
        cfg = self.config
        try:
            target = self.prepare()

            async with WatcherSlot() as slot:
                url = await self._launch(target, slot)

                self._transition(BootState.handing_off)
                await slot.clear()
                print_banner("Web interface is live at", url)

                code = await self._retrieve_code()
                action = await self._monitor(url, slot)

            console.print()
            if action == ControlAction.kill:
                print_step("Killing Urbit session...")
                await asyncio.to_thread(self.sessions.terminate, cfg.session_name)
                print_step("Done.")
            else:
                print_step("Exiting monitor.")
                print_info(f"Attach with: screen -r {cfg.session_name}")
        finally:
            self._transition(BootState.terminated)

        return BootOutcome(target=target, url=url, code=code, action=action)
