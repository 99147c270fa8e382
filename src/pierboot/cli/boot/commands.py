"""Commands for the pierboot CLI."""

import asyncio
from pathlib import Path
from typing import Annotated, NoReturn

from rich.markup import escape
from rich.table import Table
from typer import Exit, Option, Typer

from pierboot.cli.boot.detect import read_log
from pierboot.cli.boot.logging import configure_boot_logging, print_log_line
from pierboot.cli.boot.orchestrator import BootOrchestrator
from pierboot.cli.boot.session import SessionManager
from pierboot.cli.boot.watcher import LineFilter, LogWatcher, strip_control_sequences
from pierboot.cli.install import detect_platform, ensure_runtime
from pierboot.errors import LaunchError
from pierboot.models import BootMode, BootState, BootTarget, LaunchConfig, SessionState
from pierboot.utils import console, print_error, print_info, print_step


pier_app = Typer(
    name="pierboot",
    help="Boot an Urbit pier in a screen session and keep an eye on it",
    no_args_is_help=True,
)

PierOption = Annotated[
    str | None, Option("--pier", "-p", help="Pier (ship directory) name")
]
SessionOption = Annotated[
    str | None, Option("--session", "-s", help="Screen session name")
]
WorkDirOption = Annotated[
    Path | None,
    Option(
        "--work-dir",
        "-d",
        help="Directory holding the runtime, pier and boot log (default: ~/running-urbit)",
    ),
]


def build_config(
    *,
    pier: str | None = None,
    session: str | None = None,
    work_dir: Path | None = None,
    readiness_timeout: float | None = None,
    code_timeout: float | None = None,
    settle_delay: float | None = None,
    open_browser: bool = True,
    copy_code: bool = True,
) -> LaunchConfig:
    """Build a LaunchConfig from CLI options, using model defaults for anything unset."""
    default_config = LaunchConfig()
    readiness = default_config.readiness
    if readiness_timeout is not None:
        readiness = readiness.model_copy(update={"timeout": readiness_timeout})
    code = default_config.code
    if code_timeout is not None:
        code = code.model_copy(update={"timeout": code_timeout})

    return LaunchConfig(
        session_name=session if session is not None else default_config.session_name,
        pier_name=pier if pier is not None else default_config.pier_name,
        work_dir=work_dir.expanduser() if work_dir is not None else default_config.work_dir,
        readiness=readiness,
        code=code,
        settle_delay=settle_delay
        if settle_delay is not None
        else default_config.settle_delay,
        open_browser=open_browser,
        copy_code=copy_code,
    )


def exit_with_error(error: LaunchError) -> NoReturn:
    print_error(str(error))
    if error.hint:
        print_info(error.hint)
    raise Exit(code=error.exit_code)


@pier_app.command(name="boot", help="Boot the pier in a screen session and monitor it")
def boot(
    pier: PierOption = None,
    session: SessionOption = None,
    work_dir: WorkDirOption = None,
    readiness_timeout: Annotated[
        float | None,
        Option(help="Seconds to wait for the web interface before giving up"),
    ] = None,
    code_timeout: Annotated[
        float | None, Option(help="Seconds to wait for the +code response")
    ] = None,
    settle_delay: Annotated[
        float | None,
        Option(help="Seconds to let the Dojo settle before asking for +code"),
    ] = None,
    open_browser: Annotated[
        bool, Option("--browser/--no-browser", help="Open the web interface when live")
    ] = True,
    copy_code: Annotated[
        bool, Option("--copy/--no-copy", help="Copy the login code to the clipboard")
    ] = True,
    skip_download: Annotated[
        bool, Option("--skip-download", help="Never download the runtime")
    ] = False,
    verbose: Annotated[
        bool, Option("--verbose", "-v", help="Show debug logs")
    ] = False,
):
    """Boot the pier and hand over to the interactive monitor."""
    configure_boot_logging(verbose=verbose)
    config = build_config(
        pier=pier,
        session=session,
        work_dir=work_dir,
        readiness_timeout=readiness_timeout,
        code_timeout=code_timeout,
        settle_delay=settle_delay,
        open_browser=open_browser,
        copy_code=copy_code,
    )
    orchestrator = BootOrchestrator(config)

    try:
        platform_info = detect_platform()
        print_step(
            f"{platform_info.system} detected, using {platform_info.machine} architecture."
        )
        orchestrator.check_dependencies()
        if not skip_download:
            ensure_runtime(config, platform_info)
        asyncio.run(orchestrator.run())
    except LaunchError as e:
        exit_with_error(e)
    except KeyboardInterrupt:
        console.print()
        phase = orchestrator.last_active_state
        if phase != BootState.monitoring:
            print_error(f"Interrupted while {phase.value.replace('_', ' ')}.")
            if phase != BootState.init:
                print_info(
                    f"The session may still be running: screen -r {config.session_name}"
                )
            raise Exit(code=130)
        print_step("Detached from monitor.")
        print_info(f"Attach with: screen -r {config.session_name}")


@pier_app.command(name="status", help="Show the state of the pier's screen session")
def status(
    pier: PierOption = None,
    session: SessionOption = None,
    work_dir: WorkDirOption = None,
):
    """Show the state of the pier's screen session."""
    config = build_config(pier=pier, session=session, work_dir=work_dir)
    info = SessionManager().get(config.session_name)
    target = BootTarget.resolve(config.work_dir, config.pier_name)

    table = Table(title="Pier Status", show_header=True, header_style="bold magenta")
    table.add_column("Item", style="cyan", width=12)
    table.add_column("Value")

    state = info.state if info is not None else SessionState.absent
    state_color = {
        SessionState.running: "green",
        SessionState.dead: "red",
        SessionState.absent: "yellow",
    }[state]
    table.add_row("Session", config.session_name)
    table.add_row("State", f"[{state_color}]●[/{state_color}] {state.value}")
    table.add_row("PID", str(info.pid) if info is not None else "-")
    table.add_row(
        "Screen", escape(" ".join(info.status.split())) if info and info.status else "-"
    )
    table.add_row(
        "Runtime",
        str(config.runtime_path) if config.runtime_path.exists() else "[red]missing[/red]",
    )
    table.add_row(
        "Pier",
        f"{config.pier_dir} (exists)"
        if target.mode == BootMode.resume
        else f"{config.pier_dir} [dim](will be created)[/dim]",
    )
    table.add_row("Log file", str(config.log_file))

    console.print(table)
    if state == SessionState.running:
        console.print(f"[dim]Attach with: screen -r {config.session_name}[/dim]")
    else:
        console.print("[dim]Run 'pierboot boot' to start the pier.[/dim]")


@pier_app.command(name="stop", help="Terminate the pier's screen session")
def stop(
    pier: PierOption = None,
    session: SessionOption = None,
    work_dir: WorkDirOption = None,
    timeout: Annotated[
        float, Option(help="Seconds to wait for the session to disappear")
    ] = 5.0,
):
    """Terminate the pier's screen session."""
    config = build_config(pier=pier, session=session, work_dir=work_dir)
    sessions = SessionManager()
    if not sessions.exists(config.session_name):
        console.print(f"[yellow]No session named '{config.session_name}' found.[/yellow]")
        return

    print_step(f"Killing session '{config.session_name}'...")
    sessions.terminate(config.session_name)
    if not sessions.wait_until_gone(config.session_name, timeout=timeout):
        print_error(f"Session '{config.session_name}' is still running.")
        raise Exit(code=1)
    console.print("[green]✓[/green] Session stopped")


@pier_app.command(name="logs", help="Display the pier's boot log")
def logs(
    pier: PierOption = None,
    session: SessionOption = None,
    work_dir: WorkDirOption = None,
    follow: Annotated[
        bool,
        Option("--follow", "-f", help="Follow log output (like tail -f)"),
    ] = False,
    show_all: Annotated[
        bool,
        Option("--all", "-a", help="Show every line, not only boot milestones"),
    ] = False,
):
    """Display the boot log, filtered to interesting lines unless --all is given."""
    config = build_config(pier=pier, session=session, work_dir=work_dir)
    patterns = () if show_all else config.interest_patterns

    if follow:
        watcher = LogWatcher(
            config.log_file, patterns, poll_interval=config.watcher_poll_interval
        )

        async def tail() -> None:
            async for line in watcher.lines():
                print_log_line(line)

        try:
            asyncio.run(tail())
        except KeyboardInterrupt:
            console.print("\n[dim]Stopped streaming logs.[/dim]")
        return

    content = read_log(config.log_file)
    if content is None:
        console.print(f"[yellow]No log file at {config.log_file}[/yellow]")
        return

    line_filter = LineFilter(patterns)
    count = 0
    for raw in content.splitlines():
        line = strip_control_sequences(raw)
        if line_filter.matches(line):
            print_log_line(line)
            count += 1

    if count:
        console.print(f"\n[dim]Showed {count} log lines[/dim]")
    else:
        console.print("[dim]No logs found[/dim]")
