from typing import Annotated

from typer import Exit, Option

from pierboot import __version__
from pierboot.cli.boot.commands import pier_app as app
from pierboot.utils import console


def _print_version(value: bool) -> None:
    if value:
        console.print(f"pierboot {__version__}")
        raise Exit()


@app.callback()
def _root(
    version: Annotated[
        bool,
        Option(
            "--version",
            callback=_print_version,
            is_eager=True,
            help="Show the version and exit",
        ),
    ] = False,
):
    """Boot an Urbit pier in a screen session and keep an eye on it."""


def main() -> None:
    app()


if __name__ == "__main__":
    main()
