from __future__ import annotations

import os

import typer

from modforge import __version__
from modforge.cli.commands.build_cmd import build
from modforge.cli.commands.merge_check_cmd import merge_check
from modforge.cli.commands.plan_cmd import plan
from modforge.cli.context import VERBOSE_ENV


app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# Commands
app.command()(plan)
app.command()(build)
app.command("merge-check")(merge_check)


def _show_version(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit(code=0)


@app.callback()
def _main(  # pyright: ignore[reportUnusedFunction]
    version: bool = typer.Option(
        False, "--version", callback=_show_version, is_eager=True, help="Show version and exit."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show detailed diagnostics."),
) -> None:
    if verbose:
        os.environ[VERBOSE_ENV] = "1"


def main() -> None:
    app()
