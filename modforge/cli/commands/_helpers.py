"""Shared helpers for CLI commands."""

from __future__ import annotations

from typing import TYPE_CHECKING, NoReturn

import typer

from modforge.core.errors import PipelineError
from modforge.core.result import Err, Ok, Result
from modforge.output.console import Style
from modforge.output.errors import pipeline_error_exit_code, print_pipeline_error
from modforge.pipeline.context import RunContext
from modforge.pipeline.lookups import Lookups
from modforge.pipeline.model import Plan
from modforge.pipeline.planner import resolve_plan
from modforge.platform.files import delete_tree_with_retries
from modforge.services.lookups import build_lookups

if TYPE_CHECKING:
    from modforge.cli.context import CLIContext


def exit_on_pipeline_error[T](result: Result[T, PipelineError], ctx: CLIContext) -> T:
    """Return the Ok value, or print the error and exit with its code."""
    match result:
        case Ok(value):
            return value
        case Err(error):
            print_pipeline_error(error, ctx.console)
            raise typer.Exit(code=pipeline_error_exit_code(error))


def exit_with_code(code: int) -> NoReturn:
    """Exit with given code. Explicit helper for clarity."""
    raise typer.Exit(code=code)


def resolve(ctx: CLIContext, run: RunContext) -> tuple[Plan, Lookups]:
    """Lookups for this run plus the resolved plan (exits on planning errors)."""
    request = ctx.request
    lookups = build_lookups(request.lookups, run, cwd=ctx.config_path.parent)
    plan = exit_on_pipeline_error(resolve_plan(request, lookups, run), ctx)
    return plan, lookups


def discard_run_temp(run: RunContext, *, keep_staging: bool = False) -> None:
    """Remove the run's temp folder, sparing a kept generated staging directory."""
    root = run.temp_root
    if not root.exists():
        return
    targets = [root] if not keep_staging else [p for p in root.iterdir() if p.name != "staging"]
    for target in targets:
        result = delete_tree_with_retries(target)
        if isinstance(result, Err):
            run.console.print(result.error.message, Style.DIM)
