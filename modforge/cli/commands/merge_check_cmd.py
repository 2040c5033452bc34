"""Merge-check command - analyse command usage without building."""

from __future__ import annotations

from pathlib import Path

import typer

from modforge.cli.commands._helpers import discard_run_temp, exit_with_code, resolve
from modforge.cli.context import build_context
from modforge.core.errors import MissingOrUnresolvedCommand
from modforge.output.console import Style
from modforge.output.errors import pipeline_error_exit_code, print_pipeline_error
from modforge.pipeline.checks import CheckStatus
from modforge.pipeline.context import RunContext
from modforge.services.merger import analyze, print_summary


def merge_check(
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to modforge.toml", show_default=False
    ),
) -> None:
    """Report which commands the merged module would call and where they come from."""
    ctx = build_context(config)
    run = RunContext(console=ctx.console)
    try:
        plan, lookups = resolve(ctx, run)
        analysis = analyze(plan, plan.project_root, lookups, run)
    finally:
        discard_run_temp(run)

    console = ctx.console
    console.header(f"{plan.module_name}: {len(analysis.sources)} source file(s)")
    print_summary(analysis, plan, run)
    report = analysis.report
    console.print(f"satisfied: {len(report.satisfied)} command(s)", Style.DIM)
    for line in report.errors:
        console.error(line)

    if report.status == CheckStatus.OK:
        console.success("All referenced commands are accounted for")
        return
    if report.failed:
        error = MissingOrUnresolvedCommand(
            names=report.failures,
            message=f"{len(report.failures)} missing module(s) or unresolved command(s)",
        )
        print_pipeline_error(error, console)
        exit_with_code(pipeline_error_exit_code(error))
    console.warning("Merge would succeed with warnings")
