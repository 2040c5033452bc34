"""Build command - resolve the plan and run every step."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import typer

from modforge.cli.commands._helpers import discard_run_temp, exit_on_pipeline_error, resolve
from modforge.cli.context import build_context
from modforge.output.console import Style
from modforge.output.reporter import ConsoleProgressReporter
from modforge.pipeline.context import RunContext
from modforge.pipeline.executor import PipelineExecutor
from modforge.pipeline.steps import build_steps
from modforge.services.handlers import default_handlers


def build(
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to modforge.toml", show_default=False
    ),
    strict: bool = typer.Option(
        False, "--strict", help="Fail when an auto/latest dependency cannot be resolved"
    ),
    keep_staging: bool = typer.Option(
        False, "--keep-staging", help="Keep a generated staging directory"
    ),
    no_install: bool = typer.Option(False, "--no-install", help="Skip the install step"),
) -> None:
    """Build, validate, package and install the module."""
    ctx = build_context(config)
    request = ctx.request
    if strict:
        request = replace(request, strict_dependencies=True)
    if keep_staging:
        request = replace(request, keep_staging=True)
    if no_install:
        request = replace(request, install=replace(request.install, enabled=False))
    ctx = replace(ctx, request=request)

    run = RunContext(console=ctx.console)
    try:
        plan, lookups = resolve(ctx, run)
        steps = build_steps(plan)
        executor = PipelineExecutor(
            default_handlers(lookups, request.lookups),
            reporter=ConsoleProgressReporter(ctx.console, total=len(steps)),
        )
        summary = exit_on_pipeline_error(executor.run(plan, steps, run), ctx)
    finally:
        discard_run_temp(run, keep_staging=request.keep_staging)

    ctx.console.newline()
    ctx.console.success(
        f"{plan.module_name} {plan.full_version}: {len(summary.completed)} step(s) completed"
    )
    if not plan.delete_staging_after_run:
        ctx.console.print(f"staging: {plan.staging_path}", Style.DIM)
