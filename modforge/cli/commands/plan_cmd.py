"""Plan command - resolve configuration and show the ordered steps."""

from __future__ import annotations

from pathlib import Path

import typer

from modforge.cli.commands._helpers import discard_run_temp, resolve
from modforge.cli.context import build_context
from modforge.output.console import ConsoleProtocol, Style
from modforge.pipeline.context import RunContext
from modforge.pipeline.model import Plan
from modforge.pipeline.steps import build_steps


def print_plan(plan: Plan, console: ConsoleProtocol) -> None:
    console.header(f"{plan.module_name} {plan.full_version}")
    console.print(f"source:  {plan.project_root}")
    staging_note = " (generated)" if plan.staging_was_generated else ""
    console.print(f"staging: {plan.staging_path}{staging_note}")
    if plan.expected_version != plan.resolved_version:
        console.print(f"version: {plan.expected_version} -> {plan.resolved_version}", Style.DIM)

    if plan.required_modules:
        console.newline()
        console.print("Dependencies", Style.BOLD)
        for dep in plan.required_modules:
            console.print(f"  {dep.kind:<9} {dep.describe()} [{dep.provenance}]")
    if plan.approved_modules:
        console.print(f"  approved  {', '.join(plan.approved_modules)}")

    console.newline()
    console.print("Steps", Style.BOLD)
    steps = build_steps(plan)
    for i, step in enumerate(steps, start=1):
        console.print(f"  {i:>2}. {step.key:<32} {step.title}")


def plan(
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to modforge.toml", show_default=False
    ),
) -> None:
    """Resolve the build configuration and print the plan."""
    ctx = build_context(config)
    run = RunContext(console=ctx.console)
    try:
        resolved, _ = resolve(ctx, run)
        print_plan(resolved, ctx.console)
    finally:
        discard_run_temp(run)
