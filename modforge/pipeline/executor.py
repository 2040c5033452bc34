"""Sequential step execution with failure isolation and guaranteed cleanup."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from modforge.core.errors import CleanupFailure, StepExecutionFailure
from modforge.core.result import Err, Ok, Result
from modforge.output.reporter import NullProgressReporter, ProgressReporter
from modforge.pipeline.checks import CheckReport, CheckStatus
from modforge.pipeline.context import RunContext
from modforge.pipeline.model import Plan
from modforge.pipeline.steps import Step, StepKind
from modforge.platform.files import delete_tree_with_retries
from modforge.platform.process import tail

__all__ = ["PipelineExecutor", "RunSummary", "StepError", "StepHandler"]


class StepError(Exception):
    """Raised by step handlers for an expected, reportable failure."""

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        stdout: str = "",
        stderr: str = "",
        hint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.hint = hint


type StepHandler = Callable[[Plan, Step, RunContext], CheckReport | None]
type CleanupFn = Callable[[Path], Result[None, CleanupFailure]]


@dataclass(frozen=True, slots=True)
class RunSummary:
    completed: tuple[str, ...]
    reports: tuple[CheckReport, ...] = ()


def _failure(step: Step, exc: BaseException) -> StepExecutionFailure:
    if isinstance(exc, StepError):
        return StepExecutionFailure(
            step_key=step.key,
            step_kind=str(step.kind),
            message=exc.message,
            exit_code=exc.exit_code,
            stdout_tail=tail(exc.stdout),
            stderr_tail=tail(exc.stderr),
            hint=exc.hint,
        )
    return StepExecutionFailure(
        step_key=step.key,
        step_kind=str(step.kind),
        message=f"{type(exc).__name__}: {exc}",
    )


class PipelineExecutor:
    """Runs steps in order against one plan.

    The first failing step stops the run. Steps that never started are
    reported as skipped (when the reporter supports it), and a generated
    staging directory is removed even on the failure path.
    """

    def __init__(
        self,
        handlers: Mapping[StepKind, StepHandler],
        *,
        reporter: ProgressReporter | None = None,
        cleanup: CleanupFn = delete_tree_with_retries,
    ) -> None:
        self._handlers = handlers
        self._reporter: ProgressReporter = reporter or NullProgressReporter()
        self._cleanup = cleanup

    def run(
        self, plan: Plan, steps: Sequence[Step], ctx: RunContext
    ) -> Result[RunSummary, StepExecutionFailure]:
        completed: list[str] = []
        reports: list[CheckReport] = []
        failure: StepExecutionFailure | None = None
        next_index = 0

        try:
            for index, step in enumerate(steps):
                next_index = index + 1
                self._notify(ctx, "step_starting", step)
                failure = self._run_step(plan, step, ctx, reports)
                if failure is not None:
                    self._notify(ctx, "step_failed", step, failure)
                    break
                completed.append(step.key)
                self._notify(ctx, "step_completed", step)
        finally:
            if failure is not None:
                for step in steps[next_index:]:
                    self._notify_skipped(ctx, step)
            if plan.delete_staging_after_run and "cleanup" not in completed:
                self._silent_cleanup(plan, ctx)

        if failure is not None:
            return Err(failure)
        return Ok(RunSummary(completed=tuple(completed), reports=tuple(reports)))

    def _run_step(
        self,
        plan: Plan,
        step: Step,
        ctx: RunContext,
        reports: list[CheckReport],
    ) -> StepExecutionFailure | None:
        handler = self._handlers.get(step.kind)
        if handler is None:
            return StepExecutionFailure(
                step_key=step.key,
                step_kind=str(step.kind),
                message=f"no handler registered for step kind '{step.kind}'",
            )
        try:
            report = handler(plan, step, ctx)
        except Exception as e:  # noqa: BLE001
            return _failure(step, e)

        if report is None:
            return None
        reports.append(report)
        return self._apply_report(step, report, ctx)

    def _apply_report(
        self, step: Step, report: CheckReport, ctx: RunContext
    ) -> StepExecutionFailure | None:
        for note in report.notes:
            ctx.console.info(note)
        status = report.status
        if status == CheckStatus.OK:
            return None
        for finding in report.findings:
            if status == CheckStatus.ERROR:
                ctx.console.error(str(finding))
            else:
                ctx.console.warning(str(finding))
        if status == CheckStatus.ERROR:
            return StepExecutionFailure(
                step_key=step.key,
                step_kind=str(step.kind),
                message=f"{report.name}: {len(report.findings)} problem(s) found",
            )
        return None

    def _silent_cleanup(self, plan: Plan, ctx: RunContext) -> None:
        result = self._cleanup(plan.staging_path)
        if isinstance(result, Err):
            ctx.console.warning(result.error.message)

    def _notify(self, ctx: RunContext, event: str, step: Step, *args: object) -> None:
        try:
            getattr(self._reporter, event)(step, *args)
        except Exception as e:  # noqa: BLE001
            ctx.console.warning(f"progress reporter failed on {event} for {step.key}: {e}")

    def _notify_skipped(self, ctx: RunContext, step: Step) -> None:
        skipped = getattr(self._reporter, "step_skipped", None)
        if skipped is None:
            return
        try:
            skipped(step)
        except Exception as e:  # noqa: BLE001
            ctx.console.warning(f"progress reporter failed on step_skipped for {step.key}: {e}")
