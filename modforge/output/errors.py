"""Error presentation utilities.

Centralized error formatting and exit code mapping for consistent UX.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from modforge.core.errors import (
    CleanupFailure,
    ErrorCode,
    InvalidConfiguration,
    MissingOrUnresolvedCommand,
    PipelineError,
    StepExecutionFailure,
    UnresolvedDependency,
)
from modforge.output.console import Style

if TYPE_CHECKING:
    from modforge.output.console import ConsoleProtocol

__all__ = ["pipeline_error_exit_code", "print_pipeline_error"]


def _hint(console: ConsoleProtocol, hint: str | None) -> None:
    if hint:
        console.print(f"hint: {hint}", Style.DIM)


def print_pipeline_error(error: PipelineError, console: ConsoleProtocol) -> None:
    """Print a planning or execution error with its hint and output tails."""
    match error:
        case InvalidConfiguration(message=message, field=field, hint=hint):
            console.error(f"{message} ({field})" if field else message)
            _hint(console, hint)
        case UnresolvedDependency(names=names, message=message, hint=hint):
            console.error(message)
            for name in names:
                console.print(f"  - {name}", Style.DIM)
            _hint(console, hint)
        case MissingOrUnresolvedCommand(names=names, message=message, hint=hint):
            console.error(message)
            for name in names:
                console.print(f"  - {name}", Style.DIM)
            _hint(console, hint)
        case StepExecutionFailure(step_key=key, message=message, exit_code=rc, hint=hint):
            suffix = f" (exit {rc})" if rc is not None else ""
            console.error(f"step {key} failed{suffix}: {message}")
            if error.stderr_tail:
                console.print(error.stderr_tail, Style.DIM)
            elif error.stdout_tail:
                console.print(error.stdout_tail, Style.DIM)
            _hint(console, hint)
        case CleanupFailure(message=message, hint=hint):
            console.error(message)
            _hint(console, hint)


def pipeline_error_exit_code(error: PipelineError) -> int:
    """Get exit code for a pipeline error."""
    match error:
        case InvalidConfiguration():
            return int(ErrorCode.USER_ERROR)
        case UnresolvedDependency():
            return int(ErrorCode.ENV_ERROR)
        case MissingOrUnresolvedCommand() | StepExecutionFailure():
            return int(ErrorCode.BUILD_ERROR)
        case CleanupFailure():
            return int(ErrorCode.IO_ERROR)
    # Fallback for exhaustiveness
    return int(ErrorCode.BUILD_ERROR)
