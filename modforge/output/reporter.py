"""Step progress reporting.

Reporters receive ``step_starting`` then exactly one of ``step_completed`` or
``step_failed`` per executed step. ``step_skipped`` is optional: the executor
only calls it when the reporter defines it.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Protocol

from modforge.output.console import ConsoleProtocol, Style

if TYPE_CHECKING:
    from modforge.core.errors import StepExecutionFailure
    from modforge.pipeline.steps import Step

__all__ = ["ConsoleProgressReporter", "NullProgressReporter", "ProgressReporter"]


class ProgressReporter(Protocol):
    def step_starting(self, step: Step) -> None: ...

    def step_completed(self, step: Step) -> None: ...

    def step_failed(self, step: Step, error: StepExecutionFailure) -> None: ...


class NullProgressReporter:
    def step_starting(self, step: Step) -> None:
        pass

    def step_completed(self, step: Step) -> None:
        pass

    def step_failed(self, step: Step, error: StepExecutionFailure) -> None:
        pass


class ConsoleProgressReporter:
    """One line per step transition, with elapsed time on completion."""

    def __init__(self, console: ConsoleProtocol, total: int = 0) -> None:
        self._console = console
        self._total = total
        self._index = 0
        self._started: float | None = None

    def step_starting(self, step: Step) -> None:
        self._index += 1
        self._started = time.monotonic()
        counter = f"[{self._index}/{self._total}] " if self._total else ""
        self._console.print(f"{counter}{step.title} ({step.key})", Style.BOLD)

    def step_completed(self, step: Step) -> None:
        elapsed = time.monotonic() - self._started if self._started is not None else 0.0
        self._console.success(f"{step.key} ({elapsed:.1f}s)")

    def step_failed(self, step: Step, error: StepExecutionFailure) -> None:
        self._console.error(f"{step.key}: {error.message}")

    def step_skipped(self, step: Step) -> None:
        self._console.print(f"skipped {step.key}", Style.DIM)
