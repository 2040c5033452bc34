from __future__ import annotations

from modforge.core.errors import StepExecutionFailure
from modforge.output.console import MockConsole, Style
from modforge.output.reporter import ConsoleProgressReporter, NullProgressReporter
from modforge.pipeline.steps import Step, StepKind


def _step(key: str = "build:stage") -> Step:
    return Step(key, StepKind.STAGE, "Stage project")


def test_console_reporter_counts_steps() -> None:
    console = MockConsole()
    reporter = ConsoleProgressReporter(console, total=3)

    reporter.step_starting(_step())
    reporter.step_completed(_step())

    assert console.outputs[0].message == "[1/3] Stage project (build:stage)"
    assert console.outputs[0].style == Style.BOLD
    assert console.outputs[1].message.startswith("OK build:stage (")


def test_console_reporter_without_total() -> None:
    console = MockConsole()
    ConsoleProgressReporter(console).step_starting(_step())

    assert console.outputs[0].message == "Stage project (build:stage)"


def test_console_reporter_failure_and_skip() -> None:
    console = MockConsole()
    reporter = ConsoleProgressReporter(console)
    failure = StepExecutionFailure(step_key="build:stage", step_kind="stage", message="disk full")

    reporter.step_failed(_step(), failure)
    reporter.step_skipped(_step("install"))

    assert console.messages == ["error: build:stage: disk full", "skipped install"]


def test_null_reporter_is_silent() -> None:
    reporter = NullProgressReporter()
    reporter.step_starting(_step())
    reporter.step_completed(_step())
    reporter.step_failed(_step(), StepExecutionFailure("k", "stage", "m"))
