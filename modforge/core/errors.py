"""Exit codes and the pipeline error taxonomy.

``ErrorCode`` maps failures to shell exit codes. The dataclasses below are the
error payloads carried inside ``Err`` by the planner and the executor; every
payload exposes ``message`` and an optional ``hint`` so the CLI can render any
of them the same way.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum, StrEnum

__all__ = [
    "ErrorCode",
    "Severity",
    "InvalidConfiguration",
    "UnresolvedDependency",
    "MissingOrUnresolvedCommand",
    "StepExecutionFailure",
    "CleanupFailure",
    "PipelineError",
]


class ErrorCode(IntEnum):
    """Exit codes for CLI commands.

    These values are used as process exit codes and should remain stable:
    - 0: Success
    - 1: User error (invalid configuration, bad arguments)
    - 2: Environment error (pwsh or gh missing)
    - 3: Build error (a pipeline step failed)
    - 4: Network error (registry or release host unreachable)
    - 5: I/O error (file not found, permission denied)
    """

    OK = 0
    USER_ERROR = 1
    ENV_ERROR = 2
    BUILD_ERROR = 3
    NETWORK_ERROR = 4
    IO_ERROR = 5

    def __str__(self) -> str:
        return self.name.lower().replace("_", " ")

    @property
    def is_success(self) -> bool:
        return self == ErrorCode.OK

    @property
    def is_error(self) -> bool:
        return self != ErrorCode.OK


class Severity(StrEnum):
    """How a validation finding is reported.

    One policy per check: OFF skips the check, WARNING reports findings and
    continues, ERROR fails the step when findings exist.
    """

    OFF = "off"
    WARNING = "warning"
    ERROR = "error"

    @classmethod
    def parse(cls, value: str | None, default: Severity) -> Severity:
        if value is None:
            return default
        try:
            return cls(value.strip().lower())
        except ValueError:
            return default


@dataclass(frozen=True, slots=True)
class InvalidConfiguration:
    """Required inputs are missing or malformed. Fatal before execution."""

    message: str
    field: str | None = None
    hint: str | None = None


@dataclass(frozen=True, slots=True)
class UnresolvedDependency:
    """An auto/latest token could not be resolved under strict resolution."""

    names: tuple[str, ...]
    message: str
    hint: str | None = "Install the module locally or enable online resolution."


@dataclass(frozen=True, slots=True)
class MissingOrUnresolvedCommand:
    """Merge analysis found commands with no satisfying module."""

    names: tuple[str, ...]
    message: str
    hint: str | None = "Declare the module as required/approved or list it under module-skip."


@dataclass(frozen=True, slots=True)
class StepExecutionFailure:
    """A pipeline step raised or returned a failure.

    ``stdout_tail`` and ``stderr_tail`` are already bounded by the executor.
    """

    step_key: str
    step_kind: str
    message: str
    exit_code: int | None = None
    stdout_tail: str = ""
    stderr_tail: str = ""
    hint: str | None = None


@dataclass(frozen=True, slots=True)
class CleanupFailure:
    """Cleanup of a transient directory failed after all retries."""

    path: str
    message: str
    hint: str | None = None


type PipelineError = (
    InvalidConfiguration
    | UnresolvedDependency
    | MissingOrUnresolvedCommand
    | StepExecutionFailure
    | CleanupFailure
)
