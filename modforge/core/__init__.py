"""Core domain types and logic."""

from .errors import (
    CleanupFailure,
    ErrorCode,
    InvalidConfiguration,
    MissingOrUnresolvedCommand,
    PipelineError,
    Severity,
    StepExecutionFailure,
    UnresolvedDependency,
)
from .result import Err, Ok, Result, is_err, is_ok

__all__ = [
    # errors
    "CleanupFailure",
    "ErrorCode",
    "InvalidConfiguration",
    "MissingOrUnresolvedCommand",
    "PipelineError",
    "Severity",
    "StepExecutionFailure",
    "UnresolvedDependency",
    # result
    "Err",
    "Ok",
    "Result",
    "is_err",
    "is_ok",
]
