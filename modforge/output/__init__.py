"""Output abstraction layer."""

from .console import (
    ConsoleProtocol,
    MockConsole,
    RichConsole,
    Style,
)
from .reporter import ConsoleProgressReporter, NullProgressReporter, ProgressReporter

__all__ = [
    "ConsoleProgressReporter",
    "ConsoleProtocol",
    "MockConsole",
    "NullProgressReporter",
    "ProgressReporter",
    "RichConsole",
    "Style",
]
