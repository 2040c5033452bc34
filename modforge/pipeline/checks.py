# SPDX-License-Identifier: MIT
"""Check reports returned by validation and merge steps."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto

from modforge.core.errors import Severity


class CheckStatus(Enum):
    """Outcome of a check."""

    OK = auto()
    """Nothing found."""

    WARNING = auto()
    """Findings exist but the policy lets the run continue."""

    ERROR = auto()
    """Findings exist and the policy fails the step."""


@dataclass(frozen=True, slots=True)
class Finding:
    """One problem found by a check.

    Attributes:
        message: Human-readable description
        path: File the finding refers to, relative to the checked root
    """

    message: str
    path: str | None = None

    def __str__(self) -> str:
        return f"{self.path}: {self.message}" if self.path else self.message


@dataclass(frozen=True, slots=True)
class CheckReport:
    """Findings of one check together with the severity policy that applies."""

    name: str
    severity: Severity
    findings: tuple[Finding, ...] = ()
    notes: tuple[str, ...] = ()

    @property
    def status(self) -> CheckStatus:
        if not self.findings or self.severity == Severity.OFF:
            return CheckStatus.OK
        if self.severity == Severity.ERROR:
            return CheckStatus.ERROR
        return CheckStatus.WARNING

    @property
    def is_error(self) -> bool:
        return self.status == CheckStatus.ERROR

    @classmethod
    def clean(cls, name: str, severity: Severity) -> CheckReport:
        return cls(name=name, severity=severity)
