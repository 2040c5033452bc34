"""Validation checks run against the staged module (and optionally the project).

Each check returns a ``CheckReport`` carrying its configured severity; the
executor decides whether findings warn or fail the step.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from modforge.pipeline.checks import CheckReport, Finding
from modforge.pipeline.model import (
    CompatibilitySegment,
    FileConsistencySegment,
    Plan,
    ValidationSegment,
)
from modforge.platform.files import CopyRules, iter_files
from modforge.services import manifest
from modforge.services.sources import defined_functions

__all__ = ["check_compatibility", "check_file_consistency", "check_module_structure"]

_BOM = b"\xef\xbb\xbf"


# -----------------------------------------------------------------------------
# File consistency
# -----------------------------------------------------------------------------


def _consistency_findings(path: Path, rel: str, seg: FileConsistencySegment) -> list[Finding]:
    data = path.read_bytes()
    findings: list[Finding] = []
    has_bom = data.startswith(_BOM)
    if seg.require_bom and not has_bom:
        findings.append(Finding("missing UTF-8 BOM", rel))
    try:
        text = data[len(_BOM) :].decode("utf-8") if has_bom else data.decode("utf-8")
    except UnicodeDecodeError:
        findings.append(Finding("not valid UTF-8", rel))
        return findings

    crlf = text.count("\r\n")
    lf = text.count("\n") - crlf
    if seg.line_ending.casefold() == "crlf" and lf:
        findings.append(Finding(f"{lf} LF line ending(s), expected CRLF", rel))
    elif seg.line_ending.casefold() == "lf" and crlf:
        findings.append(Finding(f"{crlf} CRLF line ending(s), expected LF", rel))

    if seg.check_trailing_whitespace:
        lines = [line.rstrip("\r") for line in text.split("\n")]
        trailing = sum(1 for line in lines if line != line.rstrip(" \t"))
        if trailing:
            findings.append(Finding(f"trailing whitespace on {trailing} line(s)", rel))
    return findings


def check_file_consistency(plan: Plan, root: Path, seg: FileConsistencySegment) -> CheckReport:
    rules = CopyRules(
        exclude_dirs=plan.build.exclude_directories + seg.exclude_dirs,
        exclude_files=plan.build.exclude_files,
    )
    extensions = {e.casefold() if e.startswith(".") else f".{e.casefold()}" for e in seg.extensions}
    findings: list[Finding] = []
    checked = 0
    for path, rel in iter_files(root, rules):
        if path.suffix.casefold() not in extensions:
            continue
        checked += 1
        findings.extend(_consistency_findings(path, rel, seg))
    return CheckReport(
        name="file consistency",
        severity=seg.severity,
        findings=tuple(findings),
        notes=(f"file consistency: {checked} file(s) checked",),
    )


# -----------------------------------------------------------------------------
# Edition compatibility
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class _Feature:
    pattern: re.Pattern[str]
    description: str


def _feature(pattern: str, description: str) -> _Feature:
    return _Feature(re.compile(pattern, re.IGNORECASE), description)


# Not available in PowerShell 7 (Core).
_DESKTOP_ONLY = (
    _feature(r"\bAdd-PSSnapin\b", "Add-PSSnapin is not available in PowerShell 7 (use modules)"),
    _feature(r"\bGet-WmiObject\b", "Get-WmiObject is not available in PowerShell 7 (use Get-CimInstance)"),
    _feature(r"\bSet-WmiInstance\b", "Set-WmiInstance is not available in PowerShell 7 (use Set-CimInstance)"),
    _feature(r"\bRemove-WmiObject\b", "Remove-WmiObject is not available in PowerShell 7 (use Remove-CimInstance)"),
    _feature(r"\bInvoke-WmiMethod\b", "Invoke-WmiMethod is not available in PowerShell 7 (use Invoke-CimMethod)"),
    _feature(r"\bGet-Content\b.*-Encoding\s+Byte", "Get-Content -Encoding Byte is gone in PowerShell 7 (use -AsByteStream)"),
    _feature(r"(?m)^\s*workflow\s+\w+", "workflows are not supported in PowerShell 7"),
)

# Not available in Windows PowerShell 5.1 (Desktop).
_CORE_ONLY = (
    _feature(r"\?\?=", "null coalescing assignment (??=) needs PowerShell 7"),
    _feature(r"\?\?(?!=)", "null coalescing (??) needs PowerShell 7"),
    _feature(r"\$\{?\w+\}?\?\.", "null conditional member access (?.) needs PowerShell 7"),
    _feature(r"\bGet-Error\b", "Get-Error needs PowerShell 7"),
    _feature(r"\bTest-Json\b", "Test-Json needs PowerShell 6+"),
    _feature(r"\bConvertTo-Json\b.*-AsArray", "ConvertTo-Json -AsArray needs PowerShell 7"),
    _feature(r"\bGet-Content\b.*-AsByteStream", "Get-Content -AsByteStream needs PowerShell 7"),
    _feature(r"\bInvoke-RestMethod\b.*-Resume", "Invoke-RestMethod -Resume needs PowerShell 7"),
)

_PLATFORM = (
    _feature(r"\bGet-EventLog\b", "Get-EventLog is Windows-only"),
    _feature(r"\bGet-Counter\b", "Get-Counter is Windows-only"),
    _feature(r"\bGet-Process\b.*-ComputerName", "Get-Process -ComputerName is not available in PowerShell 7"),
)


def check_compatibility(plan: Plan, root: Path, seg: CompatibilitySegment) -> CheckReport:
    rules = CopyRules(exclude_dirs=plan.build.exclude_directories)
    findings: list[Finding] = []
    notes: list[str] = []
    features: list[_Feature] = []
    if seg.require_core:
        features.extend(_DESKTOP_ONLY)
    if seg.require_desktop:
        features.extend(_CORE_ONLY)

    for path, rel in iter_files(root, rules):
        if path.suffix.casefold() not in (".ps1", ".psm1"):
            continue
        text = path.read_text(encoding="utf-8-sig", errors="replace")
        for feature in features:
            if feature.pattern.search(text):
                findings.append(Finding(feature.description, rel))
        for feature in _PLATFORM:
            if feature.pattern.search(text):
                notes.append(f"{rel}: {feature.description}")

    return CheckReport(
        name="compatibility",
        severity=seg.severity,
        findings=tuple(findings),
        notes=tuple(notes),
    )


# -----------------------------------------------------------------------------
# Module structure
# -----------------------------------------------------------------------------


def check_module_structure(plan: Plan, root: Path, seg: ValidationSegment) -> CheckReport:
    """Manifest present, RootModule present, exports match defined functions."""
    name = plan.module_name
    psd1 = root / f"{name}.psd1"
    findings: list[Finding] = []
    if not psd1.is_file():
        findings.append(Finding(f"manifest {psd1.name} not found"))
        return CheckReport(name="module structure", severity=seg.severity, findings=tuple(findings))

    root_module = manifest.get_value(psd1, "RootModule")
    module_file: Path | None = None
    if not root_module:
        findings.append(Finding("RootModule is not set", psd1.name))
    else:
        module_file = root / root_module
        if not module_file.is_file():
            findings.append(Finding(f"RootModule '{root_module}' does not exist", psd1.name))
            module_file = None

    for key in ("FormatsToProcess", "TypesToProcess", "ScriptsToProcess"):
        for listed in manifest.get_list(psd1, key) or []:
            if not (root / listed).is_file():
                findings.append(Finding(f"{key} entry '{listed}' does not exist", psd1.name))

    exported = manifest.get_list(psd1, "FunctionsToExport") or []
    if module_file is not None and module_file.suffix.casefold() == ".psm1":
        # Unmerged modules dot-source their script folders.
        defined: set[str] = set()
        for path, _ in iter_files(root, CopyRules(exclude_dirs=plan.build.exclude_directories)):
            if path.suffix.casefold() in (".ps1", ".psm1"):
                text = path.read_text(encoding="utf-8-sig", errors="replace")
                defined.update(f.casefold() for f in defined_functions(text))
        for function in exported:
            if "*" in function:
                continue
            if function.casefold() not in defined:
                findings.append(Finding(f"exported function '{function}' is not defined", psd1.name))

    return CheckReport(name="module structure", severity=seg.severity, findings=tuple(findings))
