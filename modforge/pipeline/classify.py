"""Classification of external commands referenced by merged source.

Every command the merged module calls is either satisfied (built in, provided
by a declared/approved/dependent module), ignorable (configured skip, force)
or a failure. The result is a pure report; the merge step decides how to
print it and the executor applies the severity.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from modforge.pipeline.checks import CheckStatus
from modforge.pipeline.lookups import CommandUsage

__all__ = [
    "BUILTIN_COMMANDS",
    "BUILTIN_MODULE_PREFIX",
    "ClassificationReport",
    "build_command_hints",
    "classify",
    "infer_module",
]

BUILTIN_MODULE_PREFIX = "microsoft.powershell."

BUILTIN_COMMANDS = frozenset(
    name.casefold()
    for name in (
        "Add-Content",
        "Add-Type",
        "Clear-Variable",
        "ConvertFrom-Json",
        "ConvertTo-Json",
        "Copy-Item",
        "Export-ModuleMember",
        "ForEach-Object",
        "Format-List",
        "Format-Table",
        "Get-ChildItem",
        "Get-Command",
        "Get-Content",
        "Get-Date",
        "Get-Item",
        "Get-ItemProperty",
        "Get-Location",
        "Get-Member",
        "Get-Variable",
        "Import-Module",
        "Join-Path",
        "Measure-Object",
        "Move-Item",
        "New-Item",
        "New-Object",
        "Out-File",
        "Pop-Location",
        "Push-Location",
        "Remove-Item",
        "Remove-Variable",
        "Resolve-Path",
        "Select-Object",
        "Set-Content",
        "Set-Item",
        "Set-ItemProperty",
        "Set-Location",
        "Set-Variable",
        "Sort-Object",
        "Split-Path",
        "Start-Process",
        "Start-Sleep",
        "Test-Path",
        "Where-Object",
        "Write-Debug",
        "Write-Error",
        "Write-Host",
        "Write-Information",
        "Write-Output",
        "Write-Progress",
        "Write-Verbose",
        "Write-Warning",
    )
)

# Noun prefixes of well-known Windows management modules.
_NOUN_PATTERNS = (
    ("AD", "ActiveDirectory"),
    ("DnsServer", "DnsServer"),
    ("DhcpServer", "DhcpServer"),
)


@dataclass(frozen=True, slots=True)
class ClassificationReport:
    status: CheckStatus
    failures: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()
    applications: tuple[str, ...] = ()
    satisfied: tuple[str, ...] = ()

    @property
    def failed(self) -> bool:
        return self.status == CheckStatus.ERROR


def build_command_hints(pairs: Iterable[tuple[str, Sequence[str]]]) -> dict[str, tuple[str, ...]]:
    """Invert (module, commands) declarations into command -> sorted modules.

    Keys are casefolded command names.
    """
    acc: dict[str, dict[str, str]] = {}
    for module, commands in pairs:
        module = module.strip()
        if not module:
            continue
        for command in commands:
            command = command.strip()
            if not command:
                continue
            acc.setdefault(command.casefold(), {}).setdefault(module.casefold(), module)
    return {k: tuple(sorted(v.values(), key=str.casefold)) for k, v in acc.items()}


def infer_module(
    command: str, hints: Mapping[str, Sequence[str]]
) -> tuple[str, str] | None:
    """Guess which module provides ``command``; returns (module, how) or None."""
    name = command.strip()
    mapped = hints.get(name.casefold())
    if mapped:
        return (mapped[0], "command hints")

    dash = name.find("-")
    if 0 < dash < len(name) - 1:
        noun = name[dash + 1 :].casefold()
        for prefix, module in _NOUN_PATTERNS:
            if noun.startswith(prefix.casefold()):
                return (module, "command pattern")
    return None


def _ci(names: Iterable[str]) -> set[str]:
    return {n.strip().casefold() for n in names if n and n.strip()}


def classify(
    usages: Sequence[CommandUsage],
    *,
    required: Iterable[str] = (),
    approved: Iterable[str] = (),
    dependent: Iterable[str] = (),
    ignore_modules: Iterable[str] = (),
    ignore_commands: Iterable[str] = (),
    builtin_commands: frozenset[str] = BUILTIN_COMMANDS,
    force: bool = False,
    strict: bool = False,
    command_hints: Mapping[str, Sequence[str]] | None = None,
) -> ClassificationReport:
    """Classify command usages of a merged module.

    ``force`` downgrades every failure to a warning. Failures make the report
    fail only when ``strict`` is set; otherwise they produce a warning status.
    """
    satisfying = _ci(required) | _ci(approved) | _ci(dependent)
    skip_modules = _ci(ignore_modules)
    skip_commands = _ci(ignore_commands)
    hints = command_hints or {}

    failures: list[str] = []
    warnings: list[str] = []
    errors: list[str] = []
    applications: list[str] = []
    satisfied: list[str] = []

    by_module: dict[str, list[CommandUsage]] = {}
    module_names: dict[str, str] = {}
    unresolved: list[CommandUsage] = []
    for usage in usages:
        if usage.is_application:
            if usage.source_module and usage.source_module not in applications:
                applications.append(usage.source_module)
            continue
        if usage.source_module and usage.source_module.strip():
            key = usage.source_module.strip().casefold()
            module_names.setdefault(key, usage.source_module.strip())
            by_module.setdefault(key, []).append(usage)
        else:
            unresolved.append(usage)

    if applications:
        warnings.append(f"Applications used by module: {', '.join(applications)}")

    for key in sorted(by_module):
        group = by_module[key]
        module = module_names[key]
        if key.startswith(BUILTIN_MODULE_PREFIX) or key in satisfying:
            satisfied.extend(u.name for u in group)
            continue
        all_ignored = all(u.name.casefold() in skip_commands for u in group)
        if force or key in skip_modules or all_ignored:
            warnings.append(f"Missing module '{module}' ignored by configuration.")
            continue
        failures.append(module)
        for u in group:
            errors.append(f"Missing module '{module}' provides '{u.name}' (type: {u.kind or '?'}).")

    for usage in unresolved:
        name = usage.name.strip()
        if not name or name.startswith("$"):
            continue
        if name.casefold() in builtin_commands:
            satisfied.append(name)
            continue
        if name.casefold() in skip_commands:
            warnings.append(f"Unresolved command '{name}' ignored by configuration.")
            continue
        if force:
            warnings.append(f"Unresolved command '{name}' (ignored by force).")
            continue
        inferred = infer_module(name, hints)
        if inferred is not None:
            module, how = inferred
            if module.casefold() in skip_modules:
                warnings.append(
                    f"Unresolved command '{name}' likely maps to module '{module}' "
                    "(ignored by configuration)."
                )
                continue
            failures.append(name)
            errors.append(f"Unresolved command '{name}' (likely module '{module}' via {how}).")
            continue
        failures.append(name)
        errors.append(f"Unresolved command '{name}' (no module source).")

    unique_failures = tuple(dict.fromkeys(failures))
    if unique_failures and strict:
        status = CheckStatus.ERROR
    elif unique_failures or warnings:
        status = CheckStatus.WARNING
    else:
        status = CheckStatus.OK

    return ClassificationReport(
        status=status,
        failures=unique_failures,
        warnings=tuple(warnings),
        errors=tuple(errors),
        applications=tuple(applications),
        satisfied=tuple(satisfied),
    )
