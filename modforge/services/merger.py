"""The merge step: analyse staged sources, classify commands, write the .psm1."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from modforge.core.errors import Severity
from modforge.core.result import Err, Ok
from modforge.pipeline.checks import CheckReport, Finding
from modforge.pipeline.classify import ClassificationReport, classify
from modforge.pipeline.closure import dependency_closure
from modforge.pipeline.context import RunContext
from modforge.pipeline.lookups import CommandUsage, Lookups
from modforge.pipeline.merge import ExportSet, InlineSymbol, SourceFile, assemble
from modforge.pipeline.model import Plan
from modforge.platform.files import atomic_write_text, remove_paths
from modforge.services import manifest
from modforge.services.sources import (
    collect_sources,
    defined_functions,
    public_functions,
    referenced_commands,
)

__all__ = ["MergeAnalysis", "analyze", "apply_placeholders", "merge_module"]


@dataclass(frozen=True, slots=True)
class MergeAnalysis:
    sources: tuple[SourceFile, ...]
    functions: tuple[str, ...]
    aliases: tuple[str, ...]
    usages: tuple[CommandUsage, ...]
    dependent: frozenset[str]
    inlined: tuple[InlineSymbol, ...]
    report: ClassificationReport


def _catalog(names: list[str], lookups: Lookups, ctx: RunContext) -> list[CommandUsage]:
    if not names:
        return []
    match lookups.commands(names):
        case Ok(usages):
            known = {u.name.casefold() for u in usages}
            return list(usages) + [
                CommandUsage(name=n, source_module=None) for n in names if n.casefold() not in known
            ]
        case Err(error):
            ctx.console.warning(f"Command lookup failed; treating commands as unresolved: {error.message}")
            return [CommandUsage(name=n, source_module=None) for n in names]


def _inline_approved(
    usages: list[CommandUsage],
    approved: set[str],
    local: set[str],
    lookups: Lookups,
    ctx: RunContext,
) -> tuple[list[InlineSymbol], list[CommandUsage]]:
    """Copy functions of approved modules into the merge, following their own calls.

    Returns the inlined symbols and the usages discovered inside them.
    """
    seen = {u.name.casefold() for u in usages} | local
    queue = [u for u in usages if (u.source_module or "").casefold() in approved]
    inlined: dict[str, InlineSymbol] = {}
    extra: list[CommandUsage] = []

    while queue:
        usage = queue.pop(0)
        key = usage.name.casefold()
        if key in inlined or usage.source_module is None:
            continue
        match lookups.definitions(usage.name, usage.source_module):
            case Ok(None):
                ctx.console.warning(
                    f"'{usage.name}' from approved module '{usage.source_module}' is not a function; not inlined"
                )
                continue
            case Ok(definition):
                pass
            case Err(error):
                ctx.console.warning(f"Could not read '{usage.name}' from '{usage.source_module}': {error.message}")
                continue
        inlined[key] = InlineSymbol(name=usage.name, definition=definition)
        ctx.console.detail(f"inlined {usage.name} from {usage.source_module}")

        fresh = [n for n in referenced_commands(definition) if n.casefold() not in seen]
        seen.update(n.casefold() for n in fresh)
        for found in _catalog(fresh, lookups, ctx):
            if (found.source_module or "").casefold() in approved:
                queue.append(found)
            else:
                extra.append(found)

    return list(inlined.values()), extra


def analyze(plan: Plan, root: Path, lookups: Lookups, ctx: RunContext) -> MergeAnalysis:
    """Everything the merge needs to know about the sources under ``root``."""
    info = plan.information
    sources = collect_sources(root, info)
    local: set[str] = set()
    for source in sources:
        local.update(f.casefold() for f in defined_functions(source.text))

    referenced: dict[str, str] = {}
    for source in sources:
        for name in referenced_commands(source.text):
            if name.casefold() not in local:
                referenced.setdefault(name.casefold(), name)
    usages = _catalog(sorted(referenced.values(), key=str.casefold), lookups, ctx)

    required = [d.name for d in plan.required_modules]
    approved = set(a.casefold() for a in plan.approved_modules)
    dependent = dependency_closure(required, plan.approved_modules, lookups.dependencies, ctx.console)

    inlined: list[InlineSymbol] = []
    if plan.merge.merge_missing and approved:
        inlined, extra = _inline_approved(usages, approved, local, lookups, ctx)
        usages.extend(extra)

    merge = plan.merge
    report = classify(
        usages,
        required=required,
        approved=plan.approved_modules,
        dependent=dependent,
        ignore_modules=merge.ignore_modules,
        ignore_commands=merge.ignore_commands,
        force=merge.force,
        strict=merge.fail_on_missing_commands and not merge.force,
        command_hints=merge.command_hints,
    )
    functions, aliases = public_functions(sources, info)
    return MergeAnalysis(
        sources=tuple(sources),
        functions=tuple(functions),
        aliases=tuple(aliases),
        usages=tuple(usages),
        dependent=dependent,
        inlined=tuple(inlined),
        report=report,
    )


def apply_placeholders(text: str, plan: Plan) -> str:
    """Built-in ``{ModuleName}``/``{ModuleVersion}``/``{PreRelease}`` then custom pairs, in order."""
    if not plan.merge.skip_builtin_placeholders:
        for find, replace in (
            ("{ModuleName}", plan.module_name),
            ("{ModuleVersion}", plan.resolved_version),
            ("{PreRelease}", plan.prerelease or ""),
        ):
            text = text.replace(find, replace)
    for placeholder in plan.merge.placeholders:
        if placeholder.find:
            text = text.replace(placeholder.find, placeholder.replace)
    return text


def _newline(plan: Plan) -> str:
    fc = plan.file_consistency
    if fc is not None and fc.line_ending.casefold() == "lf":
        return "\n"
    return "\r\n"


def print_summary(analysis: MergeAnalysis, plan: Plan, ctx: RunContext) -> None:
    console = ctx.console
    console.info(
        f"Dependencies: {len(plan.required_modules)} required, "
        f"{len(plan.approved_modules)} approved, {len(analysis.dependent)} dependent"
    )
    for dep in plan.required_modules:
        console.detail(f"required {dep.describe()} [{dep.provenance}]")
    for name in sorted(analysis.dependent, key=str.casefold):
        console.detail(f"dependent {name}")
    if analysis.inlined:
        console.info(f"Inlined {len(analysis.inlined)} function(s) from approved modules")
    for warning in analysis.report.warnings:
        console.warning(warning)


def merge_module(plan: Plan, lookups: Lookups, ctx: RunContext) -> CheckReport:
    """Write ``<Name>.psm1`` into staging and drop the script folders.

    Unresolved commands come back as findings; they fail the step only when
    missing commands are configured to fail and ``force`` is not set.
    """
    merge = plan.merge
    severity = (
        Severity.ERROR if merge.fail_on_missing_commands and not merge.force else Severity.WARNING
    )
    staging = plan.staging_path
    analysis = analyze(plan, staging, lookups, ctx)
    if not analysis.sources:
        ctx.console.warning("No script sources found; merge skipped")
        return CheckReport.clean("merge", severity)

    result = assemble(
        analysis.sources,
        ExportSet(functions=analysis.functions, aliases=analysis.aliases),
        analysis.inlined,
    )
    text = apply_placeholders(result.render(newline=_newline(plan)), plan)
    psm1 = staging / f"{plan.module_name}.psm1"
    atomic_write_text(psm1, text, encoding="utf-8-sig")

    remove_paths(
        staging / folder for folder in plan.information.script_folders if (staging / folder).exists()
    )

    psd1 = staging / f"{plan.module_name}.psd1"
    if psd1.exists():
        manifest.set_value(psd1, "RootModule", psm1.name)
        manifest.set_value(psd1, "FunctionsToExport", analysis.functions)
        manifest.set_value(psd1, "AliasesToExport", analysis.aliases)

    ctx.console.info(
        f"Merged {len(analysis.sources)} file(s) into {psm1.name}; "
        f"{len(analysis.functions)} function(s) exported"
    )
    print_summary(analysis, plan, ctx)

    return CheckReport(
        name="merge",
        severity=severity,
        findings=tuple(Finding(message=e) for e in analysis.report.errors),
    )
