"""Install the staged module into PowerShell module roots."""

from __future__ import annotations

import os
import sys
from pathlib import Path

from modforge.core.result import Err
from modforge.pipeline.context import RunContext
from modforge.pipeline.executor import StepError
from modforge.pipeline.model import InstallStrategy, Plan
from modforge.pipeline.versions import parse_version
from modforge.platform.files import copy_tree, delete_tree_with_retries
from modforge.services import manifest
from modforge.services.artefacts import packaging_rules

__all__ = ["install_module", "install_version", "module_roots", "prune_versions"]


def module_roots(plan: Plan, env: dict[str, str] | None = None) -> list[Path]:
    """Target module roots: configured ones, else the per-user defaults.

    On Windows the edition folders follow ``compatible_editions`` (both when
    unset); elsewhere the XDG data directory is used.
    """
    env = dict(os.environ) if env is None else env
    if plan.install.roots:
        return [Path(r).expanduser() for r in plan.install.roots]

    if sys.platform == "win32":
        docs = Path(env.get("USERPROFILE", str(Path.home()))) / "Documents"
        editions = {e.casefold() for e in plan.compatible_editions} or {"core", "desktop"}
        roots: list[Path] = []
        if "core" in editions:
            roots.append(docs / "PowerShell" / "Modules")
        if "desktop" in editions:
            roots.append(docs / "WindowsPowerShell" / "Modules")
        return roots

    data_home = env.get("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return [Path(data_home) / "powershell" / "Modules"]


def _installed_versions(module_dir: Path) -> list[str]:
    if not module_dir.is_dir():
        return []
    return [p.name for p in module_dir.iterdir() if p.is_dir() and parse_version(p.name) is not None]


def install_version(plan: Plan, module_dir: Path) -> str:
    """Folder version to install into.

    ``exact`` always uses the resolved version. ``auto-revision`` uses it when
    free and otherwise the next fourth-part revision above every installed
    copy of the same major.minor.build.
    """
    version = plan.resolved_version
    if plan.install.strategy == InstallStrategy.EXACT:
        return version
    parsed = parse_version(version)
    if parsed is None:
        return version
    existing = _installed_versions(module_dir)
    if version not in existing:
        return version
    major, minor, build, revision = parsed.parts
    highest = revision
    for name in existing:
        other = parse_version(name)
        if other is not None and other.parts[:3] == (major, minor, build):
            highest = max(highest, other.parts[3])
    return f"{major}.{minor}.{build}.{highest + 1}"


def prune_versions(module_dir: Path, keep: int, ctx: RunContext) -> list[str]:
    """Delete all but the newest ``keep`` versions. Returns the removed names."""
    parsed = [(name, parse_version(name)) for name in _installed_versions(module_dir)]
    ordered = [
        name
        for name, version in sorted(
            ((n, v) for n, v in parsed if v is not None),
            key=lambda item: item[1].sort_key,
            reverse=True,
        )
    ]
    removed: list[str] = []
    for name in ordered[max(1, keep) :]:
        result = delete_tree_with_retries(module_dir / name)
        if isinstance(result, Err):
            ctx.console.warning(result.error.message)
            continue
        removed.append(name)
    return removed


def install_module(plan: Plan, ctx: RunContext) -> None:
    rules = packaging_rules(plan)
    roots = module_roots(plan)
    if not roots:
        raise StepError("No module root to install into", hint="Set [install].roots.")

    curated = ctx.scratch_dir("install", plan.module_name)
    try:
        copy_tree(plan.staging_path, curated, rules)
        for root in roots:
            module_dir = root / plan.module_name
            version = install_version(plan, module_dir)
            target = module_dir / version

            psd1 = curated / f"{plan.module_name}.psd1"
            if psd1.exists() and not manifest.set_value(psd1, "ModuleVersion", version):
                raise StepError(f"Could not set ModuleVersion {version} in {psd1.name}")

            cleared = delete_tree_with_retries(target)
            if isinstance(cleared, Err):
                raise StepError(cleared.error.message, hint="Close PowerShell sessions using the module.")
            copy_tree(curated, target)
            ctx.console.success(f"Installed {plan.module_name} {version} to {target}")

            for name in prune_versions(module_dir, plan.install.keep_versions, ctx):
                ctx.console.info(f"Removed old version {name}")
    finally:
        result = delete_tree_with_retries(curated)
        if isinstance(result, Err):
            ctx.console.warning(result.error.message)
