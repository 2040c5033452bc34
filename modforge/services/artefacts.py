"""Packed (zip) and unpacked (folder) artefacts of the staged module.

Design goals:

- Deterministic zip contents (sorted entries, stable arc names)
- Never ship build-time state (excluded folders, merged script folders)
"""

from __future__ import annotations

from pathlib import Path
from zipfile import ZIP_DEFLATED, ZipFile

from modforge.core.result import Err, Ok
from modforge.pipeline.context import RunContext
from modforge.pipeline.executor import StepError
from modforge.pipeline.lookups import Lookups
from modforge.pipeline.model import ArtefactKind, ArtefactSegment, Plan
from modforge.platform.files import CopyRules, copy_tree, delete_tree_with_retries, iter_files

__all__ = ["artefact_dir", "create_artefact", "find_packed", "packaging_rules", "packed_path"]


def packaging_rules(plan: Plan) -> CopyRules:
    """Exclusions for anything that leaves staging (artefacts, install)."""
    dirs = list(plan.build.exclude_directories) + list(plan.information.exclude_from_package)
    if plan.merge.enabled:
        dirs.extend(plan.information.script_folders)
    return CopyRules(exclude_dirs=tuple(dirs), exclude_files=plan.build.exclude_files)


def artefact_dir(plan: Plan, artefact: ArtefactSegment) -> Path:
    if artefact.path:
        p = Path(artefact.path).expanduser()
        return p if p.is_absolute() else plan.project_root / p
    return plan.project_root / "Artefacts" / str(artefact.kind).capitalize()


def packed_path(plan: Plan, artefact: ArtefactSegment) -> Path:
    return artefact_dir(plan, artefact) / f"{plan.module_name}.{plan.full_version}.zip"


def find_packed(plan: Plan, artefact_id: str | None) -> ArtefactSegment | None:
    """The packed artefact with ``artefact_id``, or the first enabled packed one."""
    packed = [a for a in plan.artefacts if a.enabled and a.kind == ArtefactKind.PACKED]
    if artefact_id:
        return next((a for a in packed if (a.id or "").casefold() == artefact_id.casefold()), None)
    return packed[0] if packed else None


def _zip_files(zip_path: Path, *, files: list[tuple[Path, str]]) -> None:
    zip_path.parent.mkdir(parents=True, exist_ok=True)
    # Files restored from some archives carry mtime=0, which the ZIP format
    # cannot represent.
    with ZipFile(zip_path, "w", compression=ZIP_DEFLATED, strict_timestamps=False) as zf:
        for src, arc in files:
            zf.write(src, arcname=arc)


def _dependency_roots(plan: Plan, lookups: Lookups, ctx: RunContext) -> list[tuple[str, Path]]:
    out: list[tuple[str, Path]] = []
    for dep in plan.packaging_modules:
        match lookups.local(dep.name):
            case Ok(info) if info.path is not None and info.path.is_dir():
                out.append((info.name, info.path))
            case Ok(_):
                ctx.console.warning(f"Required module '{dep.name}' is not installed; not bundled")
            case Err(error):
                ctx.console.warning(f"Could not locate '{dep.name}': {error.message}")
    return out


def create_artefact(plan: Plan, artefact: ArtefactSegment, lookups: Lookups, ctx: RunContext) -> Path:
    rules = packaging_rules(plan)
    name = plan.module_name
    deps = _dependency_roots(plan, lookups, ctx) if artefact.include_required_modules else []

    if artefact.kind == ArtefactKind.PACKED:
        zip_path = packed_path(plan, artefact)
        files = [(p, f"{name}/{rel}") for p, rel in iter_files(plan.staging_path, rules)]
        if not files:
            raise StepError(f"Nothing to package in {plan.staging_path}")
        for dep_name, dep_root in deps:
            files.extend((p, f"{dep_name}/{rel}") for p, rel in iter_files(dep_root))
        _zip_files(zip_path, files=files)
        ctx.console.info(f"Created {zip_path} ({len(files)} file(s))")
        return zip_path

    out_dir = artefact_dir(plan, artefact)
    targets = [(name, plan.staging_path, rules)] + [(d, root, CopyRules()) for d, root in deps]
    count = 0
    for target_name, src, target_rules in targets:
        dest = out_dir / target_name
        cleared = delete_tree_with_retries(dest)
        if isinstance(cleared, Err):
            raise StepError(cleared.error.message)
        count += copy_tree(src, dest, target_rules)
    ctx.console.info(f"Copied {count} file(s) to {out_dir}")
    return out_dir
