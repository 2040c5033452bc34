"""Stage, binary build and manifest refresh steps."""

from __future__ import annotations

import shutil
from pathlib import Path

from modforge.core.result import Err
from modforge.pipeline.context import RunContext
from modforge.pipeline.executor import StepError
from modforge.pipeline.model import Plan
from modforge.platform.files import CopyRules, copy_tree, delete_tree_with_retries
from modforge.platform.process import run as run_process
from modforge.services import manifest
from modforge.services.sources import collect_sources, public_functions
from modforge.services.timeouts import BUILD_TIMEOUT_SECONDS

__all__ = ["build_binary", "manifest_path", "stage_project", "update_manifest"]


def manifest_path(plan: Plan, root: Path | None = None) -> Path:
    return (root or plan.staging_path) / f"{plan.module_name}.psd1"


def _is_within(path: Path, parent: Path) -> bool:
    try:
        path.resolve().relative_to(parent.resolve())
    except ValueError:
        return False
    return True


def stage_project(plan: Plan, ctx: RunContext) -> None:
    """Copy the project into a clean staging directory."""
    root = plan.project_root
    staging = plan.staging_path
    if not root.is_dir():
        raise StepError(
            f"Project directory not found: {root}",
            hint="Check [build].source in the configuration file.",
        )
    if _is_within(staging, root):
        raise StepError(
            f"Staging directory {staging} is inside the project",
            hint="Point [build].staging outside the source tree or leave it unset.",
        )

    cleared = delete_tree_with_retries(staging)
    if isinstance(cleared, Err):
        raise StepError(cleared.error.message, hint=cleared.error.hint)

    rules = CopyRules(
        exclude_dirs=plan.build.exclude_directories,
        exclude_files=plan.build.exclude_files,
    )
    count = copy_tree(root, staging, rules)
    staging.mkdir(parents=True, exist_ok=True)
    ctx.console.info(f"Staged {count} file(s) to {staging}")


def build_binary(plan: Plan, ctx: RunContext) -> None:
    """``dotnet publish`` the binary component, once per framework, into ``Lib/<framework>``."""
    project_file = plan.build.project_file
    if not project_file:
        ctx.console.detail("no binary project configured; nothing to build")
        return

    project = Path(project_file)
    if not project.is_absolute():
        project = plan.project_root / project
    if not project.is_file():
        raise StepError(f"Project file not found: {project}")

    dotnet = shutil.which("dotnet")
    if dotnet is None:
        raise StepError(
            "dotnet: missing",
            hint="Install the .NET SDK: https://dotnet.microsoft.com/download",
        )

    for framework in plan.build.frameworks:
        out_dir = plan.staging_path / "Lib" / framework
        cmd = [
            dotnet,
            "publish",
            str(project),
            "--configuration",
            plan.build.configuration,
            "--framework",
            framework,
            "--output",
            str(out_dir),
            "--nologo",
        ]
        ctx.console.detail(" ".join(cmd))
        result = run_process(cmd, cwd=project.parent, timeout=BUILD_TIMEOUT_SECONDS)
        if isinstance(result, Err):
            error = result.error
            raise StepError(
                f"dotnet publish failed for {framework}",
                exit_code=error.returncode,
                stdout=error.stdout,
                stderr=error.stderr,
            )
        ctx.console.info(f"Built {project.name} ({framework})")


def update_manifest(plan: Plan, ctx: RunContext) -> None:
    """Write version, metadata and required modules into the staged manifest.

    A project without a manifest gets a generated one. In refresh-only mode
    the result is copied back over the project's manifest.
    """
    path = manifest_path(plan)
    if not path.exists():
        functions, _ = public_functions(collect_sources(plan.staging_path, plan.information), plan.information)
        text = manifest.new_manifest(plan, root_module=f"{plan.module_name}.psm1", functions=functions)
        path.write_text(text, encoding="utf-8-sig")
        ctx.console.info(f"Generated {path.name}")
    else:
        _refresh_existing(plan, path, ctx)

    if plan.build.refresh_manifest_only:
        target = manifest_path(plan, plan.project_root)
        shutil.copy2(path, target)
        ctx.console.success(f"Refreshed {target}")


def _refresh_existing(plan: Plan, path: Path, ctx: RunContext) -> None:
    meta = plan.manifest
    edits: list[tuple[str, str | tuple[str, ...], bool]] = [
        ("ModuleVersion", plan.resolved_version, False),
        ("RequiredModules", manifest.render_required_modules(plan.manifest_required_modules), True),
    ]
    if plan.compatible_editions:
        edits.append(("CompatiblePSEditions", plan.compatible_editions, False))
    for key, value in (
        ("GUID", meta.guid),
        ("Author", meta.author),
        ("CompanyName", meta.company_name),
        ("Copyright", meta.copyright),
        ("Description", meta.description),
        ("PowerShellVersion", meta.powershell_version),
    ):
        if value:
            edits.append((key, value, False))

    for key, value, raw in edits:
        if not manifest.set_value(path, key, value, raw=raw):
            raise StepError(
                f"Could not update {key} in {path.name}",
                hint="The manifest must be a single @{ ... } hashtable.",
            )
        ctx.console.detail(f"{path.name}: {key} updated")

    if plan.prerelease and not manifest.set_prerelease(path, plan.prerelease):
        ctx.console.warning(
            f"{path.name} has no PrivateData.PSData.Prerelease entry; prerelease '{plan.prerelease}' not written"
        )
