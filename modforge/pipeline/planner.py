"""Configuration segments -> immutable Plan.

Segments are applied in declaration order with last-wins semantics per field.
Dependency declarations are keyed by case-insensitive module name: declaring
a name again replaces the earlier draft in place, so the original position is
kept. External dependencies go into the build-time list only; required
dependencies go into both the build-time and the packaging list.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path

from modforge.core.errors import InvalidConfiguration, UnresolvedDependency
from modforge.core.result import Err, Ok, Result
from modforge.pipeline.classify import build_command_hints
from modforge.pipeline.context import RunContext
from modforge.pipeline.lookups import Lookups
from modforge.pipeline.model import (
    ArtefactSegment,
    BuildDocumentationSegment,
    BuildRequest,
    BuildSegment,
    BuildSettings,
    CommandSegment,
    CompatibilitySegment,
    DependencyDraft,
    DependencyKind,
    DocumentationSegment,
    FileConsistencySegment,
    FormattingSegment,
    InformationSegment,
    InstallSettings,
    ManifestMetadata,
    ManifestSegment,
    MergeSettings,
    ModuleSegment,
    ModuleSkipSegment,
    PlaceholderSegment,
    Plan,
    PublishSegment,
    SigningSegment,
    TestSegment,
    ValidationSegment,
)
from modforge.pipeline.versions import (
    VersionResolver,
    is_auto,
    is_auto_or_latest,
    parse_version,
    step_version,
)

__all__ = ["PlanError", "resolve_plan"]

type PlanError = InvalidConfiguration | UnresolvedDependency

DEFAULT_VERSION = "1.0.0"


@dataclass
class _Acc:
    """Mutable accumulator; only lives while segments are applied."""

    expected_version: str | None = None
    prerelease: str | None = None
    compatible: tuple[str, ...] = ()
    manifest: ManifestMetadata = field(default_factory=ManifestMetadata)
    build: BuildSegment = field(default_factory=BuildSegment)
    required: dict[str, DependencyDraft] = field(default_factory=dict[str, DependencyDraft])
    packaging: dict[str, DependencyDraft] = field(default_factory=dict[str, DependencyDraft])
    external: dict[str, str] = field(default_factory=dict[str, str])
    approved: dict[str, str] = field(default_factory=dict[str, str])
    ignore_modules: list[str] = field(default_factory=list[str])
    ignore_commands: list[str] = field(default_factory=list[str])
    skip_force: bool = False
    skip_fail: bool = False
    commands: list[tuple[str, tuple[str, ...]]] = field(
        default_factory=list[tuple[str, tuple[str, ...]]]
    )
    information: InformationSegment = field(default_factory=InformationSegment)
    documentation: DocumentationSegment | None = None
    build_documentation: BuildDocumentationSegment | None = None
    formatting: FormattingSegment | None = None
    signing: SigningSegment | None = None
    file_consistency: FileConsistencySegment | None = None
    compatibility: CompatibilitySegment | None = None
    validation: ValidationSegment | None = None
    tests: list[TestSegment] = field(default_factory=list[TestSegment])
    artefacts: list[ArtefactSegment] = field(default_factory=list[ArtefactSegment])
    publishes: list[PublishSegment] = field(default_factory=list[PublishSegment])
    placeholders: list[PlaceholderSegment] = field(default_factory=list[PlaceholderSegment])
    skip_builtin_placeholders: bool = False


def _merge_build(current: BuildSegment, new: BuildSegment) -> BuildSegment:
    """Overlay every field ``new`` sets onto ``current``."""
    changes = {
        name: getattr(new, name)
        for name in BuildSegment.__dataclass_fields__
        if getattr(new, name) is not None
    }
    return replace(current, **changes)


def _merge_manifest(acc: _Acc, m: ManifestSegment) -> None:
    if m.module_version:
        acc.expected_version = m.module_version
    if m.prerelease:
        acc.prerelease = m.prerelease
    if m.compatible_editions:
        acc.compatible = m.compatible_editions
    meta = acc.manifest
    acc.manifest = ManifestMetadata(
        guid=m.guid or meta.guid,
        author=m.author or meta.author,
        company_name=m.company_name or meta.company_name,
        copyright=m.copyright or meta.copyright,
        description=m.description or meta.description,
        powershell_version=m.powershell_version or meta.powershell_version,
        tags=m.tags or meta.tags,
        icon_uri=m.icon_uri or meta.icon_uri,
        project_uri=m.project_uri or meta.project_uri,
        license_uri=m.license_uri or meta.license_uri,
    )


def _apply_module(acc: _Acc, seg: ModuleSegment) -> None:
    name = seg.name.strip()
    if not name:
        return
    key = name.casefold()
    if seg.kind == DependencyKind.APPROVED:
        acc.approved.setdefault(key, name)
        return

    draft = DependencyDraft(
        name=name,
        kind=seg.kind,
        minimum_version=seg.minimum_version,
        required_version=seg.required_version,
        maximum_version=seg.maximum_version,
        guid=seg.guid,
    )
    # Assigning to an existing key keeps its insertion position.
    acc.required[key] = draft
    if seg.kind == DependencyKind.EXTERNAL:
        acc.external.setdefault(key, name)
    else:
        acc.packaging[key] = draft


def _apply(acc: _Acc, segment: object) -> None:
    match segment:
        case ManifestSegment() as m:
            _merge_manifest(acc, m)
        case BuildSegment() as b:
            acc.build = _merge_build(acc.build, b)
        case ModuleSegment() as ms:
            _apply_module(acc, ms)
        case ModuleSkipSegment() as skip:
            acc.ignore_modules.extend(skip.ignore_modules)
            acc.ignore_commands.extend(skip.ignore_commands)
            acc.skip_force = acc.skip_force or skip.force
            acc.skip_fail = acc.skip_fail or skip.fail_on_missing_commands
        case CommandSegment() as cmd:
            if cmd.module_name.strip() and cmd.commands:
                acc.commands.append((cmd.module_name, cmd.commands))
        case InformationSegment() as info:
            acc.information = info
        case DocumentationSegment() as docs:
            acc.documentation = docs
        case BuildDocumentationSegment() as bdocs:
            acc.build_documentation = bdocs
        case FormattingSegment() as fmt:
            acc.formatting = fmt
        case SigningSegment() as sign:
            acc.signing = sign
        case FileConsistencySegment() as fc:
            acc.file_consistency = fc
        case CompatibilitySegment() as compat:
            acc.compatibility = compat
        case ValidationSegment() as validation:
            acc.validation = validation
        case TestSegment() as test:
            acc.tests.append(test)
        case ArtefactSegment() as artefact:
            if artefact.enabled:
                acc.artefacts.append(artefact)
        case PublishSegment() as publish:
            if publish.enabled:
                acc.publishes.append(publish)
        case PlaceholderSegment() as ph:
            if ph.skip_builtin is not None:
                acc.skip_builtin_placeholders = ph.skip_builtin
            if ph.find:
                acc.placeholders.append(ph)
        case _:
            raise AssertionError(f"unexpected segment type: {type(segment).__name__}")


def _resolve_module_version(
    acc: _Acc,
    *,
    name: str,
    project_root: Path,
    lookups: Lookups,
    resolver: VersionResolver,
    ctx: RunContext,
) -> Result[tuple[str, str], InvalidConfiguration]:
    """Return (expected, resolved) module version."""
    expected = acc.expected_version or "auto"
    manifest_path = project_root / f"{name}.psd1"

    if is_auto(expected):
        on_disk = lookups.read_manifest(manifest_path, "ModuleVersion")
        if on_disk and parse_version(on_disk) is not None:
            return Ok((expected, on_disk.strip()))
        ctx.console.warning(
            f"ModuleVersion is 'auto' but {manifest_path.name} has no readable version "
            f"({on_disk or 'missing'}); "
            f"using {DEFAULT_VERSION}"
        )
        return Ok((expected, DEFAULT_VERSION))

    if "x" not in expected.casefold():
        return Ok((expected, expected.strip()))

    current: str | None
    if acc.build.local_version:
        current = lookups.read_manifest(manifest_path, "ModuleVersion")
        if current is None or parse_version(current) is None:
            ctx.console.warning(f"Could not read ModuleVersion from {manifest_path}")
            current = None
    else:
        current = resolver.remote_version(name)
    ctx.console.detail(f"version step: expected {expected}, current {current or 'none'}")

    match step_version(expected, current):
        case Ok(version):
            return Ok((expected, version))
        case Err(message):
            return Err(InvalidConfiguration(message=message, field="manifest.module_version"))


def _staging(request: BuildRequest, name: str, ctx: RunContext) -> tuple[Path, bool]:
    if request.staging:
        return Path(request.staging).expanduser().resolve(), False
    return ctx.temp_root / "staging" / name, True


def resolve_plan(
    request: BuildRequest,
    lookups: Lookups,
    ctx: RunContext,
) -> Result[Plan, PlanError]:
    """Merge ``request.segments`` into a Plan.

    Fails with InvalidConfiguration when the module name or source root is
    missing. Unresolved auto/latest dependency tokens are warnings unless
    strict dependency resolution is enabled.
    """
    name = request.name.strip()
    if not name:
        return Err(
            InvalidConfiguration(
                message="Module name is required",
                field="build.name",
                hint="Set [build].name in the configuration file.",
            )
        )
    source = request.source.strip()
    if not source:
        return Err(
            InvalidConfiguration(
                message="Source root is required",
                field="build.source",
                hint="Set [build].source to the module project directory.",
            )
        )
    project_root = Path(source).expanduser().resolve()

    acc = _Acc(expected_version=request.version)
    for segment in request.segments:
        _apply(acc, segment)
    b = acc.build

    drafts = list(acc.required.values())
    online = b.resolve_online
    if online is None:
        online = any(
            is_auto_or_latest(d.required_version) or is_auto_or_latest(d.minimum_version)
            for d in drafts
        )
    repositories = tuple(
        r.strip() for r in (b.repository or "").replace(";", ",").split(",") if r.strip()
    )
    resolver = VersionResolver(
        local=lookups.local,
        console=ctx.console,
        remote=lookups.remote,
        online=online,
        warn_if_outdated=bool(b.warn_if_outdated),
        prerelease=bool(b.prerelease_lookup),
        repositories=repositories,
        remote_cache=ctx.remote_versions,
    )

    version_result = _resolve_module_version(
        acc, name=name, project_root=project_root, lookups=lookups, resolver=resolver, ctx=ctx
    )
    if isinstance(version_result, Err):
        return version_result
    expected_version, resolved_version = version_result.value

    resolved = resolver.resolve_all(drafts)
    by_key = {r.name.casefold(): r for r in resolved}
    packaging = tuple(by_key[k] for k in acc.packaging)

    strict = request.strict_dependencies or bool(b.strict_dependencies)
    if strict and resolver.unresolved:
        names = tuple(sorted(resolver.unresolved, key=str.casefold))
        return Err(
            UnresolvedDependency(
                names=names,
                message=f"Unresolved dependency versions: {', '.join(names)}",
            )
        )

    approved = tuple(acc.approved.values())
    merge_enabled = True if b.merge is None else b.merge
    merge_missing = bool(approved) if b.merge_missing is None else b.merge_missing
    sign_merged = bool(b.sign_merged)
    refresh_only = bool(b.refresh_manifest_only)

    install = request.install
    install = replace(
        install,
        strategy=b.install_strategy or install.strategy,
        keep_versions=max(1, b.keep_versions if b.keep_versions is not None else install.keep_versions),
    )

    documentation = acc.documentation
    build_documentation = acc.build_documentation
    file_consistency = acc.file_consistency
    compatibility = acc.compatibility
    validation = acc.validation
    tests = tuple(acc.tests)
    artefacts = tuple(acc.artefacts)
    publishes = tuple(acc.publishes)

    if refresh_only:
        ctx.console.info("Refresh-manifest-only mode: merge, docs, validation and packaging disabled")
        merge_enabled = False
        merge_missing = False
        sign_merged = False
        install = replace(install, enabled=False)
        documentation = None
        build_documentation = None
        file_consistency = None
        compatibility = None
        validation = None
        tests = ()
        artefacts = ()
        publishes = ()

    staging_path, generated = _staging(request, name, ctx)

    return Ok(
        Plan(
            module_name=name,
            project_root=project_root,
            expected_version=expected_version,
            resolved_version=resolved_version,
            prerelease=acc.prerelease,
            compatible_editions=acc.compatible,
            manifest=acc.manifest,
            build=BuildSettings(
                project_file=b.project_file or request.project_file,
                configuration=b.configuration or request.configuration,
                frameworks=b.frameworks or request.frameworks,
                exclude_directories=request.exclude_directories,
                exclude_files=request.exclude_files,
                local_version=bool(b.local_version),
                sign_merged=sign_merged,
                refresh_manifest_only=refresh_only,
            ),
            required_modules=tuple(resolved),
            packaging_modules=packaging,
            external_modules=tuple(acc.external.values()),
            approved_modules=approved,
            merge=MergeSettings(
                enabled=merge_enabled,
                merge_missing=merge_missing,
                ignore_modules=tuple(acc.ignore_modules),
                ignore_commands=tuple(acc.ignore_commands),
                force=acc.skip_force,
                fail_on_missing_commands=acc.skip_fail,
                command_hints=build_command_hints(acc.commands),
                placeholders=tuple(acc.placeholders),
                skip_builtin_placeholders=acc.skip_builtin_placeholders,
            ),
            information=acc.information,
            documentation=documentation,
            build_documentation=build_documentation,
            formatting=acc.formatting,
            signing=acc.signing,
            file_consistency=file_consistency,
            compatibility=compatibility,
            validation=validation,
            tests=tests,
            artefacts=artefacts,
            publishes=publishes,
            install=InstallSettings(
                enabled=install.enabled,
                strategy=install.strategy,
                keep_versions=install.keep_versions,
                roots=install.roots,
            ),
            staging_path=staging_path,
            staging_was_generated=generated,
            delete_staging_after_run=generated and not request.keep_staging,
        )
    )
