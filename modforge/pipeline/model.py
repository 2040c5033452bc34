"""Pipeline data model.

Configuration arrives as an ordered tuple of segments (a closed union of
frozen dataclasses). ``None`` on a segment field means "not set by this
segment", so later segments only override what they actually specify.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from modforge.core.errors import Severity

__all__ = [
    "ArtefactKind",
    "ArtefactSegment",
    "BuildRequest",
    "BuildSegment",
    "BuildSettings",
    "BuildDocumentationSegment",
    "CommandSegment",
    "CompatibilitySegment",
    "DependencyDraft",
    "DependencyKind",
    "DocumentationSegment",
    "FileConsistencySegment",
    "FormattingSegment",
    "InformationSegment",
    "InstallSettings",
    "InstallStrategy",
    "LookupSettings",
    "ManifestMetadata",
    "ManifestSegment",
    "MergeSettings",
    "ModuleSegment",
    "ModuleSkipSegment",
    "PlaceholderSegment",
    "Plan",
    "Provenance",
    "PublishDestination",
    "PublishSegment",
    "ResolvedDependency",
    "Segment",
    "SigningSegment",
    "TestSegment",
    "ValidationSegment",
]


class DependencyKind(StrEnum):
    REQUIRED = "required"
    EXTERNAL = "external"
    APPROVED = "approved"


class Provenance(StrEnum):
    """Where a resolved dependency value came from."""

    EXPLICIT = "explicit"
    LOCAL = "local"
    REMOTE = "remote"
    UNRESOLVED = "unresolved"


class InstallStrategy(StrEnum):
    EXACT = "exact"
    AUTO_REVISION = "auto-revision"


class ArtefactKind(StrEnum):
    PACKED = "packed"
    UNPACKED = "unpacked"


class PublishDestination(StrEnum):
    REPOSITORY = "repository"
    GITHUB = "github"


# -----------------------------------------------------------------------------
# Segments
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ManifestSegment:
    module_version: str | None = None
    compatible_editions: tuple[str, ...] = ()
    guid: str | None = None
    author: str | None = None
    company_name: str | None = None
    copyright: str | None = None
    description: str | None = None
    powershell_version: str | None = None
    tags: tuple[str, ...] = ()
    icon_uri: str | None = None
    project_uri: str | None = None
    license_uri: str | None = None
    prerelease: str | None = None


@dataclass(frozen=True, slots=True)
class BuildSegment:
    local_version: bool | None = None
    install_strategy: InstallStrategy | None = None
    keep_versions: int | None = None
    resolve_online: bool | None = None
    warn_if_outdated: bool | None = None
    prerelease_lookup: bool | None = None
    repository: str | None = None
    sign_merged: bool | None = None
    refresh_manifest_only: bool | None = None
    merge: bool | None = None
    merge_missing: bool | None = None
    strict_dependencies: bool | None = None
    configuration: str | None = None
    frameworks: tuple[str, ...] | None = None
    project_file: str | None = None


@dataclass(frozen=True, slots=True)
class ModuleSegment:
    """One dependency declaration (required, external or approved)."""

    kind: DependencyKind
    name: str
    minimum_version: str | None = None
    required_version: str | None = None
    maximum_version: str | None = None
    guid: str | None = None


@dataclass(frozen=True, slots=True)
class ModuleSkipSegment:
    ignore_modules: tuple[str, ...] = ()
    ignore_commands: tuple[str, ...] = ()
    force: bool = False
    fail_on_missing_commands: bool = False


@dataclass(frozen=True, slots=True)
class CommandSegment:
    """Hint that ``commands`` are provided by ``module_name``."""

    module_name: str
    commands: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class InformationSegment:
    """Source layout: which folders hold merge sources."""

    enums: tuple[str, ...] = ("Enums",)
    classes: tuple[str, ...] = ("Classes",)
    private: tuple[str, ...] = ("Private",)
    public: tuple[str, ...] = ("Public",)
    exclude_from_package: tuple[str, ...] = ()

    @property
    def script_folders(self) -> tuple[str, ...]:
        return (*self.enums, *self.classes, *self.private, *self.public)


@dataclass(frozen=True, slots=True)
class DocumentationSegment:
    path: str = "Docs"
    readme: str = "Docs/Readme.md"


@dataclass(frozen=True, slots=True)
class BuildDocumentationSegment:
    enabled: bool = True
    start_clean: bool = False
    external_help: bool = False
    culture: str = "en-US"


@dataclass(frozen=True, slots=True)
class FormattingSegment:
    format_staging: bool = True
    format_project: bool = False
    settings_file: str | None = None


@dataclass(frozen=True, slots=True)
class SigningSegment:
    certificate_thumbprint: str | None = None
    certificate_path: str | None = None
    include: tuple[str, ...] = ("*.ps1", "*.psm1", "*.psd1", "*.ps1xml")
    exclude: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class FileConsistencySegment:
    enabled: bool = True
    severity: Severity = Severity.WARNING
    line_ending: str = "crlf"
    require_bom: bool = False
    check_trailing_whitespace: bool = True
    include_project: bool = False
    extensions: tuple[str, ...] = (".ps1", ".psm1", ".psd1", ".ps1xml")
    exclude_dirs: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class CompatibilitySegment:
    enabled: bool = True
    severity: Severity = Severity.WARNING
    require_core: bool = True
    require_desktop: bool = False


@dataclass(frozen=True, slots=True)
class ValidationSegment:
    """Module structure validation (manifest vs. exported functions)."""

    enabled: bool = True
    severity: Severity = Severity.ERROR


@dataclass(frozen=True, slots=True)
class TestSegment:
    path: str = "Tests"
    enabled: bool = True
    exclude_tags: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ArtefactSegment:
    kind: ArtefactKind = ArtefactKind.PACKED
    enabled: bool = True
    id: str | None = None
    path: str | None = None
    include_required_modules: bool = False


@dataclass(frozen=True, slots=True)
class PublishSegment:
    destination: PublishDestination = PublishDestination.REPOSITORY
    enabled: bool = True
    id: str | None = None
    repository: str = "PSGallery"
    api_key_env: str | None = None
    github_repo: str | None = None
    artefact_id: str | None = None


@dataclass(frozen=True, slots=True)
class PlaceholderSegment:
    """Literal find/replace applied to the merged module.

    A segment with ``skip_builtin=True`` and no ``find`` only toggles the
    built-in replacements (``{ModuleName}``, ``{ModuleVersion}``, ``{PreRelease}``).
    """

    find: str | None = None
    replace: str = ""
    skip_builtin: bool | None = None


type Segment = (
    ManifestSegment
    | BuildSegment
    | ModuleSegment
    | ModuleSkipSegment
    | CommandSegment
    | InformationSegment
    | DocumentationSegment
    | BuildDocumentationSegment
    | FormattingSegment
    | SigningSegment
    | FileConsistencySegment
    | CompatibilitySegment
    | ValidationSegment
    | TestSegment
    | ArtefactSegment
    | PublishSegment
    | PlaceholderSegment
)


# -----------------------------------------------------------------------------
# Request
# -----------------------------------------------------------------------------


DEFAULT_EXCLUDE_DIRECTORIES = (".git", ".vs", ".vscode", "Artefacts", "Ignore", "bin", "obj")
DEFAULT_EXCLUDE_FILES = (".gitignore", "*.user")


@dataclass(frozen=True, slots=True)
class InstallSettings:
    enabled: bool = True
    strategy: InstallStrategy = InstallStrategy.AUTO_REVISION
    keep_versions: int = 3
    roots: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class LookupSettings:
    shell: str = "pwsh"
    timeout_minutes: float = 2.0


@dataclass(frozen=True, slots=True)
class BuildRequest:
    """Everything the planner needs: base build settings plus ordered segments."""

    name: str
    source: str
    version: str | None = None
    staging: str | None = None
    keep_staging: bool = False
    project_file: str | None = None
    configuration: str = "Release"
    frameworks: tuple[str, ...] = ("net8.0",)
    exclude_directories: tuple[str, ...] = DEFAULT_EXCLUDE_DIRECTORIES
    exclude_files: tuple[str, ...] = DEFAULT_EXCLUDE_FILES
    install: InstallSettings = field(default_factory=InstallSettings)
    lookups: LookupSettings = field(default_factory=LookupSettings)
    strict_dependencies: bool = False
    segments: tuple[Segment, ...] = ()


# -----------------------------------------------------------------------------
# Dependencies
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DependencyDraft:
    """A dependency as declared; version fields may hold "auto"/"latest"."""

    name: str
    kind: DependencyKind = DependencyKind.REQUIRED
    minimum_version: str | None = None
    required_version: str | None = None
    maximum_version: str | None = None
    guid: str | None = None

    @property
    def key(self) -> str:
        return self.name.casefold()


@dataclass(frozen=True, slots=True)
class ResolvedDependency:
    name: str
    kind: DependencyKind
    minimum_version: str | None
    required_version: str | None
    maximum_version: str | None
    guid: str | None
    provenance: Provenance

    def describe(self) -> str:
        parts: list[str] = []
        if self.required_version:
            parts.append(f"required {self.required_version}")
        if self.minimum_version:
            parts.append(f"minimum {self.minimum_version}")
        if self.maximum_version:
            parts.append(f"maximum {self.maximum_version}")
        if self.guid:
            parts.append(f"guid {self.guid}")
        return f"{self.name} ({', '.join(parts)})" if parts else self.name


# -----------------------------------------------------------------------------
# Plan
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ManifestMetadata:
    guid: str | None = None
    author: str | None = None
    company_name: str | None = None
    copyright: str | None = None
    description: str | None = None
    powershell_version: str | None = None
    tags: tuple[str, ...] = ()
    icon_uri: str | None = None
    project_uri: str | None = None
    license_uri: str | None = None


@dataclass(frozen=True, slots=True)
class BuildSettings:
    project_file: str | None
    configuration: str
    frameworks: tuple[str, ...]
    exclude_directories: tuple[str, ...]
    exclude_files: tuple[str, ...]
    local_version: bool = False
    sign_merged: bool = False
    refresh_manifest_only: bool = False


@dataclass(frozen=True, slots=True)
class MergeSettings:
    enabled: bool
    merge_missing: bool
    ignore_modules: tuple[str, ...] = ()
    ignore_commands: tuple[str, ...] = ()
    force: bool = False
    fail_on_missing_commands: bool = False
    command_hints: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    placeholders: tuple[PlaceholderSegment, ...] = ()
    skip_builtin_placeholders: bool = False


@dataclass(frozen=True, slots=True)
class Plan:
    """Immutable snapshot of one resolved build run."""

    module_name: str
    project_root: Path
    expected_version: str
    resolved_version: str
    prerelease: str | None
    compatible_editions: tuple[str, ...]
    manifest: ManifestMetadata
    build: BuildSettings
    required_modules: tuple[ResolvedDependency, ...]
    packaging_modules: tuple[ResolvedDependency, ...]
    external_modules: tuple[str, ...]
    approved_modules: tuple[str, ...]
    merge: MergeSettings
    information: InformationSegment
    documentation: DocumentationSegment | None
    build_documentation: BuildDocumentationSegment | None
    formatting: FormattingSegment | None
    signing: SigningSegment | None
    file_consistency: FileConsistencySegment | None
    compatibility: CompatibilitySegment | None
    validation: ValidationSegment | None
    tests: tuple[TestSegment, ...]
    artefacts: tuple[ArtefactSegment, ...]
    publishes: tuple[PublishSegment, ...]
    install: InstallSettings
    staging_path: Path
    staging_was_generated: bool
    delete_staging_after_run: bool

    @property
    def full_version(self) -> str:
        if self.prerelease:
            return f"{self.resolved_version}-{self.prerelease}"
        return self.resolved_version

    @property
    def manifest_required_modules(self) -> tuple[ResolvedDependency, ...]:
        """Dependencies written to the staged manifest.

        With ``merge_missing`` the approved modules are inlined, so they are
        dropped from the manifest's required list.
        """
        if not self.merge.merge_missing:
            return self.required_modules
        approved = {a.casefold() for a in self.approved_modules}
        return tuple(d for d in self.required_modules if d.name.casefold() not in approved)
