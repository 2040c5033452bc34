"""Typed loading of ``modforge.toml`` into a BuildRequest.

Layout::

    [build]            name, source, version, staging, keep_staging, ...
    [install]          enabled, strategy, keep_versions, roots
    [lookups]          shell, timeout_minutes

    [[segments]]
    type = "required-module"
    name = "PSSharedGoods"
    minimum_version = "latest"

Segments are kept in file order; the planner applies them last-wins.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from modforge.core.errors import Severity
from modforge.core.result import Err, Ok, Result
from modforge.core.structured import (
    StrDict,
    as_str_dict,
    get_bool,
    get_int,
    get_list,
    get_str,
    get_str_list,
    get_table,
)
from modforge.pipeline.model import (
    DEFAULT_EXCLUDE_DIRECTORIES,
    DEFAULT_EXCLUDE_FILES,
    ArtefactKind,
    ArtefactSegment,
    BuildDocumentationSegment,
    BuildRequest,
    BuildSegment,
    CommandSegment,
    CompatibilitySegment,
    DependencyKind,
    DocumentationSegment,
    FileConsistencySegment,
    FormattingSegment,
    InformationSegment,
    InstallSettings,
    InstallStrategy,
    LookupSettings,
    ManifestSegment,
    ModuleSegment,
    ModuleSkipSegment,
    PlaceholderSegment,
    PublishDestination,
    PublishSegment,
    Segment,
    SigningSegment,
    TestSegment,
    ValidationSegment,
)

__all__ = ["CONFIG_FILE_NAME", "ConfigError", "load_build_config", "parse_build_config"]

CONFIG_FILE_NAME = "modforge.toml"


@dataclass(frozen=True, slots=True)
class ConfigError:
    """Error when the build configuration cannot be loaded or parsed."""

    message: str
    path: Path | None = None
    hint: str | None = None


def _tuple(table: Mapping[str, object], key: str, default: tuple[str, ...] = ()) -> tuple[str, ...]:
    values = get_str_list(table, key)
    return default if values is None else tuple(values)


def _opt_tuple(table: Mapping[str, object], key: str) -> tuple[str, ...] | None:
    values = get_str_list(table, key)
    return None if values is None else tuple(values)


def _number(table: Mapping[str, object], key: str) -> float | None:
    value = table.get(key)
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return float(value)


def _enum[E: StrEnum](table: Mapping[str, object], key: str, enum: type[E]) -> E | None:
    raw = get_str(table, key)
    if raw is None:
        return None
    try:
        return enum(raw.lower())
    except ValueError:
        allowed = ", ".join(e.value for e in enum)
        raise ValueError(f"{key} = '{raw}' is not one of: {allowed}") from None


def _severity(table: Mapping[str, object], default: Severity) -> Severity:
    return _enum(table, "severity", Severity) or default


def _bool(table: Mapping[str, object], key: str, default: bool) -> bool:
    value = get_bool(table, key)
    return default if value is None else value


# -----------------------------------------------------------------------------
# Segments
# -----------------------------------------------------------------------------


def _manifest(t: StrDict) -> ManifestSegment:
    return ManifestSegment(
        module_version=get_str(t, "module_version"),
        compatible_editions=_tuple(t, "compatible_editions"),
        guid=get_str(t, "guid"),
        author=get_str(t, "author"),
        company_name=get_str(t, "company_name"),
        copyright=get_str(t, "copyright"),
        description=get_str(t, "description"),
        powershell_version=get_str(t, "powershell_version"),
        tags=_tuple(t, "tags"),
        icon_uri=get_str(t, "icon_uri"),
        project_uri=get_str(t, "project_uri"),
        license_uri=get_str(t, "license_uri"),
        prerelease=get_str(t, "prerelease"),
    )


def _build(t: StrDict) -> BuildSegment:
    return BuildSegment(
        local_version=get_bool(t, "local_version"),
        install_strategy=_enum(t, "install_strategy", InstallStrategy),
        keep_versions=get_int(t, "keep_versions"),
        resolve_online=get_bool(t, "resolve_online"),
        warn_if_outdated=get_bool(t, "warn_if_outdated"),
        prerelease_lookup=get_bool(t, "prerelease_lookup"),
        repository=get_str(t, "repository"),
        sign_merged=get_bool(t, "sign_merged"),
        refresh_manifest_only=get_bool(t, "refresh_manifest_only"),
        merge=get_bool(t, "merge"),
        merge_missing=get_bool(t, "merge_missing"),
        strict_dependencies=get_bool(t, "strict_dependencies"),
        configuration=get_str(t, "configuration"),
        frameworks=_opt_tuple(t, "frameworks"),
        project_file=get_str(t, "project_file"),
    )


def _module(kind: DependencyKind) -> Callable[[StrDict], ModuleSegment]:
    def parse(t: StrDict) -> ModuleSegment:
        name = get_str(t, "name")
        if name is None:
            raise ValueError(f"{kind}-module segment needs a name")
        return ModuleSegment(
            kind=kind,
            name=name,
            minimum_version=get_str(t, "minimum_version"),
            required_version=get_str(t, "required_version"),
            maximum_version=get_str(t, "maximum_version"),
            guid=get_str(t, "guid"),
        )

    return parse


def _module_skip(t: StrDict) -> ModuleSkipSegment:
    return ModuleSkipSegment(
        ignore_modules=_tuple(t, "ignore_modules"),
        ignore_commands=_tuple(t, "ignore_commands"),
        force=_bool(t, "force", False),
        fail_on_missing_commands=_bool(t, "fail_on_missing_commands", False),
    )


def _command(t: StrDict) -> CommandSegment:
    module = get_str(t, "module_name")
    if module is None:
        raise ValueError("command segment needs module_name")
    return CommandSegment(module_name=module, commands=_tuple(t, "commands"))


def _information(t: StrDict) -> InformationSegment:
    d = InformationSegment()
    return InformationSegment(
        enums=_tuple(t, "enums", d.enums),
        classes=_tuple(t, "classes", d.classes),
        private=_tuple(t, "private", d.private),
        public=_tuple(t, "public", d.public),
        exclude_from_package=_tuple(t, "exclude_from_package"),
    )


def _documentation(t: StrDict) -> DocumentationSegment:
    d = DocumentationSegment()
    return DocumentationSegment(
        path=get_str(t, "path") or d.path,
        readme=get_str(t, "readme") or d.readme,
    )


def _build_documentation(t: StrDict) -> BuildDocumentationSegment:
    d = BuildDocumentationSegment()
    return BuildDocumentationSegment(
        enabled=_bool(t, "enabled", d.enabled),
        start_clean=_bool(t, "start_clean", d.start_clean),
        external_help=_bool(t, "external_help", d.external_help),
        culture=get_str(t, "culture") or d.culture,
    )


def _formatting(t: StrDict) -> FormattingSegment:
    d = FormattingSegment()
    return FormattingSegment(
        format_staging=_bool(t, "format_staging", d.format_staging),
        format_project=_bool(t, "format_project", d.format_project),
        settings_file=get_str(t, "settings_file"),
    )


def _signing(t: StrDict) -> SigningSegment:
    d = SigningSegment()
    return SigningSegment(
        certificate_thumbprint=get_str(t, "certificate_thumbprint"),
        certificate_path=get_str(t, "certificate_path"),
        include=_tuple(t, "include", d.include),
        exclude=_tuple(t, "exclude"),
    )


def _file_consistency(t: StrDict) -> FileConsistencySegment:
    d = FileConsistencySegment()
    line_ending = (get_str(t, "line_ending") or d.line_ending).lower()
    if line_ending not in ("crlf", "lf"):
        raise ValueError(f"line_ending = '{line_ending}' is not one of: crlf, lf")
    return FileConsistencySegment(
        enabled=_bool(t, "enabled", d.enabled),
        severity=_severity(t, d.severity),
        line_ending=line_ending,
        require_bom=_bool(t, "require_bom", d.require_bom),
        check_trailing_whitespace=_bool(t, "check_trailing_whitespace", d.check_trailing_whitespace),
        include_project=_bool(t, "include_project", d.include_project),
        extensions=_tuple(t, "extensions", d.extensions),
        exclude_dirs=_tuple(t, "exclude_dirs"),
    )


def _compatibility(t: StrDict) -> CompatibilitySegment:
    d = CompatibilitySegment()
    return CompatibilitySegment(
        enabled=_bool(t, "enabled", d.enabled),
        severity=_severity(t, d.severity),
        require_core=_bool(t, "require_core", d.require_core),
        require_desktop=_bool(t, "require_desktop", d.require_desktop),
    )


def _validation(t: StrDict) -> ValidationSegment:
    d = ValidationSegment()
    return ValidationSegment(enabled=_bool(t, "enabled", d.enabled), severity=_severity(t, d.severity))


def _test(t: StrDict) -> TestSegment:
    d = TestSegment()
    return TestSegment(
        path=get_str(t, "path") or d.path,
        enabled=_bool(t, "enabled", d.enabled),
        exclude_tags=_tuple(t, "exclude_tags"),
    )


def _artefact(t: StrDict) -> ArtefactSegment:
    d = ArtefactSegment()
    return ArtefactSegment(
        kind=_enum(t, "kind", ArtefactKind) or d.kind,
        enabled=_bool(t, "enabled", d.enabled),
        id=get_str(t, "id"),
        path=get_str(t, "path"),
        include_required_modules=_bool(t, "include_required_modules", d.include_required_modules),
    )


def _publish(t: StrDict) -> PublishSegment:
    d = PublishSegment()
    return PublishSegment(
        destination=_enum(t, "destination", PublishDestination) or d.destination,
        enabled=_bool(t, "enabled", d.enabled),
        id=get_str(t, "id"),
        repository=get_str(t, "repository") or d.repository,
        api_key_env=get_str(t, "api_key_env"),
        github_repo=get_str(t, "github_repo"),
        artefact_id=get_str(t, "artefact_id"),
    )


def _placeholder(t: StrDict) -> PlaceholderSegment:
    raw = t.get("replace")
    return PlaceholderSegment(
        find=get_str(t, "find"),
        replace=raw if isinstance(raw, str) else "",
        skip_builtin=get_bool(t, "skip_builtin"),
    )


_SEGMENT_PARSERS: dict[str, Callable[[StrDict], Segment]] = {
    "manifest": _manifest,
    "build": _build,
    "required-module": _module(DependencyKind.REQUIRED),
    "external-module": _module(DependencyKind.EXTERNAL),
    "approved-module": _module(DependencyKind.APPROVED),
    "module-skip": _module_skip,
    "command": _command,
    "information": _information,
    "documentation": _documentation,
    "build-documentation": _build_documentation,
    "formatting": _formatting,
    "signing": _signing,
    "file-consistency": _file_consistency,
    "compatibility": _compatibility,
    "validation": _validation,
    "test": _test,
    "artefact": _artefact,
    "publish": _publish,
    "placeholder": _placeholder,
}


def _segments(data: StrDict) -> tuple[Segment, ...]:
    raw = get_list(data, "segments") or []
    out: list[Segment] = []
    for index, item in enumerate(raw):
        table = as_str_dict(item)
        if table is None:
            raise ValueError(f"segments[{index}] must be a table")
        kind = get_str(table, "type")
        if kind is None:
            raise ValueError(f"segments[{index}] has no type")
        parser = _SEGMENT_PARSERS.get(kind.lower())
        if parser is None:
            raise ValueError(f"segments[{index}]: unknown segment type '{kind}'")
        try:
            out.append(parser(table))
        except ValueError as e:
            raise ValueError(f"segments[{index}] ({kind}): {e}") from None
    return tuple(out)


# -----------------------------------------------------------------------------
# Request
# -----------------------------------------------------------------------------


def parse_build_config(data: StrDict, *, base_dir: Path | None = None) -> BuildRequest:
    """Build a BuildRequest from parsed TOML. Raises ValueError on bad input.

    Relative ``source`` and ``staging`` paths are resolved against ``base_dir``.
    """
    build: StrDict = get_table(data, "build") or {}
    install: StrDict = get_table(data, "install") or {}
    lookups: StrDict = get_table(data, "lookups") or {}

    def _path(value: str | None) -> str | None:
        if value is None or base_dir is None:
            return value
        p = Path(value).expanduser()
        return str(p if p.is_absolute() else base_dir / p)

    defaults = InstallSettings()
    lookup_defaults = LookupSettings()
    keep = get_int(install, "keep_versions")
    timeout = _number(lookups, "timeout_minutes")
    return BuildRequest(
        name=get_str(build, "name") or "",
        source=_path(get_str(build, "source") or ".") or "",
        version=get_str(build, "version"),
        staging=_path(get_str(build, "staging")),
        keep_staging=_bool(build, "keep_staging", False),
        project_file=get_str(build, "project_file"),
        configuration=get_str(build, "configuration") or "Release",
        frameworks=_tuple(build, "frameworks", ("net8.0",)),
        exclude_directories=_tuple(build, "exclude_directories", DEFAULT_EXCLUDE_DIRECTORIES),
        exclude_files=_tuple(build, "exclude_files", DEFAULT_EXCLUDE_FILES),
        install=InstallSettings(
            enabled=_bool(install, "enabled", defaults.enabled),
            strategy=_enum(install, "strategy", InstallStrategy) or defaults.strategy,
            keep_versions=max(1, keep) if keep is not None else defaults.keep_versions,
            roots=_tuple(install, "roots"),
        ),
        lookups=LookupSettings(
            shell=get_str(lookups, "shell") or lookup_defaults.shell,
            timeout_minutes=timeout if timeout and timeout > 0 else lookup_defaults.timeout_minutes,
        ),
        strict_dependencies=_bool(build, "strict_dependencies", False),
        segments=_segments(data),
    )


def _parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    """Parse a TOML file, handling import and parse errors."""
    import tomllib

    try:
        content = path.read_bytes()
        data_obj: object = tomllib.loads(content.decode("utf-8"))
        data = as_str_dict(data_obj)
        if data is None:
            return Err(ConfigError("Config root must be a TOML table", path=path))
        return Ok(data)
    except FileNotFoundError:
        return Err(
            ConfigError(
                f"Config file not found: {path}",
                path=path,
                hint=f"Create {CONFIG_FILE_NAME} or pass --config.",
            )
        )
    except PermissionError:
        return Err(ConfigError(f"Permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"Invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"Error reading config: {e}", path=path))


def load_build_config(path: Path) -> Result[BuildRequest, ConfigError]:
    """Load ``path`` into a BuildRequest; paths inside are relative to its folder."""
    result = _parse_toml(path)
    if isinstance(result, Err):
        return result

    try:
        request = parse_build_config(result.value, base_dir=path.resolve().parent)
        return Ok(request)
    except (KeyError, TypeError, ValueError) as e:
        return Err(ConfigError(f"Invalid config structure: {e}", path=path))
