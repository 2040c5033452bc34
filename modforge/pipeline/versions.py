"""Version parsing, comparison and token resolution.

Versions are up to four numeric parts plus an optional pre-release label
(``1.2.0-beta``). Missing numeric parts compare as zero. For equal numeric
cores a release ranks above any pre-release, and pre-release labels compare
case-insensitively.

Tokens: ``auto`` and ``latest`` (any case) ask for the best available
version; anything else is a literal and passes through untouched.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from modforge.core.result import Err, Ok, Result
from modforge.output.console import ConsoleProtocol
from modforge.pipeline.lookups import LocalLookup, ModuleInfo, RemoteLookup, RemoteVersion
from modforge.pipeline.model import DependencyDraft, Provenance, ResolvedDependency

__all__ = [
    "ParsedVersion",
    "VersionResolver",
    "OutdatedReport",
    "compare_versions",
    "find_outdated",
    "is_auto",
    "is_auto_or_latest",
    "parse_version",
    "select_latest",
    "step_version",
]

_TOKENS = frozenset({"auto", "latest"})


def is_auto_or_latest(value: str | None) -> bool:
    return value is not None and value.strip().casefold() in _TOKENS


def is_auto(value: str | None) -> bool:
    return value is not None and value.strip().casefold() == "auto"


@dataclass(frozen=True, slots=True)
class ParsedVersion:
    parts: tuple[int, int, int, int]
    prerelease: str | None = None

    @property
    def sort_key(self) -> tuple[tuple[int, int, int, int], int, str]:
        if self.prerelease:
            return (self.parts, 0, self.prerelease.casefold())
        return (self.parts, 1, "")


def parse_version(text: str | None) -> ParsedVersion | None:
    """Parse ``1.2``, ``1.2.3.4`` or ``1.2.3-beta1``; None when unparsable."""
    if text is None:
        return None
    trimmed = text.strip()
    if not trimmed:
        return None
    core, _, label = trimmed.partition("-")
    pieces = core.split(".")
    if not 1 <= len(pieces) <= 4:
        return None
    numbers: list[int] = []
    for piece in pieces:
        if not piece.isdigit():
            return None
        numbers.append(int(piece))
    while len(numbers) < 4:
        numbers.append(0)
    return ParsedVersion(
        parts=(numbers[0], numbers[1], numbers[2], numbers[3]),
        prerelease=label.strip() or None,
    )


def compare_versions(a: str, b: str) -> int | None:
    """Three-way compare; None when either side does not parse."""
    pa = parse_version(a)
    pb = parse_version(b)
    if pa is None or pb is None:
        return None
    ka, kb = pa.sort_key, pb.sort_key
    return (ka > kb) - (ka < kb)


def select_latest(
    items: Iterable[RemoteVersion], *, allow_prerelease: bool
) -> dict[str, RemoteVersion]:
    """Best version per module name (keys are casefolded names).

    Unparsable versions are skipped, and so are pre-releases unless allowed.
    """
    best: dict[str, tuple[ParsedVersion, RemoteVersion]] = {}
    for item in items:
        parsed = parse_version(item.version)
        if parsed is None:
            continue
        if parsed.prerelease and not allow_prerelease:
            continue
        key = item.name.casefold()
        current = best.get(key)
        if current is None or parsed.sort_key > current[0].sort_key:
            best[key] = (parsed, item)
    return {k: v[1] for k, v in best.items()}


def _format_parts(parts: Sequence[int | None]) -> str:
    present = list(parts)
    while present and present[-1] is None:
        present.pop()
    return ".".join(str(p if p is not None else 0) for p in present)


def _as_key(parts: Sequence[int | None]) -> tuple[int, ...]:
    padded = [p if p is not None else 0 for p in parts]
    padded += [0] * (4 - len(padded))
    return tuple(padded)


def step_version(expected: str, current: str | None) -> Result[str, str]:
    """Expand an ``X`` placeholder (``1.2.X``) against the current version.

    Exact versions are returned unchanged. The placeholder part starts from
    the current version's value at that position and is bumped until the
    candidate is strictly greater than the current version; when the
    candidate already exceeds it (a new major/minor line) the part restarts
    at zero.

    A pattern whose fixed leading parts are below the current version can
    never exceed it and is an error.
    """
    text = expected.strip()
    if parse_version(text) is not None and "-" not in text:
        return Ok(text)

    segments = text.split(".")
    if len(segments) > 4:
        return Err(f"version '{expected}' has more than four parts")
    step_index = next((i for i, s in enumerate(segments) if s.strip().upper() == "X"), -1)
    if step_index < 0:
        return Err(f"version '{expected}' must be exact or contain an 'X' placeholder")

    prepared: list[int | None] = [None, None, None, None]
    for i, seg in enumerate(segments):
        s = seg.strip()
        if i == step_index or not s:
            continue
        if not s.isdigit():
            return Err(f"version segment '{s}' in '{expected}' is not a number")
        prepared[i] = int(s)

    baseline_parsed = parse_version(current) if current else None
    baseline = baseline_parsed.parts if baseline_parsed else (0, 0, 0, 0)
    step_value = baseline[step_index] if baseline_parsed else 1

    # Parts left of the placeholder are fixed, so they must reach the baseline.
    if _as_key(prepared)[:step_index] < baseline[:step_index]:
        return Err(f"version pattern '{expected}' is below current version {current}")

    prepared[step_index] = max(step_value, 0)
    if _as_key(prepared) > baseline:
        prepared[step_index] = 0
    while _as_key(prepared) <= baseline:
        prepared[step_index] = (prepared[step_index] or 0) + 1

    return Ok(_format_parts(prepared))


@dataclass(frozen=True, slots=True)
class OutdatedReport:
    outdated: tuple[tuple[str, str, str], ...] = ()
    missing: tuple[tuple[str, str], ...] = ()
    unparsable: tuple[str, ...] = ()

    @property
    def empty(self) -> bool:
        return not (self.outdated or self.missing or self.unparsable)


def find_outdated(
    names: Iterable[str],
    installed: dict[str, ModuleInfo],
    latest: dict[str, RemoteVersion],
) -> OutdatedReport:
    """Compare installed versions against the best remote versions.

    Both mappings are keyed by casefolded module name.
    """
    outdated: list[tuple[str, str, str]] = []
    missing: list[tuple[str, str]] = []
    unparsable: list[str] = []
    for name in sorted(set(names), key=str.casefold):
        remote = latest.get(name.casefold())
        if remote is None:
            continue
        info = installed.get(name.casefold())
        local_version = info.version if info else None
        if not local_version:
            missing.append((name, remote.version))
            continue
        cmp = compare_versions(remote.version, local_version)
        if cmp is None:
            unparsable.append(name)
        elif cmp > 0:
            outdated.append((name, local_version, remote.version))
    return OutdatedReport(tuple(outdated), tuple(missing), tuple(unparsable))


def _resolve_token(value: str | None, available: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    if is_auto_or_latest(value):
        return available or None
    return value.strip()


def _resolve_guid(value: str | None, available: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    if is_auto(value):
        return available or None
    return value.strip()


@dataclass
class VersionResolver:
    """Resolves dependency drafts against local metadata, then a remote registry.

    ``remote_cache`` is normally the run context's cache so repeated lookups
    within one run hit the registry once per (name, prerelease) pair.
    """

    local: LocalLookup
    console: ConsoleProtocol
    remote: RemoteLookup | None = None
    online: bool = False
    warn_if_outdated: bool = False
    prerelease: bool = False
    repositories: tuple[str, ...] = ()
    remote_cache: dict[tuple[str, bool], list[RemoteVersion]] = field(
        default_factory=dict[tuple[str, bool], list[RemoteVersion]]
    )
    unresolved: list[str] = field(default_factory=list[str])

    def resolve(self, draft: DependencyDraft) -> ResolvedDependency:
        return self.resolve_all([draft])[0]

    def resolve_all(self, drafts: Sequence[DependencyDraft]) -> list[ResolvedDependency]:
        if not drafts:
            return []

        names = _unique_names(d.name for d in drafts)
        installed = {n.casefold(): self._local_info(n) for n in names}
        local_versions = {k: self._usable_version(info) for k, info in installed.items()}

        latest: dict[str, RemoteVersion] = {}
        if self.remote is not None and (self.online or self.warn_if_outdated):
            candidates: list[str] = []
            for d in drafts:
                if self.warn_if_outdated:
                    candidates.append(d.name)
                    continue
                if local_versions[d.key]:
                    continue
                if _wants_resolution(d):
                    candidates.append(d.name)
            if candidates:
                latest = self._remote_latest(_unique_names(candidates))

        results: list[ResolvedDependency] = []
        resolved_online: list[str] = []
        unresolved_version: list[str] = []
        unresolved_guid: list[str] = []
        for d in drafts:
            info = installed[d.key]
            available_version = local_versions[d.key]
            available_guid = info.guid
            provenance = Provenance.LOCAL if available_version else Provenance.UNRESOLVED
            online = latest.get(d.key) if self.online else None
            if online is not None:
                if not available_version:
                    available_version = online.version
                    provenance = Provenance.REMOTE
                    resolved_online.append(d.name)
                if not available_guid and online.guid:
                    available_guid = online.guid

            required = _resolve_token(d.required_version, available_version)
            minimum = _resolve_token(d.minimum_version, available_version)
            maximum = _resolve_token(d.maximum_version, available_version)
            guid = _resolve_guid(d.guid, available_guid)

            if (is_auto_or_latest(d.required_version) and not required) or (
                is_auto_or_latest(d.minimum_version) and not minimum
            ):
                unresolved_version.append(d.name)
            if is_auto(d.guid) and not guid:
                unresolved_guid.append(d.name)

            # Exact version wins; never emit both.
            if required:
                minimum = None

            if not _wants_resolution(d) and not is_auto(d.guid):
                provenance = Provenance.EXPLICIT
            elif d.name in unresolved_version:
                provenance = Provenance.UNRESOLVED

            results.append(
                ResolvedDependency(
                    name=d.name,
                    kind=d.kind,
                    minimum_version=minimum,
                    required_version=required,
                    maximum_version=maximum,
                    guid=guid,
                    provenance=provenance,
                )
            )

        if resolved_online:
            self.console.info(
                "Resolved required modules from repository without installing: "
                + ", ".join(sorted(resolved_online, key=str.casefold))
            )
        if self.warn_if_outdated:
            self._report_outdated(names, installed, latest)
        if unresolved_version:
            hint = (
                "Module was not installed and online resolution did not return a version."
                if self.online
                else "Module is not installed and online resolution is disabled."
            )
            listing = ", ".join(sorted(set(unresolved_version), key=str.casefold))
            self.console.warning(
                f"Dependencies set to auto/latest could not be resolved for: {listing}. {hint}"
            )
            self.unresolved.extend(n for n in unresolved_version if n not in self.unresolved)
        if unresolved_guid:
            listing = ", ".join(sorted(set(unresolved_guid), key=str.casefold))
            self.console.warning(
                f"Dependencies set guid=auto but module not installed: {listing}. "
                "Install it or specify the guid explicitly."
            )
        return results

    def remote_version(self, name: str) -> str | None:
        """Best remote version of a single module, or None."""
        if self.remote is None:
            return None
        hit = self._remote_latest([name]).get(name.casefold())
        return hit.version if hit else None

    def _local_info(self, name: str) -> ModuleInfo:
        match self.local(name):
            case Ok(info):
                return info
            case Err(error):
                self.console.detail(f"local lookup for '{name}' failed: {error.message}")
                return ModuleInfo(name=name, version=None)

    def _usable_version(self, info: ModuleInfo) -> str | None:
        """Installed version, or None when it is missing or does not parse."""
        if not info.version:
            return None
        if parse_version(info.version) is None:
            self.console.warning(
                f"Installed version of {info.name} could not be parsed: '{info.version}'"
            )
            return None
        return info.version

    def _remote_latest(self, names: Sequence[str]) -> dict[str, RemoteVersion]:
        if self.remote is None:
            return {}
        pending = [n for n in names if (n.casefold(), self.prerelease) not in self.remote_cache]
        if pending:
            match self.remote(pending, self.prerelease, self.repositories):
                case Ok(items):
                    for n in pending:
                        self.remote_cache[(n.casefold(), self.prerelease)] = [
                            i for i in items if i.name.casefold() == n.casefold()
                        ]
                case Err(error):
                    self.console.warning(f"Online version lookup failed: {error.message}")
                    for n in pending:
                        self.remote_cache[(n.casefold(), self.prerelease)] = []

        items: list[RemoteVersion] = []
        for n in names:
            items.extend(self.remote_cache.get((n.casefold(), self.prerelease), []))
        return select_latest(items, allow_prerelease=self.prerelease)

    def _report_outdated(
        self,
        names: Sequence[str],
        installed: dict[str, ModuleInfo],
        latest: dict[str, RemoteVersion],
    ) -> None:
        report = find_outdated(names, installed, latest)
        if report.outdated:
            items = ", ".join(f"{n} ({i} -> {latest_v})" for n, i, latest_v in report.outdated)
            self.console.warning(f"Dependencies outdated compared to repository: {items}")
        if report.missing:
            items = ", ".join(f"{n} (latest {v})" for n, v in report.missing)
            self.console.warning(f"Dependencies not installed locally: {items}")
        if report.unparsable:
            self.console.warning(
                "Installed versions could not be parsed for outdated check: "
                + ", ".join(report.unparsable)
            )


def _wants_resolution(draft: DependencyDraft) -> bool:
    return (
        is_auto_or_latest(draft.required_version)
        or is_auto_or_latest(draft.minimum_version)
        or is_auto_or_latest(draft.maximum_version)
    )


def _unique_names(names: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for n in names:
        key = n.casefold()
        if key in seen:
            continue
        seen.add(key)
        out.append(n)
    return out
