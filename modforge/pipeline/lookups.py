"""Collaborator interfaces used by resolution and merge analysis.

The pipeline never talks to PowerShell or a registry directly. It receives a
``Lookups`` bundle of callables; ``modforge.services.lookups`` provides the
pwsh backed implementations and tests pass plain lambdas.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from modforge.core.result import Err, Ok, Result

__all__ = [
    "CommandUsage",
    "LookupFailure",
    "Lookups",
    "ModuleInfo",
    "RemoteVersion",
    "offline_lookups",
]


@dataclass(frozen=True, slots=True)
class LookupFailure:
    message: str
    tool_missing: bool = False


@dataclass(frozen=True, slots=True)
class ModuleInfo:
    """Best locally installed copy of a module."""

    name: str
    version: str | None
    guid: str | None = None
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class RemoteVersion:
    name: str
    version: str
    guid: str | None = None
    repository: str | None = None


@dataclass(frozen=True, slots=True)
class CommandUsage:
    """A command referenced by merged source.

    ``source_module`` is None when the command could not be resolved. For
    applications it holds the executable path.
    """

    name: str
    source_module: str | None
    kind: str | None = None

    @property
    def is_application(self) -> bool:
        return (self.kind or "").casefold() == "application"


type LocalLookup = Callable[[str], Result[ModuleInfo, LookupFailure]]
type RemoteLookup = Callable[
    [Sequence[str], bool, Sequence[str]], Result[list[RemoteVersion], LookupFailure]
]
type DependencyLookup = Callable[[str], Result[list[str], LookupFailure]]
type CommandCatalog = Callable[[Sequence[str]], Result[list[CommandUsage], LookupFailure]]
type DefinitionLookup = Callable[[str, str], Result[str | None, LookupFailure]]
type ManifestReader = Callable[[Path, str], str | None]


@dataclass(frozen=True, slots=True)
class Lookups:
    local: LocalLookup
    remote: RemoteLookup | None
    dependencies: DependencyLookup
    commands: CommandCatalog
    definitions: DefinitionLookup
    read_manifest: ManifestReader


def _not_installed(name: str) -> Result[ModuleInfo, LookupFailure]:
    return Ok(ModuleInfo(name=name, version=None))


def _no_dependencies(_name: str) -> Result[list[str], LookupFailure]:
    return Ok([])


def _unknown_commands(names: Sequence[str]) -> Result[list[CommandUsage], LookupFailure]:
    return Ok([CommandUsage(name=n, source_module=None) for n in names])


def _no_definition(_name: str, _module: str) -> Result[str | None, LookupFailure]:
    return Err(LookupFailure("definition lookup unavailable offline"))


def _no_manifest(_path: Path, _key: str) -> str | None:
    return None


def offline_lookups(read_manifest: ManifestReader = _no_manifest) -> Lookups:
    """Lookups that know nothing: every module is missing, every command unknown."""
    return Lookups(
        local=_not_installed,
        remote=None,
        dependencies=_no_dependencies,
        commands=_unknown_commands,
        definitions=_no_definition,
        read_manifest=read_manifest,
    )
