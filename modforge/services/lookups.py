"""PowerShell backed implementations of the pipeline lookups.

Each lookup runs a short script through ``run_script``. Scripts answer with
marker lines whose fields are base64 encoded UTF-8::

    MODFORGE::MODULE::<name>::<version>::<guid>::<path>
    MODFORGE::REMOTE::<name>::<version>::<guid>::<repository>
    MODFORGE::DEP::<name>
    MODFORGE::COMMAND::<name>::<source>::<type>
    MODFORGE::DEFINITION::<text>

Everything else on stdout is ignored, so module import chatter is harmless.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from modforge.core.result import Err, Ok, Result
from modforge.pipeline.context import RunContext
from modforge.pipeline.lookups import (
    CommandUsage,
    LookupFailure,
    Lookups,
    ModuleInfo,
    RemoteVersion,
    offline_lookups,
)
from modforge.pipeline.model import LookupSettings
from modforge.platform.process import (
    ProcessError,
    decode_marker,
    encode_marker,
    failure_message,
    find_shell,
    run_script,
)
from modforge.services import manifest
from modforge.services.timeouts import LOOKUP_TIMEOUT_SECONDS

__all__ = ["PwshLookups", "build_lookups", "parse_records"]

_PRELUDE = r"""
$ErrorActionPreference = 'Stop'
function Enc([object]$s) {
    if ($null -eq $s) { $s = '' }
    [Convert]::ToBase64String([Text.Encoding]::UTF8.GetBytes([string]$s))
}
function Dec([string]$s) {
    if (-not $s) { return @() }
    [Text.Encoding]::UTF8.GetString([Convert]::FromBase64String($s)) -split "`n" | Where-Object { $_ }
}
"""

_LOCAL_SCRIPT = (
    "param([string]$NamesB64)\n"
    + _PRELUDE
    + r"""
try {
    foreach ($n in (Dec $NamesB64)) {
        $m = Get-Module -ListAvailable -Name $n | Sort-Object Version -Descending | Select-Object -First 1
        if ($m) {
            Write-Output ("MODFORGE::MODULE::{0}::{1}::{2}::{3}" -f (Enc $m.Name), (Enc $m.Version), (Enc $m.Guid), (Enc $m.ModuleBase))
        }
    }
} catch {
    Write-Output ("MODFORGE::ERROR::" + (Enc $_.Exception.Message))
    exit 1
}
"""
)

_REMOTE_SCRIPT = (
    "param([string]$NamesB64, [string]$Prerelease, [string]$ReposB64)\n"
    + _PRELUDE
    + r"""
try {
    $names = @(Dec $NamesB64)
    $repos = @(Dec $ReposB64)
    $params = @{ Name = $names; ErrorAction = 'SilentlyContinue' }
    if ($repos.Count -gt 0) { $params.Repository = $repos }
    if (Get-Command Find-PSResource -ErrorAction SilentlyContinue) {
        if ($Prerelease -eq '1') { $params.Prerelease = $true }
        foreach ($i in @(Find-PSResource @params)) {
            $v = [string]$i.Version
            if ($i.Prerelease) { $v = "$v-$($i.Prerelease)" }
            Write-Output ("MODFORGE::REMOTE::{0}::{1}::{2}::{3}" -f (Enc $i.Name), (Enc $v), (Enc ''), (Enc $i.Repository))
        }
    } elseif (Get-Command Find-Module -ErrorAction SilentlyContinue) {
        if ($Prerelease -eq '1') { $params.AllowPrerelease = $true }
        foreach ($i in @(Find-Module @params)) {
            $guid = ''
            if ($i.AdditionalMetadata -and $i.AdditionalMetadata.GUID) { $guid = $i.AdditionalMetadata.GUID }
            Write-Output ("MODFORGE::REMOTE::{0}::{1}::{2}::{3}" -f (Enc $i.Name), (Enc $i.Version), (Enc $guid), (Enc $i.Repository))
        }
    } else {
        Write-Output ("MODFORGE::ERROR::" + (Enc 'Neither PSResourceGet nor PowerShellGet is available'))
        exit 2
    }
} catch {
    Write-Output ("MODFORGE::ERROR::" + (Enc $_.Exception.Message))
    exit 1
}
"""
)

_DEPS_SCRIPT = (
    "param([string]$NameB64)\n"
    + _PRELUDE
    + r"""
try {
    $name = @(Dec $NameB64)[0]
    $m = Get-Module -ListAvailable -Name $name | Sort-Object Version -Descending | Select-Object -First 1
    if ($m) {
        foreach ($r in @($m.RequiredModules)) { Write-Output ("MODFORGE::DEP::" + (Enc $r.Name)) }
    }
} catch {
    Write-Output ("MODFORGE::ERROR::" + (Enc $_.Exception.Message))
    exit 1
}
"""
)

_COMMANDS_SCRIPT = (
    "param([string]$NamesB64)\n"
    + _PRELUDE
    + r"""
try {
    foreach ($n in (Dec $NamesB64)) {
        $c = Get-Command -Name $n -ErrorAction SilentlyContinue | Select-Object -First 1
        if ($c) {
            $source = $c.Source
            if (-not $source) { $source = $c.ModuleName }
            Write-Output ("MODFORGE::COMMAND::{0}::{1}::{2}" -f (Enc $n), (Enc $source), (Enc $c.CommandType))
        } else {
            Write-Output ("MODFORGE::COMMAND::{0}::{1}::{2}" -f (Enc $n), (Enc ''), (Enc ''))
        }
    }
} catch {
    Write-Output ("MODFORGE::ERROR::" + (Enc $_.Exception.Message))
    exit 1
}
"""
)

_DEFINITION_SCRIPT = (
    "param([string]$NameB64, [string]$ModuleB64)\n"
    + _PRELUDE
    + r"""
try {
    $name = @(Dec $NameB64)[0]
    $module = @(Dec $ModuleB64)[0]
    Import-Module -Name $module -ErrorAction Stop | Out-Null
    $c = Get-Command -Module $module -Name $name -ErrorAction SilentlyContinue | Select-Object -First 1
    if ($c -and $c.CommandType -eq 'Function') {
        Write-Output ("MODFORGE::DEFINITION::" + (Enc $c.Definition))
    }
} catch {
    Write-Output ("MODFORGE::ERROR::" + (Enc $_.Exception.Message))
    exit 1
}
"""
)


def parse_records(stdout: str, tag: str) -> list[list[str]]:
    """Decoded fields of every ``MODFORGE::<tag>::`` line."""
    prefix = f"MODFORGE::{tag}::"
    out: list[list[str]] = []
    for line in stdout.splitlines():
        line = line.strip()
        if not line.startswith(prefix):
            continue
        out.append([decode_marker(p) for p in line[len(prefix) :].split("::")])
    return out


def _encode_lines(values: Sequence[str]) -> str:
    return encode_marker("\n".join(values))


def _failure(error: ProcessError) -> LookupFailure:
    return LookupFailure(
        message=failure_message(error),
        tool_missing=error.returncode == -1 and "not found" in error.stderr,
    )


@dataclass
class PwshLookups:
    """Lookups answered by a local pwsh; results cached for the run."""

    ctx: RunContext
    cwd: Path
    shell: str = "pwsh"
    timeout: float = LOOKUP_TIMEOUT_SECONDS
    online: bool = True
    _local: dict[str, ModuleInfo] = field(default_factory=dict[str, ModuleInfo])
    _deps: dict[str, list[str]] = field(default_factory=dict[str, list[str]])

    def _run(self, body: str, args: Sequence[str]) -> Result[str, LookupFailure]:
        result = run_script(
            body,
            args,
            cwd=self.cwd,
            run_id=self.ctx.run_id,
            shell=self.shell,
            timeout=self.timeout,
            temp_dir=self.ctx.temp_root / "scripts",
        )
        if isinstance(result, Err):
            self.ctx.console.detail(result.error.stderr.strip())
            return Err(_failure(result.error))
        return Ok(result.value)

    def local(self, name: str) -> Result[ModuleInfo, LookupFailure]:
        key = name.casefold()
        cached = self._local.get(key)
        if cached is not None:
            return Ok(cached)
        match self._run(_LOCAL_SCRIPT, [_encode_lines([name])]):
            case Err() as err:
                return err
            case Ok(stdout):
                pass
        info = ModuleInfo(name=name, version=None)
        for fields in parse_records(stdout, "MODULE"):
            if len(fields) >= 4 and fields[0].casefold() == key:
                info = ModuleInfo(
                    name=fields[0],
                    version=fields[1] or None,
                    guid=fields[2] or None,
                    path=Path(fields[3]) if fields[3] else None,
                )
                break
        self._local[key] = info
        return Ok(info)

    def remote(
        self, names: Sequence[str], prerelease: bool, repositories: Sequence[str]
    ) -> Result[list[RemoteVersion], LookupFailure]:
        args = [_encode_lines(names), "1" if prerelease else "0", _encode_lines(repositories)]
        match self._run(_REMOTE_SCRIPT, args):
            case Err() as err:
                return err
            case Ok(stdout):
                pass
        return Ok(
            [
                RemoteVersion(
                    name=f[0],
                    version=f[1],
                    guid=f[2] or None,
                    repository=f[3] or None,
                )
                for f in parse_records(stdout, "REMOTE")
                if len(f) >= 4 and f[0] and f[1]
            ]
        )

    def dependencies(self, name: str) -> Result[list[str], LookupFailure]:
        key = name.casefold()
        if key in self._deps:
            return Ok(list(self._deps[key]))
        match self._run(_DEPS_SCRIPT, [_encode_lines([name])]):
            case Err() as err:
                return err
            case Ok(stdout):
                pass
        deps = [f[0] for f in parse_records(stdout, "DEP") if f and f[0]]
        self._deps[key] = deps
        return Ok(list(deps))

    def commands(self, names: Sequence[str]) -> Result[list[CommandUsage], LookupFailure]:
        if not names:
            return Ok([])
        match self._run(_COMMANDS_SCRIPT, [_encode_lines(names)]):
            case Err() as err:
                return err
            case Ok(stdout):
                pass
        return Ok(
            [
                CommandUsage(name=f[0], source_module=f[1] or None, kind=f[2] or None)
                for f in parse_records(stdout, "COMMAND")
                if len(f) >= 3 and f[0]
            ]
        )

    def definition(self, name: str, module: str) -> Result[str | None, LookupFailure]:
        match self._run(_DEFINITION_SCRIPT, [_encode_lines([name]), _encode_lines([module])]):
            case Err() as err:
                return err
            case Ok(stdout):
                pass
        records = parse_records(stdout, "DEFINITION")
        if not records or not records[0]:
            return Ok(None)
        return Ok(records[0][0] or None)

    def as_lookups(self) -> Lookups:
        return Lookups(
            local=self.local,
            remote=self.remote if self.online else None,
            dependencies=self.dependencies,
            commands=self.commands,
            definitions=self.definition,
            read_manifest=manifest.get_value,
        )


def build_lookups(settings: LookupSettings, ctx: RunContext, *, cwd: Path) -> Lookups:
    """pwsh backed lookups, or offline ones (manifest reads only) when no shell exists."""
    if find_shell(settings.shell) is None:
        ctx.console.warning(
            f"{settings.shell} not found; module and command lookups are disabled"
        )
        return offline_lookups(read_manifest=manifest.get_value)
    return PwshLookups(
        ctx=ctx,
        cwd=cwd,
        shell=settings.shell,
        timeout=settings.timeout_minutes * 60.0,
    ).as_lookups()
