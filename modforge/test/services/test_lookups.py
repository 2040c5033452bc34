from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import pytest

from modforge.core.result import Err, Ok, Result
from modforge.pipeline.lookups import CommandUsage, ModuleInfo, RemoteVersion
from modforge.pipeline.model import LookupSettings
from modforge.platform.process import ProcessError, encode_marker
from modforge.services import lookups as lookups_mod
from modforge.services.lookups import PwshLookups, build_lookups, parse_records
from modforge.test._plans import run_context


def _line(tag: str, *fields: str) -> str:
    return "::".join(["MODFORGE", tag, *(encode_marker(f) for f in fields)])


class _Scripts:
    def __init__(self, *results: Result[str, ProcessError]) -> None:
        self.results = list(results)
        self.calls: list[list[str]] = []

    def __call__(self, body: str, args: Sequence[str] = (), **_kw: object) -> Result[str, ProcessError]:
        self.calls.append(list(args))
        return self.results.pop(0)


def test_parse_records_ignores_noise() -> None:
    stdout = "\n".join(
        [
            "WARNING: something unrelated",
            "  " + _line("MODULE", "Pester", "5.5.0", "", "/mods/Pester"),
            _line("DEP", "Other"),
            "MODFORGE::MODULE::!!!notbase64",
        ]
    )

    assert parse_records(stdout, "MODULE") == [["Pester", "5.5.0", "", "/mods/Pester"], [""]]
    assert parse_records(stdout, "DEP") == [["Other"]]


def test_local_is_cached_per_name(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    scripts = _Scripts(Ok(_line("MODULE", "Pester", "5.5.0", "abc", "/mods/Pester")))
    monkeypatch.setattr(lookups_mod, "run_script", scripts)
    pwsh = PwshLookups(ctx=run_context(tmp_path), cwd=tmp_path)

    first = pwsh.local("pester")
    second = pwsh.local("PESTER")

    expected = ModuleInfo(name="Pester", version="5.5.0", guid="abc", path=Path("/mods/Pester"))
    assert first == Ok(expected)
    assert second == Ok(expected)
    assert scripts.calls == [[encode_marker("pester")]]


def test_local_not_installed(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(lookups_mod, "run_script", _Scripts(Ok("")))
    pwsh = PwshLookups(ctx=run_context(tmp_path), cwd=tmp_path)

    assert pwsh.local("Nope") == Ok(ModuleInfo(name="Nope", version=None))


def test_remote_and_commands(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    scripts = _Scripts(
        Ok(_line("REMOTE", "Pester", "5.6.0", "", "PSGallery") + "\n" + _line("REMOTE", "", "1.0", "", "")),
        Ok(
            _line("COMMAND", "Get-Thing", "Things", "Function")
            + "\n"
            + _line("COMMAND", "Get-Nothing", "", "")
        ),
    )
    monkeypatch.setattr(lookups_mod, "run_script", scripts)
    pwsh = PwshLookups(ctx=run_context(tmp_path), cwd=tmp_path)

    remote = pwsh.remote(["Pester"], True, ["PSGallery"])
    commands = pwsh.commands(["Get-Thing", "Get-Nothing"])

    assert remote == Ok([RemoteVersion(name="Pester", version="5.6.0", repository="PSGallery")])
    assert scripts.calls[0] == [encode_marker("Pester"), "1", encode_marker("PSGallery")]
    assert commands == Ok(
        [
            CommandUsage(name="Get-Thing", source_module="Things", kind="Function"),
            CommandUsage(name="Get-Nothing", source_module=None, kind=None),
        ]
    )
    assert pwsh.commands([]) == Ok([])


def test_dependencies_and_definition(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    scripts = _Scripts(
        Ok(_line("DEP", "A") + "\n" + _line("DEP", "B")),
        Ok(_line("DEFINITION", "param()\n'x'")),
        Ok(""),
    )
    monkeypatch.setattr(lookups_mod, "run_script", scripts)
    pwsh = PwshLookups(ctx=run_context(tmp_path), cwd=tmp_path)

    assert pwsh.dependencies("Mod") == Ok(["A", "B"])
    assert pwsh.dependencies("mod") == Ok(["A", "B"])
    assert pwsh.definition("Get-X", "Mod") == Ok("param()\n'x'")
    assert pwsh.definition("Get-Y", "Mod") == Ok(None)
    assert len(scripts.calls) == 3


def test_failures_are_lookup_failures(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    missing = ProcessError(command=("pwsh",), returncode=-1, stdout="", stderr="pwsh: command not found")
    crashed = ProcessError(
        command=("pwsh",), returncode=1, stdout="MODFORGE::ERROR::" + encode_marker("no gallery"), stderr=""
    )
    monkeypatch.setattr(lookups_mod, "run_script", _Scripts(Err(missing), Err(crashed)))
    pwsh = PwshLookups(ctx=run_context(tmp_path), cwd=tmp_path)

    first = pwsh.local("X")
    second = pwsh.remote(["X"], False, [])

    assert isinstance(first, Err) and first.error.tool_missing
    assert isinstance(second, Err) and second.error.message == "no gallery"
    assert not second.error.tool_missing


def test_offline_mode_has_no_remote(tmp_path: Path) -> None:
    pwsh = PwshLookups(ctx=run_context(tmp_path), cwd=tmp_path, online=False)

    assert pwsh.as_lookups().remote is None
    assert PwshLookups(ctx=run_context(tmp_path), cwd=tmp_path).as_lookups().remote is not None


def test_build_lookups_without_shell(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(lookups_mod, "find_shell", lambda _preferred: None)
    ctx = run_context(tmp_path)

    built = build_lookups(LookupSettings(), ctx, cwd=tmp_path)

    assert built.remote is None
    assert built.local("Pester") == Ok(ModuleInfo(name="Pester", version=None))
    assert ctx.console.find("warning: pwsh not found")


def test_build_lookups_with_shell(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(lookups_mod, "find_shell", lambda _preferred: "/usr/bin/pwsh")
    scripts = _Scripts(Ok(""))
    monkeypatch.setattr(lookups_mod, "run_script", scripts)

    built = build_lookups(LookupSettings(timeout_minutes=0.5), run_context(tmp_path), cwd=tmp_path)
    built.local("X")

    assert built.remote is not None
    assert scripts.calls == [[encode_marker("X")]]
