from __future__ import annotations

from pathlib import Path

from modforge.pipeline.merge import SourceFile
from modforge.pipeline.model import InformationSegment
from modforge.services.sources import (
    aliases_in,
    collect_sources,
    defined_functions,
    public_functions,
    referenced_commands,
    strip_non_code,
)


def _touch(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_collect_sources_in_folder_order(tmp_path: Path) -> None:
    _touch(tmp_path / "Public" / "b.ps1", "function B {}")
    _touch(tmp_path / "Public" / "A.ps1", "function A {}")
    _touch(tmp_path / "Private" / "util.ps1", "function U {}")
    _touch(tmp_path / "Enums" / "Color.ps1", "enum Color { Red }")
    _touch(tmp_path / "Classes" / "Sub" / "Thing.ps1", "class Thing {}")
    _touch(tmp_path / "Public" / "notes.txt", "ignored")

    sources = collect_sources(tmp_path, InformationSegment())

    assert [s.name for s in sources] == [
        "Enums/Color.ps1",
        "Classes/Sub/Thing.ps1",
        "Private/util.ps1",
        "Public/A.ps1",
        "Public/b.ps1",
    ]


def test_collect_sources_strips_bom(tmp_path: Path) -> None:
    (tmp_path / "Public").mkdir()
    (tmp_path / "Public" / "a.ps1").write_bytes(b"\xef\xbb\xbffunction A {}")

    sources = collect_sources(tmp_path, InformationSegment())

    assert sources[0].text == "function A {}"


def test_strip_non_code_removes_comments_and_strings() -> None:
    text = (
        "<# Get-Block #>\n"
        "Get-Real # Get-Comment\n"
        "'Get-Single'\n"
        '"Get-Double"\n'
        "@'\nGet-Here\n'@\n"
    )

    stripped = strip_non_code(text)

    assert "Get-Real" in stripped
    for hidden in ("Get-Block", "Get-Comment", "Get-Single", "Get-Double", "Get-Here"):
        assert hidden not in stripped


def test_defined_functions() -> None:
    text = "function Get-One {}\n  FILTER Where-Odd {}\nfunction script:Get-Private {}\n# function Get-Commented {}"

    assert defined_functions(text) == ["Get-One", "Where-Odd", "Get-Private"]


def test_referenced_commands_ignore_parameters_variables_and_members() -> None:
    text = (
        "$result = Get-Item -Path $x-y | Select-Object -First 1\n"
        "$obj.Some-Prop\n"
        "Invoke-Thing; get-item\n"
        "Microsoft.PowerShell.Management\\Get-ChildItem\n"
    )

    assert referenced_commands(text) == ["Get-Item", "Select-Object", "Invoke-Thing"]


def test_aliases_in() -> None:
    text = "function Get-One {\n    [Alias('g1', \"gone\")]\n    [CmdletBinding()]\n    param()\n}"

    assert aliases_in(text) == ["g1", "gone"]


def test_public_functions_only_from_public_folders() -> None:
    info = InformationSegment(public=("Public", "Api"))
    sources = [
        SourceFile("Private/p.ps1", "function Get-Hidden {}"),
        SourceFile("Public/a.ps1", "function Get-One {\n[Alias('one')]\nparam()\n}"),
        SourceFile("Api/b.ps1", "function Get-Two {}\nfunction Get-One {}"),
    ]

    functions, aliases = public_functions(sources, info)

    assert functions == ["Get-One", "Get-Two"]
    assert aliases == ["one"]
