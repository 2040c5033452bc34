from __future__ import annotations

from modforge.pipeline.merge import (
    ExportSet,
    InlineSymbol,
    SourceFile,
    assemble,
    export_block,
    is_directive,
)


def test_directives_are_hoisted_deduplicated_and_sorted() -> None:
    sources = [
        SourceFile("Public/B.ps1", "using namespace System.IO\nfunction B { }\n"),
        SourceFile("Private/A.ps1", "#Requires -Version 5.1\nUSING NAMESPACE System.IO\nfunction A { }"),
    ]

    result = assemble(sources, ExportSet(functions=("B",)))

    assert result.directives == ("#Requires -Version 5.1", "using namespace System.IO")
    assert "using namespace" not in result.body.lower()


def test_body_keeps_source_order_separated_by_blank_line() -> None:
    sources = [
        SourceFile("Enums/E.ps1", "\n\nenum Color { Red }\n\n"),
        SourceFile("Public/F.ps1", "function F {\n    'x'\n}"),
        SourceFile("Public/Empty.ps1", "\n   \n"),
    ]

    result = assemble(sources, ExportSet())

    assert result.body == "enum Color { Red }\n\nfunction F {\n    'x'\n}"


def test_inlined_functions_sorted_and_unique() -> None:
    symbols = [
        InlineSymbol("Zed", "\n'z'\n"),
        InlineSymbol("alpha", "'a'"),
        InlineSymbol("ZED", "'duplicate'"),
    ]

    result = assemble([], ExportSet(), symbols)

    assert result.inlined == "function alpha {\n'a'\n}\n\nfunction Zed {\n'z'\n}"


def test_export_block_quotes_and_dedupes() -> None:
    block = export_block(ExportSet(functions=("Get-A", "Get-A", "It's"), aliases=()))

    assert "$FunctionsToExport = @('Get-A', 'It''s')" in block
    assert "$AliasesToExport = @()" in block
    assert block.endswith("-Cmdlet $CmdletsToExport -Alias $AliasesToExport")


def test_render_layout_and_newlines() -> None:
    result = assemble(
        [SourceFile("Public/F.ps1", "#Requires -Version 7\nfunction F { }")],
        ExportSet(functions=("F",)),
        [InlineSymbol("G", "'g'")],
    )

    text = result.render()
    directive_at = text.index("#Requires")
    inline_at = text.index("function G")
    body_at = text.index("function F")
    export_at = text.index("$FunctionsToExport")
    assert directive_at < inline_at < body_at < export_at
    assert text.endswith("\n")

    crlf = result.render("\r\n")
    assert "\r\n" in crlf
    assert "\n" not in crlf.replace("\r\n", "")


def test_assembly_is_deterministic() -> None:
    sources = [SourceFile("Public/F.ps1", "using module Foo\nfunction F { }")]
    first = assemble(sources, ExportSet(functions=("F",))).render()
    second = assemble(sources, ExportSet(functions=("F",))).render()

    assert first == second


def test_is_directive() -> None:
    assert is_directive("  #requires -Modules Pester")
    assert is_directive("using assembly System.Web")
    assert not is_directive("# requires nothing")
    assert not is_directive("$using = 1")
