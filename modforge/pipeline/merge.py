"""Combines ordered PowerShell source files into one module file.

Layout of the merged output::

    <hoisted directives, sorted>

    <inlined function definitions, sorted by name>

    <body: each source file in order, separated by one blank line>

    <export block>

Assembly is a pure function of its inputs, so identical inputs always yield
byte-identical output.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

__all__ = [
    "ExportSet",
    "InlineSymbol",
    "MergeResult",
    "SourceFile",
    "assemble",
    "is_directive",
]

_DIRECTIVE_RE = re.compile(
    r"^\s*(?:#requires\b|using\s+(?:namespace|module|assembly)\b)",
    re.IGNORECASE,
)


@dataclass(frozen=True, slots=True)
class SourceFile:
    name: str
    text: str


@dataclass(frozen=True, slots=True)
class InlineSymbol:
    """A function definition copied into the merged module."""

    name: str
    definition: str


@dataclass(frozen=True, slots=True)
class ExportSet:
    functions: tuple[str, ...] = ()
    cmdlets: tuple[str, ...] = ()
    aliases: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class MergeResult:
    directives: tuple[str, ...]
    body: str
    inlined: str
    export_block: str

    def render(self, newline: str = "\n") -> str:
        blocks: list[str] = []
        if self.directives:
            blocks.append("\n".join(self.directives))
        if self.inlined:
            blocks.append(self.inlined)
        if self.body:
            blocks.append(self.body)
        blocks.append(self.export_block)
        text = "\n\n".join(blocks) + "\n"
        if newline != "\n":
            text = text.replace("\n", newline)
        return text


def is_directive(line: str) -> bool:
    return _DIRECTIVE_RE.match(line) is not None


def _unique_sorted(values: Sequence[str]) -> tuple[str, ...]:
    seen: dict[str, str] = {}
    for v in values:
        seen.setdefault(v.casefold(), v)
    return tuple(sorted(seen.values(), key=lambda s: (s.casefold(), s)))


def _trim_blank_edges(lines: list[str]) -> list[str]:
    start = 0
    end = len(lines)
    while start < end and not lines[start].strip():
        start += 1
    while end > start and not lines[end - 1].strip():
        end -= 1
    return lines[start:end]


def _array_literal(values: Sequence[str]) -> str:
    if not values:
        return "@()"
    quoted = ", ".join("'" + v.replace("'", "''") + "'" for v in values)
    return f"@({quoted})"


def _unique_in_order(values: Sequence[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(v.strip() for v in values if v.strip()))


def export_block(exports: ExportSet) -> str:
    functions = _unique_in_order(exports.functions)
    cmdlets = _unique_in_order(exports.cmdlets)
    aliases = _unique_in_order(exports.aliases)
    return "\n".join(
        (
            f"$FunctionsToExport = {_array_literal(functions)}",
            f"$CmdletsToExport = {_array_literal(cmdlets)}",
            f"$AliasesToExport = {_array_literal(aliases)}",
            "Export-ModuleMember -Function $FunctionsToExport "
            "-Cmdlet $CmdletsToExport -Alias $AliasesToExport",
        )
    )


def _inline_block(symbols: Sequence[InlineSymbol]) -> str:
    by_name: dict[str, InlineSymbol] = {}
    for symbol in symbols:
        by_name.setdefault(symbol.name.casefold(), symbol)
    ordered = sorted(by_name.values(), key=lambda s: (s.name.casefold(), s.name))
    parts: list[str] = []
    for symbol in ordered:
        definition = "\n".join(_trim_blank_edges(symbol.definition.splitlines()))
        parts.append(f"function {symbol.name} {{\n{definition}\n}}")
    return "\n\n".join(parts)


def assemble(
    sources: Sequence[SourceFile],
    exports: ExportSet,
    inline_symbols: Sequence[InlineSymbol] = (),
) -> MergeResult:
    """Merge ``sources`` in the given order.

    Directive lines (``#Requires``, ``using namespace|module|assembly``) are
    hoisted out of every file, de-duplicated case-insensitively and sorted.
    """
    directives: list[str] = []
    chunks: list[str] = []
    for source in sources:
        kept: list[str] = []
        for line in source.text.splitlines():
            if is_directive(line):
                directives.append(line.strip())
            else:
                kept.append(line)
        kept = _trim_blank_edges(kept)
        if kept:
            chunks.append("\n".join(kept))

    return MergeResult(
        directives=_unique_sorted(directives),
        body="\n\n".join(chunks),
        inlined=_inline_block(inline_symbols),
        export_block=export_block(exports),
    )
