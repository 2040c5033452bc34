"""Locating and scanning the PowerShell sources of a module project."""

from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import Path

from modforge.pipeline.merge import SourceFile
from modforge.pipeline.model import InformationSegment

__all__ = [
    "aliases_in",
    "collect_sources",
    "defined_functions",
    "public_functions",
    "referenced_commands",
    "strip_non_code",
]

_FUNCTION_RE = re.compile(
    r"^\s*(?:function|filter)\s+(?:(?:global|script):)?([A-Za-z_][\w-]*)",
    re.IGNORECASE | re.MULTILINE,
)
_BLOCK_COMMENT_RE = re.compile(r"<#.*?#>", re.DOTALL)
_LINE_COMMENT_RE = re.compile(r"(?m)(?<![`\w$])#.*$")
_HERE_STRING_RE = re.compile(r"@(['\"])\r?\n.*?\r?\n\1@", re.DOTALL)
_SINGLE_RE = re.compile(r"'(?:[^']|'')*'")
_DOUBLE_RE = re.compile(r'"(?:[^"`]|`.)*"', re.DOTALL)
# Verb-Noun command tokens; parameters (-Name), variables ($a-b) and members (.x-y) never match.
_COMMAND_RE = re.compile(r"(?<![\w$.\-:\\/])([A-Za-z]+-[A-Za-z][\w]*)\b")
_ALIAS_RE = re.compile(r"\[Alias\(\s*([^)]*)\)\]", re.IGNORECASE)
_QUOTED_RE = re.compile(r"""'([^']*)'|"([^"]*)\"""")


def collect_sources(root: Path, info: InformationSegment) -> list[SourceFile]:
    """Script files under ``root`` in merge order: enums, classes, private, public.

    Within one folder files are ordered by relative path.
    """
    out: list[SourceFile] = []
    seen: set[str] = set()
    for folder in info.script_folders:
        base = root / folder
        if not base.is_dir():
            continue
        for path in sorted(base.rglob("*.ps1"), key=lambda p: p.relative_to(root).as_posix().casefold()):
            if not path.is_file():
                continue
            rel = path.relative_to(root).as_posix()
            if rel.casefold() in seen:
                continue
            seen.add(rel.casefold())
            out.append(SourceFile(name=rel, text=path.read_text(encoding="utf-8-sig")))
    return out


def strip_non_code(text: str) -> str:
    """Remove comments and string literals so only code tokens remain."""
    text = _BLOCK_COMMENT_RE.sub(" ", text)
    text = _HERE_STRING_RE.sub("''", text)
    text = _SINGLE_RE.sub("''", text)
    text = _DOUBLE_RE.sub('""', text)
    return _LINE_COMMENT_RE.sub("", text)


def defined_functions(text: str) -> list[str]:
    return list(dict.fromkeys(_FUNCTION_RE.findall(strip_non_code(text))))


def referenced_commands(text: str) -> list[str]:
    """Verb-Noun commands referenced by ``text`` in first-seen order (case-insensitive)."""
    found: dict[str, str] = {}
    for name in _COMMAND_RE.findall(strip_non_code(text)):
        found.setdefault(name.casefold(), name)
    return list(found.values())


def aliases_in(text: str) -> list[str]:
    out: list[str] = []
    for match in _ALIAS_RE.finditer(text):
        for single, double in _QUOTED_RE.findall(match.group(1)):
            value = (single or double).strip()
            if value and value not in out:
                out.append(value)
    return out


def _in_folders(source: SourceFile, folders: Iterable[str]) -> bool:
    first = source.name.split("/", 1)[0].casefold()
    return any(first == f.strip("/\\").casefold() for f in folders)


def public_functions(sources: Iterable[SourceFile], info: InformationSegment) -> tuple[list[str], list[str]]:
    """(functions, aliases) declared in the public folders."""
    functions: list[str] = []
    aliases: list[str] = []
    for source in sources:
        if not _in_folders(source, info.public):
            continue
        for name in defined_functions(source.text):
            if name not in functions:
                functions.append(name)
        for alias in aliases_in(source.text):
            if alias not in aliases:
                aliases.append(alias)
    return functions, aliases
