"""Read and edit top-level keys of a ``.psd1`` module manifest.

Edits are textual and keep everything outside the replaced assignment
untouched (comments, ordering, nested PrivateData). Only assignments
directly inside the outer ``@{ ... }`` are considered top-level.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from modforge.pipeline.model import Plan, ResolvedDependency
from modforge.platform.files import atomic_write_text

__all__ = [
    "get_list",
    "get_value",
    "new_manifest",
    "render_array",
    "render_required_modules",
    "set_prerelease",
    "set_value",
]

_KEY_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_ITEM_RE = re.compile(r"""'((?:[^']|'')*)'|"([^"]*)\"""")


@dataclass(frozen=True, slots=True)
class _Assignment:
    key: str
    start: int  # start of the key
    value_start: int
    end: int  # end of the value (exclusive)


def _scan(text: str) -> tuple[list[_Assignment], int]:
    """Top-level assignments and the offset of the outer closing brace (-1 if none)."""
    assignments: list[_Assignment] = []
    depth = 0
    parens = 0
    i = 0
    n = len(text)
    line_start = True
    pending: tuple[str, int, int] | None = None
    outer_close = -1

    def finish(end: int) -> None:
        nonlocal pending
        if pending is not None:
            key, start, value_start = pending
            while end > value_start and text[end - 1] in " \t\r":
                end -= 1
            assignments.append(_Assignment(key, start, value_start, end))
            pending = None

    while i < n:
        ch = text[i]
        if ch == "\n":
            if depth == 1 and parens == 0:
                finish(i)
            line_start = True
            i += 1
            continue
        if ch in " \t\r":
            i += 1
            continue
        if text.startswith("<#", i):
            close = text.find("#>", i + 2)
            i = n if close < 0 else close + 2
            continue
        if ch == "#":
            nl = text.find("\n", i)
            i = n if nl < 0 else nl
            continue
        if ch == "'":
            j = i + 1
            while j < n:
                if text[j] == "'":
                    if j + 1 < n and text[j + 1] == "'":
                        j += 2
                        continue
                    break
                j += 1
            i = j + 1
            line_start = False
            continue
        if ch == '"':
            j = i + 1
            while j < n and text[j] != '"':
                j += 2 if text[j] == "`" else 1
            i = j + 1
            line_start = False
            continue

        if depth == 1 and parens == 0 and line_start and pending is None:
            m = _KEY_RE.match(text, i)
            if m is not None:
                k = m.end()
                while k < n and text[k] in " \t":
                    k += 1
                if k < n and text[k] == "=":
                    pending = (m.group(0), i, k + 1)
                    i = k + 1
                    line_start = False
                    continue

        line_start = False
        if ch == "{":
            depth += 1
        elif ch == "}":
            if depth == 1 and parens == 0:
                finish(i)
                outer_close = i
            depth -= 1
        elif ch == "(":
            parens += 1
        elif ch == ")":
            parens -= 1
        elif ch == ";" and depth == 1 and parens == 0:
            finish(i)
            line_start = True
        i += 1

    return assignments, outer_close


def _find(text: str, key: str) -> _Assignment | None:
    assignments, _ = _scan(text)
    for a in assignments:
        if a.key.casefold() == key.casefold():
            return a
    return None


def _unquote(raw: str) -> str | None:
    m = _ITEM_RE.match(raw.strip())
    if m is None:
        return None
    single, double = m.groups()
    if single is not None:
        return single.replace("''", "'")
    return double


def _read(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError):
        return None


def get_value(path: Path, key: str) -> str | None:
    """String value of a top-level key, or None when missing or not a string."""
    text = _read(path)
    if text is None:
        return None
    a = _find(text, key)
    if a is None:
        return None
    value = _unquote(text[a.value_start : a.end])
    return value.strip() if value and value.strip() else None


def get_list(path: Path, key: str) -> list[str] | None:
    """String items of a top-level array (or single string) value."""
    text = _read(path)
    if text is None:
        return None
    a = _find(text, key)
    if a is None:
        return None
    raw = text[a.value_start : a.end]
    return [(s if s else d).replace("''", "'") for s, d in _ITEM_RE.findall(raw) if s or d]


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def render_array(values: Sequence[str]) -> str:
    if not values:
        return "@()"
    return "@(" + ", ".join(_quote(v) for v in values) + ")"


def render_required_modules(modules: Sequence[ResolvedDependency]) -> str:
    """Render RequiredModules; bare names when no version or guid is known."""
    items: list[str] = []
    for m in modules:
        fields: list[str] = [f"ModuleName = {_quote(m.name)}"]
        if m.required_version:
            fields.append(f"RequiredVersion = {_quote(m.required_version)}")
        elif m.minimum_version:
            fields.append(f"ModuleVersion = {_quote(m.minimum_version)}")
        if m.maximum_version and not m.required_version:
            fields.append(f"MaximumVersion = {_quote(m.maximum_version)}")
        if m.guid:
            fields.append(f"Guid = {_quote(m.guid)}")
        if len(fields) == 1:
            items.append(_quote(m.name))
        else:
            if not m.required_version and not m.minimum_version:
                # A hashtable entry must carry a version key.
                fields.insert(1, "ModuleVersion = '0.0.0'")
            items.append("@{ " + "; ".join(fields) + " }")
    if not items:
        return "@()"
    return "@(\n        " + ",\n        ".join(items) + "\n    )"


def set_value(path: Path, key: str, value: str | Sequence[str], *, raw: bool = False) -> bool:
    """Replace or insert a top-level assignment. Returns False when the file is unusable.

    ``value`` is quoted (string) or rendered as an array (sequence) unless
    ``raw`` is set, in which case a string value is written verbatim.
    """
    text = _read(path)
    if text is None:
        return False
    if isinstance(value, str):
        rendered = value if raw else _quote(value)
    else:
        rendered = render_array(value)

    assignments, outer_close = _scan(text)
    existing = next((a for a in assignments if a.key.casefold() == key.casefold()), None)
    if existing is not None:
        updated = f"{text[: existing.value_start]} {rendered}{text[existing.end :]}"
    elif outer_close >= 0:
        updated = f"{text[:outer_close].rstrip()}\n    {key} = {rendered}\n{text[outer_close:]}"
    else:
        return False

    atomic_write_text(path, updated)
    return True


_PRERELEASE_RE = re.compile(r"""(?im)^(\s*Prerelease\s*=\s*)(['"]).*?\2""")


def set_prerelease(path: Path, value: str) -> bool:
    """Set PrivateData.PSData.Prerelease when the manifest declares it."""
    text = _read(path)
    if text is None:
        return False
    updated, count = _PRERELEASE_RE.subn(lambda m: m.group(1) + _quote(value), text, count=1)
    if count == 0:
        return False
    atomic_write_text(path, updated)
    return True


def new_manifest(plan: Plan, *, root_module: str, functions: Sequence[str] = ()) -> str:
    """Manifest text for a project that does not ship one."""
    meta = plan.manifest
    lines = [
        "@{",
        f"    RootModule = {_quote(root_module)}",
        f"    ModuleVersion = {_quote(plan.resolved_version)}",
    ]
    if plan.compatible_editions:
        lines.append(f"    CompatiblePSEditions = {render_array(plan.compatible_editions)}")
    if meta.guid:
        lines.append(f"    GUID = {_quote(meta.guid)}")
    for key, value in (
        ("Author", meta.author),
        ("CompanyName", meta.company_name),
        ("Copyright", meta.copyright),
        ("Description", meta.description),
        ("PowerShellVersion", meta.powershell_version),
    ):
        if value:
            lines.append(f"    {key} = {_quote(value)}")
    lines.append(f"    FunctionsToExport = {render_array(functions)}")
    lines.append("    CmdletsToExport = @()")
    lines.append("    AliasesToExport = @()")
    lines.append(f"    RequiredModules = {render_required_modules(plan.manifest_required_modules)}")
    psdata = [f"            Tags = {render_array(meta.tags)}"]
    for key, value in (
        ("ProjectUri", meta.project_uri),
        ("IconUri", meta.icon_uri),
        ("LicenseUri", meta.license_uri),
    ):
        if value:
            psdata.append(f"            {key} = {_quote(value)}")
    if plan.prerelease:
        psdata.append(f"            Prerelease = {_quote(plan.prerelease)}")
    lines.append("    PrivateData = @{")
    lines.append("        PSData = @{")
    lines.extend(psdata)
    lines.append("        }")
    lines.append("    }")
    lines.append("}")
    return "\n".join(lines) + "\n"
