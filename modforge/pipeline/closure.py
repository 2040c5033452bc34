from __future__ import annotations

from collections.abc import Iterable

from modforge.core.result import Err, Ok
from modforge.output.console import ConsoleProtocol
from modforge.pipeline.lookups import DependencyLookup

__all__ = ["dependency_closure"]


def dependency_closure(
    roots: Iterable[str],
    exclude: Iterable[str],
    lookup: DependencyLookup,
    console: ConsoleProtocol,
) -> frozenset[str]:
    """Transitive dependencies reachable from ``roots``.

    Names compare case-insensitively and each one is expanded at most once,
    so cycles terminate. Excluded (approved) names are never expanded; when
    reached as a dependency they are still reported. Roots themselves are
    not part of the result. A failed lookup is reported and the node is
    treated as having no dependencies.
    """
    excluded = {e.casefold() for e in exclude}
    root_list = [r.strip() for r in roots if r and r.strip()]
    root_keys = {r.casefold() for r in root_list}

    visited: set[str] = set()
    found: dict[str, str] = {}
    stack = [r for r in reversed(root_list) if r.casefold() not in excluded]

    while stack:
        name = stack.pop()
        key = name.casefold()
        if key in visited:
            continue
        visited.add(key)

        match lookup(name):
            case Ok(deps):
                children = deps
            case Err(error):
                console.warning(f"Failed to resolve dependencies of '{name}': {error.message}")
                children = []

        for child in reversed(children):
            child = child.strip()
            if not child:
                continue
            child_key = child.casefold()
            if child_key not in root_keys:
                found.setdefault(child_key, child)
            if child_key in excluded or child_key in visited:
                continue
            stack.append(child)

    return frozenset(found.values())
