"""Filesystem helpers."""

from __future__ import annotations

import fnmatch
import os
import shutil
import stat
import tempfile
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from modforge.core.errors import CleanupFailure
from modforge.core.result import Err, Ok, Result

__all__ = [
    "CopyRules",
    "atomic_write_text",
    "copy_tree",
    "delete_tree_with_retries",
    "iter_files",
    "remove_paths",
]

DELETE_ATTEMPTS = 10
DELETE_INITIAL_DELAY_SECONDS = 0.25
DELETE_MAX_DELAY_SECONDS = 3.0


def atomic_write_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Write text to path atomically using temp file + replace."""
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.",
        suffix=".tmp",
        dir=str(path.parent),
    )
    tmp_path = Path(tmp_name)

    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)


@dataclass(frozen=True, slots=True)
class CopyRules:
    """Exclusion rules for tree copies.

    Directory rules match any path segment by name (glob). File rules match
    either the file name or the posix relative path (glob). Matching is
    case-insensitive.
    """

    exclude_dirs: tuple[str, ...] = ()
    exclude_files: tuple[str, ...] = ()

    def skips_dir(self, name: str) -> bool:
        lowered = name.lower()
        return any(fnmatch.fnmatchcase(lowered, p.lower()) for p in self.exclude_dirs)

    def skips_file(self, rel: str) -> bool:
        lowered = rel.lower()
        name = lowered.rsplit("/", 1)[-1]
        for pattern in self.exclude_files:
            p = pattern.lower()
            if fnmatch.fnmatchcase(name, p) or fnmatch.fnmatchcase(lowered, p):
                return True
        return False


def iter_files(base: Path, rules: CopyRules = CopyRules()) -> list[tuple[Path, str]]:
    """List files under ``base`` as (absolute, posix-relative) pairs in sorted order."""
    if not base.is_dir():
        return []

    out: list[tuple[Path, str]] = []
    for root, dirs, files in os.walk(base):
        dirs[:] = sorted(d for d in dirs if not rules.skips_dir(d))
        root_path = Path(root)
        for name in sorted(files):
            p = root_path / name
            rel = p.relative_to(base).as_posix()
            if rules.skips_file(rel):
                continue
            out.append((p, rel))
    out.sort(key=lambda item: item[1])
    return out


def copy_tree(src: Path, dst: Path, rules: CopyRules = CopyRules()) -> int:
    """Copy files from ``src`` into ``dst`` honouring ``rules``. Returns the file count."""
    count = 0
    for path, rel in iter_files(src, rules):
        target = dst / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(path, target)
        count += 1
    return count


def _clear_readonly(func: Callable[[str], object], path: str, _exc: BaseException) -> None:
    os.chmod(path, stat.S_IWRITE)
    func(path)


def delete_tree_with_retries(
    path: Path,
    *,
    attempts: int = DELETE_ATTEMPTS,
    initial_delay: float = DELETE_INITIAL_DELAY_SECONDS,
    max_delay: float = DELETE_MAX_DELAY_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> Result[None, CleanupFailure]:
    """Delete a directory tree, retrying with exponential backoff.

    Files held open by antivirus scanners or a lingering pwsh host make the
    first attempts fail on Windows; the delay doubles after each failure and
    is capped at ``max_delay``.
    """
    if not path.exists():
        return Ok(None)

    delay = initial_delay
    last_error = ""
    for attempt in range(max(1, attempts)):
        try:
            shutil.rmtree(path, onexc=_clear_readonly)
            return Ok(None)
        except FileNotFoundError:
            return Ok(None)
        except OSError as e:
            last_error = str(e)
        if attempt < attempts - 1:
            sleep(delay)
            delay = min(delay * 2, max_delay)

    return Err(
        CleanupFailure(
            path=str(path),
            message=f"Failed to delete {path} after {attempts} attempts: {last_error}",
        )
    )


def remove_paths(paths: Iterable[Path]) -> None:
    """Remove files or directories, ignoring ones already gone."""
    for p in paths:
        if p.is_dir():
            shutil.rmtree(p)
        else:
            p.unlink(missing_ok=True)
