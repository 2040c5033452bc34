from __future__ import annotations

import os
import shutil
from pathlib import Path

import pytest

from modforge.core.result import Err, Ok
from modforge.platform import files
from modforge.platform.files import (
    CopyRules,
    atomic_write_text,
    copy_tree,
    delete_tree_with_retries,
    iter_files,
    remove_paths,
)


def _touch(path: Path, text: str = "x") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_atomic_write_text_creates_parent_dirs(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "Demo.psd1"
    atomic_write_text(path, "@{}\n")

    assert path.read_text(encoding="utf-8") == "@{}\n"


def test_atomic_write_text_keeps_newlines_and_bom(tmp_path: Path) -> None:
    path = tmp_path / "Demo.psm1"
    atomic_write_text(path, "a\r\nb\r\n", encoding="utf-8-sig")

    assert path.read_bytes() == b"\xef\xbb\xbfa\r\nb\r\n"


def test_atomic_write_text_cleans_temp_file_on_replace_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    path = tmp_path / "state.txt"

    def fail_replace(_src: Path, _dst: Path) -> None:
        raise OSError("replace failed")

    monkeypatch.setattr(os, "replace", fail_replace)

    with pytest.raises(OSError, match="replace failed"):
        atomic_write_text(path, "payload")

    assert list(tmp_path.iterdir()) == []


def test_copy_rules_match_case_insensitively() -> None:
    rules = CopyRules(exclude_dirs=(".git", "Art*"), exclude_files=("*.user", "Docs/draft.md"))

    assert rules.skips_dir(".GIT")
    assert rules.skips_dir("Artefacts")
    assert not rules.skips_dir("Public")
    assert rules.skips_file("sub/Project.USER")
    assert rules.skips_file("docs/Draft.md")
    assert not rules.skips_file("Docs/readme.md")


def test_iter_files_sorted_and_filtered(tmp_path: Path) -> None:
    _touch(tmp_path / "b.ps1")
    _touch(tmp_path / "Public" / "a.ps1")
    _touch(tmp_path / ".git" / "config")
    _touch(tmp_path / "x.user")

    found = iter_files(tmp_path, CopyRules(exclude_dirs=(".git",), exclude_files=("*.user",)))

    assert [rel for _, rel in found] == ["Public/a.ps1", "b.ps1"]


def test_iter_files_missing_base(tmp_path: Path) -> None:
    assert iter_files(tmp_path / "absent") == []


def test_copy_tree_counts_files(tmp_path: Path) -> None:
    src = tmp_path / "src"
    _touch(src / "Demo.psd1", "@{}")
    _touch(src / "Private" / "helper.ps1")
    _touch(src / "bin" / "junk.dll")

    count = copy_tree(src, tmp_path / "dst", CopyRules(exclude_dirs=("bin",)))

    assert count == 2
    assert (tmp_path / "dst" / "Private" / "helper.ps1").exists()
    assert not (tmp_path / "dst" / "bin").exists()


def test_delete_tree_missing_path_is_ok(tmp_path: Path) -> None:
    assert delete_tree_with_retries(tmp_path / "absent") == Ok(None)


def test_delete_tree_removes_directory(tmp_path: Path) -> None:
    _touch(tmp_path / "stage" / "a" / "b.txt")

    assert delete_tree_with_retries(tmp_path / "stage") == Ok(None)
    assert not (tmp_path / "stage").exists()


def test_delete_tree_retries_with_backoff(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    target = tmp_path / "locked"
    target.mkdir()
    delays: list[float] = []

    def locked(*_args: object, **_kwargs: object) -> None:
        raise PermissionError("in use")

    monkeypatch.setattr(files.shutil, "rmtree", locked)

    result = delete_tree_with_retries(
        target, attempts=4, initial_delay=1.0, max_delay=3.0, sleep=delays.append
    )

    assert isinstance(result, Err)
    assert result.error.path == str(target)
    assert "after 4 attempts" in result.error.message
    assert delays == [1.0, 2.0, 3.0]


def test_delete_tree_succeeds_after_transient_failure(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    target = tmp_path / "flaky"
    target.mkdir()
    real_rmtree = shutil.rmtree
    calls: list[int] = []

    def flaky(path: Path, **kwargs: object) -> None:
        calls.append(1)
        if len(calls) == 1:
            raise OSError("busy")
        real_rmtree(path)

    monkeypatch.setattr(files.shutil, "rmtree", flaky)

    result = delete_tree_with_retries(target, sleep=lambda _: None)

    assert result == Ok(None)
    assert len(calls) == 2
    assert not target.exists()


def test_remove_paths_handles_files_dirs_and_missing(tmp_path: Path) -> None:
    _touch(tmp_path / "dir" / "f.txt")
    _touch(tmp_path / "file.txt")

    remove_paths([tmp_path / "dir", tmp_path / "file.txt", tmp_path / "gone"])

    assert list(tmp_path.iterdir()) == []
