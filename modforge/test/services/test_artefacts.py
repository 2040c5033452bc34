from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from zipfile import ZipFile

import pytest

from modforge.core.result import Ok, Result
from modforge.pipeline.executor import StepError
from modforge.pipeline.lookups import LookupFailure, ModuleInfo, offline_lookups
from modforge.pipeline.model import (
    ArtefactKind,
    ArtefactSegment,
    DependencyKind,
    ManifestSegment,
    ModuleSegment,
)
from modforge.services.artefacts import create_artefact, find_packed, packed_path
from modforge.test._plans import make_plan, run_context


def _fill(root: Path, *names: str) -> None:
    for rel in names:
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(rel, encoding="utf-8")


def test_packed_zip_contents(tmp_path: Path) -> None:
    artefact = ArtefactSegment()
    plan = make_plan(tmp_path, artefact, ManifestSegment(prerelease="beta1"))
    _fill(plan.staging_path, "Demo.psm1", "Demo.psd1", "Public/a.ps1", "bin/x.dll", "en-US/about.txt")

    path = create_artefact(plan, artefact, offline_lookups(), run_context(tmp_path))

    assert path == plan.project_root / "Artefacts" / "Packed" / "Demo.1.2.3-beta1.zip"
    assert path == packed_path(plan, artefact)
    with ZipFile(path) as zf:
        assert zf.namelist() == ["Demo/Demo.psd1", "Demo/Demo.psm1", "Demo/en-US/about.txt"]


def test_packed_empty_staging_fails(tmp_path: Path) -> None:
    artefact = ArtefactSegment()
    plan = make_plan(tmp_path, artefact)
    plan.staging_path.mkdir(parents=True)

    with pytest.raises(StepError, match="Nothing to package"):
        create_artefact(plan, artefact, offline_lookups(), run_context(tmp_path))


def test_unpacked_replaces_previous_copy(tmp_path: Path) -> None:
    artefact = ArtefactSegment(kind=ArtefactKind.UNPACKED, path="out")
    plan = make_plan(tmp_path, artefact)
    _fill(plan.staging_path, "Demo.psm1")
    _fill(plan.project_root / "out" / "Demo", "stale.txt")

    out = create_artefact(plan, artefact, offline_lookups(), run_context(tmp_path))

    assert out == plan.project_root / "out"
    assert (out / "Demo" / "Demo.psm1").is_file()
    assert not (out / "Demo" / "stale.txt").exists()


def test_required_modules_are_bundled(tmp_path: Path) -> None:
    dep_root = tmp_path / "installed" / "Dep" / "2.0.0"
    _fill(dep_root, "Dep.psd1")

    def local(name: str) -> Result[ModuleInfo, LookupFailure]:
        if name == "Dep":
            return Ok(ModuleInfo(name="Dep", version="2.0.0", path=dep_root))
        return Ok(ModuleInfo(name=name, version=None))

    artefact = ArtefactSegment(include_required_modules=True)
    plan = make_plan(
        tmp_path,
        artefact,
        ModuleSegment(kind=DependencyKind.REQUIRED, name="Dep", minimum_version="2.0.0"),
        ModuleSegment(kind=DependencyKind.REQUIRED, name="Gone", minimum_version="1.0.0"),
    )
    _fill(plan.staging_path, "Demo.psm1")
    ctx = run_context(tmp_path)

    path = create_artefact(plan, artefact, replace(offline_lookups(), local=local), ctx)

    with ZipFile(path) as zf:
        assert zf.namelist() == ["Demo/Demo.psm1", "Dep/Dep.psd1"]
    assert ctx.console.find("warning: Required module 'Gone' is not installed")


def test_find_packed(tmp_path: Path) -> None:
    plan = make_plan(
        tmp_path,
        ArtefactSegment(kind=ArtefactKind.UNPACKED, id="folder"),
        ArtefactSegment(id="first"),
        ArtefactSegment(id="Second"),
    )

    assert find_packed(plan, None) == ArtefactSegment(id="first")
    assert find_packed(plan, "second") == ArtefactSegment(id="Second")
    assert find_packed(plan, "folder") is None
