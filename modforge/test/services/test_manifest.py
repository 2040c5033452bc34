from __future__ import annotations

from pathlib import Path

from modforge.pipeline.model import DependencyKind, ManifestSegment, Provenance, ResolvedDependency
from modforge.services import manifest
from modforge.test._plans import make_plan

_MANIFEST = """@{
    # Module manifest for Demo
    RootModule = 'Demo.psm1'
    ModuleVersion = '0.1.0'
    Description = 'Demo module'
    FunctionsToExport = @(
        'Get-One',
        'Get-Two'
    )
    PrivateData = @{
        PSData = @{
            Tags = @('a')
            Prerelease = ''
            ModuleVersion = 'nested-should-be-ignored'
        }
    }
}
"""


def _write(tmp_path: Path, text: str = _MANIFEST) -> Path:
    path = tmp_path / "Demo.psd1"
    path.write_text(text, encoding="utf-8-sig")
    return path


def _dep(name: str, **kw: str | None) -> ResolvedDependency:
    fields: dict[str, str | None] = {
        "minimum_version": None,
        "required_version": None,
        "maximum_version": None,
        "guid": None,
    }
    fields.update(kw)
    return ResolvedDependency(
        name=name,
        kind=DependencyKind.REQUIRED,
        provenance=Provenance.EXPLICIT,
        **fields,
    )


def test_get_value_reads_top_level_only(tmp_path: Path) -> None:
    path = _write(tmp_path)

    assert manifest.get_value(path, "ModuleVersion") == "0.1.0"
    assert manifest.get_value(path, "rootmodule") == "Demo.psm1"
    assert manifest.get_value(path, "Tags") is None
    assert manifest.get_value(path, "Missing") is None


def test_get_list(tmp_path: Path) -> None:
    path = _write(tmp_path)

    assert manifest.get_list(path, "FunctionsToExport") == ["Get-One", "Get-Two"]
    assert manifest.get_list(path, "RootModule") == ["Demo.psm1"]


def test_get_value_missing_file(tmp_path: Path) -> None:
    assert manifest.get_value(tmp_path / "absent.psd1", "ModuleVersion") is None


def test_set_value_replaces_and_keeps_rest(tmp_path: Path) -> None:
    path = _write(tmp_path)

    assert manifest.set_value(path, "ModuleVersion", "2.0.0")

    text = path.read_text(encoding="utf-8")
    assert "ModuleVersion = '2.0.0'" in text
    assert "# Module manifest for Demo" in text
    assert "ModuleVersion = 'nested-should-be-ignored'" in text
    assert manifest.get_value(path, "ModuleVersion") == "2.0.0"


def test_set_value_multiline_array(tmp_path: Path) -> None:
    path = _write(tmp_path)

    assert manifest.set_value(path, "FunctionsToExport", ["Get-Three"])

    assert manifest.get_list(path, "FunctionsToExport") == ["Get-Three"]
    assert manifest.get_value(path, "RootModule") == "Demo.psm1"


def test_set_value_inserts_missing_key(tmp_path: Path) -> None:
    path = _write(tmp_path)

    assert manifest.set_value(path, "CompanyName", "O'Brien Ltd")

    assert manifest.get_value(path, "CompanyName") == "O'Brien Ltd"
    assert path.read_text(encoding="utf-8").rstrip().endswith("}")


def test_set_value_raw(tmp_path: Path) -> None:
    path = _write(tmp_path)

    assert manifest.set_value(path, "RequiredModules", "@('Pester')", raw=True)

    assert manifest.get_list(path, "RequiredModules") == ["Pester"]


def test_set_value_rejects_non_hashtable(tmp_path: Path) -> None:
    path = _write(tmp_path, "not a manifest")

    assert manifest.set_value(path, "ModuleVersion", "1.0") is False


def test_set_prerelease(tmp_path: Path) -> None:
    path = _write(tmp_path)

    assert manifest.set_prerelease(path, "beta2")
    assert "Prerelease = 'beta2'" in path.read_text(encoding="utf-8")


def test_set_prerelease_without_entry(tmp_path: Path) -> None:
    path = _write(tmp_path, "@{\n    ModuleVersion = '1.0'\n}\n")

    assert manifest.set_prerelease(path, "beta2") is False


def test_render_required_modules() -> None:
    rendered = manifest.render_required_modules(
        [
            _dep("Plain"),
            _dep("Exact", required_version="1.2.3", minimum_version="1.0"),
            _dep("Ranged", minimum_version="1.0", maximum_version="2.0"),
            _dep("GuidOnly", guid="1234"),
        ]
    )

    assert "'Plain'" in rendered
    assert "@{ ModuleName = 'Exact'; RequiredVersion = '1.2.3' }" in rendered
    assert "@{ ModuleName = 'Ranged'; ModuleVersion = '1.0'; MaximumVersion = '2.0' }" in rendered
    assert "@{ ModuleName = 'GuidOnly'; ModuleVersion = '0.0.0'; Guid = '1234' }" in rendered
    assert manifest.render_required_modules([]) == "@()"


def test_new_manifest_round_trips_through_reader(tmp_path: Path) -> None:
    plan = make_plan(
        tmp_path,
        ManifestSegment(author="Ada", description="Demo module", tags=("x", "y"), prerelease="rc1"),
    )
    path = tmp_path / "Generated.psd1"
    path.write_text(
        manifest.new_manifest(plan, root_module="Demo.psm1", functions=["Get-One"]), encoding="utf-8"
    )

    assert manifest.get_value(path, "ModuleVersion") == "1.2.3"
    assert manifest.get_value(path, "Author") == "Ada"
    assert manifest.get_list(path, "FunctionsToExport") == ["Get-One"]
    assert "Prerelease = 'rc1'" in path.read_text(encoding="utf-8")
