from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import pytest

from modforge.core.result import Err, Ok, Result
from modforge.pipeline.executor import StepError
from modforge.pipeline.model import (
    ArtefactSegment,
    BuildDocumentationSegment,
    DocumentationSegment,
    FormattingSegment,
    ManifestSegment,
    Plan,
    PublishDestination,
    PublishSegment,
    SigningSegment,
    TestSegment,
)
from modforge.platform.process import ProcessError, encode_marker
from modforge.services import tools
from modforge.services.artefacts import packed_path
from modforge.test._plans import make_plan, run_context


def _error(stderr: str = "", stdout: str = "", returncode: int = 1) -> ProcessError:
    return ProcessError(command=("x",), returncode=returncode, stdout=stdout, stderr=stderr)


class _Scripts:
    """Stands in for ``run_script``; records calls and replays queued results."""

    def __init__(self, *results: Result[str, ProcessError]) -> None:
        self.results = list(results)
        self.calls: list[tuple[str, list[str]]] = []

    def __call__(self, body: str, args: Sequence[str] = (), **_kw: object) -> Result[str, ProcessError]:
        self.calls.append((body, list(args)))
        return self.results.pop(0) if self.results else Ok("")


def _fill(root: Path, *names: str) -> None:
    for rel in names:
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(rel, encoding="utf-8")


@pytest.mark.parametrize(
    ("stderr", "transient"),
    [
        ("HTTP 503: Service Unavailable", True),
        ("dial tcp: i/o timeout", True),
        ("connection reset by peer", True),
        ("HTTP 404: Not Found", False),
        ("authentication required", False),
    ],
)
def test_transient_gh_errors(stderr: str, transient: bool) -> None:
    assert tools._is_transient_gh_error(_error(stderr)) is transient


@pytest.mark.parametrize(
    ("rel", "selected"),
    [
        ("Demo.psm1", True),
        ("Lib/net8.0/Demo.ps1xml", True),
        ("Lib/net8.0/Demo.dll", False),
        ("Tools/skip.ps1", False),
    ],
)
def test_selected_for_signing(rel: str, selected: bool) -> None:
    signing = SigningSegment(certificate_thumbprint="AB", exclude=("tools/*",))

    assert tools._selected_for_signing(rel, signing) is selected


class TestSigning:
    def test_requires_certificate(self, tmp_path: Path) -> None:
        plan = make_plan(tmp_path, SigningSegment())

        with pytest.raises(StepError, match="No signing certificate"):
            tools.sign_files(plan, run_context(tmp_path), shell="pwsh")

    def test_signs_matching_files(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        plan = make_plan(tmp_path, SigningSegment(certificate_path="cert.pfx"))
        _fill(plan.staging_path, "Demo.psm1", "Demo.psd1", "readme.md")
        scripts = _Scripts(Ok(f"MODFORGE::SIGNED::{encode_marker('a')}\nMODFORGE::SIGNED::{encode_marker('b')}"))
        monkeypatch.setattr(tools, "run_script", scripts)
        ctx = run_context(tmp_path)

        tools.sign_files(plan, ctx, shell="pwsh")

        _, args = scripts.calls[0]
        files_b64, thumbprint, pfx = args
        assert files_b64 == encode_marker(
            "\n".join(str(plan.staging_path / n) for n in ("Demo.psd1", "Demo.psm1"))
        )
        assert thumbprint == ""
        assert pfx == str(plan.project_root / "cert.pfx")
        assert ctx.console.find("info: Signed 2 file(s)")

    def test_no_matching_files_warns(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        plan = make_plan(tmp_path, SigningSegment(certificate_thumbprint="AB"))
        _fill(plan.staging_path, "readme.md")
        scripts = _Scripts()
        monkeypatch.setattr(tools, "run_script", scripts)
        ctx = run_context(tmp_path)

        tools.sign_files(plan, ctx, shell="pwsh")

        assert scripts.calls == []
        assert ctx.console.find("warning: No files matched the signing patterns")

    def test_script_failure_becomes_step_error(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        plan = make_plan(tmp_path, SigningSegment(certificate_thumbprint="AB"))
        _fill(plan.staging_path, "Demo.psm1")
        stdout = "MODFORGE::ERROR::" + encode_marker("Code signing certificate not found")
        monkeypatch.setattr(tools, "run_script", _Scripts(Err(_error(stdout=stdout, returncode=2))))

        with pytest.raises(StepError, match="signing failed: Code signing certificate not found") as excinfo:
            tools.sign_files(plan, run_context(tmp_path), shell="pwsh")

        assert excinfo.value.exit_code == 2


class TestFormatting:
    def test_skipped_without_segment(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        scripts = _Scripts()
        monkeypatch.setattr(tools, "run_script", scripts)

        tools.format_files(make_plan(tmp_path), run_context(tmp_path), target="staging", shell="pwsh")

        assert scripts.calls == []

    def test_formats_project_sources(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        plan = make_plan(tmp_path, FormattingSegment(format_project=True, settings_file="pssa.psd1"))
        _fill(plan.project_root, "Public/a.ps1", "notes.txt")
        scripts = _Scripts(Ok("MODFORGE::FORMATTED::" + encode_marker("a")))
        monkeypatch.setattr(tools, "run_script", scripts)
        ctx = run_context(tmp_path)

        tools.format_files(plan, ctx, target="project", shell="pwsh")

        _, args = scripts.calls[0]
        assert args == [encode_marker(str(plan.project_root / "Public" / "a.ps1")), str(plan.project_root / "pssa.psd1")]
        assert ctx.console.find("info: Formatted 1 of 1 file(s) in project")


class TestRunTests:
    def test_missing_path(self, tmp_path: Path) -> None:
        plan = make_plan(tmp_path)

        with pytest.raises(StepError, match="Test path not found"):
            tools.run_tests(plan, TestSegment(path="Tests"), run_context(tmp_path), shell="pwsh")

    def test_reports_counts(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        plan = make_plan(tmp_path)
        (plan.project_root / "Tests").mkdir()
        counts = "::".join(encode_marker(v) for v in ("10", "0", "2"))
        scripts = _Scripts(Ok(f"Running tests\nMODFORGE::TESTS::{counts}\n"))
        monkeypatch.setattr(tools, "run_script", scripts)
        ctx = run_context(tmp_path)

        tools.run_tests(plan, TestSegment(exclude_tags=("Slow",)), ctx, shell="pwsh")

        _, args = scripts.calls[0]
        assert args == [
            str(plan.project_root / "Tests"),
            str(plan.staging_path.parent),
            encode_marker("Slow"),
        ]
        assert ctx.console.find("info: Tests: 10 passed, 0 failed, 2 skipped")

    def test_failure_carries_counts(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        plan = make_plan(tmp_path)
        (plan.project_root / "Tests").mkdir()
        counts = "::".join(encode_marker(v) for v in ("3", "1", "0"))
        monkeypatch.setattr(
            tools, "run_script", _Scripts(Err(_error(stdout=f"MODFORGE::TESTS::{counts}", stderr="boom")))
        )

        with pytest.raises(StepError, match="tests failed: 3 passed, 1 failed, 0 skipped") as excinfo:
            tools.run_tests(plan, TestSegment(), run_context(tmp_path), shell="pwsh")

        assert excinfo.value.stderr == "boom"


class TestDocs:
    def test_write_docs_copies_pages_and_readme(self, tmp_path: Path) -> None:
        plan = make_plan(
            tmp_path,
            ManifestSegment(description="Demo things"),
            DocumentationSegment(),
            BuildDocumentationSegment(),
        )
        ctx = run_context(tmp_path)
        _fill(tools.docs_dir(plan, ctx), "Get-One.md", "Get-Two.md")

        tools.write_docs(plan, ctx)

        assert (plan.project_root / "Docs" / "Get-One.md").is_file()
        readme = (plan.project_root / "Docs" / "Readme.md").read_text(encoding="utf-8")
        assert readme.startswith("# Demo\n\nDemo things\n\nVersion 1.2.3\n")
        assert "- [Get-Two](Get-Two.md)" in readme

    def test_write_docs_keeps_existing_readme(self, tmp_path: Path) -> None:
        plan = make_plan(tmp_path, DocumentationSegment(), BuildDocumentationSegment())
        ctx = run_context(tmp_path)
        _fill(tools.docs_dir(plan, ctx), "Get-One.md")
        _fill(plan.project_root, "Docs/Readme.md")

        tools.write_docs(plan, ctx)

        assert (plan.project_root / "Docs" / "Readme.md").read_text(encoding="utf-8") == "Docs/Readme.md"

    def test_extract_help_lists_commands(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        plan = make_plan(tmp_path, DocumentationSegment(), BuildDocumentationSegment())
        stdout = "\n".join(f"MODFORGE::COMMAND::{encode_marker(n)}" for n in ("Get-One", "Get-Two"))
        monkeypatch.setattr(tools, "run_script", _Scripts(Ok(stdout)))

        assert tools.extract_help(plan, run_context(tmp_path), shell="pwsh") == ["Get-One", "Get-Two"]


class TestPublishRepository:
    def test_repository_checked_once_per_run(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        plan = make_plan(tmp_path)
        _fill(plan.staging_path, "Demo.psm1", "Public/a.ps1")
        scripts = _Scripts()
        monkeypatch.setattr(tools, "run_script", scripts)
        ctx = run_context(tmp_path)
        target = PublishSegment(repository="Internal", api_key_env="FEED_KEY")

        tools.publish_repository(plan, target, ctx, shell="pwsh")
        tools.publish_repository(plan, target, ctx, shell="pwsh")

        assert [args for _, args in scripts.calls][0] == ["Internal"]
        assert len(scripts.calls) == 3
        module_dir = scripts.calls[1][1][0]
        assert Path(module_dir).name == "Demo"
        assert scripts.calls[1][1][1:] == ["Internal", "FEED_KEY"]
        assert not Path(module_dir).exists()

    def test_unregistered_repository(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        plan = make_plan(tmp_path)
        stdout = "MODFORGE::ERROR::" + encode_marker("Repository 'Nope' is not registered")
        monkeypatch.setattr(tools, "run_script", _Scripts(Err(_error(stdout=stdout, returncode=2))))
        ctx = run_context(tmp_path)

        with pytest.raises(StepError, match="is not registered"):
            tools.publish_repository(plan, PublishSegment(repository="Nope"), ctx, shell="pwsh")

        assert ctx.ensured_repositories == set()


class TestPublishGithub:
    def _plan(self, tmp_path: Path, *, prerelease: str | None = None) -> tuple[Plan, Path]:
        artefact = ArtefactSegment(id="zip")
        plan = make_plan(tmp_path, artefact, ManifestSegment(prerelease=prerelease))
        asset = packed_path(plan, artefact)
        asset.parent.mkdir(parents=True)
        asset.write_bytes(b"zip")
        return plan, asset

    def _target(self, **kw: str) -> PublishSegment:
        return PublishSegment(destination=PublishDestination.GITHUB, github_repo="me/demo", **kw)

    def test_gh_missing(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        plan, _ = self._plan(tmp_path)
        monkeypatch.setattr(tools.shutil, "which", lambda _name: None)

        with pytest.raises(StepError, match="gh: missing"):
            tools.publish_github(plan, self._target(), run_context(tmp_path))

    def test_needs_repo_and_packed_artefact(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(tools.shutil, "which", lambda _name: "/usr/bin/gh")
        bare = make_plan(tmp_path)
        ctx = run_context(tmp_path)

        with pytest.raises(StepError, match="github_repo"):
            tools.publish_github(bare, PublishSegment(destination=PublishDestination.GITHUB), ctx)
        with pytest.raises(StepError, match="needs a packed artefact"):
            tools.publish_github(bare, self._target(), ctx)

    def test_creates_release(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        plan, asset = self._plan(tmp_path, prerelease="rc1")
        calls: list[list[str]] = []

        def fake_run(cmd: list[str], cwd: Path, env: dict[str, str] | None = None, **_kw: object) -> Result[str, ProcessError]:
            calls.append(cmd)
            if cmd[2] == "view":
                return Err(_error("release not found"))
            return Ok("")

        monkeypatch.setattr(tools.shutil, "which", lambda _name: "/usr/bin/gh")
        monkeypatch.setattr(tools, "run_process", fake_run)
        ctx = run_context(tmp_path)

        tools.publish_github(plan, self._target(), ctx)

        assert calls[0][:4] == ["gh", "release", "view", "v1.2.3-rc1"]
        create = calls[1]
        assert create[:5] == ["gh", "release", "create", "v1.2.3-rc1", str(asset)]
        assert create[-1] == "--prerelease"
        assert ctx.console.find(f"OK Published {asset.name} to me/demo (v1.2.3-rc1)")

    def test_uploads_to_existing_release_after_transient_error(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        plan, asset = self._plan(tmp_path)
        views = [Err(_error("HTTP 502: Bad Gateway")), Ok("{}")]
        calls: list[list[str]] = []
        envs: list[dict[str, str] | None] = []

        def fake_run(cmd: list[str], cwd: Path, env: dict[str, str] | None = None, **_kw: object) -> Result[str, ProcessError]:
            calls.append(cmd)
            envs.append(env)
            return views.pop(0) if cmd[2] == "view" else Ok("")

        monkeypatch.setattr(tools.shutil, "which", lambda _name: "/usr/bin/gh")
        monkeypatch.setattr(tools, "run_process", fake_run)
        monkeypatch.setattr(tools, "sleep", lambda _seconds: None)
        monkeypatch.setenv("RELEASE_TOKEN", "secret")

        tools.publish_github(plan, self._target(api_key_env="RELEASE_TOKEN"), run_context(tmp_path))

        assert [c[2] for c in calls] == ["view", "view", "upload"]
        assert calls[2][-1] == "--clobber"
        assert all(env is not None and env["GH_TOKEN"] == "secret" for env in envs)

    def test_missing_token_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        plan, _ = self._plan(tmp_path)
        monkeypatch.setattr(tools.shutil, "which", lambda _name: "/usr/bin/gh")
        monkeypatch.delenv("RELEASE_TOKEN", raising=False)

        with pytest.raises(StepError, match="RELEASE_TOKEN is not set"):
            tools.publish_github(plan, self._target(api_key_env="RELEASE_TOKEN"), run_context(tmp_path))
