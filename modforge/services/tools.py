"""Steps delegated to PowerShell tooling or the GitHub CLI.

Every adapter raises ``StepError`` on failure so the executor can report the
step with the tool's output tail.

Tools used:
- platyPS (markdown help and MAML external help)
- PSScriptAnalyzer (Invoke-Formatter)
- Set-AuthenticodeSignature (signing)
- Pester 5 (tests)
- PSResourceGet or PowerShellGet (publishing), gh (GitHub releases)
"""

from __future__ import annotations

import fnmatch
import os
import shutil
from collections.abc import Sequence
from pathlib import Path
from time import sleep

from modforge.core.result import Err, Ok, Result
from modforge.pipeline.context import RunContext
from modforge.pipeline.executor import StepError
from modforge.pipeline.model import Plan, PublishSegment, SigningSegment, TestSegment
from modforge.platform.files import CopyRules, copy_tree, delete_tree_with_retries, iter_files
from modforge.platform.process import (
    ProcessError,
    encode_marker,
    failure_message,
    run_script,
)
from modforge.platform.process import run as run_process
from modforge.services.artefacts import find_packed, packaging_rules, packed_path
from modforge.services.lookups import parse_records
from modforge.services.timeouts import (
    DOCS_TIMEOUT_SECONDS,
    FORMAT_TIMEOUT_SECONDS,
    GH_READ_RETRY_ATTEMPTS,
    GH_READ_RETRY_DELAY_SECONDS,
    PUBLISH_TIMEOUT_SECONDS,
    SIGN_TIMEOUT_SECONDS,
    TESTS_TIMEOUT_SECONDS,
)

__all__ = [
    "docs_dir",
    "extract_help",
    "format_files",
    "generate_external_help",
    "publish_github",
    "publish_repository",
    "run_tests",
    "sign_files",
    "write_docs",
]

_PRELUDE = r"""
$ErrorActionPreference = 'Stop'
function Enc([object]$s) {
    if ($null -eq $s) { $s = '' }
    [Convert]::ToBase64String([Text.Encoding]::UTF8.GetBytes([string]$s))
}
function Dec([string]$s) {
    if (-not $s) { return @() }
    [Text.Encoding]::UTF8.GetString([Convert]::FromBase64String($s)) -split "`n" | Where-Object { $_ }
}
function Fail([string]$message, [int]$code = 1) {
    Write-Output ("MODFORGE::ERROR::" + (Enc $message))
    exit $code
}
"""


def _script(params: str, body: str) -> str:
    return f"param({params})\n{_PRELUDE}\ntry {{\n{body}\n}} catch {{\n    Fail $_.Exception.Message\n}}\n"


def _pwsh(
    body: str,
    args: Sequence[str],
    *,
    ctx: RunContext,
    cwd: Path,
    shell: str,
    timeout: float,
    what: str,
) -> str:
    result = run_script(
        body,
        args,
        cwd=cwd,
        run_id=ctx.run_id,
        shell=shell,
        timeout=timeout,
        temp_dir=ctx.temp_root / "scripts",
    )
    if isinstance(result, Err):
        error = result.error
        hint = f"Install PowerShell 7 ({shell})" if error.returncode == -1 and "not found" in error.stderr else None
        raise StepError(
            f"{what}: {failure_message(error)}",
            exit_code=error.returncode,
            stdout=error.stdout,
            stderr=error.stderr,
            hint=hint,
        )
    return result.value


def _lines(values: Sequence[str]) -> str:
    return encode_marker("\n".join(values))


# -----------------------------------------------------------------------------
# Documentation
# -----------------------------------------------------------------------------

_EXTRACT_SCRIPT = _script(
    "[string]$ManifestPath, [string]$OutDir",
    r"""
    if (-not (Get-Module -ListAvailable -Name platyPS)) { Fail 'platyPS is not installed (Install-Module platyPS)' 2 }
    Import-Module platyPS
    $m = Import-Module -Name $ManifestPath -Force -PassThru
    New-Item -ItemType Directory -Force -Path $OutDir | Out-Null
    $commands = @(Get-Command -Module $m.Name -CommandType Function, Cmdlet -ErrorAction SilentlyContinue)
    foreach ($c in $commands) { Write-Output ("MODFORGE::COMMAND::" + (Enc $c.Name)) }
    if ($commands.Count -gt 0) {
        New-MarkdownHelp -Module $m.Name -OutputFolder $OutDir -Force | Out-Null
    }
""",
)

_MAML_SCRIPT = _script(
    "[string]$DocsPath, [string]$OutDir",
    r"""
    if (-not (Get-Module -ListAvailable -Name platyPS)) { Fail 'platyPS is not installed (Install-Module platyPS)' 2 }
    Import-Module platyPS
    New-Item -ItemType Directory -Force -Path $OutDir | Out-Null
    New-ExternalHelp -Path $DocsPath -OutputPath $OutDir -Force | Out-Null
""",
)


def docs_dir(plan: Plan, ctx: RunContext) -> Path:
    """Scratch folder shared by the docs steps of one run."""
    return ctx.temp_root / "docs" / plan.module_name


def extract_help(plan: Plan, ctx: RunContext, *, shell: str) -> list[str]:
    out = docs_dir(plan, ctx)
    cleared = delete_tree_with_retries(out)
    if isinstance(cleared, Err):
        raise StepError(cleared.error.message)
    stdout = _pwsh(
        _EXTRACT_SCRIPT,
        [str(plan.staging_path / f"{plan.module_name}.psd1"), str(out)],
        ctx=ctx,
        cwd=plan.staging_path,
        shell=shell,
        timeout=DOCS_TIMEOUT_SECONDS,
        what="help extraction failed",
    )
    commands = [f[0] for f in parse_records(stdout, "COMMAND") if f and f[0]]
    ctx.console.info(f"Extracted help for {len(commands)} command(s)")
    return commands


def _readme(plan: Plan, pages: list[str]) -> str:
    lines = [f"# {plan.module_name}", ""]
    if plan.manifest.description:
        lines += [plan.manifest.description, ""]
    lines += [f"Version {plan.full_version}", "", "## Commands", ""]
    lines += [f"- [{page}]({page}.md)" for page in pages]
    return "\n".join(lines) + "\n"


def write_docs(plan: Plan, ctx: RunContext) -> None:
    """Copy extracted markdown into the project's docs folder and write the readme."""
    documentation = plan.documentation
    settings = plan.build_documentation
    if documentation is None or settings is None:
        return
    source = docs_dir(plan, ctx)
    target = plan.project_root / documentation.path
    if settings.start_clean:
        cleared = delete_tree_with_retries(target)
        if isinstance(cleared, Err):
            raise StepError(cleared.error.message)
    count = copy_tree(source, target)
    pages = sorted(p.stem for p, _ in iter_files(source) if p.suffix.casefold() == ".md")

    readme = plan.project_root / documentation.readme
    if not readme.exists() or settings.start_clean:
        readme.parent.mkdir(parents=True, exist_ok=True)
        readme.write_text(_readme(plan, pages), encoding="utf-8")
    ctx.console.info(f"Wrote {count} help page(s) to {target}")


def generate_external_help(plan: Plan, ctx: RunContext, *, shell: str) -> None:
    documentation = plan.documentation
    settings = plan.build_documentation
    if documentation is None or settings is None:
        return
    out = plan.staging_path / settings.culture
    _pwsh(
        _MAML_SCRIPT,
        [str(plan.project_root / documentation.path), str(out)],
        ctx=ctx,
        cwd=plan.project_root,
        shell=shell,
        timeout=DOCS_TIMEOUT_SECONDS,
        what="external help generation failed",
    )
    ctx.console.info(f"External help written to {out}")


# -----------------------------------------------------------------------------
# Formatting / signing
# -----------------------------------------------------------------------------

_FORMAT_SCRIPT = _script(
    "[string]$FilesB64, [string]$Settings",
    r"""
    if (-not (Get-Module -ListAvailable -Name PSScriptAnalyzer)) { Fail 'PSScriptAnalyzer is not installed (Install-Module PSScriptAnalyzer)' 2 }
    Import-Module PSScriptAnalyzer
    foreach ($f in (Dec $FilesB64)) {
        $content = [IO.File]::ReadAllText($f)
        if (-not $content.Trim()) { continue }
        $p = @{ ScriptDefinition = $content }
        if ($Settings) { $p.Settings = $Settings }
        $formatted = Invoke-Formatter @p
        if ($formatted -cne $content) {
            [IO.File]::WriteAllText($f, $formatted, [Text.UTF8Encoding]::new($true))
            Write-Output ("MODFORGE::FORMATTED::" + (Enc $f))
        }
    }
""",
)

_SIGN_SCRIPT = _script(
    "[string]$FilesB64, [string]$Thumbprint, [string]$PfxPath",
    r"""
    $cert = $null
    if ($PfxPath) {
        $cert = Get-PfxCertificate -FilePath $PfxPath
    } elseif ($Thumbprint) {
        foreach ($store in 'Cert:\CurrentUser\My', 'Cert:\LocalMachine\My') {
            $cert = Get-ChildItem -Path $store -CodeSigningCert -ErrorAction SilentlyContinue |
                Where-Object { $_.Thumbprint -eq $Thumbprint } | Select-Object -First 1
            if ($cert) { break }
        }
    }
    if (-not $cert) { Fail 'Code signing certificate not found' 2 }
    foreach ($f in (Dec $FilesB64)) {
        $r = Set-AuthenticodeSignature -FilePath $f -Certificate $cert -HashAlgorithm SHA256
        if ($r.Status -ne 'Valid') { Fail ("Signing failed for {0}: {1}" -f $f, $r.StatusMessage) }
        Write-Output ("MODFORGE::SIGNED::" + (Enc $f))
    }
""",
)

_FORMAT_EXTENSIONS = (".ps1", ".psm1", ".psd1")


def format_files(plan: Plan, ctx: RunContext, *, target: str, shell: str) -> None:
    formatting = plan.formatting
    if formatting is None:
        return
    root = plan.project_root if target == "project" else plan.staging_path
    rules = CopyRules(exclude_dirs=plan.build.exclude_directories, exclude_files=plan.build.exclude_files)
    files = [str(p) for p, _ in iter_files(root, rules) if p.suffix.casefold() in _FORMAT_EXTENSIONS]
    if not files:
        ctx.console.detail(f"no files to format in {root}")
        return
    settings = ""
    if formatting.settings_file:
        settings = str(plan.project_root / formatting.settings_file)
    stdout = _pwsh(
        _FORMAT_SCRIPT,
        [_lines(files), settings],
        ctx=ctx,
        cwd=root,
        shell=shell,
        timeout=FORMAT_TIMEOUT_SECONDS,
        what="formatting failed",
    )
    changed = parse_records(stdout, "FORMATTED")
    ctx.console.info(f"Formatted {len(changed)} of {len(files)} file(s) in {target}")


def _selected_for_signing(rel: str, signing: SigningSegment) -> bool:
    lowered = rel.lower()
    name = lowered.rsplit("/", 1)[-1]

    def hit(patterns: Sequence[str]) -> bool:
        return any(
            fnmatch.fnmatchcase(name, p.lower()) or fnmatch.fnmatchcase(lowered, p.lower())
            for p in patterns
        )

    return hit(signing.include) and not hit(signing.exclude)


def sign_files(plan: Plan, ctx: RunContext, *, shell: str) -> None:
    signing = plan.signing
    if signing is None:
        return
    if not signing.certificate_thumbprint and not signing.certificate_path:
        raise StepError(
            "No signing certificate configured",
            hint="Set certificate_thumbprint or certificate_path on the signing segment.",
        )
    files = [
        str(p)
        for p, rel in iter_files(plan.staging_path, packaging_rules(plan))
        if _selected_for_signing(rel, signing)
    ]
    if not files:
        ctx.console.warning("No files matched the signing patterns")
        return
    pfx = ""
    if signing.certificate_path:
        pfx = str(plan.project_root / Path(signing.certificate_path).expanduser())
    stdout = _pwsh(
        _SIGN_SCRIPT,
        [_lines(files), signing.certificate_thumbprint or "", pfx],
        ctx=ctx,
        cwd=plan.staging_path,
        shell=shell,
        timeout=SIGN_TIMEOUT_SECONDS,
        what="signing failed",
    )
    ctx.console.info(f"Signed {len(parse_records(stdout, 'SIGNED'))} file(s)")


# -----------------------------------------------------------------------------
# Tests
# -----------------------------------------------------------------------------

_TESTS_SCRIPT = _script(
    "[string]$TestPath, [string]$ModuleRoot, [string]$ExcludeB64",
    r"""
    if (-not (Get-Module -ListAvailable -Name Pester | Where-Object { $_.Version.Major -ge 5 })) {
        Fail 'Pester 5 is not installed (Install-Module Pester -MinimumVersion 5.0)' 2
    }
    Import-Module Pester -MinimumVersion 5.0
    $env:PSModulePath = $ModuleRoot + [IO.Path]::PathSeparator + $env:PSModulePath
    $c = New-PesterConfiguration
    $c.Run.Path = $TestPath
    $c.Run.PassThru = $true
    $c.Output.Verbosity = 'Normal'
    $tags = @(Dec $ExcludeB64)
    if ($tags.Count -gt 0) { $c.Filter.ExcludeTag = $tags }
    $r = Invoke-Pester -Configuration $c
    Write-Output ("MODFORGE::TESTS::{0}::{1}::{2}" -f (Enc $r.PassedCount), (Enc $r.FailedCount), (Enc $r.SkippedCount))
    if ($r.FailedCount -gt 0) { exit 1 }
""",
)


def run_tests(plan: Plan, test: TestSegment, ctx: RunContext, *, shell: str) -> None:
    path = plan.project_root / test.path
    if not path.exists():
        raise StepError(f"Test path not found: {path}")
    result = run_script(
        _TESTS_SCRIPT,
        [str(path), str(plan.staging_path.parent), _lines(test.exclude_tags)],
        cwd=plan.project_root,
        run_id=ctx.run_id,
        shell=shell,
        timeout=TESTS_TIMEOUT_SECONDS,
        temp_dir=ctx.temp_root / "scripts",
    )
    stdout = result.value if isinstance(result, Ok) else result.error.stdout
    counts = parse_records(stdout, "TESTS")
    if counts and len(counts[0]) >= 3:
        passed, failed, skipped = counts[0][:3]
        summary = f"{passed} passed, {failed} failed, {skipped} skipped"
    else:
        summary = None

    if isinstance(result, Err):
        error = result.error
        raise StepError(
            f"tests failed: {summary}" if summary else f"tests failed: {failure_message(error)}",
            exit_code=error.returncode,
            stdout=error.stdout,
            stderr=error.stderr,
        )
    ctx.console.info(f"Tests: {summary or 'no results reported'}")


# -----------------------------------------------------------------------------
# Publishing
# -----------------------------------------------------------------------------

_REPOSITORY_CHECK_SCRIPT = _script(
    "[string]$Repository",
    r"""
    $found = $null
    if (Get-Command Get-PSResourceRepository -ErrorAction SilentlyContinue) {
        $found = Get-PSResourceRepository -Name $Repository -ErrorAction SilentlyContinue
    } elseif (Get-Command Get-PSRepository -ErrorAction SilentlyContinue) {
        $found = Get-PSRepository -Name $Repository -ErrorAction SilentlyContinue
    }
    if (-not $found) { Fail ("Repository '{0}' is not registered" -f $Repository) 2 }
""",
)

_PUBLISH_SCRIPT = _script(
    "[string]$Path, [string]$Repository, [string]$ApiKeyEnv",
    r"""
    $key = $null
    if ($ApiKeyEnv) {
        $key = [Environment]::GetEnvironmentVariable($ApiKeyEnv)
        if (-not $key) { Fail ("Environment variable {0} is not set" -f $ApiKeyEnv) 2 }
    }
    $p = @{ Path = $Path; Repository = $Repository }
    if (Get-Command Publish-PSResource -ErrorAction SilentlyContinue) {
        if ($key) { $p.ApiKey = $key }
        Publish-PSResource @p
    } elseif (Get-Command Publish-Module -ErrorAction SilentlyContinue) {
        if ($key) { $p.NuGetApiKey = $key }
        Publish-Module @p
    } else {
        Fail 'Neither PSResourceGet nor PowerShellGet is available' 2
    }
""",
)


def _ensure_repository(repository: str, ctx: RunContext, *, cwd: Path, shell: str) -> None:
    key = repository.casefold()
    if key in ctx.ensured_repositories:
        return
    _pwsh(
        _REPOSITORY_CHECK_SCRIPT,
        [repository],
        ctx=ctx,
        cwd=cwd,
        shell=shell,
        timeout=PUBLISH_TIMEOUT_SECONDS,
        what="repository check failed",
    )
    ctx.ensured_repositories.add(key)


def publish_repository(plan: Plan, publish: PublishSegment, ctx: RunContext, *, shell: str) -> None:
    _ensure_repository(publish.repository, ctx, cwd=plan.project_root, shell=shell)
    # Publish cmdlets want a folder named after the module.
    scratch = ctx.scratch_dir("publish", plan.module_name)
    try:
        module_dir = scratch / plan.module_name
        copy_tree(plan.staging_path, module_dir, packaging_rules(plan))
        _pwsh(
            _PUBLISH_SCRIPT,
            [str(module_dir), publish.repository, publish.api_key_env or ""],
            ctx=ctx,
            cwd=plan.project_root,
            shell=shell,
            timeout=PUBLISH_TIMEOUT_SECONDS,
            what=f"publish to {publish.repository} failed",
        )
    finally:
        cleared = delete_tree_with_retries(scratch)
        if isinstance(cleared, Err):
            ctx.console.warning(cleared.error.message)
    ctx.console.success(f"Published {plan.module_name} {plan.full_version} to {publish.repository}")


def _is_transient_gh_error(error: ProcessError) -> bool:
    text = f"{error.stderr}\n{error.stdout}".lower()
    markers = (
        "timed out",
        "timeout",
        "connection reset",
        "connection refused",
        "temporarily unavailable",
        "service unavailable",
        "bad gateway",
        "gateway timeout",
        "http 429",
        "http 502",
        "http 503",
        "http 504",
    )
    return any(marker in text for marker in markers)


def _gh_release_exists(
    tag: str, repo: str, *, cwd: Path, env: dict[str, str]
) -> Result[bool, ProcessError]:
    cmd = ["gh", "release", "view", tag, "--repo", repo, "--json", "tagName"]
    attempts = max(1, GH_READ_RETRY_ATTEMPTS)
    for attempt in range(attempts):
        result = run_process(cmd, cwd=cwd, env=env, timeout=PUBLISH_TIMEOUT_SECONDS)
        if isinstance(result, Ok):
            return Ok(True)
        error = result.error
        if "release not found" in error.stderr.lower():
            return Ok(False)
        if attempt < attempts - 1 and _is_transient_gh_error(error):
            sleep(GH_READ_RETRY_DELAY_SECONDS * (attempt + 1))
            continue
        return Err(error)
    return Ok(False)


def publish_github(plan: Plan, publish: PublishSegment, ctx: RunContext) -> None:
    """Create (or update) the ``v<version>`` release and upload the packed artefact."""
    if shutil.which("gh") is None:
        raise StepError("gh: missing", hint="Install GitHub CLI: https://cli.github.com/")
    if not publish.github_repo:
        raise StepError("GitHub publish needs github_repo (owner/name)")

    artefact = find_packed(plan, publish.artefact_id)
    if artefact is None:
        raise StepError(
            "GitHub publish needs a packed artefact",
            hint="Add an enabled artefact segment with kind = \"packed\".",
        )
    asset = packed_path(plan, artefact)
    if not asset.is_file():
        raise StepError(f"Artefact not found: {asset}")

    env = dict(os.environ)
    if publish.api_key_env:
        token = env.get(publish.api_key_env)
        if not token:
            raise StepError(f"Environment variable {publish.api_key_env} is not set")
        env["GH_TOKEN"] = token

    tag = f"v{plan.full_version}"
    exists = _gh_release_exists(tag, publish.github_repo, cwd=plan.project_root, env=env)
    if isinstance(exists, Err):
        error = exists.error
        raise StepError(
            f"gh release view {tag} failed",
            exit_code=error.returncode,
            stdout=error.stdout,
            stderr=error.stderr,
        )

    if exists.value:
        cmd = ["gh", "release", "upload", tag, str(asset), "--repo", publish.github_repo, "--clobber"]
    else:
        cmd = [
            "gh",
            "release",
            "create",
            tag,
            str(asset),
            "--repo",
            publish.github_repo,
            "--title",
            f"{plan.module_name} {plan.full_version}",
            "--generate-notes",
        ]
        if plan.prerelease:
            cmd.append("--prerelease")
    result = run_process(cmd, cwd=plan.project_root, env=env, timeout=PUBLISH_TIMEOUT_SECONDS)
    if isinstance(result, Err):
        error = result.error
        raise StepError(
            f"{' '.join(cmd[:3])} {tag} failed",
            exit_code=error.returncode,
            stdout=error.stdout,
            stderr=error.stderr,
            hint="Check `gh auth status` and repository permissions.",
        )
    ctx.console.success(f"Published {asset.name} to {publish.github_repo} ({tag})")
