from __future__ import annotations

from modforge.pipeline.checks import CheckStatus
from modforge.pipeline.classify import build_command_hints, classify, infer_module
from modforge.pipeline.lookups import CommandUsage


def _usage(name: str, module: str | None, kind: str | None = "Function") -> CommandUsage:
    return CommandUsage(name=name, source_module=module, kind=kind)


def test_builtin_module_and_declared_modules_are_satisfied() -> None:
    report = classify(
        [
            _usage("Get-Item", "Microsoft.PowerShell.Management", "Cmdlet"),
            _usage("Invoke-Pester", "Pester"),
            _usage("Get-Secret", "Vault"),
            _usage("Get-Dep", "DepOfPester"),
        ],
        required=["pester"],
        approved=["Vault"],
        dependent=["DepOfPester"],
    )

    assert report.status == CheckStatus.OK
    assert set(report.satisfied) == {"Get-Item", "Invoke-Pester", "Get-Secret", "Get-Dep"}
    assert report.failures == ()


def test_missing_module_warns_unless_strict() -> None:
    usages = [_usage("Get-Thing", "Other")]

    lenient = classify(usages)
    strict = classify(usages, strict=True)

    assert lenient.status == CheckStatus.WARNING
    assert lenient.failures == ("Other",)
    assert strict.status == CheckStatus.ERROR
    assert strict.failed
    assert "Missing module 'Other' provides 'Get-Thing' (type: Function)." in strict.errors


def test_force_downgrades_failures() -> None:
    report = classify(
        [_usage("Get-Thing", "Other"), _usage("Get-Unknown", None)],
        force=True,
        strict=True,
    )

    assert report.status == CheckStatus.WARNING
    assert report.failures == ()
    assert len(report.warnings) == 2


def test_ignored_module_and_commands() -> None:
    report = classify(
        [
            _usage("Get-Thing", "Other"),
            _usage("Get-A", "Partial"),
            _usage("Get-Loose", None),
        ],
        ignore_modules=["other"],
        ignore_commands=["get-a", "Get-Loose"],
        strict=True,
    )

    assert report.failures == ()
    assert report.status == CheckStatus.WARNING


def test_module_is_not_ignored_when_only_some_commands_are() -> None:
    report = classify(
        [_usage("Get-A", "Partial"), _usage("Get-B", "Partial")],
        ignore_commands=["Get-A"],
    )

    assert report.failures == ("Partial",)


def test_unresolved_builtin_name_is_satisfied() -> None:
    report = classify([_usage("Write-Host", None, None), _usage("$notACommand", None, None)])

    assert report.status == CheckStatus.OK
    assert report.satisfied == ("Write-Host",)


def test_unresolved_command_uses_hints_and_patterns() -> None:
    hints = build_command_hints([("MyTools", ["Get-Widget"])])
    report = classify(
        [_usage("Get-Widget", None, None), _usage("Get-ADUser", None, None), _usage("Get-Nothing", None, None)],
        command_hints=hints,
    )

    assert report.failures == ("Get-Widget", "Get-ADUser", "Get-Nothing")
    assert any("likely module 'MyTools' via command hints" in e for e in report.errors)
    assert any("likely module 'ActiveDirectory' via command pattern" in e for e in report.errors)
    assert any("'Get-Nothing' (no module source)" in e for e in report.errors)


def test_inferred_module_in_skip_list_is_a_warning() -> None:
    report = classify([_usage("Get-ADUser", None, None)], ignore_modules=["ActiveDirectory"], strict=True)

    assert report.failures == ()
    assert report.status == CheckStatus.WARNING


def test_applications_are_warnings() -> None:
    report = classify([_usage("git", "git.exe", "Application")])

    assert report.applications == ("git.exe",)
    assert report.status == CheckStatus.WARNING


def test_command_hints_sorted_and_case_insensitive() -> None:
    hints = build_command_hints([("Zeta", ["Get-X"]), ("alpha", ["get-x"]), (" ", ["Get-Y"])])

    assert hints == {"get-x": ("alpha", "Zeta")}
    assert infer_module("GET-X", hints) == ("alpha", "command hints")
    assert infer_module("nohyphen", {}) is None
