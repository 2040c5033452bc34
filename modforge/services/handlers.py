"""Step kind -> handler wiring for a real (pwsh backed) run."""

from __future__ import annotations

from modforge.core.result import Err
from modforge.pipeline.checks import CheckReport
from modforge.pipeline.context import RunContext
from modforge.pipeline.executor import StepError, StepHandler
from modforge.pipeline.lookups import Lookups
from modforge.pipeline.model import LookupSettings, Plan, PublishDestination
from modforge.pipeline.steps import Step, StepKind
from modforge.platform.files import delete_tree_with_retries
from modforge.services import artefacts, build, install, merger, tools, validators

__all__ = ["default_handlers"]


def _validate(plan: Plan, step: Step, ctx: RunContext) -> CheckReport | None:
    match step.target:
        case "fileconsistency" if plan.file_consistency is not None:
            return validators.check_file_consistency(plan, plan.staging_path, plan.file_consistency)
        case "fileconsistency-project" if plan.file_consistency is not None:
            return validators.check_file_consistency(plan, plan.project_root, plan.file_consistency)
        case "compatibility" if plan.compatibility is not None:
            return validators.check_compatibility(plan, plan.staging_path, plan.compatibility)
        case "module" if plan.validation is not None:
            return validators.check_module_structure(plan, plan.staging_path, plan.validation)
        case _:
            raise StepError(f"unknown validator '{step.target}'")


def _cleanup(plan: Plan, step: Step, ctx: RunContext) -> None:
    result = delete_tree_with_retries(plan.staging_path)
    if isinstance(result, Err):
        ctx.console.warning(result.error.message)
        return
    ctx.console.detail(f"removed {plan.staging_path}")


def default_handlers(lookups: Lookups, settings: LookupSettings) -> dict[StepKind, StepHandler]:
    shell = settings.shell

    def stage(plan: Plan, step: Step, ctx: RunContext) -> None:
        build.stage_project(plan, ctx)

    def build_binary(plan: Plan, step: Step, ctx: RunContext) -> None:
        build.build_binary(plan, ctx)

    def manifest(plan: Plan, step: Step, ctx: RunContext) -> None:
        build.update_manifest(plan, ctx)

    def merge(plan: Plan, step: Step, ctx: RunContext) -> CheckReport:
        return merger.merge_module(plan, lookups, ctx)

    def docs_extract(plan: Plan, step: Step, ctx: RunContext) -> None:
        tools.extract_help(plan, ctx, shell=shell)

    def docs_write(plan: Plan, step: Step, ctx: RunContext) -> None:
        tools.write_docs(plan, ctx)

    def docs_maml(plan: Plan, step: Step, ctx: RunContext) -> None:
        tools.generate_external_help(plan, ctx, shell=shell)

    def fmt(plan: Plan, step: Step, ctx: RunContext) -> None:
        tools.format_files(plan, ctx, target=step.target or "staging", shell=shell)

    def sign(plan: Plan, step: Step, ctx: RunContext) -> None:
        tools.sign_files(plan, ctx, shell=shell)

    def tests(plan: Plan, step: Step, ctx: RunContext) -> None:
        if step.test is None:
            raise StepError("test step without a test segment")
        tools.run_tests(plan, step.test, ctx, shell=shell)

    def artefact(plan: Plan, step: Step, ctx: RunContext) -> None:
        if step.artefact is None:
            raise StepError("artefact step without an artefact segment")
        artefacts.create_artefact(plan, step.artefact, lookups, ctx)

    def publish(plan: Plan, step: Step, ctx: RunContext) -> None:
        target = step.publish
        if target is None:
            raise StepError("publish step without a publish segment")
        if target.destination == PublishDestination.GITHUB:
            tools.publish_github(plan, target, ctx)
        else:
            tools.publish_repository(plan, target, ctx, shell=shell)

    def install_module(plan: Plan, step: Step, ctx: RunContext) -> None:
        install.install_module(plan, ctx)

    return {
        StepKind.STAGE: stage,
        StepKind.BUILD: build_binary,
        StepKind.MANIFEST: manifest,
        StepKind.MERGE: merge,
        StepKind.DOCS_EXTRACT: docs_extract,
        StepKind.DOCS_WRITE: docs_write,
        StepKind.DOCS_EXTERNAL_HELP: docs_maml,
        StepKind.FORMAT: fmt,
        StepKind.SIGN: sign,
        StepKind.VALIDATE: _validate,
        StepKind.TESTS: tests,
        StepKind.ARTEFACT: artefact,
        StepKind.PUBLISH: publish,
        StepKind.INSTALL: install_module,
        StepKind.CLEANUP: _cleanup,
    }
