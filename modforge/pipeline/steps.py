from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum

from modforge.core.errors import Severity
from modforge.pipeline.model import ArtefactSegment, Plan, PublishSegment, TestSegment

__all__ = ["Step", "StepKind", "build_steps"]


class StepKind(StrEnum):
    STAGE = "stage"
    BUILD = "build"
    MANIFEST = "manifest"
    MERGE = "merge"
    DOCS_EXTRACT = "docs-extract"
    DOCS_WRITE = "docs-write"
    DOCS_EXTERNAL_HELP = "docs-external-help"
    FORMAT = "format"
    SIGN = "sign"
    VALIDATE = "validate"
    TESTS = "tests"
    ARTEFACT = "artefact"
    PUBLISH = "publish"
    INSTALL = "install"
    CLEANUP = "cleanup"


@dataclass(frozen=True, slots=True)
class Step:
    key: str
    kind: StepKind
    title: str
    artefact: ArtefactSegment | None = None
    publish: PublishSegment | None = None
    test: TestSegment | None = None
    # Extra selector for steps that share a kind (format target, validator name).
    target: str | None = None


_SLUG_RE = re.compile(r"[^A-Za-z0-9._-]+")


def _slug(value: str) -> str:
    return _SLUG_RE.sub("-", value).strip("-") or "default"


def _enabled(severity_enabled: bool, severity: Severity) -> bool:
    return severity_enabled and severity != Severity.OFF


def build_steps(plan: Plan) -> tuple[Step, ...]:
    """Ordered steps for ``plan``.

    Stage, build and manifest always run; every other step is present only
    when the plan enables the feature behind it.
    """
    steps: list[Step] = [
        Step("build:stage", StepKind.STAGE, "Stage project"),
        Step("build:build", StepKind.BUILD, "Build binary component"),
        Step("build:manifest", StepKind.MANIFEST, "Update manifest"),
    ]

    if plan.merge.enabled:
        steps.append(Step("build:merge", StepKind.MERGE, "Merge module sources"))

    docs = plan.build_documentation
    if plan.documentation is not None and docs is not None and docs.enabled:
        steps.append(Step("docs:extract", StepKind.DOCS_EXTRACT, "Extract help"))
        steps.append(Step("docs:write", StepKind.DOCS_WRITE, "Write markdown docs"))
        if docs.external_help:
            steps.append(Step("docs:maml", StepKind.DOCS_EXTERNAL_HELP, "Generate external help"))

    fmt = plan.formatting
    if fmt is not None:
        if fmt.format_staging:
            steps.append(Step("format:staging", StepKind.FORMAT, "Format staging", target="staging"))
        if fmt.format_project:
            steps.append(Step("format:project", StepKind.FORMAT, "Format project", target="project"))

    if plan.build.sign_merged and plan.signing is not None:
        steps.append(Step("sign", StepKind.SIGN, "Sign module files"))

    fc = plan.file_consistency
    if fc is not None and _enabled(fc.enabled, fc.severity):
        steps.append(
            Step(
                "validate:fileconsistency",
                StepKind.VALIDATE,
                "Check file consistency (staging)",
                target="fileconsistency",
            )
        )
        if fc.include_project:
            steps.append(
                Step(
                    "validate:fileconsistency-project",
                    StepKind.VALIDATE,
                    "Check file consistency (project)",
                    target="fileconsistency-project",
                )
            )

    compat = plan.compatibility
    if compat is not None and _enabled(compat.enabled, compat.severity):
        steps.append(
            Step(
                "validate:compatibility",
                StepKind.VALIDATE,
                "Check edition compatibility",
                target="compatibility",
            )
        )

    validation = plan.validation
    if validation is not None and _enabled(validation.enabled, validation.severity):
        steps.append(
            Step("validate:module", StepKind.VALIDATE, "Validate module structure", target="module")
        )

    for i, test in enumerate(t for t in plan.tests if t.enabled):
        steps.append(
            Step(f"tests:{i + 1:02}:{_slug(test.path)}", StepKind.TESTS, f"Run tests ({test.path})", test=test)
        )

    for i, artefact in enumerate(a for a in plan.artefacts if a.enabled):
        ident = _slug(artefact.id or plan.module_name)
        steps.append(
            Step(
                f"artefact:{i + 1:02}:{artefact.kind}:{ident}",
                StepKind.ARTEFACT,
                f"Create {artefact.kind} artefact",
                artefact=artefact,
            )
        )

    for i, publish in enumerate(p for p in plan.publishes if p.enabled):
        ident = _slug(publish.id or publish.repository)
        steps.append(
            Step(
                f"publish:{i + 1:02}:{publish.destination}:{ident}",
                StepKind.PUBLISH,
                f"Publish to {publish.destination}",
                publish=publish,
            )
        )

    if plan.install.enabled:
        steps.append(Step("install", StepKind.INSTALL, "Install module"))

    if plan.delete_staging_after_run:
        steps.append(Step("cleanup", StepKind.CLEANUP, "Remove staging"))

    return tuple(steps)
