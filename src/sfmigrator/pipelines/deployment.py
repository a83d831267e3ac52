"""
Metadata deployment: plan construction and execution.

A selection maps SelectionKey (metadata type, optional folder) to item names.
build_plan turns it into an ordered list of retrieve/deploy steps where every
folder container is retrieved from the source and deployed to the target
before any step that references items inside it. DeploymentPipeline executes
the plan strictly in order through the platform CLI.

Example:
    >>> plan = build_plan({SelectionKey("EmailTemplate", "MyFolder"): ["Template1"]})
    >>> [str(step) for step in plan]
    ['RetrieveFolder(EmailFolder:MyFolder)', 'DeployFolder(EmailFolder:MyFolder)',
     'RetrieveItems(EmailTemplate:MyFolder/Template1)', 'DeployItems(EmailTemplate:MyFolder/Template1)']
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any
from urllib.parse import quote

from sfmigrator.commands.runner import CommandRunner
from sfmigrator.core.cancellation import CancellationToken
from sfmigrator.core.types import NullProgress, OperationOutcome, ProgressReporter
from sfmigrator.exceptions import (
    CancelledError,
    CommandError,
    DeploymentStepError,
    MigratorError,
    PartialDeploymentFailure,
    ValidationError,
    describe_error,
)
from sfmigrator.notifications import LoggingNotifier, Notifier
from sfmigrator.utils.logging import get_logger

logger = get_logger("sfmigrator.pipelines.deployment")

# Folder-scoped metadata type -> type of its folder container
FOLDER_TYPES: dict[str, str] = {
    "EmailTemplate": "EmailFolder",
    "Report": "ReportFolder",
    "Dashboard": "DashboardFolder",
    "Document": "DocumentFolder",
}


@dataclass(frozen=True)
class SelectionKey:
    """A metadata type, optionally scoped to one folder."""

    metadata_type: str
    folder: str | None = None

    def __post_init__(self) -> None:
        if not self.metadata_type:
            raise ValidationError("Metadata type is required")
        if self.folder is not None and self.metadata_type not in FOLDER_TYPES:
            raise ValidationError(f"Metadata type {self.metadata_type} is not folder-scoped")

    @classmethod
    def parse(cls, text: str) -> SelectionKey:
        """Parse ``Type`` or ``Type/Folder``."""
        metadata_type, sep, folder = text.strip().partition("/")
        if sep and not folder:
            raise ValidationError(f"Invalid selection key: {text!r}")
        return cls(metadata_type, folder or None)

    @property
    def folder_type(self) -> str | None:
        return FOLDER_TYPES.get(self.metadata_type)

    @property
    def folder_member(self) -> str | None:
        """CLI member string of the folder container, e.g. ``EmailFolder:MyFolder``."""
        if self.folder is None:
            return None
        return f"{self.folder_type}:{self.folder}"

    def item_member(self, item: str) -> str:
        """CLI member string of one item, e.g. ``EmailTemplate:MyFolder/Template1``."""
        if self.folder is None:
            return f"{self.metadata_type}:{item}"
        return f"{self.metadata_type}:{self.folder}/{item}"

    def sort_key(self) -> tuple[str, str]:
        return (self.metadata_type, self.folder or "")

    def __str__(self) -> str:
        return self.metadata_type if self.folder is None else f"{self.metadata_type}/{self.folder}"


class StepKind(StrEnum):
    RETRIEVE_FOLDER = "RetrieveFolder"
    DEPLOY_FOLDER = "DeployFolder"
    RETRIEVE_ITEMS = "RetrieveItems"
    DEPLOY_ITEMS = "DeployItems"


class Environment(StrEnum):
    SOURCE = "Source"
    TARGET = "Target"


@dataclass(frozen=True)
class DeploymentStep:
    """One retrieve or deploy command against one environment."""

    kind: StepKind
    targets: tuple[str, ...]
    environment: Environment

    @property
    def is_deploy(self) -> bool:
        return self.kind in (StepKind.DEPLOY_FOLDER, StepKind.DEPLOY_ITEMS)

    def __str__(self) -> str:
        return f"{self.kind.value}({', '.join(self.targets)})"


@dataclass(frozen=True)
class DeploymentPlan:
    """Ordered, immutable sequence of steps, consumed linearly."""

    steps: tuple[DeploymentStep, ...]

    def __iter__(self) -> Iterator[DeploymentStep]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def retrieve_only(self) -> bool:
        return not any(step.is_deploy for step in self.steps)


def build_plan(selection: Mapping[SelectionKey, Iterable[str]], *, retrieve_only: bool = False) -> DeploymentPlan:
    """
    Build the step list for a selection.

    Folder steps come first, one retrieve/deploy pair per distinct folder,
    followed by a single combined retrieve and a single combined deploy of all
    selected items. Keys with no items contribute nothing. With
    ``retrieve_only`` the deploy steps are left out.

    Raises:
        ValidationError: nothing is selected
    """
    folder_members: list[str] = []
    item_members: list[str] = []

    for key in sorted(selection, key=SelectionKey.sort_key):
        items = sorted(dict.fromkeys(item for item in selection[key] if item))
        if not items:
            continue
        member = key.folder_member
        if member is not None and member not in folder_members:
            folder_members.append(member)
        for item in items:
            item_member = key.item_member(item)
            if item_member not in item_members:
                item_members.append(item_member)

    if not item_members:
        raise ValidationError("No metadata selected")

    steps: list[DeploymentStep] = []
    for member in folder_members:
        steps.append(DeploymentStep(StepKind.RETRIEVE_FOLDER, (member,), Environment.SOURCE))
        if not retrieve_only:
            steps.append(DeploymentStep(StepKind.DEPLOY_FOLDER, (member,), Environment.TARGET))

    steps.append(DeploymentStep(StepKind.RETRIEVE_ITEMS, tuple(item_members), Environment.SOURCE))
    if not retrieve_only:
        steps.append(DeploymentStep(StepKind.DEPLOY_ITEMS, tuple(item_members), Environment.TARGET))

    return DeploymentPlan(tuple(steps))


def build_item_plan(key: SelectionKey, item: str) -> DeploymentPlan:
    """Plan for a single item, with folder steps only when the item is folder-scoped."""
    return build_plan({key: [item]})


@dataclass(frozen=True)
class ComponentProblem:
    """A per-component rejection reported by a deploy."""

    component_type: str
    full_name: str
    problem: str
    problem_type: str = "Error"
    file_name: str | None = None
    line: int | None = None
    column: int | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ComponentProblem:
        return cls(
            component_type=str(payload.get("componentType") or payload.get("type") or ""),
            full_name=str(payload.get("fullName", "")),
            problem=str(payload.get("problem") or payload.get("error") or ""),
            problem_type=str(payload.get("problemType", "Error")),
            file_name=payload.get("fileName"),
            line=_optional_int(payload.get("lineNumber")),
            column=_optional_int(payload.get("columnNumber")),
        )

    def __str__(self) -> str:
        location = f" (line {self.line})" if self.line else ""
        return f"{self.component_type}:{self.full_name}: {self.problem}{location}"


def extract_component_problems(result: Any) -> list[ComponentProblem]:
    """
    Per-component failures from a deploy result.

    ``details.componentFailures`` may be a single object or a list.
    """
    if not isinstance(result, dict):
        return []
    details = result.get("details") or {}
    failures = details.get("componentFailures") if isinstance(details, dict) else None
    if failures is None:
        return []
    if isinstance(failures, dict):
        failures = [failures]
    return [ComponentProblem.from_payload(entry) for entry in failures if isinstance(entry, dict)]


def deploy_report_url(instance_url: str, deploy_id: str) -> str:
    """Link to the deployment status page of the target org."""
    address = quote(f"/changemgmt/monitorDeploymentsDetails.apexp?asyncId={deploy_id}", safe="")
    return f"{instance_url.rstrip('/')}/lightning/setup/DeployStatus/page?address={address}"


@dataclass
class DeploymentResult:
    """Outcome of one pipeline run."""

    status: OperationOutcome
    plan: DeploymentPlan
    completed_steps: list[DeploymentStep] = field(default_factory=list)
    failed_step: DeploymentStep | None = None
    error: MigratorError | None = None
    partial_failure: PartialDeploymentFailure | None = None
    deploy_ids: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == OperationOutcome.SUCCESS

    @property
    def report_url(self) -> str | None:
        return self.partial_failure.report_url if self.partial_failure else None


class DeploymentPipeline:
    """
    Executes deployment plans between a source and a target org.

    Steps run strictly in order. The cancellation token is checked before
    each step; a cancelled run is reported as cancelled, not as an error. A
    failing step skips the rest of the plan and nothing already done is rolled
    back. Per-component deploy rejections do not stop the run: they are
    collected into a PartialDeploymentFailure on the result.
    """

    def __init__(
        self,
        runner: CommandRunner,
        *,
        source_org: str,
        target_org: str,
        cli: str = "sf",
        target_instance_url: str | None = None,
        notifier: Notifier | None = None,
        progress: ProgressReporter | None = None,
    ):
        if not source_org or not target_org:
            raise ValidationError("Both a source and a target org are required")
        self.runner = runner
        self.source_org = source_org
        self.target_org = target_org
        self.cli = cli
        self.target_instance_url = target_instance_url
        self.notifier = notifier or LoggingNotifier()
        self.progress = progress or NullProgress()

    async def run(self, plan: DeploymentPlan, token: CancellationToken | None = None) -> DeploymentResult:
        """Execute ``plan``; returns the result after sending exactly one summary notification."""
        result = DeploymentResult(status=OperationOutcome.SUCCESS, plan=plan)
        problems: list[ComponentProblem] = []
        partial_success = False
        report_url: str | None = None
        total = len(plan)

        logger.info(f"Starting deployment plan with {total} step(s): {self.source_org} -> {self.target_org}")

        for index, step in enumerate(plan, start=1):
            if token is not None and token.is_cancelled:
                return self._finish_cancelled(result)

            self.progress.report(f"Step {index}/{total}: {step}")
            logger.info(f"Step {index}/{total}: {step} on {step.environment.value.lower()}")

            try:
                outcome = await self._execute_step(step, token)
            except CancelledError:
                return self._finish_cancelled(result)
            except MigratorError as e:
                logger.error(f"Step {step} failed: {describe_error(e)}")
                result.status = OperationOutcome.FAILED
                result.failed_step = step
                result.error = DeploymentStepError(step, describe_error(e), cause=e)
                self.notifier.notify(OperationOutcome.FAILED, result.error.message)
                return result

            result.completed_steps.append(step)
            if not step.is_deploy:
                continue

            deploy_id = outcome.get("id") if isinstance(outcome, dict) else None
            if deploy_id:
                result.deploy_ids.append(str(deploy_id))
            step_problems = extract_component_problems(outcome)
            if step_problems:
                logger.warning(f"Step {step} reported {len(step_problems)} component error(s)")
                problems.extend(step_problems)
                partial_success = partial_success or _is_partial_success(outcome)
                if deploy_id and self.target_instance_url:
                    report_url = deploy_report_url(self.target_instance_url, str(deploy_id))

        if problems:
            result.status = OperationOutcome.PARTIAL
            result.partial_failure = PartialDeploymentFailure(
                problems, report_url=report_url, partial_success=partial_success
            )
            lines = [result.partial_failure.message, *(f"  {problem}" for problem in problems)]
            self.notifier.notify(OperationOutcome.PARTIAL, "\n".join(lines), report_url=report_url)
            return result

        verb = "Retrieved" if plan.retrieve_only else "Deployed"
        logger.info(f"Deployment plan finished: {len(result.completed_steps)} step(s) completed")
        self.notifier.notify(OperationOutcome.SUCCESS, f"{verb} {_item_count(plan)} component(s) successfully")
        return result

    async def _execute_step(self, step: DeploymentStep, token: CancellationToken | None) -> Any:
        if step.environment == Environment.SOURCE:
            action, org = "retrieve", self.source_org
        else:
            action, org = "deploy", self.target_org

        args = ["project", action, "start"]
        for target in step.targets:
            args.extend(["--metadata", target])
        args.extend(["--target-org", org])

        outcome = await self.runner.execute(self.cli, args, token)

        # A failed operation without component detail is a step failure, not a partial one
        if isinstance(outcome, dict) and outcome.get("success") is False and not extract_component_problems(outcome):
            message = outcome.get("errorMessage") or outcome.get("status") or f"{action} failed"
            raise CommandError(str(message), command=f"{self.cli} {' '.join(args)}")
        return outcome

    def _finish_cancelled(self, result: DeploymentResult) -> DeploymentResult:
        logger.info(f"Deployment cancelled after {len(result.completed_steps)} completed step(s)")
        result.status = OperationOutcome.CANCELLED
        result.error = CancelledError("Deployment cancelled by user")
        self.notifier.notify(OperationOutcome.CANCELLED, result.error.message)
        return result


def _is_partial_success(outcome: Any) -> bool:
    if not isinstance(outcome, dict):
        return False
    return outcome.get("status") == "SucceededPartial" or bool(outcome.get("success"))


def _item_count(plan: DeploymentPlan) -> int:
    return sum(len(step.targets) for step in plan if step.kind == StepKind.RETRIEVE_ITEMS)


def _optional_int(value: Any) -> int | None:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None
