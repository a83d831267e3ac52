"""
Front-end facing controller.

MigrationController owns the metadata selection, starts deployment and export
pipelines in response to inbound messages and emits outbound messages through
a single ``send`` callback. Each running operation gets its own
CancellationToken; CancelOperation signals all of them.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from sfmigrator.core.cancellation import CancellationToken
from sfmigrator.core.types import OperationOutcome
from sfmigrator.exceptions import ValidationError, describe_error
from sfmigrator.messages import (
    BatchDeploy,
    BatchRetrieve,
    CancelOperation,
    ClearSelections,
    DeployItem,
    InboundMessage,
    OperationSummary,
    OutboundMessage,
    ProgressUpdate,
    RemoveItem,
    RunExport,
    SelectionChanged,
    SelectionUpdate,
    parse_inbound,
)
from sfmigrator.notifications import CallbackNotifier
from sfmigrator.pipelines.deployment import (
    DeploymentPipeline,
    DeploymentPlan,
    DeploymentResult,
    SelectionKey,
    build_item_plan,
    build_plan,
)
from sfmigrator.pipelines.export import ExportPipeline, ExportResult
from sfmigrator.utils.logging import get_logger

logger = get_logger("sfmigrator.controller")

DEPLOYMENT = "deployment"


class MessageProgress:
    """Progress reporter that emits ProgressUpdate messages."""

    def __init__(self, send: Callable[[OutboundMessage], None]):
        self.send = send

    def report(self, message: str) -> None:
        self.send(ProgressUpdate(message))


def message_notifier(send: Callable[[OutboundMessage], None]) -> CallbackNotifier:
    """Notifier that emits OperationSummary messages."""
    return CallbackNotifier(lambda outcome, message, report_url: send(OperationSummary(outcome, message, report_url)))


class MigrationController:
    """
    Dispatches inbound messages.

    ``deployment`` runs retrieve/deploy plans; ``export_factory`` builds an
    ExportPipeline bound to an object. Both should report through
    ``message_notifier(send)`` and ``MessageProgress(send)`` so the front end
    sees their progress and summaries.
    """

    def __init__(
        self,
        deployment: DeploymentPipeline,
        send: Callable[[OutboundMessage], None],
        export_factory: Callable[[str], ExportPipeline] | None = None,
    ):
        self.deployment = deployment
        self.send = send
        self.export_factory = export_factory
        self.selections: dict[SelectionKey, list[str]] = {}
        self._tokens: dict[str, CancellationToken] = {}

    @property
    def running(self) -> list[str]:
        """Names of operations in flight."""
        return list(self._tokens)

    async def handle(self, payload: Any) -> DeploymentResult | ExportResult | None:
        """Parse and dispatch one raw message; invalid messages are answered with a failed summary."""
        try:
            message = parse_inbound(payload)
        except ValidationError as e:
            logger.warning(f"Rejected message: {e.message}")
            self.send(OperationSummary(OperationOutcome.FAILED, e.message))
            return None
        return await self.dispatch(message)

    async def dispatch(self, message: InboundMessage) -> DeploymentResult | ExportResult | None:
        if isinstance(message, SelectionChanged):
            if message.items:
                self.selections[message.key] = sorted(set(message.items))
            else:
                self.selections.pop(message.key, None)
            self._send_selection()
        elif isinstance(message, RemoveItem):
            items = [item for item in self.selections.get(message.key, []) if item != message.item]
            if items:
                self.selections[message.key] = items
            else:
                self.selections.pop(message.key, None)
            self._send_selection()
        elif isinstance(message, ClearSelections):
            self.selections.clear()
            self._send_selection()
        elif isinstance(message, CancelOperation):
            self.cancel()
        elif isinstance(message, BatchRetrieve):
            return await self._deploy(lambda: build_plan(self.selections, retrieve_only=True))
        elif isinstance(message, BatchDeploy):
            return await self._deploy(lambda: build_plan(self.selections))
        elif isinstance(message, DeployItem):
            return await self._deploy(lambda: build_item_plan(message.key, message.item))
        elif isinstance(message, RunExport):
            return await self._export(message)
        return None

    def cancel(self) -> None:
        """Signal every running operation."""
        if not self._tokens:
            logger.debug("Cancel requested with no operation running")
        for name, token in list(self._tokens.items()):
            logger.info(f"Cancelling {name}")
            token.cancel()

    async def _deploy(self, make_plan: Callable[[], DeploymentPlan]) -> DeploymentResult | None:
        if DEPLOYMENT in self._tokens:
            self.send(OperationSummary(OperationOutcome.FAILED, "A deployment is already running"))
            return None
        try:
            plan = make_plan()
        except ValidationError as e:
            self.send(OperationSummary(OperationOutcome.FAILED, e.message))
            return None

        token = CancellationToken()
        self._tokens[DEPLOYMENT] = token
        try:
            return await self.deployment.run(plan, token)
        finally:
            del self._tokens[DEPLOYMENT]

    async def _export(self, message: RunExport) -> ExportResult | None:
        name = f"export:{message.object_name}"
        if self.export_factory is None:
            self.send(OperationSummary(OperationOutcome.FAILED, "Export is not available"))
            return None
        if name in self._tokens:
            message_text = f"An export of {message.object_name} is already running"
            self.send(OperationSummary(OperationOutcome.FAILED, message_text))
            return None

        token = CancellationToken()
        self._tokens[name] = token
        try:
            pipeline = self.export_factory(message.object_name)
            return await pipeline.run(message.query, message.destination, token)
        except ValidationError as e:
            self.send(OperationSummary(OperationOutcome.FAILED, describe_error(e)))
            return None
        finally:
            del self._tokens[name]

    def _send_selection(self) -> None:
        ordered = sorted(self.selections.items(), key=lambda kv: kv[0].sort_key())
        selections = {str(key): list(items) for key, items in ordered}
        self.send(SelectionUpdate(selections))
