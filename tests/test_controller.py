"""
Tests for MigrationController: selection state, dispatch and cancellation.
"""

import asyncio

import pytest

from sfmigrator.controller import MessageProgress, MigrationController, message_notifier
from sfmigrator.core.cancellation import run_cancellable
from sfmigrator.core.types import OperationOutcome
from sfmigrator.exceptions import ValidationError
from sfmigrator.messages import OperationSummary, ProgressUpdate, SelectionUpdate
from sfmigrator.pipelines.deployment import DeploymentPipeline, SelectionKey
from sfmigrator.testing import FakeCommandRunner

RETRIEVED = {"status": "Succeeded", "success": True}
DEPLOYED = {"id": "0Af1", "status": "Succeeded", "success": True}


class Outbox(list):
    """Collects outbound messages."""

    def of(self, message_type):
        return [message for message in self if isinstance(message, message_type)]


class BlockingRunner(FakeCommandRunner):
    """Holds every command until ``release`` is set or the token fires."""

    def __init__(self, responses=()):
        super().__init__(responses)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def execute(self, command, args, token=None):
        self.started.set()
        await run_cancellable(self.release.wait(), token)
        return await super().execute(command, args, token)


def make_controller(responses=(), export_factory=None, runner=None):
    outbox = Outbox()
    runner = runner or FakeCommandRunner(responses)
    deployment = DeploymentPipeline(
        runner,
        source_org="dev",
        target_org="uat",
        notifier=message_notifier(outbox.append),
        progress=MessageProgress(outbox.append),
    )
    return MigrationController(deployment, outbox.append, export_factory=export_factory), runner, outbox


class TestSelection:
    @pytest.mark.asyncio
    async def test_selection_changed_and_update(self):
        controller, _, outbox = make_controller()

        await controller.handle({"command": "selectionChanged", "key": "EmailTemplate/F", "items": ["B", "A", "A"]})
        await controller.handle({"command": "selectionChanged", "key": "ApexClass", "items": ["Foo"]})

        assert controller.selections == {
            SelectionKey("EmailTemplate", "F"): ["A", "B"],
            SelectionKey("ApexClass"): ["Foo"],
        }
        last = outbox.of(SelectionUpdate)[-1]
        assert list(last.selections) == ["ApexClass", "EmailTemplate/F"]

    @pytest.mark.asyncio
    async def test_empty_items_drop_key(self):
        controller, _, _ = make_controller()
        await controller.handle({"command": "selectionChanged", "key": "ApexClass", "items": ["Foo"]})
        await controller.handle({"command": "selectionChanged", "key": "ApexClass", "items": []})
        assert controller.selections == {}

    @pytest.mark.asyncio
    async def test_remove_item(self):
        controller, _, outbox = make_controller()
        await controller.handle({"command": "selectionChanged", "key": "ApexClass", "items": ["Foo", "Bar"]})
        await controller.handle({"command": "removeItem", "key": "ApexClass", "item": "Foo"})
        assert controller.selections == {SelectionKey("ApexClass"): ["Bar"]}

        await controller.handle({"command": "removeItem", "key": "ApexClass", "item": "Bar"})
        assert controller.selections == {}
        assert outbox.of(SelectionUpdate)[-1].selections == {}

    @pytest.mark.asyncio
    async def test_clear(self):
        controller, _, _ = make_controller()
        await controller.handle({"command": "selectionChanged", "key": "ApexClass", "items": ["Foo"]})
        await controller.handle({"command": "clearSelections"})
        assert controller.selections == {}

    @pytest.mark.asyncio
    async def test_invalid_message_answered_with_failed_summary(self):
        controller, runner, outbox = make_controller()

        assert await controller.handle({"command": "nope"}) is None

        (summary,) = outbox.of(OperationSummary)
        assert summary.outcome == OperationOutcome.FAILED
        assert "Unknown command" in summary.message
        assert runner.calls == []


class TestDeploymentDispatch:
    @pytest.mark.asyncio
    async def test_batch_deploy(self):
        controller, runner, outbox = make_controller([RETRIEVED, DEPLOYED])
        await controller.handle({"command": "selectionChanged", "key": "ApexClass", "items": ["Foo"]})

        result = await controller.handle({"command": "batchDeploy"})

        assert result.status == OperationOutcome.SUCCESS
        assert [call.args[1] for call in runner.calls] == ["retrieve", "deploy"]
        assert [m.message for m in outbox.of(ProgressUpdate)] == [
            "Step 1/2: RetrieveItems(ApexClass:Foo)",
            "Step 2/2: DeployItems(ApexClass:Foo)",
        ]
        (summary,) = outbox.of(OperationSummary)
        assert summary.outcome == OperationOutcome.SUCCESS
        assert controller.running == []

    @pytest.mark.asyncio
    async def test_batch_retrieve_only_retrieves(self):
        controller, runner, _ = make_controller([RETRIEVED, RETRIEVED])
        await controller.handle({"command": "selectionChanged", "key": "Report/Sales", "items": ["Q1"]})

        result = await controller.handle({"command": "batchRetrieve"})

        assert result.status == OperationOutcome.SUCCESS
        assert [call.args[1] for call in runner.calls] == ["retrieve", "retrieve"]

    @pytest.mark.asyncio
    async def test_deploy_item_ignores_selection(self):
        controller, runner, _ = make_controller([RETRIEVED, DEPLOYED])
        await controller.handle({"command": "selectionChanged", "key": "ApexClass", "items": ["Other"]})

        await controller.handle({"command": "deployItem", "key": "ApexClass", "item": "Foo"})

        assert runner.calls[0].args[4] == "ApexClass:Foo"

    @pytest.mark.asyncio
    async def test_empty_selection_reports_failure(self):
        controller, runner, outbox = make_controller()

        assert await controller.handle({"command": "batchDeploy"}) is None

        (summary,) = outbox.of(OperationSummary)
        assert summary.outcome == OperationOutcome.FAILED
        assert summary.message == "No metadata selected"
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_cancel_operation_stops_running_deployment(self):
        runner = BlockingRunner([RETRIEVED, DEPLOYED])
        controller, _, outbox = make_controller(runner=runner)
        await controller.handle({"command": "selectionChanged", "key": "ApexClass", "items": ["Foo"]})

        task = asyncio.create_task(controller.handle({"command": "batchDeploy"}))
        await runner.started.wait()
        assert controller.running == ["deployment"]
        await controller.handle({"command": "cancelOperation"})
        result = await task

        assert result.status == OperationOutcome.CANCELLED
        assert result.completed_steps == []
        assert runner.calls == []
        assert outbox.of(OperationSummary)[-1].outcome == OperationOutcome.CANCELLED
        assert controller.running == []

    @pytest.mark.asyncio
    async def test_second_deployment_rejected_while_running(self):
        runner = BlockingRunner([RETRIEVED, DEPLOYED])
        controller, _, outbox = make_controller(runner=runner)
        await controller.handle({"command": "selectionChanged", "key": "ApexClass", "items": ["Foo"]})

        first = asyncio.create_task(controller.handle({"command": "batchDeploy"}))
        await runner.started.wait()
        assert await controller.handle({"command": "batchDeploy"}) is None
        assert outbox.of(OperationSummary)[-1].message == "A deployment is already running"

        runner.release.set()
        result = await first
        assert result.status == OperationOutcome.SUCCESS
        assert len(runner.calls) == 2

    @pytest.mark.asyncio
    async def test_cancel_without_running_operation_is_harmless(self):
        controller, _, outbox = make_controller()
        assert await controller.handle({"command": "cancelOperation"}) is None
        assert outbox == []


def export_payload(object_name="Account", query="SELECT Id FROM Account", destination="a.csv"):
    return {"command": "runExport", "objectName": object_name, "query": query, "destination": destination}


class TestExportDispatch:
    @pytest.mark.asyncio
    async def test_export_unavailable(self):
        controller, _, outbox = make_controller()

        assert await controller.handle(export_payload()) is None
        assert outbox.of(OperationSummary)[-1].message == "Export is not available"

    @pytest.mark.asyncio
    async def test_export_validation_error_becomes_summary(self):
        class RejectingPipeline:
            async def run(self, query, destination, token=None):
                raise ValidationError("Query must target Contact, not Account")

        objects = []

        def factory(object_name):
            objects.append(object_name)
            return RejectingPipeline()

        controller, _, outbox = make_controller(export_factory=factory)

        assert await controller.handle(export_payload(object_name="Contact")) is None
        assert objects == ["Contact"]
        summary = outbox.of(OperationSummary)[-1]
        assert summary.outcome == OperationOutcome.FAILED
        assert summary.message == "Query must target Contact, not Account"
        assert controller.running == []

    @pytest.mark.asyncio
    async def test_export_runs_with_own_token(self):
        seen = []

        class RecordingPipeline:
            async def run(self, query, destination, token=None):
                seen.append((query, destination, token))
                return "result"

        controller, _, _ = make_controller(export_factory=lambda name: RecordingPipeline())

        assert await controller.handle(export_payload()) == "result"
        query, destination, token = seen[0]
        assert (query, destination) == ("SELECT Id FROM Account", "a.csv")
        assert token is not None and not token.is_cancelled
