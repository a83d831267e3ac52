"""
Tests for inbound message parsing and outbound serialisation.
"""

import pytest

from sfmigrator.core.types import OperationOutcome
from sfmigrator.exceptions import ValidationError
from sfmigrator.messages import (
    BatchDeploy,
    BatchRetrieve,
    CancelOperation,
    ClearSelections,
    DeployItem,
    OperationSummary,
    ProgressUpdate,
    RemoveItem,
    RunExport,
    SelectionChanged,
    SelectionUpdate,
    parse_inbound,
)
from sfmigrator.pipelines.deployment import SelectionKey


class TestParseInbound:
    def test_selection_changed(self):
        message = parse_inbound({"command": "selectionChanged", "key": "EmailTemplate/MyFolder", "items": ["T1"]})
        assert message == SelectionChanged(SelectionKey("EmailTemplate", "MyFolder"), ("T1",))

    def test_selection_changed_allows_empty_items(self):
        message = parse_inbound({"command": "selectionChanged", "key": "ApexClass", "items": []})
        assert message.items == ()

    def test_remove_item(self):
        assert parse_inbound({"command": "removeItem", "key": "ApexClass", "item": "Foo"}) == RemoveItem(
            SelectionKey("ApexClass"), "Foo"
        )

    def test_deploy_item(self):
        message = parse_inbound({"command": "deployItem", "key": "Report/Sales", "item": "Q1"})
        assert message == DeployItem(SelectionKey("Report", "Sales"), "Q1")

    @pytest.mark.parametrize(
        "command,expected",
        [
            ("clearSelections", ClearSelections()),
            ("batchRetrieve", BatchRetrieve()),
            ("batchDeploy", BatchDeploy()),
            ("cancelOperation", CancelOperation()),
        ],
    )
    def test_commands_without_fields(self, command, expected):
        assert parse_inbound({"command": command}) == expected

    def test_run_export(self):
        message = parse_inbound(
            {"command": "runExport", "objectName": "Account", "query": "SELECT Id FROM Account", "destination": "a.csv"}
        )
        assert message == RunExport("Account", "SELECT Id FROM Account", "a.csv")

    @pytest.mark.parametrize(
        "payload,match",
        [
            ("batchDeploy", "must be an object"),
            ({}, "Unknown command"),
            ({"command": "dropDatabase"}, "Unknown command"),
            ({"command": 42}, "Unknown command"),
            ({"command": "removeItem", "key": "ApexClass"}, "Field 'item'"),
            ({"command": "removeItem", "key": "", "item": "Foo"}, "Field 'key'"),
            ({"command": "selectionChanged", "key": "ApexClass", "items": "Foo"}, "Field 'items'"),
            ({"command": "selectionChanged", "key": "ApexClass", "items": [1]}, "Field 'items'"),
            ({"command": "runExport", "objectName": "Account", "query": "SELECT Id FROM Account"}, "destination"),
            ({"command": "deployItem", "key": "ApexClass/Folder", "item": "Foo"}, "not folder-scoped"),
        ],
    )
    def test_invalid_messages(self, payload, match):
        with pytest.raises(ValidationError, match=match):
            parse_inbound(payload)


class TestOutbound:
    def test_progress(self):
        assert ProgressUpdate("Step 1/2: x").to_payload() == {"command": "progress", "message": "Step 1/2: x"}

    def test_summary_without_report(self):
        payload = OperationSummary(OperationOutcome.SUCCESS, "done").to_payload()
        assert payload == {"command": "summary", "outcome": "success", "message": "done"}

    def test_summary_with_report(self):
        payload = OperationSummary(OperationOutcome.PARTIAL, "2 errors", "https://x/report").to_payload()
        assert payload["outcome"] == "partial"
        assert payload["reportUrl"] == "https://x/report"

    def test_selection_update(self):
        payload = SelectionUpdate({"ApexClass": ["Foo"]}).to_payload()
        assert payload == {"command": "selectionUpdated", "selections": {"ApexClass": ["Foo"]}}
