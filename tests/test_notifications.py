"""
Tests for notifiers and the controller's message adapters.
"""

import logging

import pytest

from sfmigrator.controller import MessageProgress, message_notifier
from sfmigrator.core.types import JobProgress, OperationOutcome
from sfmigrator.messages import OperationSummary, ProgressUpdate
from sfmigrator.notifications import CallbackNotifier, LoggingNotifier, ReconciliationChoice
from sfmigrator.testing import RecordingProgress


class TestLoggingNotifier:
    def test_failed_outcome_logs_error(self, caplog):
        with caplog.at_level(logging.INFO, logger="sfmigrator"):
            LoggingNotifier().notify(OperationOutcome.FAILED, "Export failed: boom")
        assert caplog.records[-1].levelno == logging.ERROR
        assert caplog.records[-1].getMessage() == "Export failed: boom"

    def test_partial_outcome_includes_report(self, caplog):
        with caplog.at_level(logging.INFO, logger="sfmigrator"):
            LoggingNotifier().notify(OperationOutcome.PARTIAL, "2 errors", report_url="https://x/r")
        assert caplog.records[-1].levelno == logging.WARNING
        assert caplog.records[-1].getMessage() == "2 errors (report: https://x/r)"

    @pytest.mark.asyncio
    async def test_accepts_mismatch(self):
        assert await LoggingNotifier().confirm_reconciliation(10, 9) == ReconciliationChoice.ACCEPT


class TestCallbackNotifier:
    def test_forwards_summary(self):
        sent = []
        CallbackNotifier(lambda *args: sent.append(args)).notify(OperationOutcome.SUCCESS, "done")
        assert sent == [(OperationOutcome.SUCCESS, "done", None)]

    @pytest.mark.asyncio
    async def test_delegates_reconciliation(self):
        notifier = CallbackNotifier(lambda *args: None, confirm=lambda expected, actual: ReconciliationChoice.RERUN)
        assert await notifier.confirm_reconciliation(3, 2) == ReconciliationChoice.RERUN


class TestMessageAdapters:
    def test_message_notifier_sends_summary(self):
        sent = []
        message_notifier(sent.append).notify(OperationOutcome.PARTIAL, "1 error", report_url="https://x/r")
        assert sent == [OperationSummary(OperationOutcome.PARTIAL, "1 error", "https://x/r")]

    def test_message_progress(self):
        sent = []
        MessageProgress(sent.append).report("Step 1/4: RetrieveFolder(EmailFolder:F)")
        assert sent == [ProgressUpdate("Step 1/4: RetrieveFolder(EmailFolder:F)")]

    def test_job_progress_prefix(self):
        progress = RecordingProgress()
        JobProgress("750xx", progress).report("InProgress")
        assert progress.messages == ["Job 750xx: InProgress"]
