"""
User-facing notifications.

Pipelines report every terminal outcome through a Notifier exactly once, and
ask it how to resolve an export whose row count does not match the
pre-check. The CLI renders notifications with rich; the message controller
turns them into OperationSummary messages.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import StrEnum
from typing import Protocol

from sfmigrator.core.types import OperationOutcome
from sfmigrator.utils.logging import get_logger

logger = get_logger("sfmigrator.notifications")


class ReconciliationChoice(StrEnum):
    """How to resolve an export row-count mismatch."""

    RERUN = "rerun"
    ACCEPT = "accept"


class Notifier(Protocol):
    def notify(self, outcome: OperationOutcome, message: str, *, report_url: str | None = None) -> None:
        """Deliver the summary of a finished operation."""
        ...

    async def confirm_reconciliation(self, expected: int, actual: int) -> ReconciliationChoice:
        """Ask whether to re-run an export whose row count differs from the expected count."""
        ...


class LoggingNotifier:
    """
    Non-interactive notifier: writes summaries to the log and accepts every
    reconciliation mismatch as-is.
    """

    def notify(self, outcome: OperationOutcome, message: str, *, report_url: str | None = None) -> None:
        suffix = f" (report: {report_url})" if report_url else ""
        if outcome == OperationOutcome.FAILED:
            logger.error(f"{message}{suffix}")
        elif outcome == OperationOutcome.PARTIAL:
            logger.warning(f"{message}{suffix}")
        else:
            logger.info(f"{message}{suffix}")

    async def confirm_reconciliation(self, expected: int, actual: int) -> ReconciliationChoice:
        logger.warning(f"Expected {expected} record(s) but exported {actual}; keeping the file as-is")
        return ReconciliationChoice.ACCEPT


class CallbackNotifier(LoggingNotifier):
    """
    Notifier that forwards summaries to a callback.

    Reconciliation is delegated to ``confirm`` when given, otherwise accepted.
    """

    def __init__(
        self,
        send: Callable[[OperationOutcome, str, str | None], None],
        confirm: Callable[[int, int], ReconciliationChoice] | None = None,
    ):
        self.send = send
        self.confirm = confirm

    def notify(self, outcome: OperationOutcome, message: str, *, report_url: str | None = None) -> None:
        super().notify(outcome, message, report_url=report_url)
        self.send(outcome, message, report_url)

    async def confirm_reconciliation(self, expected: int, actual: int) -> ReconciliationChoice:
        if self.confirm is None:
            return await super().confirm_reconciliation(expected, actual)
        return self.confirm(expected, actual)
