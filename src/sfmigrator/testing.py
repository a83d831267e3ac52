"""
Test doubles for sfmigrator components.

Lets pipelines and the poller run without a CLI, a network or real time.

Usage:
    from sfmigrator.testing import FakeCommandRunner, RecordingNotifier, VirtualScheduler

    runner = FakeCommandRunner([{"status": "Succeeded"}, {"id": "0Af1", "success": True}])
    notifier = RecordingNotifier()
    pipeline = DeploymentPipeline(runner, source_org="dev", target_org="uat", notifier=notifier)
    result = await pipeline.run(build_plan({SelectionKey("ApexClass"): ["Foo"]}))
    assert [call.args[1] for call in runner.calls] == ["retrieve", "deploy"]
    assert notifier.outcomes == ["success"]
"""

import asyncio
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from sfmigrator.core.cancellation import CancellationToken
from sfmigrator.core.types import OperationOutcome
from sfmigrator.exceptions import CancelledError
from sfmigrator.notifications import ReconciliationChoice


class VirtualScheduler:
    """
    Scheduler with a virtual clock: ``sleep`` returns immediately after
    advancing ``now`` and yielding once to the event loop.

    ``on_sleep`` is called with the 1-based sleep count before yielding,
    e.g. to signal a cancellation token between two poll ticks.
    """

    def __init__(self, on_sleep: Callable[[int], None] | None = None):
        self.now = 0.0
        self.sleeps: list[float] = []
        self.on_sleep = on_sleep

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep is not None:
            self.on_sleep(len(self.sleeps))
        await asyncio.sleep(0)


@dataclass
class CommandCall:
    command: str
    args: list[str]


class FakeCommandRunner:
    """
    CommandRunner returning canned results in call order.

    Each response is either a result value, an exception instance (raised),
    or a callable taking the argument list and returning either of those.
    Calls are recorded, including the one that raised.
    """

    def __init__(self, responses: Iterable[Any] = ()):
        self.responses = list(responses)
        self.calls: list[CommandCall] = []

    async def execute(self, command: str, args: Sequence[str], token: CancellationToken | None = None) -> Any:
        if token is not None and token.is_cancelled:
            raise CancelledError()
        self.calls.append(CommandCall(command, list(args)))
        await asyncio.sleep(0)

        if not self.responses:
            raise AssertionError(f"Unexpected command: {command} {' '.join(args)}")
        response = self.responses.pop(0)
        if callable(response):
            response = response(list(args))
        if isinstance(response, BaseException):
            raise response
        return response


@dataclass
class Notification:
    outcome: OperationOutcome
    message: str
    report_url: str | None = None


@dataclass
class RecordingNotifier:
    """Notifier that records summaries and answers reconciliation prompts from ``choices``."""

    choices: list[ReconciliationChoice] = field(default_factory=list)
    notifications: list[Notification] = field(default_factory=list)
    prompts: list[tuple[int, int]] = field(default_factory=list)

    def notify(self, outcome: OperationOutcome, message: str, *, report_url: str | None = None) -> None:
        self.notifications.append(Notification(outcome, message, report_url))

    async def confirm_reconciliation(self, expected: int, actual: int) -> ReconciliationChoice:
        self.prompts.append((expected, actual))
        return self.choices.pop(0) if self.choices else ReconciliationChoice.ACCEPT

    @property
    def outcomes(self) -> list[OperationOutcome]:
        return [n.outcome for n in self.notifications]


@dataclass
class RecordingProgress:
    messages: list[str] = field(default_factory=list)

    def report(self, message: str) -> None:
        self.messages.append(message)
