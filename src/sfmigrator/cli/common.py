"""
Shared CLI plumbing: settings bootstrap, rich reporting and Ctrl-C handling.
"""

import asyncio
import signal
import threading
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import typer
from rich.console import Console
from rich.panel import Panel
from rich.status import Status

from sfmigrator.commands.runner import SubprocessCommandRunner
from sfmigrator.config import MigratorSettings, load_config
from sfmigrator.core.cancellation import CancellationToken
from sfmigrator.core.types import OperationOutcome
from sfmigrator.exceptions import CancelledError, MigratorError, describe_error
from sfmigrator.notifications import ReconciliationChoice
from sfmigrator.utils.logging import get_logger, setup_logging_from_config

logger = get_logger("sfmigrator.cli")

T = TypeVar("T")

console = Console()

EXIT_CODES = {
    OperationOutcome.SUCCESS: 0,
    OperationOutcome.FAILED: 1,
    OperationOutcome.PARTIAL: 2,
    OperationOutcome.CANCELLED: 130,
}

_STYLES = {
    OperationOutcome.SUCCESS: "green",
    OperationOutcome.PARTIAL: "yellow",
    OperationOutcome.FAILED: "red",
    OperationOutcome.CANCELLED: "dim",
}


def bootstrap(project_dir: Path, env: str | None = None, verbose: bool = False) -> MigratorSettings:
    """Load configuration, set up logging and return the settings."""
    try:
        config = load_config(project_dir, env=env)
        if verbose:
            config.data.setdefault("logging", {})["level"] = "DEBUG"
        setup_logging_from_config(config.data, project_dir=project_dir, console=Console(stderr=True))
        return MigratorSettings.from_config(config, project_dir)
    except MigratorError as e:
        console.print(f"[red]Error:[/red] {describe_error(e)}")
        raise typer.Exit(1) from e


def build_runner(settings: MigratorSettings) -> SubprocessCommandRunner:
    return SubprocessCommandRunner(
        cwd=settings.workspace_root,
        benign_stderr_patterns=settings.benign_stderr_patterns,
        max_output_bytes=settings.max_output_bytes,
    )


def require_org(value: str | None, configured: str | None, role: str) -> str:
    alias = value or configured
    if not alias:
        console.print(
            f"[red]Error:[/red] No {role} org given; pass one on the command line or set orgs.{role} in migrator.yaml"
        )
        raise typer.Exit(1)
    return alias


def run_cancellable_command(operation: Callable[[CancellationToken], Awaitable[T]]) -> T:
    """
    Run ``operation`` on a fresh event loop with Ctrl-C wired to a CancellationToken.

    The first Ctrl-C requests cooperative cancellation; the operation decides
    how to wind down (abort remote jobs, delete partial files).
    """
    token = CancellationToken()

    async def main() -> T:
        loop = asyncio.get_running_loop()
        installed = False
        try:
            loop.add_signal_handler(signal.SIGINT, _request_cancel, token)
            installed = True
        except (NotImplementedError, RuntimeError):
            logger.debug("SIGINT handler unavailable; Ctrl-C will interrupt without cleanup")
        try:
            return await operation(token)
        finally:
            if installed:
                loop.remove_signal_handler(signal.SIGINT)

    try:
        return asyncio.run(main())
    except CancelledError as e:
        console.print("[dim]Cancelled[/dim]")
        raise typer.Exit(EXIT_CODES[OperationOutcome.CANCELLED]) from e
    except MigratorError as e:
        console.print(f"[red]Error:[/red] {describe_error(e)}")
        raise typer.Exit(1) from e


def _request_cancel(token: CancellationToken) -> None:
    if not token.is_cancelled:
        console.print("[yellow]Cancelling...[/yellow]")
    token.cancel()


def exit_for(outcome: OperationOutcome) -> None:
    code = EXIT_CODES[outcome]
    if code:
        raise typer.Exit(code)


class RichNotifier:
    """
    Prints operation summaries as rich panels and prompts on export count mismatches.

    A live ``status`` spinner is stopped while the prompt is shown. The prompt
    runs on a daemon thread, so a caller racing it against a CancellationToken
    can give up on it without waiting for an answer.
    """

    def __init__(self, output: Console | None = None, assume_yes: bool = False, status: Status | None = None):
        self.console = output or console
        self.assume_yes = assume_yes
        self.status = status

    def notify(self, outcome: OperationOutcome, message: str, *, report_url: str | None = None) -> None:
        body = message if not report_url else f"{message}\n\nReport: {report_url}"
        self.console.print(Panel(body, title=outcome.value.capitalize(), border_style=_STYLES[outcome]))

    async def confirm_reconciliation(self, expected: int, actual: int) -> ReconciliationChoice:
        if self.assume_yes:
            return ReconciliationChoice.ACCEPT
        question = f"Expected {expected} record(s) but exported {actual}. Re-run the export?"
        if self.status is not None:
            self.status.stop()
        try:
            rerun = await ask_in_background(lambda: typer.confirm(question, default=False))
        finally:
            if self.status is not None:
                self.status.start()
        return ReconciliationChoice.RERUN if rerun else ReconciliationChoice.ACCEPT


class StatusProgress:
    """Progress reporter backed by a rich status spinner."""

    def __init__(self, status: Status):
        self.status = status

    def report(self, message: str) -> None:
        logger.debug(message)
        self.status.update(message)


async def ask_in_background(question: Callable[[], T]) -> T:
    """
    Run a blocking prompt on a daemon thread and await its answer.

    Cancelling the awaiting task abandons the prompt; the thread never holds
    up interpreter exit the way an executor worker would.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future[T] = loop.create_future()

    def settle(value: T | None, error: BaseException | None) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(value)

    def worker() -> None:
        try:
            value, error = question(), None
        except Exception as e:
            value, error = None, e
        try:
            loop.call_soon_threadsafe(settle, value, error)
        except RuntimeError:
            logger.debug("Prompt answered after the event loop closed")

    threading.Thread(target=worker, name="sfmigrator-prompt", daemon=True).start()
    return await future
