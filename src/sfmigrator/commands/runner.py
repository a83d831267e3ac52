"""
External command execution.

Runs the platform CLI as a child process in its own process group, enforces the
``--json`` output convention, and kills the whole group when the operation's
cancellation token fires.
"""

from __future__ import annotations

import asyncio
import json
import os
import signal
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Protocol

from sfmigrator.core.cancellation import CancellationToken
from sfmigrator.exceptions import CancelledError, CommandError
from sfmigrator.utils.logging import get_logger

logger = get_logger("sfmigrator.commands")

DEFAULT_BENIGN_STDERR_PATTERNS = ("Warning: @salesforce/cli update available from",)
DEFAULT_MAX_OUTPUT_BYTES = 100 * 1024 * 1024
_READ_CHUNK = 64 * 1024


class CommandRunner(Protocol):
    """Executes a named external command and returns its parsed JSON result."""

    async def execute(self, command: str, args: Sequence[str], token: CancellationToken | None = None) -> Any: ...


def with_json_flag(args: Sequence[str]) -> list[str]:
    """Append ``--json`` unless already present."""
    args = list(args)
    return args if "--json" in args else [*args, "--json"]


class SubprocessCommandRunner:
    """
    CommandRunner backed by ``asyncio.create_subprocess_exec``.

    - benign stderr lines (e.g. the update notice) are dropped; any other
      non-blank line fails the command with the first such line (truncated
      to 500 characters)
    - stdout or stderr beyond ``max_output_bytes`` kills the process and fails
    - cancellation sends SIGTERM to the process group and raises CancelledError

    At most one command should be in flight per workspace; this class does
    not serialise calls itself.
    """

    def __init__(
        self,
        cwd: str | Path | None = None,
        benign_stderr_patterns: Sequence[str] = DEFAULT_BENIGN_STDERR_PATTERNS,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    ):
        self.cwd = Path(cwd) if cwd is not None else None
        self.benign_stderr_patterns = tuple(benign_stderr_patterns)
        self.max_output_bytes = max_output_bytes

    async def execute(self, command: str, args: Sequence[str], token: CancellationToken | None = None) -> Any:
        """
        Run ``command`` with ``args`` (plus ``--json``) and return the ``result`` member of its output.

        Raises:
            CancelledError: token fired before or while the process ran
            CommandError: executable missing, fatal stderr, oversized or unparseable output
        """
        if token is not None:
            token.raise_if_cancelled()

        argv = [command, *with_json_flag(args)]
        display = " ".join(argv)
        logger.debug(f"Running: {display}")

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=self.cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except FileNotFoundError as e:
            raise CommandError(f"Command not found: {command}", command=display) from e
        except OSError as e:
            raise CommandError(f"Failed to start {command}: {e}", command=display) from e

        unregister = token.on_cancel(lambda: _kill_process_group(process)) if token is not None else None
        try:
            stdout, stderr = await asyncio.gather(
                self._read_stream(process.stdout, "output", process, display),
                self._read_stream(process.stderr, "error output", process, display),
            )
            await process.wait()
        except BaseException:
            _kill_process_group(process)
            raise
        finally:
            if unregister is not None:
                unregister()

        if token is not None and token.is_cancelled:
            logger.info(f"Command cancelled: {display}")
            raise CancelledError()

        fatal_lines = self._fatal_lines(stderr.decode("utf-8", errors="replace"))
        if fatal_lines:
            raise CommandError(fatal_lines[0][:500], command=display, details={"returncode": process.returncode})

        return parse_command_output(stdout.decode("utf-8", errors="replace"), display)

    async def _read_stream(
        self,
        stream: asyncio.StreamReader | None,
        label: str,
        process: asyncio.subprocess.Process,
        display: str,
    ) -> bytes:
        if stream is None:
            return b""
        buffer = bytearray()
        while chunk := await stream.read(_READ_CHUNK):
            buffer.extend(chunk)
            if len(buffer) > self.max_output_bytes:
                _kill_process_group(process)
                limit_mb = self.max_output_bytes // (1024 * 1024)
                raise CommandError(f"Command {label} exceeded maximum buffer size ({limit_mb} MB)", command=display)
        return bytes(buffer)

    def _fatal_lines(self, stderr_text: str) -> list[str]:
        """Non-blank stderr lines that match no benign pattern."""
        return [
            line.strip()
            for line in stderr_text.splitlines()
            if line.strip() and not any(pattern in line for pattern in self.benign_stderr_patterns)
        ]


def parse_command_output(stdout: str, command: str | None = None) -> Any:
    """
    Extract the ``result`` member from CLI JSON output.

    A payload with a non-zero ``status`` and no ``result`` is a failure
    reported through its ``message``.
    """
    try:
        payload = json.loads(stdout)
    except json.JSONDecodeError as e:
        raise CommandError("Command returned invalid JSON output", command=command) from e

    if not isinstance(payload, dict):
        raise CommandError("Command returned unexpected JSON output", command=command)

    if "result" not in payload and payload.get("status", 0) != 0:
        raise CommandError(
            str(payload.get("message") or f"Command failed with status {payload.get('status')}"),
            command=command,
            details={"name": payload.get("name")},
        )
    return payload.get("result")


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        os.killpg(process.pid, signal.SIGTERM)
    except OSError:
        # Group already gone or not ours; fall back to the direct child
        try:
            process.terminate()
        except ProcessLookupError:
            pass
