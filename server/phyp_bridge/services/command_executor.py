"""Synchronous remote command execution over non-blocking SSH channels."""
from __future__ import annotations

import logging
import re
from enum import Enum
from time import perf_counter
from typing import Optional, Tuple

from ..core.config import Settings, settings as default_settings
from ..core.errors import ConsistencyError, PhypError, ProtocolFailure, RemoteCommandError
from ..core.models import EXIT_STATUS_UNAVAILABLE, CommandResult
from .readiness import ReadinessWaiter, Waiter, WouldBlock, drive

logger = logging.getLogger(__name__)

_LEADING_INT = re.compile(rb"^\s*([+-]?\d+)")


class ExecState(str, Enum):
    """Lifecycle of one command invocation."""

    IDLE = "idle"
    CHANNEL_OPENING = "channel-opening"
    COMMAND_SENT = "command-sent"
    STREAMING = "streaming"
    CLOSING = "closing"
    DONE = "done"
    FAILED = "failed"


def _truncate(command: str, limit: int = 120) -> str:
    truncated = command.replace("\n", " ")
    if len(truncated) > limit:
        truncated = f"{truncated[:limit - 3]}..."
    return truncated


def _strip_line_terminator(output: bytes) -> bytes:
    """Remove a single trailing line terminator."""
    if output.endswith(b"\r\n"):
        return output[:-2]
    if output.endswith(b"\n"):
        return output[:-1]
    return output


class _CommandRun:
    """Drive one command through the executor states."""

    def __init__(self, session, command: str, waiter: Waiter, chunk_size: int) -> None:
        self.session = session
        self.command = command
        self.waiter = waiter
        self.chunk_size = chunk_size
        self.state = ExecState.IDLE
        self.channel = None
        self.output = bytearray()

    def _transition(self, state: ExecState) -> None:
        logger.debug(
            "Command on %s transitioned %s -> %s",
            self.session.hostname,
            self.state.value,
            state.value,
        )
        self.state = state

    def run(self) -> CommandResult:
        try:
            self._transition(ExecState.CHANNEL_OPENING)
            self.channel = drive(self.session.open_channel, self.waiter, "channel open")

            drive(lambda: self.channel.exec(self.command), self.waiter, "command exec")
            self._transition(ExecState.COMMAND_SENT)

            self._transition(ExecState.STREAMING)
            self._drain()

            self._transition(ExecState.CLOSING)
            exit_status = self._close()
        except PhypError:
            self._transition(ExecState.FAILED)
            self.output.clear()
            raise
        finally:
            if self.channel is not None:
                self.channel.release()

        self._transition(ExecState.DONE)
        return CommandResult(command=self.command, output=bytes(self.output), exit_status=exit_status)

    def _drain(self) -> None:
        while True:
            # Empty read means remote EOF
            try:
                chunk = self.channel.read(self.chunk_size)
            except WouldBlock as blocked:
                self.waiter.wait(blocked)
                continue
            if not chunk:
                return
            self.output.extend(chunk)

    def _close(self) -> int:
        try:
            return drive(self.channel.close, self.waiter, "channel close")
        except ProtocolFailure as exc:
            logger.warning(
                "Unable to close command channel on %s cleanly: %s", self.session.hostname, exc
            )
            return EXIT_STATUS_UNAVAILABLE


class CommandExecutor:
    """Run commands on a management console one channel at a time."""

    def __init__(
        self,
        session,
        waiter: Optional[Waiter] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.waiter = waiter or ReadinessWaiter()
        self.settings = settings or default_settings

    def execute(self, command: str) -> CommandResult:
        """Execute ``command`` and block until its output and status are known.

        Raises ProtocolFailure if the channel cannot be opened, the command
        cannot be sent, or output cannot be read. Partial output is discarded
        in that case. A channel that could not be closed cleanly yields a
        result whose exit status is EXIT_STATUS_UNAVAILABLE.
        """

        hostname = self.session.hostname
        logger.info("Executing command on %s: %s", hostname, _truncate(command))
        logger.debug("Full command on %s: %s", hostname, command)

        start_time = perf_counter()
        try:
            result = _CommandRun(
                self.session, command, self.waiter, self.settings.exec_read_chunk_size
            ).run()
        except ProtocolFailure as exc:
            logger.error("Command execution failed on %s: %s", hostname, exc)
            raise

        duration = perf_counter() - start_time
        logger.info(
            "Command on %s completed in %.2fs with exit status %s (stdout=%d bytes)",
            hostname,
            duration,
            result.exit_status,
            len(result.output),
        )
        if not result.status_available:
            logger.warning("Command on %s did not report an exit status", hostname)
        elif result.exit_status != 0:
            logger.warning("Command on %s exited with non-zero status %s", hostname, result.exit_status)

        return result

    def execute_text(self, command: str) -> Tuple[str, int]:
        """Execute ``command`` and return decoded output with one trailing newline trimmed on success."""

        result = self.execute(command)
        output = result.output
        if result.exit_status == 0:
            output = _strip_line_terminator(output)
        return output.decode("utf-8", errors="replace"), result.exit_status

    def execute_int(self, command: str) -> int:
        """Execute ``command`` and parse its output as a leading integer."""

        result = self.execute(command)
        if result.exit_status != 0:
            raise RemoteCommandError(
                command,
                result.exit_status,
                result.output.decode("utf-8", errors="replace"),
            )

        output = _strip_line_terminator(result.output)
        match = _LEADING_INT.match(output)
        if match is None:
            raise ConsistencyError(
                f"Cannot parse integer from output of '{_truncate(command)}': {output[:80]!r}"
            )

        if output[match.end():].strip():
            logger.warning("Ignoring suffix during integer parsing of %r", output)

        return int(match.group(1))


__all__ = [
    "CommandExecutor",
    "ExecState",
]
