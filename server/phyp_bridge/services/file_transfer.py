"""SCP file transfer over the management console SSH session.

Copies speak the classic rcp/scp wire protocol on an exec channel running
``scp -t`` (sink, for pushes) or ``scp -f`` (source, for pulls). Each control
message is acknowledged with a single NUL byte; a 0x01/0x02 byte followed by
a text line reports a warning or fatal error from the remote scp.
"""
from __future__ import annotations

import logging
import posixpath
import shlex
import stat
from pathlib import Path
from time import perf_counter
from typing import Optional, Union

from ..core.config import Settings, settings as default_settings
from ..core.errors import (
    FileTransferError,
    LocalIOError,
    RemoteCommandError,
    RemoteFileUnavailableError,
)
from ..core.models import EXIT_STATUS_UNAVAILABLE
from .readiness import ReadinessWaiter, Waiter, WouldBlock, drive

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_ACK = b"\x00"
_ERROR_MARKERS = (b"\x01", b"\x02")
_MAX_CONTROL_LINE = 4096


class FileTransfer:
    """Push and pull single files between local storage and the remote host."""

    def __init__(
        self,
        session,
        waiter: Optional[Waiter] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.waiter = waiter or ReadinessWaiter()
        self.settings = settings or default_settings

    # ------------------------------------------------------------------
    # Channel helpers
    # ------------------------------------------------------------------
    def _open(self, command: str):
        channel = drive(self.session.open_channel, self.waiter, "copy channel open")
        try:
            drive(lambda: channel.exec(command), self.waiter, "copy command exec")
        except Exception:
            channel.release()
            raise
        return channel

    def _read_some(self, channel, size: int) -> bytes:
        return drive(lambda: channel.read(size), self.waiter, "copy read")

    def _write_all(self, channel, data: bytes) -> None:
        """Write ``data`` completely, retrying partial and blocked writes."""

        offset = 0
        while offset < len(data):
            try:
                offset += channel.write(data[offset:])
            except WouldBlock as blocked:
                self.waiter.wait(blocked)

    def _read_line(self, channel) -> bytes:
        line = bytearray()
        while len(line) < _MAX_CONTROL_LINE:
            byte = self._read_some(channel, 1)
            if not byte:
                break
            line.extend(byte)
            if byte == b"\n":
                break
        return bytes(line)

    def _read_ack(self, channel, remote_path: str) -> None:
        byte = self._read_some(channel, 1)
        if byte == _ACK:
            return
        if not byte:
            raise FileTransferError(f"Copy channel for {remote_path} closed before acknowledgement")
        if byte in _ERROR_MARKERS:
            message = self._read_line(channel).decode("utf-8", errors="replace").strip()
            raise FileTransferError(f"Remote scp rejected {remote_path}: {message}")
        raise FileTransferError(f"Unexpected acknowledgement byte {byte!r} for {remote_path}")

    def _finish(self, channel, remote_path: str) -> int:
        """Signal end of transfer and wait for the remote end to close."""

        channel.send_eof()
        drive(channel.wait_eof, self.waiter, "copy eof")
        status = drive(channel.close, self.waiter, "copy channel close")
        if status not in (0, EXIT_STATUS_UNAVAILABLE):
            raise RemoteCommandError(f"scp {remote_path}", status)
        return status

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def push(self, local_path: PathLike, remote_path: str) -> None:
        """Copy ``local_path`` to ``remote_path`` on the management console."""

        local_path = Path(local_path)
        try:
            info = local_path.stat()
            handle = local_path.open("rb")
        except OSError as exc:
            logger.error("Unable to open %s for transfer: %s", local_path, exc)
            raise LocalIOError(f"Unable to open {local_path}: {exc}") from exc

        mode = stat.S_IMODE(info.st_mode) & 0o777
        size = info.st_size
        hostname = self.session.hostname
        logger.info("Pushing %s (%d bytes) to %s:%s", local_path, size, hostname, remote_path)

        start_time = perf_counter()
        channel = None
        try:
            with handle:
                channel = self._open(f"scp -t {shlex.quote(remote_path)}")
                self._read_ack(channel, remote_path)

                header = f"C{mode:04o} {size} {posixpath.basename(remote_path)}\n"
                self._write_all(channel, header.encode("utf-8"))
                self._read_ack(channel, remote_path)

                sent = 0
                while True:
                    try:
                        chunk = handle.read(self.settings.transfer_chunk_size)
                    except OSError as exc:
                        raise LocalIOError(f"Failed to read from {local_path}: {exc}") from exc
                    if not chunk:
                        break
                    self._write_all(channel, chunk)
                    sent += len(chunk)

                if sent != size:
                    raise LocalIOError(
                        f"{local_path} changed size during transfer ({sent} of {size} bytes sent)"
                    )

                self._write_all(channel, _ACK)
                self._read_ack(channel, remote_path)
                self._finish(channel, remote_path)
        finally:
            if channel is not None:
                channel.release()

        logger.debug(
            "Pushed %d bytes to %s:%s in %.2fs", size, hostname, remote_path, perf_counter() - start_time
        )

    def pull(self, remote_path: str, local_path: PathLike) -> None:
        """Copy ``remote_path`` from the management console into ``local_path``.

        Raises RemoteFileUnavailableError when the remote scp source cannot
        provide the file, which callers may treat as an expected condition.
        """

        local_path = Path(local_path)
        hostname = self.session.hostname
        logger.info("Pulling %s:%s to %s", hostname, remote_path, local_path)

        start_time = perf_counter()
        channel = None
        handle = None
        completed = False
        try:
            channel = self._open(f"scp -f {shlex.quote(remote_path)}")
            self._write_all(channel, _ACK)

            header = self._read_line(channel)
            if not header:
                raise RemoteFileUnavailableError(remote_path, "no response from remote scp")
            if header[:1] in _ERROR_MARKERS:
                reason = header[1:].decode("utf-8", errors="replace").strip()
                raise RemoteFileUnavailableError(remote_path, reason)
            size = self._parse_header(header, remote_path)
            self._write_all(channel, _ACK)

            try:
                local_path.parent.mkdir(parents=True, exist_ok=True)
                handle = local_path.open("wb")
            except OSError as exc:
                raise LocalIOError(f"Unable to create {local_path}: {exc}") from exc

            received = 0
            while received < size:
                amount = min(self.settings.transfer_chunk_size, size - received)
                try:
                    chunk = channel.read(amount)
                except WouldBlock as blocked:
                    self.waiter.wait(blocked)
                    continue
                if not chunk:
                    raise FileTransferError(
                        f"Copy channel for {remote_path} closed after {received} of {size} bytes"
                    )
                try:
                    handle.write(chunk)
                except OSError as exc:
                    raise LocalIOError(f"Unable to write to {local_path}: {exc}") from exc
                received += len(chunk)

            self._read_ack(channel, remote_path)
            self._write_all(channel, _ACK)

            try:
                handle.close()
            except OSError as exc:
                raise LocalIOError(f"Could not close {local_path}: {exc}") from exc
            self._finish(channel, remote_path)
            completed = True
        finally:
            if channel is not None:
                channel.release()
            if handle is not None and not handle.closed:
                handle.close()
            if handle is not None and not completed:
                local_path.unlink(missing_ok=True)

        logger.debug(
            "Pulled %d bytes from %s:%s in %.2fs", size, hostname, remote_path, perf_counter() - start_time
        )

    @staticmethod
    def _parse_header(header: bytes, remote_path: str) -> int:
        """Return the declared size from a ``C<mode> <size> <name>`` line."""

        if not header.startswith(b"C") or not header.endswith(b"\n"):
            raise FileTransferError(f"Unexpected copy header for {remote_path}: {header[:80]!r}")
        fields = header[1:-1].split(b" ", 2)
        if len(fields) != 3:
            raise FileTransferError(f"Malformed copy header for {remote_path}: {header[:80]!r}")
        try:
            int(fields[0], 8)
            size = int(fields[1])
        except ValueError as exc:
            raise FileTransferError(f"Malformed copy header for {remote_path}: {header[:80]!r}") from exc
        if size < 0:
            raise FileTransferError(f"Negative size in copy header for {remote_path}")
        return size


__all__ = ["FileTransfer"]
