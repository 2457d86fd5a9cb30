"""Exception hierarchy shared by the session, executor and synchronizer."""
from __future__ import annotations

from typing import Optional


class PhypError(RuntimeError):
    """Base exception for management console failures."""


class TransportError(PhypError):
    """Raised when a session cannot be connected or established."""


class AuthenticationError(TransportError):
    """Raised when authentication to the management console fails."""


class HostKeyVerificationError(TransportError):
    """Raised when the server host key does not match the known hosts file."""


class ProtocolFailure(PhypError):
    """Raised for definitive channel failures or readiness wait failures."""


class FileTransferError(ProtocolFailure):
    """Raised when an SCP exchange violates the copy protocol."""


class RemoteFileUnavailableError(PhypError):
    """Raised when the remote SCP source cannot provide the requested file."""

    def __init__(self, remote_path: str, reason: str) -> None:
        super().__init__(f"{remote_path}: {reason}")
        self.remote_path = remote_path
        self.reason = reason


class RemoteCommandError(PhypError):
    """Raised when a remote command completes with a nonzero exit status."""

    def __init__(self, command: str, exit_status: int, output: Optional[str] = None) -> None:
        super().__init__(f"Command exited with status {exit_status}: {command}")
        self.command = command
        self.exit_status = exit_status
        self.output = output


class ConsistencyError(PhypError):
    """Raised when remote results disagree or cannot be parsed."""


class LocalIOError(PhypError):
    """Raised for local file failures during persistence or transfer."""


class TableFormatError(LocalIOError):
    """Raised when a table image cannot be decoded."""


class InvalidURIError(PhypError, ValueError):
    """Raised when a connection URI is malformed."""


__all__ = [
    "PhypError",
    "TransportError",
    "AuthenticationError",
    "HostKeyVerificationError",
    "ProtocolFailure",
    "FileTransferError",
    "RemoteFileUnavailableError",
    "RemoteCommandError",
    "ConsistencyError",
    "LocalIOError",
    "TableFormatError",
    "InvalidURIError",
]
