"""Data models for the application."""
from enum import Enum
from typing import Literal, Optional
from urllib.parse import unquote, urlsplit

from pydantic import BaseModel, Field

from .errors import InvalidURIError


# Exit status reported when a command channel closed without delivering a
# real remote exit status. Real statuses are always within 0-255.
EXIT_STATUS_UNAVAILABLE = -1

URI_SCHEME = "phyp"
SPECIAL_CHARACTERS = frozenset("&;`@\"|*?~<>^()[]{}$%#\\\n\r\t")


class SystemType(str, Enum):
    """Kind of management console behind the connection."""
    HMC = "hmc"
    IVM = "ivm"


class SyncOutcome(str, Enum):
    """Result of a table mutation or bootstrap.

    SYNCED: local cache and remote replica both hold the new table.
    LOCAL_ONLY: the local cache was written but the remote push failed; the
        next connection re-pushes the local table before trusting the remote.
    FAILED: the change is not durable and the in-memory table is unchanged.
        Either the local write failed, or the push failed and the pending
        marker could not be recorded. The local cache may then hold the
        change, but the next connection pulls the remote replica over it.
    """
    SYNCED = "synced"
    LOCAL_ONLY = "local-only"
    FAILED = "failed"


class CommandResult(BaseModel):
    """Output and exit status of one remote command invocation."""
    command: str = Field(..., description="Command text sent verbatim")
    output: bytes = Field(b"", description="Captured standard output")
    exit_status: int = Field(..., description="Remote exit status or EXIT_STATUS_UNAVAILABLE")

    @property
    def succeeded(self) -> bool:
        return self.exit_status == 0

    @property
    def status_available(self) -> bool:
        return self.exit_status != EXIT_STATUS_UNAVAILABLE


class CredentialRequest(BaseModel):
    """Prompt handed to the interactive credential callback."""
    kind: Literal["username", "password"]
    hostname: str
    username: Optional[str] = None


class ConnectionURI(BaseModel):
    """Parsed phyp://user@host/managed_system connection target."""
    hostname: str = Field(..., description="Management console host")
    username: Optional[str] = Field(None, description="Login user, prompted for when absent")
    port: Optional[int] = Field(None, description="SSH port override")
    managed_system: Optional[str] = Field(None, description="Managed system name (HMC only)")

    @classmethod
    def parse(cls, uri: str) -> "ConnectionURI":
        """Parse and validate a connection URI."""

        try:
            parts = urlsplit(uri)
            port = parts.port
        except ValueError as exc:
            raise InvalidURIError(f"Malformed connection URI '{uri}': {exc}") from exc

        if parts.scheme != URI_SCHEME:
            raise InvalidURIError(f"Unsupported URI scheme '{parts.scheme}'; expected '{URI_SCHEME}'")

        if not parts.hostname:
            raise InvalidURIError("Missing server name in phyp:// URI")

        if parts.query or parts.fragment or contains_special_characters(parts.path):
            raise InvalidURIError("Error parsing 'path'. Invalid characters.")

        managed_system = None
        path = parts.path[1:] if parts.path.startswith("/") else parts.path
        if path:
            managed_system = path.split("/", 1)[0] or None

        username = unquote(parts.username) if parts.username else None

        return cls(
            hostname=parts.hostname,
            username=username,
            port=port,
            managed_system=managed_system,
        )


def contains_special_characters(value: str) -> bool:
    """Return True when the value holds characters unsafe for remote shells."""
    return any(char in SPECIAL_CHARACTERS for char in value)
