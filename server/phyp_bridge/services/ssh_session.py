"""SSH transport session to an HMC or IVM management console."""
from __future__ import annotations

import logging
import socket
from pathlib import Path
from time import perf_counter
from typing import Callable, Optional, Tuple

import paramiko

from ..core.config import Settings, settings as default_settings
from ..core.errors import (
    AuthenticationError,
    HostKeyVerificationError,
    ProtocolFailure,
    TransportError,
)
from ..core.models import EXIT_STATUS_UNAVAILABLE, CredentialRequest
from .readiness import BlockDirection, WouldBlock

logger = logging.getLogger(__name__)

CredentialCallback = Callable[[CredentialRequest], Optional[str]]

# Failures paramiko raises once the transport underneath a channel is gone
_TRANSPORT_ERRORS = (paramiko.SSHException, EOFError, OSError)


class _SendWindow:
    """Waitable that returns once a channel may send again.

    paramiko notifies ``out_buffer_cv`` when a window adjust arrives or the
    channel closes, so the wait sleeps until the peer grants more window.
    """

    def __init__(self, channel: paramiko.Channel) -> None:
        self._channel = channel

    def _ready(self) -> bool:
        channel = self._channel
        return channel.closed or channel.eof_sent or channel.out_window_size > 0

    def wait(self) -> None:
        with self._channel.lock:
            while not self._ready():
                self._channel.out_buffer_cv.wait()


class SSHChannel:
    """Non-blocking wrapper around a paramiko channel.

    Primitives either complete, raise ProtocolFailure, or raise WouldBlock
    carrying the readiness source to wait on.
    """

    def __init__(self, channel: paramiko.Channel) -> None:
        self._channel = channel
        # Create paramiko's event pipe before any data can arrive
        self._pipe_fileno = channel.fileno()
        self._send_window = _SendWindow(channel)
        self._released = False

    def exec(self, command: str) -> None:
        """Start ``command`` on the channel and switch it to non-blocking mode."""

        try:
            self._channel.exec_command(command)
        except _TRANSPORT_ERRORS as exc:
            raise ProtocolFailure(f"Unable to execute command on channel: {exc}") from exc
        self._channel.setblocking(0)

    def read(self, size: int) -> bytes:
        """Return available output; ``b""`` once the remote end sent EOF."""

        try:
            return self._channel.recv(size)
        except socket.timeout:
            raise WouldBlock(BlockDirection.INBOUND, fileno=self._pipe_fileno) from None
        except _TRANSPORT_ERRORS as exc:
            raise ProtocolFailure(f"Channel read failed: {exc}") from exc

    def write(self, data: bytes) -> int:
        """Send as much of ``data`` as the channel window allows."""

        try:
            sent = self._channel.send(data)
        except socket.timeout:
            # Window exhausted; progress needs a window adjust from the peer
            raise WouldBlock(BlockDirection.OUTBOUND, event=self._send_window) from None
        except _TRANSPORT_ERRORS as exc:
            raise ProtocolFailure(f"Channel write failed: {exc}") from exc
        if sent == 0 and data:
            raise ProtocolFailure("Channel closed by remote end during write")
        return sent

    def send_eof(self) -> None:
        try:
            self._channel.shutdown_write()
        except _TRANSPORT_ERRORS as exc:
            raise ProtocolFailure(f"Unable to send EOF on channel: {exc}") from exc

    def wait_eof(self) -> None:
        if self._channel.eof_received or self._channel.closed:
            return
        raise WouldBlock(BlockDirection.INBOUND, fileno=self._pipe_fileno)

    def close(self) -> int:
        """Close the channel once the remote command finished; return its status."""

        if not self._channel.exit_status_ready():
            raise WouldBlock(BlockDirection.INBOUND, event=self._channel.status_event)
        self.release()
        status = self._channel.exit_status
        if status is None or status < 0:
            return EXIT_STATUS_UNAVAILABLE
        return status

    def release(self) -> None:
        """Free the channel regardless of its state."""

        if self._released:
            return
        self._released = True
        try:
            self._channel.close()
        except Exception:  # pragma: no cover - best effort cleanup
            logger.debug("Failed to close SSH channel cleanly", exc_info=True)


class SSHSession:
    """One connected and authenticated SSH transport."""

    def __init__(
        self,
        sock: socket.socket,
        transport: paramiko.Transport,
        hostname: str,
        username: str,
        address: Tuple,
    ) -> None:
        self.sock = sock
        self.transport = transport
        self.hostname = hostname
        self.username = username
        self.address = address
        self._closed = False

    def fileno(self) -> int:
        return self.sock.fileno()

    def is_active(self) -> bool:
        return not self._closed and self.transport.is_active()

    def open_channel(self) -> SSHChannel:
        """Open a new session channel for one command or copy."""

        try:
            channel = self.transport.open_session()
        except _TRANSPORT_ERRORS as exc:
            logger.error("Unable to open channel on %s: %s", self.hostname, exc)
            raise ProtocolFailure(f"Unable to open channel on {self.hostname}: {exc}") from exc
        return SSHChannel(channel)

    def close(self) -> None:
        """Disconnect and release the socket. Safe to call more than once."""

        if self._closed:
            return
        self._closed = True
        logger.debug("Disconnecting SSH session to %s", self.hostname)
        try:
            self.transport.close()
        except Exception:  # pragma: no cover - best effort cleanup
            logger.debug("Failed to close SSH transport cleanly", exc_info=True)
        finally:
            self.sock.close()


def _connect_socket(hostname: str, port: int, timeout: float) -> Tuple[socket.socket, Tuple]:
    """Connect to the first reachable address for ``hostname``."""

    try:
        candidates = socket.getaddrinfo(hostname, port, 0, socket.SOCK_STREAM)
    except socket.gaierror as exc:
        raise TransportError(f"Error while getting {hostname} address info: {exc}") from exc

    for family, socktype, proto, _canonname, address in candidates:
        try:
            sock = socket.socket(family, socktype, proto)
        except OSError:
            continue
        try:
            sock.settimeout(timeout)
            sock.connect(address)
        except OSError as exc:
            logger.debug("Connection to %s via %s failed: %s", hostname, address, exc)
            sock.close()
            continue
        sock.settimeout(None)
        return sock, address

    raise TransportError(f"Failed to connect to {hostname}")


def _verify_host_key(transport: paramiko.Transport, hostname: str, port: int, settings: Settings) -> None:
    """Compare the server key against the configured known hosts file."""

    known_hosts_path = settings.get_known_hosts_path()
    if known_hosts_path is None:
        return

    try:
        host_keys = paramiko.HostKeys(str(known_hosts_path))
    except OSError as exc:
        raise HostKeyVerificationError(f"Unable to read known hosts file {known_hosts_path}: {exc}") from exc

    server_key = transport.get_remote_server_key()
    lookup_name = hostname if port == 22 else f"[{hostname}]:{port}"
    entries = host_keys.lookup(lookup_name)

    if entries is None or server_key.get_name() not in entries:
        message = f"Host key for {lookup_name} is not present in {known_hosts_path}"
        if settings.ssh_strict_host_key_checking:
            raise HostKeyVerificationError(message)
        logger.warning("%s; continuing without verification", message)
        return

    if entries[server_key.get_name()] != server_key:
        raise HostKeyVerificationError(f"Host key for {lookup_name} does not match {known_hosts_path}")


def _load_private_key(settings: Settings) -> Optional[paramiko.PKey]:
    """Return the configured private key, or None when it cannot be used."""

    private_path: Path = settings.get_private_key_path()
    public_path: Path = settings.get_public_key_path()
    if not private_path.is_file() or not public_path.is_file():
        logger.debug("Key pair %s / %s not found", private_path, public_path)
        return None

    try:
        return paramiko.PKey.from_path(private_path)
    except paramiko.PasswordRequiredException:
        logger.warning("Private key %s is passphrase protected; skipping public key authentication", private_path)
    except (paramiko.SSHException, OSError, ValueError) as exc:
        logger.warning("Unable to load private key %s: %s", private_path, exc)
    return None


def _request_credential(
    auth_callback: Optional[CredentialCallback],
    request: CredentialRequest,
) -> str:
    if auth_callback is None:
        raise AuthenticationError("No authentication callback provided.")
    value = auth_callback(request)
    if not value:
        raise AuthenticationError(f"{request.kind.capitalize()} request failed")
    return value


def _authenticate(
    transport: paramiko.Transport,
    hostname: str,
    username: str,
    auth_callback: Optional[CredentialCallback],
    settings: Settings,
) -> None:
    """Try the fixed key pair first, then password via the callback."""

    key = _load_private_key(settings)
    if key is not None:
        try:
            transport.auth_publickey(username, key)
        except paramiko.AuthenticationException as exc:
            logger.info("Public key rejected by %s for %s: %s", hostname, username, exc)
        except _TRANSPORT_ERRORS as exc:
            raise TransportError(f"Public key authentication to {hostname} failed: {exc}") from exc
        if transport.is_authenticated():
            logger.info("Authenticated to %s as %s using public key", hostname, username)
            return

    password = _request_credential(
        auth_callback,
        CredentialRequest(kind="password", hostname=hostname, username=username),
    )
    try:
        transport.auth_password(username, password)
    except paramiko.AuthenticationException as exc:
        raise AuthenticationError(f"Authentication failed for {username}@{hostname}") from exc
    except _TRANSPORT_ERRORS as exc:
        raise TransportError(f"Password authentication to {hostname} failed: {exc}") from exc

    if not transport.is_authenticated():
        raise AuthenticationError(f"Authentication failed for {username}@{hostname}")
    logger.info("Authenticated to %s as %s using password", hostname, username)


def open_session(
    hostname: str,
    username: Optional[str] = None,
    auth_callback: Optional[CredentialCallback] = None,
    port: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> SSHSession:
    """Connect, negotiate and authenticate an SSH session.

    Authentication failures are final; the session is torn down and
    AuthenticationError is raised without retrying other credentials.
    """

    settings = settings or default_settings
    port = port or settings.ssh_port

    if not username:
        username = _request_credential(
            auth_callback,
            CredentialRequest(kind="username", hostname=hostname),
        )

    logger.info("Opening SSH session to %s:%s as %s", hostname, port, username)
    start_time = perf_counter()

    sock, address = _connect_socket(hostname, port, settings.ssh_connect_timeout)
    transport = paramiko.Transport(sock)
    try:
        try:
            transport.start_client(timeout=settings.ssh_handshake_timeout)
        except _TRANSPORT_ERRORS as exc:
            raise TransportError(f"Failure establishing SSH session with {hostname}: {exc}") from exc

        _verify_host_key(transport, hostname, port, settings)
        _authenticate(transport, hostname, username, auth_callback, settings)
    except Exception as exc:
        # Includes failures raised by the caller's credential callback
        logger.error("SSH session to %s failed: %s", hostname, exc)
        try:
            transport.close()
        finally:
            sock.close()
        raise

    logger.debug("SSH session to %s (%s) established in %.2fs", hostname, address, perf_counter() - start_time)
    return SSHSession(sock, transport, hostname, username, address)


__all__ = [
    "CredentialCallback",
    "SSHChannel",
    "SSHSession",
    "open_session",
]
