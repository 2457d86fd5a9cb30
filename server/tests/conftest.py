"""Test configuration for server test suite."""

import os
from typing import Dict, List, Optional, Tuple

import pytest

# Keep developer key pairs and caches out of the test environment.
# This must happen before any imports that read settings.
os.environ.setdefault("PHYP_SSH_PRIVATE_KEY_PATH", "/nonexistent/id_rsa")
os.environ.setdefault("PHYP_SSH_PUBLIC_KEY_PATH", "/nonexistent/id_rsa.pub")

from phyp_bridge.core.config import Settings, set_config_validation_result  # noqa: E402
from phyp_bridge.core.errors import ProtocolFailure  # noqa: E402
from phyp_bridge.services.readiness import BlockDirection, WouldBlock  # noqa: E402


class FakeRemoteHost:
    """Scripted management console: canned commands plus an scp file store."""

    def __init__(self) -> None:
        self.commands: Dict[str, Tuple[bytes, int]] = {}
        self.files: Dict[str, bytes] = {}
        self.executed: List[str] = []
        self.pushes: List[Tuple[str, bytes, int]] = []
        self.block_times = 0
        self.max_write: Optional[int] = None
        self.reject_push = False
        self.fail_open = False
        self.fail_close = False
        self.no_exit_status = False

    def run(self, command: str) -> Tuple[bytes, int]:
        return self.commands.get(command, (b"", 127))


class _ScpSink:
    """Remote side of ``scp -t``."""

    def __init__(self, channel, path: str) -> None:
        self.channel = channel
        self.path = path
        self.buffer = bytearray()
        self.state = "header"
        self.remaining = 0
        self.mode = 0
        self.content = bytearray()
        channel.inbound += b"\x00"

    def feed(self, data: bytes) -> None:
        self.buffer += data
        while self.buffer:
            if self.state == "header":
                if b"\n" not in self.buffer:
                    return
                line, _, rest = bytes(self.buffer).partition(b"\n")
                self.buffer = bytearray(rest)
                if self.channel.host.reject_push:
                    self.channel.inbound += b"\x02scp: permission denied\n"
                    self.state = "rejected"
                    continue
                mode, size, _name = line[1:].split(b" ", 2)
                self.mode = int(mode, 8)
                self.remaining = int(size)
                self.state = "data"
                self.channel.inbound += b"\x00"
            elif self.state == "data":
                take = min(self.remaining, len(self.buffer))
                self.content += self.buffer[:take]
                del self.buffer[:take]
                self.remaining -= take
                if self.remaining == 0:
                    self.state = "end"
            elif self.state == "end":
                assert self.buffer[:1] == b"\x00"
                del self.buffer[:1]
                self.channel.host.files[self.path] = bytes(self.content)
                self.channel.host.pushes.append((self.path, bytes(self.content), self.mode))
                self.channel.inbound += b"\x00"
                self.state = "done"
            else:
                self.buffer.clear()

    def on_eof(self) -> None:
        self.channel.finish(0)


class _ScpSource:
    """Remote side of ``scp -f``."""

    def __init__(self, channel, path: str) -> None:
        self.channel = channel
        self.path = path
        self.state = "start"

    def feed(self, data: bytes) -> None:
        for byte in data:
            assert byte == 0
            host = self.channel.host
            if self.state == "start":
                if self.path not in host.files:
                    self.channel.inbound += f"\x01scp: {self.path}: No such file or directory\n".encode()
                    self.channel.finish(1)
                    self.state = "done"
                    return
                payload = host.files[self.path]
                name = self.path.rsplit("/", 1)[-1]
                self.channel.inbound += f"C0644 {len(payload)} {name}\n".encode()
                self.state = "header"
            elif self.state == "header":
                self.channel.inbound += host.files[self.path] + b"\x00"
                self.state = "data"
            elif self.state == "data":
                self.state = "done"

    def on_eof(self) -> None:
        self.channel.finish(0)


class FakeChannel:
    """Channel whose primitives raise WouldBlock a fixed number of times first."""

    def __init__(self, host: FakeRemoteHost) -> None:
        self.host = host
        self.command: Optional[str] = None
        self.inbound = bytearray()
        self.remote_eof = False
        self.exit_status: Optional[int] = None
        self.eof_sent = False
        self.released = False
        self.handler = None
        self._blocks: Dict[str, int] = {}

    def _maybe_block(self, op: str, direction: BlockDirection) -> None:
        remaining = self._blocks.get(op, self.host.block_times)
        if remaining > 0:
            self._blocks[op] = remaining - 1
            raise WouldBlock(direction)
        self._blocks[op] = self.host.block_times

    def finish(self, status: int) -> None:
        self.remote_eof = True
        self.exit_status = None if self.host.no_exit_status else status

    def exec(self, command: str) -> None:
        self._maybe_block("exec", BlockDirection.OUTBOUND)
        self.command = command
        self.host.executed.append(command)
        if command.startswith("scp -t "):
            self.handler = _ScpSink(self, command[len("scp -t "):].strip("'"))
        elif command.startswith("scp -f "):
            self.handler = _ScpSource(self, command[len("scp -f "):].strip("'"))
        else:
            output, status = self.host.run(command)
            self.inbound += output
            self.finish(status)

    def read(self, size: int) -> bytes:
        self._maybe_block("read", BlockDirection.INBOUND)
        if self.inbound:
            chunk = bytes(self.inbound[:size])
            del self.inbound[:size]
            return chunk
        if self.remote_eof:
            return b""
        raise AssertionError(f"read with no pending data on '{self.command}'")

    def write(self, data: bytes) -> int:
        self._maybe_block("write", BlockDirection.OUTBOUND)
        amount = len(data) if self.host.max_write is None else min(len(data), self.host.max_write)
        self.handler.feed(bytes(data[:amount]))
        return amount

    def send_eof(self) -> None:
        self.eof_sent = True
        if self.handler is not None:
            self.handler.on_eof()

    def wait_eof(self) -> None:
        self._maybe_block("wait_eof", BlockDirection.INBOUND)
        if not self.remote_eof:
            raise AssertionError("remote never sent EOF")

    def close(self) -> int:
        self._maybe_block("close", BlockDirection.INBOUND)
        if self.host.fail_close:
            raise ProtocolFailure("channel close failed")
        self.released = True
        return -1 if self.exit_status is None else self.exit_status

    def release(self) -> None:
        self.released = True


class FakeSession:
    """Stand-in for SSHSession handing out scripted channels."""

    def __init__(self, host: FakeRemoteHost, hostname: str = "hmc.example.com", username: str = "hscroot") -> None:
        self.host = host
        self.hostname = hostname
        self.username = username
        self.channels: List[FakeChannel] = []
        self.closed = False
        self._open_blocked = 0

    def open_channel(self) -> FakeChannel:
        if self._open_blocked < self.host.block_times:
            self._open_blocked += 1
            raise WouldBlock(BlockDirection.INBOUND)
        self._open_blocked = 0
        if self.host.fail_open:
            raise ProtocolFailure("channel open refused")
        channel = FakeChannel(self.host)
        self.channels.append(channel)
        return channel

    def is_active(self) -> bool:
        return not self.closed

    def close(self) -> None:
        self.closed = True


class RecordingWaiter:
    """Waiter that records blocked operations instead of polling."""

    def __init__(self) -> None:
        self.waits: List[WouldBlock] = []

    def wait(self, blocked: WouldBlock) -> None:
        self.waits.append(blocked)


@pytest.fixture(autouse=True)
def reset_config_validation_cache():
    set_config_validation_result(None)
    yield
    set_config_validation_result(None)


@pytest.fixture
def remote_host():
    return FakeRemoteHost()


@pytest.fixture
def fake_session(remote_host):
    return FakeSession(remote_host)


@pytest.fixture
def waiter():
    return RecordingWaiter()


@pytest.fixture
def test_settings(tmp_path):
    """Settings isolated to a temporary cache directory."""
    return Settings(
        identity_table_cache_dir=str(tmp_path / "cache"),
        ssh_private_key_path=str(tmp_path / "id_rsa"),
        ssh_public_key_path=str(tmp_path / "id_rsa.pub"),
        transfer_chunk_size=8,
        exec_read_chunk_size=4,
    )
