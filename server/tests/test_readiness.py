"""Unit tests for the readiness waiter and retry driver."""

import select
import socket
import threading
from unittest.mock import MagicMock, patch

import pytest

from phyp_bridge.core.errors import ProtocolFailure
from phyp_bridge.services.readiness import (
    BlockDirection,
    ReadinessWaiter,
    WouldBlock,
    drive,
)


@pytest.mark.unit
class TestReadinessWaiter:
    """Waits on file descriptors and transport events."""

    def test_returns_when_descriptor_is_readable(self):
        left, right = socket.socketpair()
        try:
            right.sendall(b"x")
            ReadinessWaiter().wait(WouldBlock(BlockDirection.INBOUND, fileno=left.fileno()))
        finally:
            left.close()
            right.close()

    def test_returns_when_descriptor_is_writable(self):
        left, right = socket.socketpair()
        try:
            ReadinessWaiter().wait(WouldBlock(BlockDirection.OUTBOUND, fileno=left.fileno()))
        finally:
            left.close()
            right.close()

    def test_waits_on_transport_event(self):
        event = threading.Event()
        timer = threading.Timer(0.05, event.set)
        timer.start()
        try:
            ReadinessWaiter().wait(WouldBlock(BlockDirection.INBOUND, event=event))
        finally:
            timer.cancel()
        assert event.is_set()

    def test_interrupted_poll_is_resumed(self):
        poller = MagicMock()
        poller.poll.side_effect = [InterruptedError(), [(7, select.POLLIN)]]

        with patch("phyp_bridge.services.readiness.select.poll", return_value=poller):
            ReadinessWaiter().wait(WouldBlock(BlockDirection.INBOUND, fileno=7))

        assert poller.poll.call_count == 2
        poller.register.assert_called_once_with(7, select.POLLIN)

    def test_both_directions_are_registered(self):
        poller = MagicMock()
        poller.poll.return_value = [(7, select.POLLOUT)]

        with patch("phyp_bridge.services.readiness.select.poll", return_value=poller):
            ReadinessWaiter().wait(
                WouldBlock(BlockDirection.INBOUND | BlockDirection.OUTBOUND, fileno=7)
            )

        poller.register.assert_called_once_with(7, select.POLLIN | select.POLLOUT)

    def test_poll_failure_is_fatal(self):
        poller = MagicMock()
        poller.poll.side_effect = OSError(9, "Bad file descriptor")

        with patch("phyp_bridge.services.readiness.select.poll", return_value=poller):
            with pytest.raises(ProtocolFailure):
                ReadinessWaiter().wait(WouldBlock(BlockDirection.INBOUND, fileno=7))

    def test_invalid_descriptor_is_fatal(self):
        poller = MagicMock()
        poller.poll.return_value = [(7, select.POLLNVAL)]

        with patch("phyp_bridge.services.readiness.select.poll", return_value=poller):
            with pytest.raises(ProtocolFailure):
                ReadinessWaiter().wait(WouldBlock(BlockDirection.INBOUND, fileno=7))

    def test_missing_readiness_source_is_fatal(self):
        with pytest.raises(ProtocolFailure):
            ReadinessWaiter().wait(WouldBlock(BlockDirection.INBOUND))


@pytest.mark.unit
class TestDrive:
    """The retry loop is transparent to the operation's outcome."""

    def test_retries_until_operation_completes(self, waiter):
        attempts = {"count": 0}

        def operation():
            attempts["count"] += 1
            if attempts["count"] <= 3:
                raise WouldBlock(BlockDirection.INBOUND)
            return "done"

        assert drive(operation, waiter) == "done"
        assert attempts["count"] == 4
        assert len(waiter.waits) == 3

    def test_definitive_failure_is_not_retried(self, waiter):
        operation = MagicMock(side_effect=ProtocolFailure("refused"))

        with pytest.raises(ProtocolFailure):
            drive(operation, waiter)

        operation.assert_called_once()
        assert waiter.waits == []

    def test_wait_failure_ends_the_loop(self):
        failing_waiter = MagicMock()
        failing_waiter.wait.side_effect = ProtocolFailure("poll failed")
        operation = MagicMock(side_effect=WouldBlock(BlockDirection.OUTBOUND, fileno=3))

        with pytest.raises(ProtocolFailure):
            drive(operation, failing_waiter)

        operation.assert_called_once()
