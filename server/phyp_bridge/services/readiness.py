"""Readiness waiting for non-blocking SSH channel operations.

Every channel primitive either completes, fails definitively, or raises
:class:`WouldBlock` naming what it is waiting for. :func:`drive` is the only
place where an operation is retried: it suspends the caller on the readiness
source carried by the ``WouldBlock`` and attempts the operation again once
the transport reports progress. Waits have no timeout.
"""
from __future__ import annotations

import logging
import select
from enum import IntFlag
from typing import Callable, Optional, Protocol, TypeVar

from ..core.errors import ProtocolFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BlockDirection(IntFlag):
    """Directions a blocked operation needs before it can progress."""

    NONE = 0
    INBOUND = 1
    OUTBOUND = 2


class Waitable(Protocol):
    """Transport-side readiness source with a blocking ``wait()``, e.g. ``threading.Event``."""

    def wait(self) -> object:
        ...


class WouldBlock(Exception):
    """Raised by a channel primitive that cannot progress without blocking."""

    def __init__(
        self,
        direction: BlockDirection,
        fileno: Optional[int] = None,
        event: Optional[Waitable] = None,
    ) -> None:
        super().__init__(f"operation would block ({direction.name})")
        self.direction = direction
        self.fileno = fileno
        self.event = event


class Waiter(Protocol):
    def wait(self, blocked: WouldBlock) -> None:
        ...


class ReadinessWaiter:
    """Block the calling thread until a would-block operation can progress."""

    def wait(self, blocked: WouldBlock) -> None:
        """Wait on the readiness source named by ``blocked``.

        Raises ProtocolFailure when the wait itself fails. Interrupted waits
        are resumed transparently.
        """

        if blocked.event is not None:
            blocked.event.wait()
            return

        if blocked.fileno is None:
            raise ProtocolFailure(f"No readiness source for blocked {blocked.direction.name} operation")

        requested = 0
        if blocked.direction & BlockDirection.INBOUND:
            requested |= select.POLLIN
        if blocked.direction & BlockDirection.OUTBOUND:
            requested |= select.POLLOUT
        if not requested:
            raise ProtocolFailure("Blocked operation did not name a direction to wait for")

        poller = select.poll()
        poller.register(blocked.fileno, requested)

        while True:
            try:
                ready = poller.poll()
            except InterruptedError:
                logger.debug("Readiness wait on fd %s interrupted; resuming", blocked.fileno)
                continue
            except OSError as exc:
                logger.error("Unable to wait on SSH socket %s: %s", blocked.fileno, exc)
                raise ProtocolFailure(f"unable to wait on SSH socket: {exc}") from exc
            break

        for _fd, revents in ready:
            if revents & select.POLLNVAL:
                raise ProtocolFailure(f"SSH socket {blocked.fileno} is no longer valid")
            if revents & select.POLLERR and not revents & requested:
                raise ProtocolFailure(f"SSH socket {blocked.fileno} reported an error condition")


def drive(
    operation: Callable[[], T],
    waiter: Waiter,
    description: str = "channel operation",
) -> T:
    """Run ``operation`` until it completes, waiting whenever it would block."""

    while True:
        try:
            return operation()
        except WouldBlock as blocked:
            logger.debug("%s would block (%s); waiting for readiness", description, blocked.direction.name)
            waiter.wait(blocked)


__all__ = [
    "BlockDirection",
    "WouldBlock",
    "Waitable",
    "Waiter",
    "ReadinessWaiter",
    "drive",
]
