"""Cancellation broadcaster: one "stop everything" signal, many listeners.

A single :class:`CancellationBroadcaster` is owned by the application root and
injected into the gateway.  Each generation call subscribes for its own
lifetime and observes only signals emitted after it subscribed::

    with broadcaster.subscribe() as listener:
        if listener.poll_non_blocking() is ListenerStatus.SIGNALLED:
            ...
        status = await listener.wait()

Each listener buffers a bounded number of undelivered signals.  Overflowing
that buffer is reported as a cancellation rather than dropped.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from types import TracebackType

logger = logging.getLogger(__name__)


class ListenerStatus(str, Enum):
    SIGNALLED = "signalled"
    CLOSED = "closed"
    EMPTY = "empty"


class CancellationListener:
    """Per-call view of the broadcaster."""

    def __init__(self, broadcaster: CancellationBroadcaster, capacity: int) -> None:
        self._broadcaster = broadcaster
        self._capacity = capacity
        self._pending = 0
        self._missed = 0
        self._closed = False
        self._wakeup = asyncio.Event()

    # ── Called by the broadcaster ───────────────────────────────────────

    def _deliver(self) -> None:
        if self._pending >= self._capacity:
            self._missed += 1
        else:
            self._pending += 1
        self._wakeup.set()

    def _close(self) -> None:
        self._closed = True
        self._wakeup.set()

    # ── Public API ──────────────────────────────────────────────────────

    @property
    def closed(self) -> bool:
        return self._closed

    def poll_non_blocking(self) -> ListenerStatus:
        """Consume one pending signal if there is one, without suspending."""
        if self._missed:
            logger.warning(
                "Cancellation listener lagged behind by %d signal(s); treating as cancelled",
                self._missed,
            )
            self._missed = 0
            self._pending = 0
            return ListenerStatus.SIGNALLED
        if self._pending:
            self._pending -= 1
            return ListenerStatus.SIGNALLED
        if self._closed:
            return ListenerStatus.CLOSED
        return ListenerStatus.EMPTY

    async def wait(self) -> ListenerStatus:
        """Suspend the calling task until a signal arrives or the broadcaster closes."""
        while True:
            status = self.poll_non_blocking()
            if status is not ListenerStatus.EMPTY:
                return status
            self._wakeup.clear()
            await self._wakeup.wait()

    def unsubscribe(self) -> None:
        self._broadcaster._discard(self)

    def __enter__(self) -> CancellationListener:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.unsubscribe()


class CancellationBroadcaster:
    """Process-wide fan-out of cancellation signals.

    All methods are synchronous and never suspend, so emitting and
    subscribing from concurrent tasks on one event loop needs no locking.
    """

    def __init__(self, capacity: int = 16) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._listeners: set[CancellationListener] = set()
        self._closed = False

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(self) -> CancellationListener:
        listener = CancellationListener(self, self._capacity)
        if self._closed:
            listener._close()
        else:
            self._listeners.add(listener)
        return listener

    def emit_cancel(self) -> int:
        """Signal every live listener; return how many were notified."""
        listeners = list(self._listeners)
        for listener in listeners:
            listener._deliver()
        logger.info("Cancellation emitted to %d listener(s)", len(listeners))
        return len(listeners)

    def close(self) -> None:
        """Tear down: every current and future listener reports CLOSED."""
        self._closed = True
        for listener in list(self._listeners):
            listener._close()
        self._listeners.clear()

    def _discard(self, listener: CancellationListener) -> None:
        self._listeners.discard(listener)
