"""One-shot signalling primitives used to coordinate teardown.

OneShot is a compare-and-swap gate: any number of callers may try to trip
it but exactly one of them wins. ShutdownSignal broadcasts that teardown has
begun so background watchers can stop without closing anything twice.
Cancellation is the caller-facing, context-like cancellation handle
accepted by SSHClient.connect().
"""

import asyncio
import threading
from typing import Optional


class OneShot:
    """A gate that can be tripped exactly once.

    trip() returns True for the single caller that flips the gate and False
    for every caller after it, from any thread.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tripped = False

    def trip(self) -> bool:
        with self._lock:
            if self._tripped:
                return False
            self._tripped = True
            return True

    def is_tripped(self) -> bool:
        return self._tripped


class ShutdownSignal:
    """Idempotent broadcast telling background tasks that teardown started.

    Example:
        >>> shutdown = ShutdownSignal()
        >>> shutdown.fire()
        True
        >>> shutdown.fire()
        False
        >>> shutdown.is_set()
        True
    """

    def __init__(self) -> None:
        self._gate = OneShot()
        self._event = asyncio.Event()

    def fire(self) -> bool:
        """Fire the signal. Returns True only for the first call."""
        if not self._gate.trip():
            return False
        self._event.set()
        return True

    def is_set(self) -> bool:
        return self._gate.is_tripped()

    async def wait(self) -> None:
        await self._event.wait()


class Cancellation:
    """A context-like cancellation handle for connect().

    A Cancellation is handed to SSHClient.connect() and may be cancelled at
    any time afterwards by the caller. Cancelling closes the underlying
    connection locally; it does not roll back work already sent to the
    remote host.

    Use ``Cancellation.never()`` for a handle that can never fire; connect()
    does not spawn a watcher for it. ``Cancellation.with_timeout(seconds)``
    returns a handle that cancels itself after a delay and must be created
    while an event loop is running.

    Example:
        >>> cancellation = Cancellation()
        >>> task = asyncio.ensure_future(client.connect(cancellation))
        >>> cancellation.cancel()
        >>> await task  # raises ConnectCancelled if still connecting
    """

    def __init__(self, can_cancel: bool = True) -> None:
        self._can_cancel = can_cancel
        self._event = asyncio.Event()
        self._timer: Optional[asyncio.TimerHandle] = None

    @classmethod
    def never(cls) -> "Cancellation":
        return cls(can_cancel=False)

    @classmethod
    def with_timeout(cls, seconds: float) -> "Cancellation":
        cancellation = cls()
        loop = asyncio.get_running_loop()
        cancellation._timer = loop.call_later(seconds, cancellation.cancel)
        return cancellation

    @property
    def can_cancel(self) -> bool:
        return self._can_cancel

    def cancel(self) -> None:
        if not self._can_cancel:
            return
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._event.set()

    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()
