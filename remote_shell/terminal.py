"""Local terminal control and resize notifications.

LocalTerminal switches the controlling terminal into raw mode, restores it
and measures it. ResizeNotifications turns SIGWINCH into an asyncio queue
that keeps at most one pending notification and can be closed to release
its consumer.
"""

import asyncio
import logging
import os
import signal
import sys
import termios
import tty
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Tuple

from .exceptions import CleanupError, TerminalError
from .types import TerminalSize

logger = logging.getLogger("remote_shell.terminal")


class LocalTerminal:
    """The local terminal the interactive shell is attached to."""

    def __init__(self, stdin: Any = None, stdout: Any = None, stderr: Any = None) -> None:
        self.stdin = stdin if stdin is not None else sys.stdin
        self.stdout = stdout if stdout is not None else sys.stdout
        self.stderr = stderr if stderr is not None else sys.stderr

    def input_fd(self) -> int:
        return self._fileno(self.stdin)

    def output_fd(self) -> int:
        return self._fileno(self.stdout)

    @staticmethod
    def _fileno(stream: Any) -> int:
        try:
            return stream.fileno()
        except (AttributeError, OSError, ValueError) as e:
            raise TerminalError(f"{stream!r} is not attached to a terminal") from e

    def make_raw(self, fd: int) -> Any:
        """Put fd into raw mode and return a token for restore()."""
        try:
            previous = termios.tcgetattr(fd)
            tty.setraw(fd)
        except (termios.error, OSError) as e:
            raise TerminalError(f"cannot switch fd {fd} to raw mode: {e}") from e
        return previous

    def restore(self, fd: int, token: Any) -> None:
        try:
            termios.tcsetattr(fd, termios.TCSADRAIN, token)
        except (termios.error, OSError) as e:
            raise TerminalError(f"cannot restore fd {fd}: {e}") from e

    def get_size(self, fd: int) -> TerminalSize:
        try:
            size = os.get_terminal_size(fd)
        except OSError as e:
            raise TerminalError(f"cannot read size of fd {fd}: {e}") from e
        return TerminalSize(size.lines, size.columns)

    @contextmanager
    def raw(self, fd: int) -> Iterator[None]:
        """Hold fd in raw mode for the body of the with statement.

        When restoring fails after the body failed, both errors are reported
        in a CleanupError with the body's error first.
        """
        token = self.make_raw(fd)
        error = None
        try:
            yield
        except Exception as e:
            error = e
            raise
        finally:
            try:
                self.restore(fd, token)
            except TerminalError as restore_error:
                if error is None:
                    raise
                raise CleanupError(error, restore_error) from error

    @contextmanager
    def streams(self) -> Iterator[Tuple[Any, Any, Any]]:
        """Binary copies of stdin, stdout and stderr for the remote side.

        Each stream is a new file on a duplicated descriptor, closed on exit.
        Whoever is handed them may close them; the original streams stay open.
        """
        opened = []
        try:
            for stream, mode in ((self.stdin, "rb"), (self.stdout, "wb"), (self.stderr, "wb")):
                fd = self._fileno(stream)
                try:
                    opened.append(os.fdopen(os.dup(fd), mode, buffering=0))
                except OSError as e:
                    raise TerminalError(f"cannot duplicate fd {fd}: {e}") from e
            yield tuple(opened)
        finally:
            for f in opened:
                f.close()


_CLOSED = object()


class ResizeQueue:
    """Queue of resize notifications with room for one pending entry.

    Notifications that arrive while one is already pending are coalesced,
    since only the latest size matters. Iterating the queue yields once per
    pending notification and stops after close().
    """

    def __init__(self, on_close: Optional[Any] = None) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._closed = False
        self._on_close = on_close

    def notify(self) -> None:
        if self._closed or self._queue.full():
            return
        self._queue.put_nowait(None)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._on_close is not None:
            self._on_close()
        # drop a pending notification so the sentinel always fits
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "ResizeQueue":
        return self

    async def __anext__(self) -> None:
        item = await self._queue.get()
        if item is _CLOSED:
            # keep the sentinel for any later reader
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return None


class ResizeNotifications:
    """Source of terminal resize notifications driven by SIGWINCH."""

    def __init__(self, signum: int = getattr(signal, "SIGWINCH", 28)) -> None:
        self.signum = signum

    def subscribe(self) -> ResizeQueue:
        """Start delivering resize notifications to a new queue.

        Must be called with the event loop running. Closing the queue
        removes the loop handler and reinstalls the handler that was in
        place before.
        """
        loop = asyncio.get_running_loop()
        previous = signal.getsignal(self.signum)

        def unsubscribe() -> None:
            loop.remove_signal_handler(self.signum)
            if previous is not None:
                signal.signal(self.signum, previous)

        queue = ResizeQueue(on_close=unsubscribe)
        loop.add_signal_handler(self.signum, queue.notify)
        logger.debug(f"subscribed to signal {self.signum}")
        return queue
