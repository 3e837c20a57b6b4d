"""
Unit tests for remote_shell.terminal module.
"""

import asyncio
import io
import os
import signal
from unittest.mock import MagicMock, patch

import pytest

from remote_shell.exceptions import CleanupError, RemoteExitError, TerminalError
from remote_shell.terminal import LocalTerminal, ResizeNotifications, ResizeQueue
from remote_shell.types import TerminalSize


@pytest.fixture
def pipe_fds():
    read_fd, write_fd = os.pipe()
    yield read_fd, write_fd
    os.close(read_fd)
    os.close(write_fd)


class TestLocalTerminal:
    """Tests for LocalTerminal."""

    def test_defaults_to_process_streams(self):
        """Test the process streams are used when none are given."""
        import sys

        terminal = LocalTerminal()
        assert terminal.stdin is sys.stdin
        assert terminal.stdout is sys.stdout
        assert terminal.stderr is sys.stderr

    def test_input_fd_without_fileno(self):
        """Test a stream without a descriptor is a TerminalError."""
        terminal = LocalTerminal(stdin=io.StringIO())
        with pytest.raises(TerminalError):
            terminal.input_fd()

    def test_output_fd(self):
        """Test output_fd returns the stdout descriptor."""
        stdout = MagicMock()
        stdout.fileno.return_value = 7
        assert LocalTerminal(stdout=stdout).output_fd() == 7

    def test_make_raw_on_pipe(self, pipe_fds):
        """Test raw mode on a non-terminal is a TerminalError."""
        with pytest.raises(TerminalError):
            LocalTerminal().make_raw(pipe_fds[0])

    def test_get_size_on_pipe(self, pipe_fds):
        """Test measuring a non-terminal is a TerminalError."""
        with pytest.raises(TerminalError):
            LocalTerminal().get_size(pipe_fds[0])

    @patch("remote_shell.terminal.os.get_terminal_size")
    def test_get_size(self, mock_size):
        """Test the size is reported as rows and columns."""
        mock_size.return_value = os.terminal_size((132, 43))
        assert LocalTerminal().get_size(0) == TerminalSize(rows=43, cols=132)

    @patch("remote_shell.terminal.termios")
    @patch("remote_shell.terminal.tty")
    def test_raw_restores_on_error(self, mock_tty, mock_termios):
        """Test the raw context restores the terminal when the body fails."""
        mock_termios.error = OSError
        mock_termios.tcgetattr.return_value = ["saved"]

        with pytest.raises(RuntimeError):
            with LocalTerminal().raw(3):
                raise RuntimeError("boom")

        mock_tty.setraw.assert_called_once_with(3)
        mock_termios.tcsetattr.assert_called_once_with(3, mock_termios.TCSADRAIN, ["saved"])

    def test_streams_are_duplicates(self, pipe_fds):
        """Test closing the handed out streams leaves the originals open."""
        read_fd, write_fd = pipe_fds
        stdin = MagicMock()
        stdin.fileno.return_value = read_fd
        stdout = MagicMock()
        stdout.fileno.return_value = write_fd
        terminal = LocalTerminal(stdin=stdin, stdout=stdout, stderr=stdout)

        with terminal.streams() as (remote_in, remote_out, remote_err):
            assert remote_in.fileno() not in (read_fd, write_fd)
            remote_out.write(b"x")
            remote_err.close()

        assert remote_in.closed
        assert remote_out.closed
        os.write(write_fd, b"y")
        assert os.read(read_fd, 2) == b"xy"

    def test_streams_without_descriptor(self):
        """Test streams without a descriptor are a TerminalError."""
        terminal = LocalTerminal(stdin=io.StringIO())
        with pytest.raises(TerminalError):
            with terminal.streams():
                pass

    @patch("remote_shell.terminal.termios")
    @patch("remote_shell.terminal.tty")
    def test_raw_restore_failure_after_error(self, mock_tty, mock_termios):
        """Test a restore failure is reported with the body's error."""
        mock_termios.error = OSError
        mock_termios.tcsetattr.side_effect = OSError("restore failed")

        with pytest.raises(CleanupError) as exc_info:
            with LocalTerminal().raw(3):
                raise RemoteExitError(2)

        assert isinstance(exc_info.value.error, RemoteExitError)
        assert isinstance(exc_info.value.cleanup_error, TerminalError)

    @patch("remote_shell.terminal.termios")
    @patch("remote_shell.terminal.tty")
    def test_raw_restore_failure_after_success(self, mock_tty, mock_termios):
        """Test a restore failure alone is a TerminalError."""
        mock_termios.error = OSError
        mock_termios.tcsetattr.side_effect = OSError("restore failed")

        with pytest.raises(TerminalError):
            with LocalTerminal().raw(3):
                pass


class TestResizeQueue:
    """Tests for ResizeQueue."""

    @pytest.mark.asyncio
    async def test_notifications_coalesce(self):
        """Test many notifications leave one pending entry."""
        queue = ResizeQueue()
        for _ in range(5):
            queue.notify()
        queue.close()

        received = [None async for _ in queue]
        assert received == []

    @pytest.mark.asyncio
    async def test_iteration_yields_pending(self):
        """Test a pending notification is delivered to the consumer."""
        queue = ResizeQueue()
        seen = []

        async def consume():
            async for _ in queue:
                seen.append(True)

        consumer = asyncio.ensure_future(consume())
        queue.notify()
        await asyncio.sleep(0.01)
        queue.notify()
        await asyncio.sleep(0.01)
        queue.close()
        await asyncio.wait_for(consumer, 1)

        assert seen == [True, True]

    @pytest.mark.asyncio
    async def test_close_releases_consumer(self):
        """Test close stops a consumer blocked on an empty queue."""
        queue = ResizeQueue()
        consumer = asyncio.ensure_future(queue.__anext__())
        await asyncio.sleep(0)

        queue.close()

        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(consumer, 1)

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        """Test close runs the close callback once."""
        on_close = MagicMock()
        queue = ResizeQueue(on_close=on_close)

        queue.close()
        queue.close()

        assert queue.closed
        on_close.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_notify_after_close_ignored(self):
        """Test notifications after close are dropped."""
        queue = ResizeQueue()
        queue.close()
        queue.notify()

        with pytest.raises(StopAsyncIteration):
            await queue.__anext__()
        with pytest.raises(StopAsyncIteration):
            await queue.__anext__()


@pytest.mark.skipif(not hasattr(signal, "SIGWINCH"), reason="requires SIGWINCH")
class TestResizeNotifications:
    """Tests for ResizeNotifications."""

    @pytest.mark.asyncio
    async def test_signal_delivered(self):
        """Test a real SIGWINCH reaches the queue."""
        queue = ResizeNotifications().subscribe()
        try:
            os.kill(os.getpid(), signal.SIGWINCH)
            await asyncio.wait_for(queue.__anext__(), 1)
        finally:
            queue.close()

    @pytest.mark.asyncio
    async def test_close_removes_handler(self):
        """Test closing the queue removes the signal handler."""
        loop = asyncio.get_running_loop()
        with patch.object(loop, "add_signal_handler") as add, patch.object(
            loop, "remove_signal_handler"
        ) as remove:
            queue = ResizeNotifications().subscribe()
            add.assert_called_once_with(signal.SIGWINCH, queue.notify)

            queue.close()

            remove.assert_called_once_with(signal.SIGWINCH)

    @pytest.mark.asyncio
    async def test_close_reinstalls_previous_handler(self):
        """Test the handler installed before subscribing is put back."""
        def previous_handler(signum, frame):
            pass

        original = signal.signal(signal.SIGWINCH, previous_handler)
        try:
            queue = ResizeNotifications().subscribe()
            assert signal.getsignal(signal.SIGWINCH) is not previous_handler

            queue.close()

            assert signal.getsignal(signal.SIGWINCH) is previous_handler
        finally:
            signal.signal(signal.SIGWINCH, original)
