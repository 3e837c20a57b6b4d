"""SSH protocol engine adapter built on asyncssh.

AsyncSSHEngine performs the handshake over an already dialed socket and
hands out RemoteSession objects. asyncssh opens a session channel and
issues its pty and shell requests in a single create_process() call, so
RemoteSession records a pty request and opens the channel when the shell
is started.
"""

import asyncio
import logging
import socket
from typing import Any, Optional

import asyncssh
from asyncssh.connection import SSHClientConnection
from asyncssh.constants import PTY_ECHO, PTY_OP_ISPEED, PTY_OP_OSPEED
from asyncssh.process import SSHClientProcess, SSHCompletedProcess

from .exceptions import (
    HandshakeError,
    RemoteExitError,
    SessionError,
    SessionLostError,
    SessionOpenError,
)
from .types import AuthConfig, TerminalSize

logger = logging.getLogger("remote_shell.session")

TERMINAL_TYPE = "xterm"

TERMINAL_MODES = {
    PTY_ECHO: 1,
    PTY_OP_ISPEED: 14400,
    PTY_OP_OSPEED: 14400,
}


class RemoteSession:
    """A single shell session on an SSH connection.

    Example:
        >>> session = await engine.open_session(conn)
        >>> await session.shell()
        >>> session.stdin.write(b"uname -a\\n")
        >>> session.stdin.write_eof()
        >>> result = await session.wait()
    """

    def __init__(self, conn: SSHClientConnection) -> None:
        self._conn = conn
        self._pty: Optional[tuple] = None
        self._process: Optional[SSHClientProcess] = None
        self._result: Optional[SSHCompletedProcess] = None
        self._drained = False

    @property
    def started(self) -> bool:
        return self._process is not None

    @property
    def drained(self) -> bool:
        return self._drained

    @property
    def stdin(self) -> Any:
        if self._process is None:
            raise SessionError("shell not started")
        return self._process.stdin

    async def request_pty(
        self, term_type: str, rows: int, cols: int, modes: Optional[dict] = None
    ) -> None:
        """Request a pseudo-terminal for the shell started next."""
        if self._process is not None:
            raise SessionError("pty must be requested before the shell starts")
        self._pty = (term_type, TerminalSize(rows, cols), dict(modes or {}))

    async def shell(
        self,
        stdin: Any = asyncssh.PIPE,
        stdout: Any = asyncssh.DEVNULL,
        stderr: Any = asyncssh.DEVNULL,
    ) -> None:
        """Open the channel and start a login shell on it.

        Args:
            stdin: Where the shell reads input. The default PIPE leaves the
                ``stdin`` writer available to the caller.
            stdout: Redirect target for remote output. Discarded by default.
            stderr: Redirect target for remote errors. Discarded by default.

        Raises:
            SessionError: The channel, pty or shell request was refused.
        """
        if self._process is not None:
            raise SessionError("shell already started")
        # recv_eof=False keeps asyncssh from closing the caller's streams
        kwargs = dict(
            stdin=stdin, stdout=stdout, stderr=stderr, encoding=None, recv_eof=False
        )
        if self._pty is not None:
            term_type, size, modes = self._pty
            kwargs.update(
                term_type=term_type, term_size=(size.cols, size.rows), term_modes=modes
            )
        try:
            self._process = await self._conn.create_process(**kwargs)
        except (asyncssh.Error, OSError) as e:
            raise SessionError(f"failed to start shell: {e}") from e
        logger.debug(f"shell started pty={self._pty is not None}")

    def window_change(self, rows: int, cols: int) -> None:
        if self._process is None:
            raise SessionError("shell not started")
        try:
            self._process.change_terminal_size(cols, rows)
        except (asyncssh.Error, OSError) as e:
            raise SessionError(f"window change failed: {e}") from e

    async def wait(self) -> Optional[SSHCompletedProcess]:
        """Block until the remote shell exits.

        A session whose shell was never started has nothing to wait for and
        returns None at once. Calling wait() again returns the same result.
        """
        if self._process is None:
            self._drained = True
            return None
        if self._result is None:
            try:
                self._result = await self._process.wait()
            except (asyncssh.Error, OSError) as e:
                self._drained = True
                raise SessionLostError(f"session lost: {e}") from e
        self._drained = True
        return self._result


def check_exit(result: Optional[SSHCompletedProcess]) -> int:
    """Turn a completed session into an exit status or an error.

    Raises:
        RemoteExitError: The shell exited non-zero or was killed by a signal.
        SessionLostError: The session closed without an exit status.
    """
    if result is None:
        return 0
    if result.exit_signal:
        raise RemoteExitError(-1, result.exit_signal[0])
    if result.exit_status is None:
        raise SessionLostError("session closed without an exit status")
    if result.exit_status != 0:
        raise RemoteExitError(result.exit_status)
    return result.exit_status


class AsyncSSHEngine:
    """Protocol engine: handshake and session creation through asyncssh."""

    async def handshake(
        self, sock: socket.socket, host: str, port: int, auth: AuthConfig
    ) -> SSHClientConnection:
        logger.debug(f"handshake {host=} {port=} username={auth.username}")
        try:
            # unreadable keys and wrong passphrases surface here as ValueError
            options = auth.to_options()
            return await asyncssh.connect(host, port, sock=sock, options=options)
        except (asyncssh.Error, OSError, asyncio.TimeoutError, ValueError) as e:
            raise HandshakeError(f"ssh handshake with {host}:{port} failed: {e}") from e

    async def open_session(self, conn: SSHClientConnection) -> RemoteSession:
        if conn.get_extra_info("peername") is None:
            raise SessionOpenError("connection is not open")
        return RemoteSession(conn)
