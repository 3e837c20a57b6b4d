"""High level SSH client with script and interactive shell execution.

SSHClient manages one connection to one host and exactly one session on
it. A client is used once: connect(), then either exec_script() or
shell(), after which it is closed and cannot be reused.

Key Features:
- Cancellable connect: a Cancellation aborts a slow dial or handshake
- Rollback of partially opened resources when connect fails
- Guaranteed, idempotent teardown after every execution operation
- Interactive shells with raw local terminal and window size forwarding
- Environment variables passed to scripts through a quoted prologue

Lifecycle:
    Unconnected --connect()--> Connected --exec_script()/shell()--> Closed
    Any state --close()--> Closed

Example:
    >>> client = SSHClient("example.com:22", AuthConfig(username="deploy"))
    >>> await client.connect()
    >>> await client.exec_script(add_env("echo $GREETING", ["GREETING=hello"]))

Note:
    Cancellation is local only. Cancelling after a script was sent unblocks
    the caller, but the script may still run to completion on the remote
    host. For example "sleep 20 && touch /tmp/foo" cancelled after ten
    seconds may still leave /tmp/foo behind.
"""

import asyncio
import logging
import socket
from typing import Any, Iterable, Optional

import asyncssh
from asyncssh.connection import SSHClientConnection

from .env import add_env
from .exceptions import (
    AlreadyConnected,
    CleanupError,
    ClientClosed,
    ConnectCancelled,
    HandshakeError,
    NotConnected,
    ProtocolError,
    RemoteExitError,
    RemoteShellError,
    SessionError,
    SessionLostError,
    SessionOpenError,
    TerminalError,
    TransportError,
    UsageError,
)
from .session import TERMINAL_MODES, TERMINAL_TYPE, AsyncSSHEngine, RemoteSession, check_exit
from .signals import Cancellation, OneShot, ShutdownSignal
from .terminal import LocalTerminal, ResizeNotifications, ResizeQueue
from .transport import dial, parse_address
from .types import AuthConfig, ClientState, Closed, Connected, Executing, Unconnected

logger = logging.getLogger("remote_shell.client")


class Link:
    """The transport socket and the SSH connection running over it.

    A link is closed at most once, either by the client's teardown or by
    the cancellation watcher, whichever trips the gate first.
    """

    def __init__(self, host: str, port: int) -> None:
        self.host = host
        self.port = port
        self.sock: Optional[socket.socket] = None
        self.conn: Optional[SSHClientConnection] = None
        self.pending: Optional[asyncio.Future] = None
        self.aborted = False
        self._gate = OneShot()

    @property
    def closed(self) -> bool:
        return self._gate.is_tripped()

    def abort(self) -> bool:
        """Drop the link immediately. Returns False if it was already closed."""
        if not self._gate.trip():
            return False
        self.aborted = True
        if self.conn is not None:
            self.conn.abort()
        elif self.pending is not None:
            # asyncssh owns the socket once the handshake started
            if not self.pending.done():
                self.pending.cancel()
        elif self.sock is not None:
            self.sock.close()
        return True

    def release(self) -> None:
        """Close the raw socket after a failed connect."""
        if self.sock is not None:
            self.sock.close()

    async def close(self) -> None:
        if not self._gate.trip():
            return
        if self.pending is not None and not self.pending.done():
            self.pending.cancel()
        try:
            if self.conn is not None:
                self.conn.close()
                await self.conn.wait_closed()
            elif self.sock is not None:
                self.sock.close()
        except (asyncssh.Error, OSError) as e:
            raise TransportError(f"error closing connection to {self.host}:{self.port}: {e}") from e


class SSHClient:
    """A single-use SSH client for one host.

    Args:
        address: Target as ``host:port`` or ``host`` (port 22).
        auth: Authentication settings. Defaults to an empty AuthConfig,
            which uses the local user, default keys and the SSH agent.
        engine: Protocol engine. Defaults to AsyncSSHEngine.
        dialer: Coroutine ``dialer(host, port, cancellation, timeout)``
            returning a connected socket. Defaults to transport.dial.
        terminal: Local terminal used by shell().
        resize_notifications: Source of terminal resize notifications.

    The client is meant for one caller at a time. Execution operations
    must not run concurrently on the same client.
    """

    def __init__(
        self,
        address: str,
        auth: Optional[AuthConfig] = None,
        *,
        engine: Any = None,
        dialer: Any = None,
        terminal: Optional[LocalTerminal] = None,
        resize_notifications: Optional[ResizeNotifications] = None,
    ) -> None:
        self.address = address
        self.host, self.port = parse_address(address)
        self.auth = auth if auth is not None else AuthConfig()
        self._engine = engine if engine is not None else AsyncSSHEngine()
        self._dialer = dialer if dialer is not None else dial
        self._terminal = terminal if terminal is not None else LocalTerminal()
        self._resize = resize_notifications if resize_notifications is not None else ResizeNotifications()
        self._state: ClientState = Unconnected()
        self._shutdown = ShutdownSignal()
        self._watcher: Optional[asyncio.Future] = None

    def __repr__(self) -> str:
        return f"<SSHClient {self.address} {self.state}>"

    @property
    def state(self) -> str:
        return type(self._state).__name__.lower()

    @property
    def connected(self) -> bool:
        return isinstance(self._state, Connected)

    @property
    def closed(self) -> bool:
        return isinstance(self._state, Closed)

    async def __aenter__(self) -> "SSHClient":
        return self

    async def __aexit__(self, exc_type, exc_value, traceback) -> None:
        await self.close()

    # --------------------
    # Connection management
    # --------------------

    async def dial(self) -> None:
        """Connect without a cancellation. See connect()."""
        await self.connect()

    async def connect(self, cancellation: Optional[Cancellation] = None) -> None:
        """Dial the host, authenticate and open the session.

        After a successful connect() the client must be finished with
        exec_script(), shell() or close().

        Args:
            cancellation: Optional Cancellation. While it has not fired,
                firing it aborts the connection: a pending connect returns
                ConnectCancelled promptly, and a later execution operation
                fails with SessionLostError.

        Raises:
            AlreadyConnected: connect() was already called successfully.
            ClientClosed: The client was closed.
            TransportError: The host could not be reached.
            ConnectCancelled: The cancellation fired during connect.
            HandshakeError: Key exchange or authentication failed.
            SessionOpenError: The session could not be opened.
            CleanupError: The session could not be opened and closing the
                connection afterwards failed as well.
        """
        if isinstance(self._state, Closed):
            raise ClientClosed()
        if not isinstance(self._state, Unconnected):
            raise AlreadyConnected()
        if cancellation is not None and not cancellation.can_cancel:
            cancellation = None
        if cancellation is not None and cancellation.cancelled():
            raise ConnectCancelled(f"connect to {self.address} cancelled")

        logger.info(f"connect {self.host=} {self.port=} username={self.auth.username}")
        link = Link(self.host, self.port)
        link.sock = await self._dialer(self.host, self.port, cancellation, self.auth.connect_timeout)

        watcher = None
        if cancellation is not None:
            watcher = asyncio.ensure_future(self._watch(cancellation, link))

        try:
            link.pending = asyncio.ensure_future(
                self._engine.handshake(link.sock, self.host, self.port, self.auth)
            )
            conn = await link.pending
        except asyncio.CancelledError:
            await self._rollback(link, watcher)
            if link.aborted:
                raise ConnectCancelled(f"connect to {self.address} cancelled") from None
            raise
        except Exception as e:
            await self._rollback(link, watcher)
            if link.aborted:
                raise ConnectCancelled(f"connect to {self.address} cancelled") from e
            if isinstance(e, RemoteShellError):
                raise
            raise HandshakeError(f"ssh handshake with {self.address} failed: {e}") from e
        finally:
            link.pending = None

        link.conn = conn
        if link.aborted:
            # cancelled after the handshake finished but before we resumed
            conn.abort()
            await self._rollback(link, watcher)
            raise ConnectCancelled(f"connect to {self.address} cancelled")

        try:
            session = await self._engine.open_session(link.conn)
        except asyncio.CancelledError:
            await self._rollback(link, watcher)
            raise
        except Exception as e:
            if link.aborted:
                error: RemoteShellError = ConnectCancelled(f"connect to {self.address} cancelled")
            elif isinstance(e, SessionOpenError):
                error = e
            else:
                error = SessionOpenError(f"session error: {e}")
            try:
                await self._rollback(link, watcher)
            except RemoteShellError as cleanup_error:
                raise CleanupError(error, cleanup_error) from e
            if error is e:
                raise
            raise error from e

        if not isinstance(self._state, Unconnected):
            # closed while connecting
            await self._rollback(link, watcher)
            raise ClientClosed()

        self._watcher = watcher
        self._state = Connected(link, session)
        logger.info(f"connected to {self.address}")

    async def _watch(self, cancellation: Cancellation, link: Link) -> None:
        cancelled = asyncio.ensure_future(cancellation.wait())
        shutdown = asyncio.ensure_future(self._shutdown.wait())
        try:
            done, _ = await asyncio.wait(
                {cancelled, shutdown}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            cancelled.cancel()
            shutdown.cancel()
        if cancelled in done and not self._shutdown.is_set():
            if link.abort():
                logger.info(f"connection to {self.address} aborted by cancellation")

    async def _rollback(self, link: Link, watcher: Optional[asyncio.Future]) -> None:
        try:
            await link.close()
        finally:
            link.release()
            if watcher is not None:
                watcher.cancel()
                await asyncio.gather(watcher, return_exceptions=True)

    async def close(self) -> None:
        """Wait for the session to finish, then close the connection.

        Calling close() again, or on a client that never connected, is a
        no-op. A shell that was started and not yet waited for is waited
        for first; use a Cancellation to abandon a running session instead.

        Raises:
            RemoteExitError: The pending shell exited non-zero.
            SessionLostError: The pending shell ended without a status.
            TransportError: Closing the connection failed.
            CleanupError: Both the session and the connection failed; the
                session error is the primary one.
        """
        state = self._state
        if isinstance(state, Closed):
            return
        self._state = Closed()
        try:
            if isinstance(state, (Connected, Executing)):
                await self._teardown(state.link, state.session)
        finally:
            self._shutdown.fire()
            watcher, self._watcher = self._watcher, None
            if watcher is not None:
                await asyncio.gather(watcher, return_exceptions=True)
            logger.info(f"closed {self.address}")

    async def _teardown(self, link: Link, session: RemoteSession) -> None:
        wait_error = None
        if session.started and not session.drained:
            try:
                check_exit(await session.wait())
            except (ProtocolError, RemoteExitError) as e:
                wait_error = e
        try:
            await link.close()
        except TransportError as e:
            if wait_error is not None:
                raise CleanupError(wait_error, e) from wait_error
            raise
        if wait_error is not None:
            raise wait_error

    # --------------------
    # Execution
    # --------------------

    def _begin(self) -> RemoteSession:
        state = self._state
        if isinstance(state, Connected):
            self._state = Executing(state.link, state.session)
            return state.session
        if isinstance(state, Closed):
            raise ClientClosed()
        if isinstance(state, Executing):
            raise UsageError("an execution operation is already running on this client")
        raise NotConnected()

    async def _finish(self, error: Optional[BaseException]) -> None:
        try:
            await self.close()
        except RemoteShellError as cleanup_error:
            if error is None:
                raise
            raise CleanupError(error, cleanup_error) from error

    async def exec_script(self, script: str, stdout: Any = None, stderr: Any = None) -> int:
        """Feed a script to a remote shell and wait for it to finish.

        The script is written to the shell's input followed by a newline and
        end-of-input, exactly as if it had been piped into ``sh``. It is not
        split or parsed locally. The client is closed when this returns,
        whatever the outcome.

        Args:
            script: Shell script text, usually prepared with add_env().
            stdout: Redirect target for the remote output (a file object,
                stream writer, or asyncssh redirect constant). Discarded
                when None.
            stderr: Redirect target for the remote error output.

        Returns:
            The remote exit status, always 0 on return.

        Raises:
            NotConnected: connect() was not called.
            ClientClosed: The client was already used or closed.
            RemoteExitError: The script exited non-zero.
            SessionLostError: The connection dropped or was cancelled.
            SessionError: The shell could not be started.
        """
        session = self._begin()
        logger.info(f"exec_script on {self.address} ({len(script)} bytes)")
        error = None
        try:
            return await self._run_script(session, script, stdout, stderr)
        except Exception as e:
            error = e
            raise
        finally:
            await self._finish(error)

    async def _run_script(
        self, session: RemoteSession, script: str, stdout: Any, stderr: Any
    ) -> int:
        redirects = {}
        if stdout is not None:
            redirects["stdout"] = stdout
        if stderr is not None:
            redirects["stderr"] = stderr
        await session.shell(**redirects)
        try:
            stdin = session.stdin
            stdin.write((script + "\n").encode())
            await stdin.drain()
            stdin.write_eof()
        except (asyncssh.Error, OSError) as e:
            raise SessionLostError(f"failed to send script: {e}") from e
        status = check_exit(await session.wait())
        logger.debug(f"script on {self.address} exited with {status}")
        return status

    async def shell(self) -> int:
        """Run an interactive login shell attached to the local terminal.

        The local terminal is put into raw mode and a pty of the same size
        is requested on the remote side. Local resizes are forwarded until
        the remote shell exits. The terminal mode is restored and the client
        is closed when this returns, whatever the outcome.

        Returns:
            The remote exit status, always 0 on return.

        Raises:
            NotConnected: connect() was not called.
            ClientClosed: The client was already used or closed.
            TerminalError: The local terminal could not be prepared.
            SessionError: The pty or the shell was refused.
            RemoteExitError: The remote shell exited non-zero.
            SessionLostError: The connection dropped before the shell exited.
        """
        session = self._begin()
        logger.info(f"shell on {self.address}")
        error = None
        try:
            return await self._interactive(session)
        except Exception as e:
            error = e
            raise
        finally:
            await self._finish(error)

    async def _interactive(self, session: RemoteSession) -> int:
        terminal = self._terminal
        fd = terminal.input_fd()
        with terminal.raw(fd):
            size = terminal.get_size(fd)
            await session.request_pty(TERMINAL_TYPE, size.rows, size.cols, TERMINAL_MODES)
            with terminal.streams() as (stdin, stdout, stderr):
                await session.shell(stdin=stdin, stdout=stdout, stderr=stderr)

                notifications = self._resize.subscribe()
                worker = asyncio.ensure_future(self._forward_resizes(session, notifications))
                try:
                    result = await session.wait()
                finally:
                    notifications.close()
                    await worker
            return check_exit(result)

    async def _forward_resizes(self, session: RemoteSession, notifications: ResizeQueue) -> None:
        async for _ in notifications:
            try:
                size = self._terminal.get_size(self._terminal.output_fd())
                session.window_change(size.rows, size.cols)
            except (TerminalError, SessionError) as e:
                logger.warning(f"window change not forwarded: {e}")
            else:
                logger.debug(f"window change {size.rows}x{size.cols}")


async def run_script(
    address: str,
    script: str,
    env: Optional[Iterable[str]] = None,
    auth: Optional[AuthConfig] = None,
    cancellation: Optional[Cancellation] = None,
    stdout: Any = None,
    stderr: Any = None,
) -> int:
    """Connect to address and run a script there with optional variables.

    Example:
        >>> await run_script("web01:22", "echo $ROLE", env=["ROLE=web"])
        0
    """
    script = add_env(script, env or [])
    client = SSHClient(address, auth)
    await client.connect(cancellation)
    return await client.exec_script(script, stdout=stdout, stderr=stderr)


def run_script_sync(
    address: str,
    script: str,
    env: Optional[Iterable[str]] = None,
    auth: Optional[AuthConfig] = None,
    stdout: Any = None,
    stderr: Any = None,
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> int:
    """Synchronous wrapper for run_script.

    Runs on a new event loop, or on ``loop`` from another thread when one
    is given.
    """
    coro = run_script(address, script, env=env, auth=auth, stdout=stdout, stderr=stderr)

    if loop is None:
        loop = asyncio.new_event_loop()
        try:
            return loop.run_until_complete(coro)
        finally:
            loop.close()
    else:
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        return future.result()


async def open_shell(
    address: str,
    auth: Optional[AuthConfig] = None,
    cancellation: Optional[Cancellation] = None,
) -> int:
    """Connect to address and attach an interactive shell to this terminal."""
    client = SSHClient(address, auth)
    await client.connect(cancellation)
    return await client.shell()
