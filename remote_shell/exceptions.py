"""Custom exception classes for the remote_shell client.

Every failure the client can report is one of the classes below, so callers
can tell a dial failure from a handshake failure, a usage mistake from a
remote script that exited non-zero, and so on.

Exception Hierarchy:
- RemoteShellError
    - TransportError
        - ConnectCancelled
    - ProtocolError
        - HandshakeError
        - SessionOpenError
        - SessionError
        - SessionLostError
    - RemoteExitError
    - UsageError
        - NotConnected
        - AlreadyConnected
        - ClientClosed
    - TerminalError
    - EnvValidationError
    - CleanupError

Errors raised by asyncssh or the operating system are chained with
``raise ... from`` so the original traceback is never lost.
"""

from typing import Optional


class RemoteShellError(Exception):
    """Base class for all remote_shell errors."""

    pass


class TransportError(RemoteShellError):
    """The TCP connection to the target could not be established.

    Raised for name resolution failures, refused connections and connect
    timeouts. The client keeps no partial state after a transport error, so
    connect() may be retried on the same client.
    """

    pass


class ConnectCancelled(TransportError):
    """The caller's cancellation fired before connect() completed.

    Cancellation is local only. It unblocks the connect call promptly, but
    it does not undo anything the remote host already started.
    """

    pass


class ProtocolError(RemoteShellError):
    """Base class for failures inside the SSH protocol engine."""

    pass


class HandshakeError(ProtocolError):
    """SSH key exchange or authentication failed."""

    pass


class SessionOpenError(ProtocolError):
    """The session channel could not be opened after a successful handshake."""

    pass


class SessionError(ProtocolError):
    """A request on an open session (pty, shell, window change) failed."""

    pass


class SessionLostError(ProtocolError):
    """The session ended without reporting an exit status.

    This happens when the connection drops or is aborted by a cancellation
    while a script or shell is still running. It is deliberately separate
    from RemoteExitError, which means the remote side did report a status.
    """

    pass


class RemoteExitError(RemoteShellError):
    """The remote shell exited with a non-zero status or on a signal.

    Attributes:
        exit_status: The remote exit status, or -1 when the remote process
            was terminated by a signal.
        exit_signal: Name of the terminating signal, if any.
    """

    def __init__(self, exit_status: int, exit_signal: Optional[str] = None) -> None:
        self.exit_status = exit_status
        self.exit_signal = exit_signal
        if exit_signal:
            message = f"remote shell killed by signal {exit_signal}"
        else:
            message = f"remote shell exited with status {exit_status}"
        super().__init__(message)


class UsageError(RemoteShellError):
    """An operation was called on a client in the wrong lifecycle state.

    No I/O is attempted when a usage error is raised.
    """

    pass


class NotConnected(UsageError):
    """An execution operation was called before connect()."""

    def __init__(self, message: str = "client not connected, did you call connect()?") -> None:
        super().__init__(message)


class AlreadyConnected(UsageError):
    """connect() was called on a client that is already connected."""

    def __init__(self, message: str = "client already connected") -> None:
        super().__init__(message)


class ClientClosed(NotConnected):
    """The client was closed and cannot be reused."""

    def __init__(self, message: str = "client already closed, create a new one") -> None:
        super().__init__(message)


class TerminalError(RemoteShellError):
    """The local terminal could not be switched to raw mode or measured."""

    pass


class EnvValidationError(RemoteShellError, ValueError):
    """An environment declaration has a name that is not a shell identifier.

    Attributes:
        declaration: The offending ``NAME=VALUE`` string.
    """

    def __init__(self, declaration: str, reason: str = "shell variable name not valid") -> None:
        self.declaration = declaration
        super().__init__(f"{reason}: {declaration!r}")


class CleanupError(RemoteShellError):
    """An operation failed and the cleanup that followed failed too.

    The original failure is the primary error; the cleanup failure is kept
    alongside it instead of replacing it.

    Attributes:
        error: The original error.
        cleanup_error: The error raised while cleaning up.
    """

    def __init__(self, error: BaseException, cleanup_error: BaseException) -> None:
        self.error = error
        self.cleanup_error = cleanup_error
        super().__init__(f"{error}, cleanup error: {cleanup_error}")
