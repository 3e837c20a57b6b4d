"""Type definitions for the remote_shell client.

This module defines the data types shared across the client: the
authentication settings handed to the protocol engine, the local terminal
size, and the variants of the client's lifecycle state.

The lifecycle is a tagged variant rather than a set of optional fields.
Each state carries only the resources that are valid in it, so a session
can never exist without the link it runs over.
"""

from typing import Any, NamedTuple, Optional, Sequence, Union

import asyncssh


class AuthConfig(NamedTuple):
    """Authentication settings for one SSH connection.

    Attributes:
        username: Remote user name. None lets asyncssh pick the local user.
        password: Password for password or keyboard-interactive auth.
        client_keys: Private key paths or key objects. None uses the
            default keys and the SSH agent.
        passphrase: Passphrase for encrypted private keys.
        known_hosts: Host key trust source passed straight to asyncssh.
            None disables host key checking.
        connect_timeout: Seconds allowed for the TCP connect.
        login_timeout: Seconds allowed for the handshake and authentication.

    Example:
        >>> auth = AuthConfig(username="deploy", client_keys=["~/.ssh/id_ed25519"])
        >>> options = auth.to_options()
    """

    username: Optional[str] = None
    password: Optional[str] = None
    client_keys: Optional[Sequence[Any]] = None
    passphrase: Optional[str] = None
    known_hosts: Any = None
    connect_timeout: Optional[float] = None
    login_timeout: Optional[float] = None

    def to_options(self) -> asyncssh.SSHClientConnectionOptions:
        """Build asyncssh connection options from the non-empty settings."""
        kwargs = {"known_hosts": self.known_hosts}
        if self.username is not None:
            kwargs["username"] = self.username
        if self.password is not None:
            kwargs["password"] = self.password
        if self.client_keys is not None:
            kwargs["client_keys"] = list(self.client_keys)
        if self.passphrase is not None:
            kwargs["passphrase"] = self.passphrase
        if self.login_timeout is not None:
            kwargs["login_timeout"] = self.login_timeout
        return asyncssh.SSHClientConnectionOptions(**kwargs)


class TerminalSize(NamedTuple):
    """Size of a terminal in character cells."""

    rows: int
    cols: int


class Unconnected(NamedTuple):
    """Initial state: no link and no session."""


class Connected(NamedTuple):
    """Connected state: an authenticated link and exactly one session."""

    link: Any
    session: Any


class Executing(NamedTuple):
    """An execution operation owns the session until it returns."""

    link: Any
    session: Any


class Closed(NamedTuple):
    """Terminal state. The client cannot be reused."""


ClientState = Union[Unconnected, Connected, Executing, Closed]
