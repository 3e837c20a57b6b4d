"""TCP transport for the SSH client.

The protocol engine is handed an already connected socket. Dialing happens
here so that a slow connect can be abandoned the moment the caller's
Cancellation fires, instead of waiting for the operating system's connect
timeout.
"""

import asyncio
import logging
import socket
from typing import Optional, Tuple

from .exceptions import ConnectCancelled, TransportError
from .signals import Cancellation

logger = logging.getLogger("remote_shell.transport")

DEFAULT_PORT = 22


def parse_address(address: str, default_port: int = DEFAULT_PORT) -> Tuple[str, int]:
    """Split a ``host:port`` target into its host and port.

    IPv6 literals must be bracketed when a port is given.

    Example:
        >>> parse_address("example.com:2222")
        ('example.com', 2222)
        >>> parse_address("example.com")
        ('example.com', 22)
        >>> parse_address("[::1]:22")
        ('::1', 22)
    """
    if not address:
        raise ValueError("empty address")
    if address.startswith("["):
        host, sep, rest = address[1:].partition("]")
        if not sep:
            raise ValueError(f"missing ']' in address {address!r}")
        if not rest:
            return host, default_port
        if not rest.startswith(":"):
            raise ValueError(f"invalid address {address!r}")
        port = rest[1:]
    elif address.count(":") == 1:
        host, port = address.split(":")
    else:
        return address, default_port
    try:
        return host, int(port)
    except ValueError:
        raise ValueError(f"invalid port in address {address!r}") from None


async def _open_socket(host: str, port: int) -> socket.socket:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    if not infos:
        raise OSError(f"no addresses found for {host}")
    last_error: Optional[OSError] = None
    for family, type_, proto, _, sockaddr in infos:
        sock = socket.socket(family, type_, proto)
        sock.setblocking(False)
        try:
            await loop.sock_connect(sock, sockaddr)
            return sock
        except OSError as e:
            last_error = e
            sock.close()
        except BaseException:
            sock.close()
            raise
    assert last_error is not None
    raise last_error


async def dial(
    host: str,
    port: int,
    cancellation: Optional[Cancellation] = None,
    timeout: Optional[float] = None,
) -> socket.socket:
    """Open a TCP connection to host:port.

    Args:
        host: Host name or IP address.
        port: TCP port.
        cancellation: Optional Cancellation. When it fires the dial is
            abandoned and ConnectCancelled is raised.
        timeout: Optional connect timeout in seconds.

    Returns:
        A connected, non-blocking socket.

    Raises:
        TransportError: The host could not be resolved or reached in time.
        ConnectCancelled: The cancellation fired first.
    """
    logger.debug(f"dial {host=} {port=} {timeout=}")
    if cancellation is not None and cancellation.cancelled():
        raise ConnectCancelled(f"connect to {host}:{port} cancelled")

    connect = asyncio.ensure_future(asyncio.wait_for(_open_socket(host, port), timeout))
    if cancellation is None or not cancellation.can_cancel:
        waiters = {connect}
    else:
        cancelled = asyncio.ensure_future(cancellation.wait())
        waiters = {connect, cancelled}

    try:
        done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        connect.cancel()
        raise
    finally:
        for waiter in waiters:
            if waiter is not connect:
                waiter.cancel()

    if connect not in done:
        connect.cancel()
        try:
            await connect
        except (asyncio.CancelledError, OSError, asyncio.TimeoutError):
            pass
        else:
            connect.result().close()
        raise ConnectCancelled(f"connect to {host}:{port} cancelled")

    try:
        return connect.result()
    except asyncio.TimeoutError:
        raise TransportError(f"connect to {host}:{port} timed out") from None
    except OSError as e:
        raise TransportError(f"connect to {host}:{port} failed: {e}") from e
