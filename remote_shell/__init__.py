"""Top-level package for remote_shell."""

__version__ = "0.1.0"

from .client import SSHClient, open_shell, run_script, run_script_sync
from .env import add_env, parse_env
from .exceptions import (
    AlreadyConnected,
    CleanupError,
    ClientClosed,
    ConnectCancelled,
    EnvValidationError,
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
from .inventory import load_inventory
from .signals import Cancellation
from .types import AuthConfig

__all__ = [
    "SSHClient",
    "AuthConfig",
    "Cancellation",
    "add_env",
    "parse_env",
    "run_script",
    "run_script_sync",
    "open_shell",
    "load_inventory",
    "RemoteShellError",
    "TransportError",
    "ConnectCancelled",
    "ProtocolError",
    "HandshakeError",
    "SessionOpenError",
    "SessionError",
    "SessionLostError",
    "RemoteExitError",
    "UsageError",
    "NotConnected",
    "AlreadyConnected",
    "ClientClosed",
    "TerminalError",
    "EnvValidationError",
    "CleanupError",
]
