"""Environment prologue generation for remote scripts.

Most SSH servers only accept a short whitelist of variables through the
protocol's own environment request, so variables are passed by prepending
``NAME=value; export NAME`` lines to the script instead. Declarations come
from untrusted input: names are validated, values are always quoted.
"""

import re
import shlex
from typing import Iterable, List, Tuple

from .exceptions import EnvValidationError

_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*\Z")


def parse_env(env: Iterable[str]) -> List[Tuple[str, str]]:
    """Split and validate ``NAME=VALUE`` declarations.

    Each declaration is split on its first ``=`` only, so values may contain
    ``=`` themselves. A name is valid when shell quoting leaves it unchanged
    and it is a POSIX shell identifier.

    Args:
        env: Declarations in order.

    Returns:
        List of (name, value) pairs in declaration order.

    Raises:
        EnvValidationError: For the first declaration with no ``=`` or with
            an invalid name.

    Example:
        >>> parse_env(["A=1", "B=x=y"])
        [('A', '1'), ('B', 'x=y')]
    """
    pairs = []
    for declaration in env:
        name, sep, value = declaration.partition("=")
        if not sep:
            raise EnvValidationError(declaration, "missing '=' in environment declaration")
        if shlex.quote(name) != name or not _IDENTIFIER.match(name):
            raise EnvValidationError(declaration)
        pairs.append((name, value))
    return pairs


def add_env(script: str, env: Iterable[str]) -> str:
    """Prepend export lines for the given declarations to a script.

    Args:
        script: The script to run. It is appended unchanged.
        env: ``NAME=VALUE`` declarations. An empty list returns the script
            as is.

    Returns:
        The script with one ``NAME=<quoted value>; export NAME`` line per
        declaration in front of it.

    Raises:
        EnvValidationError: If any name is not a valid shell identifier.
            Nothing is produced in that case.

    Example:
        >>> add_env("echo $FOO", ["FOO=bar baz"])
        "FOO='bar baz'; export FOO\\necho $FOO"
        >>> add_env("echo hi", [])
        'echo hi'
    """
    prologue = "".join(
        f"{name}={shlex.quote(value)}; export {name}\n" for name, value in parse_env(env)
    )
    return prologue + script
