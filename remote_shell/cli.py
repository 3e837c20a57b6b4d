"""Command-line interface for remote_shell.

Runs a script on a remote host, or opens an interactive shell there. The
script comes from the command line, a file, or standard input, and may be
rendered as a Jinja2 template with the host's inventory variables first.
Environment variables are passed with -e and from the inventory's
``remote_shell_env`` host variable.

Interrupting (SIGINT or SIGTERM) aborts the connection locally. A script
that was already sent may still finish on the remote host.

Usage:
    remote-shell [options] [--env=<e>]... <host> [<script>]
    remote-shell [options] --shell <host>

Options:
    -h, --help                  Show this page
    -i=<i>, --inventory=<i>     Inventory; <host> is then an inventory host
    -f=<f>, --file=<f>          Read the script from a file (- for stdin)
    -t, --template              Render the script with the host variables
    -e=<e>, --env=<e>           NAME=VALUE environment variable
    -u=<u>, --user=<u>          Remote user
    -k=<k>, --key=<k>           Private key file
    --timeout=<t>               Connect and login timeout in seconds
    --shell                     Open an interactive shell
    --debug                     Show debug logging
    --verbose                   Show verbose logging
"""
import asyncio
import logging
import os
import signal
import sys
from getpass import getuser
from typing import Dict, List, Optional

import jinja2
from docopt import docopt

from .client import SSHClient
from .env import add_env
from .exceptions import RemoteExitError, RemoteShellError
from .inventory import find_host, host_address, host_auth_config, host_env, load_inventory
from .signals import Cancellation
from .types import AuthConfig
from .util import read_script, render_script

logger = logging.getLogger("remote_shell.cli")


def build_target(parsed_args: Dict) -> tuple:
    """Resolve the address, auth settings, host variables and environment.

    Inventory values come first; -u, -k, --timeout and -e are applied on
    top of them.
    """
    host = parsed_args["<host>"]
    host_vars: Dict = {}
    env: List[str] = []
    if parsed_args["--inventory"]:
        host_vars = find_host(load_inventory(parsed_args["--inventory"]), host)
        address = host_address(host, host_vars)
        auth = host_auth_config(host_vars)
        env.extend(host_env(host_vars))
    else:
        address = host
        auth = AuthConfig(username=getuser())

    if parsed_args["--user"]:
        auth = auth._replace(username=parsed_args["--user"])
    if parsed_args["--key"]:
        auth = auth._replace(client_keys=[os.path.expanduser(parsed_args["--key"])])
    if parsed_args["--timeout"]:
        timeout = float(parsed_args["--timeout"])
        auth = auth._replace(connect_timeout=timeout, login_timeout=timeout)
    env.extend(parsed_args["--env"] or [])
    return address, auth, host_vars, env


def build_script(parsed_args: Dict, host_vars: Dict, env: List[str]) -> str:
    if parsed_args["--file"]:
        script = read_script(parsed_args["--file"])
    elif parsed_args["<script>"] is not None:
        script = parsed_args["<script>"]
    else:
        script = read_script("-")
    if parsed_args["--template"]:
        script = render_script(script, host_vars)
    return add_env(script, env)


async def main(args: Optional[List[str]] = None) -> int:
    """Run the remote-shell command and return its exit status.

    Returns the remote exit status when the remote script fails, 1 for any
    other error and 0 on success.
    """
    if args is None:
        args = sys.argv[1:]   # pragma: no cover
    parsed_args = docopt(__doc__, args)
    if parsed_args["--debug"]:
        logging.basicConfig(level=logging.DEBUG)
    elif parsed_args["--verbose"]:
        logging.basicConfig(level=logging.INFO)
    else:
        logging.basicConfig(level=logging.WARNING)

    try:
        address, auth, host_vars, env = build_target(parsed_args)
        script = None
        if not parsed_args["--shell"]:
            script = build_script(parsed_args, host_vars, env)
        client = SSHClient(address, auth)
    except (RemoteShellError, KeyError, OSError, ValueError, jinja2.TemplateError) as e:
        print(f"remote-shell: {e}", file=sys.stderr)
        return 1

    cancellation = Cancellation()
    loop = asyncio.get_running_loop()
    interrupts = [signal.SIGINT, signal.SIGTERM]
    for signum in interrupts:
        loop.add_signal_handler(signum, cancellation.cancel)

    try:
        await client.connect(cancellation)
        if script is None:
            return await client.shell()
        return await client.exec_script(
            script, stdout=sys.stdout.buffer, stderr=sys.stderr.buffer
        )
    except RemoteExitError as e:
        logger.info(f"{address}: {e}")
        return e.exit_status if e.exit_status > 0 else 1
    except RemoteShellError as e:
        print(f"remote-shell: {e}", file=sys.stderr)
        return 1
    finally:
        for signum in interrupts:
            loop.remove_signal_handler(signum)
        await client.close()


def entry_point() -> None:
    """Package entry point for the remote-shell command."""
    sys.exit(asyncio.run(main(sys.argv[1:])))   # pragma: no cover
