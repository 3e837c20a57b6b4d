"""Inventory based configuration for remote_shell.

Hosts can be described in an Ansible-compatible YAML inventory so that
addresses, users, keys and per-host environment variables do not have to be
repeated on every command line.

Example inventory:

    ```yaml
    all:
      hosts:
        web01:
          ansible_host: 192.168.1.11
          ansible_port: 2222
          ansible_user: deploy
          ansible_ssh_private_key_file: ~/.ssh/deploy_ed25519
          remote_shell_env:
            ROLE: web
            TIER: production
    ```

Recognised host variables:
- ansible_host: address to connect to (defaults to the host name)
- ansible_port: SSH port (default 22)
- ansible_user: remote user (defaults to the local user)
- ansible_password: password authentication
- ansible_ssh_private_key_file: private key path
- remote_shell_env: mapping or list of NAME=VALUE declarations
"""

import os
from getpass import getuser
from typing import Any, Dict, List, Optional

import yaml

from .types import AuthConfig


def load_inventory(inventory_file: str) -> Any:
    """Load an Ansible-compatible YAML inventory file.

    Uses yaml.safe_load. An empty file gives an empty dictionary.

    Raises:
        FileNotFoundError: If the inventory file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    with open(inventory_file) as f:
        inventory_data = yaml.safe_load(f.read())
    return inventory_data or {}


def unique_hosts(inventory: Dict) -> Dict:
    """Flatten an inventory into a mapping of host name to host variables.

    Hosts in nested ``children`` groups are included. Group ``vars`` are
    applied under the host's own variables. A host listed in several groups
    keeps the last definition encountered.

    Example:
        >>> inv = {
        ...     "webservers": {"hosts": {"web1": {"ansible_host": "1.1.1.1"}}},
        ...     "databases": {"hosts": {"db1": {"ansible_host": "2.2.2.2"}}}
        ... }
        >>> unique_hosts(inv)
        {'web1': {'ansible_host': '1.1.1.1'}, 'db1': {'ansible_host': '2.2.2.2'}}
    """
    hosts: Dict[str, Dict] = {}

    def collect(group: Dict, inherited: Dict) -> None:
        group_vars = dict(inherited)
        group_vars.update(group.get("vars") or {})
        for host_name, host in (group.get("hosts") or {}).items():
            merged = dict(group_vars)
            merged.update(host or {})
            hosts[host_name] = merged
        for child in (group.get("children") or {}).values():
            collect(child or {}, group_vars)

    for group in inventory.values():
        collect(group or {}, {})

    return hosts


def find_host(inventory: Dict, host_name: str) -> Dict:
    """Return the variables of one host.

    Raises:
        KeyError: If the host is not in the inventory.
    """
    hosts = unique_hosts(inventory)
    if host_name not in hosts:
        raise KeyError(f"host {host_name} not found in inventory")
    return hosts[host_name]


def host_address(host_name: str, host: Dict) -> str:
    """Build the ``host:port`` address for an inventory host."""
    ssh_host = host.get("ansible_host") or host_name
    port_value = host.get("ansible_port")
    ssh_port = int(port_value) if port_value is not None else 22
    if ":" in ssh_host:
        return f"[{ssh_host}]:{ssh_port}"
    return f"{ssh_host}:{ssh_port}"


def host_auth_config(host: Dict, known_hosts: Any = None) -> AuthConfig:
    """Build authentication settings from an inventory host."""
    key_file: Optional[str] = host.get("ansible_ssh_private_key_file")
    return AuthConfig(
        username=host.get("ansible_user") or getuser(),
        password=host.get("ansible_password"),
        client_keys=[os.path.expanduser(key_file)] if key_file else None,
        known_hosts=known_hosts,
    )


def host_env(host: Dict) -> List[str]:
    """Return the host's environment declarations as NAME=VALUE strings.

    ``remote_shell_env`` may be a mapping or a list of declarations. The
    declarations are validated later by add_env().
    """
    env = host.get("remote_shell_env") or []
    if isinstance(env, dict):
        return [f"{name}={value}" for name, value in env.items()]
    return [str(item) for item in env]
