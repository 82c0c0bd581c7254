"""Manage ``Host`` entries in ~/.ssh/config for provisioned servers."""

import logging
import os

logger = logging.getLogger(__name__)

DEFAULT_SSH_CONFIG = "~/.ssh/config"


def remove_ssh_host_entry(content, host):
    """Return *content* without the ``Host <host>`` block.

    The block ends at the next non-indented, non-empty line. Runs of blank
    lines left behind are collapsed to one.
    """
    header = f"Host {host}"
    result = []
    skip = False
    for line in content.splitlines():
        if line.strip() == header:
            skip = True
            continue
        if skip:
            if line and not line.startswith((" ", "\t")):
                skip = False
                result.append(line)
            continue
        result.append(line)

    out = "\n".join(result)
    while "\n\n\n" in out:
        out = out.replace("\n\n\n", "\n\n")
    if out and not out.endswith("\n"):
        out += "\n"
    return out


def format_host_entry(alias, ip, user, key_file):
    lines = [
        f"Host {alias}",
        f"    HostName {ip}",
        f"    User {user}",
    ]
    if key_file:
        lines.append(f"    IdentityFile {key_file}")
    lines.append("    StrictHostKeyChecking no")
    return "\n".join(lines) + "\n"


def setup_ssh_config(alias, ip, user="root", key_file=None, config_path=DEFAULT_SSH_CONFIG):
    """Add (or replace) a ``Host <alias>`` entry so ``ssh <alias>`` works."""
    path = os.path.expanduser(config_path)
    content = ""
    if os.path.exists(path):
        with open(path) as f:
            content = f.read()

    content = remove_ssh_host_entry(content, alias)
    if content and not content.endswith("\n\n"):
        content += "\n"
    content += format_host_entry(alias, ip, user, key_file)

    os.makedirs(os.path.dirname(path), mode=0o700, exist_ok=True)
    with open(path, "w") as f:
        f.write(content)
    logger.info(f"SSH config: ssh {alias}")


def remove_ssh_config_entry(alias, config_path=DEFAULT_SSH_CONFIG):
    """Drop the ``Host <alias>`` entry if the config file has one."""
    path = os.path.expanduser(config_path)
    if not os.path.exists(path):
        return
    with open(path) as f:
        content = f.read()
    updated = remove_ssh_host_entry(content, alias)
    if updated != content:
        with open(path, "w") as f:
            f.write(updated)
        logger.info(f"SSH config entry removed: {alias}")
