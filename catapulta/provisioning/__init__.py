"""Server provisioning: provisioner interface, backends, SSH transport and setup."""

from catapulta.provisioning.base import Provisioner
from catapulta.provisioning.digitalocean import DigitalOcean
from catapulta.provisioning.libvirt import Libvirt, parse_domifaddr
from catapulta.provisioning.remote import DEFAULT_REMOTE_DIR, setup_remote
from catapulta.provisioning.shell import run_shell_cmd
from catapulta.provisioning.ssh import wait_for_ssh
from catapulta.provisioning.ssh_config import (
    remove_ssh_config_entry,
    remove_ssh_host_entry,
    setup_ssh_config,
)
from catapulta.provisioning.ssh_transport import SshSession, ssh_base_args
from catapulta.provisioning.types import NetworkMode, ServerHandle, ServerSpec

__all__ = [
    "DEFAULT_REMOTE_DIR",
    "DigitalOcean",
    "Libvirt",
    "NetworkMode",
    "Provisioner",
    "ServerHandle",
    "ServerSpec",
    "SshSession",
    "parse_domifaddr",
    "remove_ssh_config_entry",
    "remove_ssh_host_entry",
    "run_shell_cmd",
    "setup_remote",
    "setup_ssh_config",
    "ssh_base_args",
    "wait_for_ssh",
]
