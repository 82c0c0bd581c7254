"""Provisioner interface shared by cloud and hypervisor backends."""

import logging
from abc import ABC, abstractmethod

from catapulta.errors import DestroyError, ProvisionError
from catapulta.provisioning.keys import find_default_key
from catapulta.provisioning.remote import DEFAULT_REMOTE_DIR, setup_remote
from catapulta.provisioning.ssh import wait_for_ssh
from catapulta.provisioning.ssh_config import remove_ssh_config_entry, setup_ssh_config
from catapulta.provisioning.ssh_transport import SshSession
from catapulta.provisioning.types import ServerHandle, ServerSpec

logger = logging.getLogger(__name__)


class Provisioner(ABC):
    """Creates, prepares and destroys servers.

    Callers only use this interface; backends implement ``get_server``,
    ``create_server`` and ``destroy_server``.
    """

    kind = "server"
    ssh_ready_attempts = 30
    ssh_ready_interval = 10

    def __init__(self, ssh_config_path="~/.ssh/config", dry_run=False):
        self.ssh_config_path = ssh_config_path
        self.dry_run = dry_run

    def detect_admin_key(self) -> str:
        """Private key used to administer new servers.

        Searches ~/.ssh/id_ed25519, id_ecdsa and id_rsa in that order.

        Raises:
            ProvisionError: no key with a matching ``.pub`` file was found.
        """
        key = find_default_key()
        if key is None:
            raise ProvisionError("No SSH key found (looked for ~/.ssh/id_ed25519, id_ecdsa, id_rsa)")
        return key

    async def check_prerequisites(self):
        """Raise ``ProvisionError`` if the backend cannot be used."""

    @abstractmethod
    async def get_server(self, name) -> ServerHandle | None:
        """Existing server called *name*, or None."""

    @abstractmethod
    async def create_server(self, spec: ServerSpec, ssh_key) -> ServerHandle:
        """Create a server and wait until it has an IP."""

    @abstractmethod
    async def destroy_server(self, handle: ServerHandle):
        """Delete the server behind *handle*."""

    async def provision(self, spec: ServerSpec) -> ServerHandle:
        """Create a server for *spec*.

        Raises:
            ProvisionError: creation failed; nothing is rolled back.
        """
        ssh_key = self.detect_admin_key()
        logger.info(f"Creating {self.kind} '{spec.name}'...")
        handle = await self.create_server(spec, ssh_key)
        logger.info(f"{self.kind.capitalize()} '{handle.name}' created, IP: {handle.ip}")
        return handle

    async def setup_server(self, handle: ServerHandle, domain=None, remote_dir=DEFAULT_REMOTE_DIR):
        """Wait for SSH, run the setup script and add an ~/.ssh/config entry."""
        async with SshSession(handle.address, handle.ssh_key, handle.ssh_port, dry_run=self.dry_run) as ssh:
            if not await wait_for_ssh(ssh, self.ssh_ready_attempts, self.ssh_ready_interval):
                raise ProvisionError(f"SSH to {handle.address} not ready after {self.ssh_ready_attempts} attempts")
            await setup_remote(ssh, domain or handle.ip, remote_dir)

        if not self.dry_run:
            setup_ssh_config(domain or handle.name, handle.ip, handle.ssh_user, handle.ssh_key, self.ssh_config_path)

    async def destroy(self, target, domain=None):
        """Destroy a server given its handle or name.

        Raises:
            DestroyError: the backend refused or the server does not exist.
        """
        handle = target
        if not isinstance(target, ServerHandle):
            handle = await self.get_server(target)
            if handle is None:
                if not self.dry_run:
                    raise DestroyError(f"{self.kind.capitalize()} '{target}' not found")
                handle = ServerHandle(target, "", provider_ref=target)
        logger.info(f"Destroying {self.kind} '{handle.name}'...")
        await self.destroy_server(handle)
        logger.info(f"{self.kind.capitalize()} '{handle.name}' destroyed")
        if not self.dry_run:
            remove_ssh_config_entry(domain or handle.name, self.ssh_config_path)
