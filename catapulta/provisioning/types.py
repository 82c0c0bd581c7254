"""Shared data types for server provisioners."""

from dataclasses import dataclass
from enum import Enum


class NetworkMode(Enum):
    """How a hypervisor VM is attached to the network."""

    BRIDGED = "bridged"  # on an existing host bridge, reachable from the LAN
    NAT = "nat"  # libvirt default network, reachable from the hypervisor only


@dataclass(frozen=True)
class ServerSpec:
    """What to create; backends fill in their own defaults for None fields."""

    name: str
    region: str | None = None
    size: str | None = None
    image: str | None = None


@dataclass
class ServerHandle:
    """A reachable server returned by a provisioner."""

    name: str
    ip: str
    ssh_user: str = "root"
    ssh_key: str | None = None
    ssh_port: int = 22
    region: str | None = None
    provider_ref: str | None = None  # backend id (droplet id, libvirt domain)

    @property
    def address(self) -> str:
        """SSH address string (user@host)."""
        return f"{self.ssh_user}@{self.ip}" if self.ssh_user else self.ip

    @classmethod
    def from_address(cls, address, ssh_key=None, ssh_port=22, default_user="root"):
        """Handle for a pre-existing server given as ``host`` or ``user@host``."""
        user, _, host = address.rpartition("@")
        return cls(name=host, ip=host, ssh_user=user or default_user, ssh_key=ssh_key, ssh_port=ssh_port)
