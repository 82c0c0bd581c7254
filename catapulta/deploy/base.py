"""Deployer interface."""

from abc import ABC, abstractmethod


class Deployer(ABC):
    """Gets rendered stacks running on a server, or publishes them to a host.

    Remote deployers work over SSH on a provisioned server. Hosted deployers
    (``is_remote = False``) need no server: the pipeline skips provisioning,
    calls them with ``server=None`` and points DNS at ``cname_target()``.
    """

    is_remote = True

    def cname_target(self) -> str | None:
        """Hostname DNS records should alias, for hosted deployers."""
        return None

    @abstractmethod
    async def deploy(self, server, apps, stack, remote_dir, skip_build=False):
        """Build, transfer and start *stack* on *server*."""

    @abstractmethod
    def plan(self, server, apps, stack, remote_dir, skip_build=False) -> list[str]:
        """Human-readable list of the actions ``deploy`` would perform."""

    @abstractmethod
    async def status(self, server, remote_dir) -> str:
        """Container status of the stack on *server*."""
