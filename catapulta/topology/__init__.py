"""Topology builder: compose manifest and Caddyfile from descriptors."""

from dataclasses import dataclass

from catapulta.topology.caddyfile import generate_caddyfile
from catapulta.topology.compose import compose_dict, generate_compose, is_bind_mount
from catapulta.topology.graph import Topology, build_topology, proxy_dependencies, validate

MANIFEST_FILE = "docker-compose.yml"
CADDYFILE = "Caddyfile"


@dataclass(frozen=True)
class RenderedStack:
    """Artifacts to ship to the remote directory."""

    manifest: str
    proxy_config: str | None
    env_files: dict[str, str]
    topology: Topology
    site: str | None = None

    def files(self) -> dict[str, str]:
        """Generated text files keyed by remote file name."""
        files = {MANIFEST_FILE: self.manifest}
        if self.proxy_config is not None:
            files[CADDYFILE] = self.proxy_config
        return files


def render(apps, proxy, domain=None) -> RenderedStack:
    """Validate descriptors and generate the stack artifacts.

    Pure: the same descriptors always give byte-identical output.

    Raises:
        DuplicateApplicationName, InvalidTopology
    """
    topology = build_topology(apps, proxy)
    proxy_config = generate_caddyfile(proxy, domain) if topology.has_proxy else None
    return RenderedStack(
        manifest=generate_compose(topology),
        proxy_config=proxy_config,
        env_files=dict(topology.env_files),
        topology=topology,
        site=domain or proxy.domain,
    )


__all__ = [
    "CADDYFILE",
    "MANIFEST_FILE",
    "RenderedStack",
    "Topology",
    "build_topology",
    "compose_dict",
    "generate_caddyfile",
    "generate_compose",
    "is_bind_mount",
    "proxy_dependencies",
    "render",
    "validate",
]
