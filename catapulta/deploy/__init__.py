"""Deployers: run a rendered stack on a server, or publish static sites to a host."""

from catapulta.deploy.base import Deployer
from catapulta.deploy.cloudflare_pages import CloudflarePages, pages_deploy_command
from catapulta.deploy.docker_save import DockerSaveLoad, build_command
from catapulta.deploy.health import HealthPolicy, container_health, wait_healthy

__all__ = [
    "CloudflarePages",
    "Deployer",
    "DockerSaveLoad",
    "HealthPolicy",
    "build_command",
    "container_health",
    "pages_deploy_command",
    "wait_healthy",
]
