"""Docker Compose manifest generation."""

import yaml

from catapulta.topology.graph import PROXY_SERVICE, Topology, remote_env_file

HEALTHCHECK_INTERVAL = "30s"
HEALTHCHECK_TIMEOUT = "10s"
HEALTHCHECK_RETRIES = 3
HEALTHCHECK_START_PERIOD = "10s"

CADDY_VOLUMES = ["caddy-data", "caddy-config"]


def is_bind_mount(source):
    """Host paths (./x, /x, ~/x) are bind mounts, anything else is a named volume."""
    return source.startswith((".", "/", "~"))


def _healthcheck(command):
    return {
        "test": ["CMD", "sh", "-c", command],
        "interval": HEALTHCHECK_INTERVAL,
        "timeout": HEALTHCHECK_TIMEOUT,
        "retries": HEALTHCHECK_RETRIES,
        "start_period": HEALTHCHECK_START_PERIOD,
    }


def _app_service(app, topology):
    service = {
        "image": app.image,
        "container_name": app.name,
        "restart": app.restart,
    }
    if app.expose:
        service["expose"] = [str(p) for p in app.expose]
    if app.ports:
        service["ports"] = [f"{host}:{container}" for host, container in app.ports]
    env_file = remote_env_file(app, topology.apps)
    if env_file:
        service["env_file"] = [env_file]
    if app.environment:
        service["environment"] = [f"{k}={v}" for k, v in app.environment]
    if app.volumes:
        service["volumes"] = [f"{source}:{mount}" for source, mount in app.volumes]
    if app.healthcheck:
        service["healthcheck"] = _healthcheck(app.healthcheck)
    service["networks"] = [topology.network]
    return service


def _proxy_service(topology):
    proxy = topology.proxy
    by_name = {app.name: app for app in topology.apps}
    service = {
        "image": proxy.image,
        "container_name": topology.proxy_container,
        "restart": "unless-stopped",
        "ports": ["80:80", "443:443"],
        "volumes": [
            "./Caddyfile:/etc/caddy/Caddyfile:ro",
            "caddy-data:/data",
            "caddy-config:/config",
        ]
        + [f"{source}:{mount}" for source, mount in proxy.volumes],
    }
    if topology.proxy_dependencies:
        # compose rejects service_healthy against a service without a healthcheck
        service["depends_on"] = {
            name: {"condition": "service_healthy" if by_name[name].healthcheck else "service_started"}
            for name in topology.proxy_dependencies
        }
    service["networks"] = [topology.network]
    return service


def _top_level_volumes(topology):
    names = []
    sources = [source for app in topology.apps for source, _ in app.volumes]
    if topology.has_proxy:
        sources += [source for source, _ in topology.proxy.volumes] + CADDY_VOLUMES
    for source in sources:
        if not is_bind_mount(source) and source not in names:
            names.append(source)
    return {name: {"driver": "local"} for name in names}


def compose_dict(topology: Topology) -> dict:
    """Build the manifest as insertion-ordered dicts."""
    services = {}
    if topology.has_proxy:
        services[PROXY_SERVICE] = _proxy_service(topology)
    for app in topology.apps:
        services[app.name] = _app_service(app, topology)

    manifest = {"services": services}
    volumes = _top_level_volumes(topology)
    if volumes:
        manifest["volumes"] = volumes
    manifest["networks"] = {topology.network: {"driver": "bridge"}}
    return manifest


def generate_compose(topology: Topology) -> str:
    """Render docker-compose.yml text; identical input gives identical output."""
    return yaml.safe_dump(compose_dict(topology), sort_keys=False, default_flow_style=False)
