"""Derived deployment topology: validation and proxy dependency set."""

from dataclasses import dataclass

from catapulta.errors import DuplicateApplicationName, InvalidTopology
from catapulta.model import App, Caddy

ENV_FILE = ".env"
PROXY_SERVICE = "caddy"


@dataclass(frozen=True)
class Topology:
    """Everything the generators need, recomputed on every render."""

    apps: tuple[App, ...]
    proxy: Caddy
    proxy_dependencies: tuple[str, ...]
    network: str
    env_files: dict[str, str]

    @property
    def has_proxy(self) -> bool:
        return self.proxy.has_routes

    @property
    def proxy_container(self) -> str:
        return proxy_container_name(self.apps)


def validate(apps, proxy: Caddy):
    """Check descriptors before any side effect.

    Raises:
        DuplicateApplicationName: two apps share a name.
        InvalidTopology: no apps, a route targets an absent app or an
            undeclared port, routes conflict, or an app takes the proxy
            service or container name.
    """
    if not apps:
        raise InvalidTopology("Deployment needs at least one application")

    by_name = {}
    for app in apps:
        if app.name in by_name:
            raise DuplicateApplicationName(app.name)
        by_name[app.name] = app

    whole_domain = 0
    paths = set()
    for route in proxy.routes:
        if route.whole_domain:
            whole_domain += 1
        elif route.path in paths:
            raise InvalidTopology(f"Route {route.path} declared twice")
        else:
            paths.add(route.path)
        for upstream in route.upstreams:
            app = by_name.get(upstream.app)
            if app is None:
                raise InvalidTopology(f"Route {route.path or '/'} references unknown app '{upstream.app}'")
            if upstream.port not in app.container_ports:
                raise InvalidTopology(f"Route {route.path or '/'} targets {upstream}, but '{app.name}' does not expose port {upstream.port}")
    if whole_domain > 1:
        raise InvalidTopology(f"Only one whole-domain route is allowed, got {whole_domain}")

    if proxy.has_routes:
        reserved = {PROXY_SERVICE, proxy_container_name(apps)}
        for app in apps:
            if app.name in reserved:
                raise InvalidTopology(f"App name '{app.name}' clashes with the proxy service or container name")


def proxy_container_name(apps) -> str:
    return f"{apps[0].name}-{PROXY_SERVICE}"


def proxy_dependencies(proxy: Caddy) -> tuple[str, ...]:
    """Distinct app names referenced by any route, in first-reference order."""
    names = []
    for upstream in proxy.upstreams:
        if upstream.app not in names:
            names.append(upstream.app)
    return tuple(names)


def env_file_names(apps) -> dict[str, str]:
    """Map remote env file name to local path for apps that declare one.

    A single-app deployment uses ``.env``; with several apps each gets
    ``.env.<name>``.
    """
    multi = len(apps) > 1
    files = {}
    for app in apps:
        if app.env_file:
            remote = f"{ENV_FILE}.{app.name}" if multi else ENV_FILE
            files[remote] = app.env_file
    return files


def remote_env_file(app: App, apps) -> str | None:
    if not app.env_file:
        return None
    return f"{ENV_FILE}.{app.name}" if len(apps) > 1 else ENV_FILE


def build_topology(apps, proxy: Caddy) -> Topology:
    validate(apps, proxy)
    apps = tuple(apps)
    return Topology(
        apps=apps,
        proxy=proxy,
        proxy_dependencies=proxy_dependencies(proxy),
        network=f"{apps[0].name}-network",
        env_files=env_file_names(apps),
    )
