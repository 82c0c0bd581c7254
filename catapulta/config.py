"""Deployment file loading: catapulta.yaml -> Pipeline."""

import os

import yaml

from catapulta.deploy import CloudflarePages, DockerSaveLoad, HealthPolicy
from catapulta.dns import Cloudflare, Ovh
from catapulta.errors import ConfigError, InvalidTopology
from catapulta.model import App, Caddy
from catapulta.pipeline import Pipeline
from catapulta.provisioning import DigitalOcean, Libvirt, NetworkMode

DEFAULT_CONFIG_FILE = "catapulta.yaml"

TOP_LEVEL_KEYS = {"apps", "proxy", "provisioner", "dns", "server", "remote_dir", "ssh_user", "health", "deployer"}
APP_KEYS = {
    "name", "image", "dockerfile", "context", "platform", "build_args", "env", "env_file",
    "volumes", "expose", "ports", "healthcheck", "restart", "source", "build_cmd", "build_dir",
}
PROXY_KEYS = {
    "routes", "gzip", "security_headers", "basic_auth", "volumes", "directives",
    "tls_email", "tls_internal", "domain", "image",
}


def _check_keys(section, data, allowed):
    if not isinstance(data, dict):
        raise ConfigError(f"{section}: expected a mapping, got {type(data).__name__}")
    unknown = set(data) - allowed
    if unknown:
        raise ConfigError(f"{section}: unknown key(s) {', '.join(sorted(unknown))}")


def _split_pair(section, value):
    """``"a:b"`` -> ("a", "b"), splitting on the first colon."""
    if not isinstance(value, str) or ":" not in value:
        raise ConfigError(f"{section}: expected 'source:target', got {value!r}")
    source, target = value.split(":", 1)
    return source, target


def _port(section, value):
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{section}: invalid port {value!r}") from e


def _resolve(base_dir, path):
    path = os.path.expanduser(path)
    if os.path.isabs(path):
        return path
    return os.path.normpath(os.path.join(base_dir, path))


def _build_app(data, base_dir):
    _check_keys("apps[]", data, APP_KEYS)
    name = data.get("name")
    if not name:
        raise ConfigError("apps[]: 'name' is required")
    section = f"apps.{name}"
    builder = App.builder(name)

    source = data.get("source")
    if source is not None:
        _check_keys(f"{section}.source", source, {"url", "branch"})
        builder.source(source["url"], source.get("branch", "main"))

    # Local builds are relative to the deployment file; git builds to the clone
    context = data.get("context", ".")
    if source is None:
        context = _resolve(base_dir, context)
    builder.context(context)
    if "dockerfile" in data:
        dockerfile = data["dockerfile"]
        builder.dockerfile(_resolve(base_dir, dockerfile) if source is None else dockerfile)
    else:
        builder.dockerfile(os.path.join(context, "Dockerfile"))

    for key in ("image", "platform", "healthcheck", "restart", "build_cmd", "build_dir"):
        if data.get(key) is not None:
            getattr(builder, key)(str(data[key]))
    if data.get("env_file"):
        builder.env_file(_resolve(base_dir, data["env_file"]))
    for key, value in (data.get("build_args") or {}).items():
        builder.build_arg(key, value)
    for key, value in (data.get("env") or {}).items():
        builder.env(key, value)
    for volume in data.get("volumes") or []:
        builder.volume(*_split_pair(f"{section}.volumes", volume))
    for port in data.get("expose") or []:
        builder.expose(_port(f"{section}.expose", port))
    for port in data.get("ports") or []:
        if isinstance(port, int):
            builder.port(port)
        else:
            host, container = _split_pair(f"{section}.ports", str(port))
            builder.port(_port(f"{section}.ports", host), _port(f"{section}.ports", container))

    try:
        return builder.build()
    except ValueError as e:
        raise ConfigError(str(e)) from e


def _upstream(ref, apps):
    """``"api:8000"`` or ``"api"`` -> Upstream checked against the app's ports."""
    ref = str(ref)
    name, _, port = ref.partition(":")
    app = apps.get(name)
    if app is None:
        raise InvalidTopology(f"Route upstream '{ref}' references unknown app '{name}'")
    return app.upstream(_port(f"upstream {ref}", port) if port else None)


def _build_proxy(data, apps):
    if data is None:
        return Caddy()
    _check_keys("proxy", data, PROXY_KEYS)
    builder = Caddy.builder()

    for route in data.get("routes") or []:
        _check_keys("proxy.routes[]", route, {"path", "upstream", "upstreams"})
        refs = route.get("upstreams") or route.get("upstream")
        if not refs:
            raise ConfigError("proxy.routes[]: 'upstream' is required")
        if not isinstance(refs, list):
            refs = [refs]
        builder.route(route.get("path"), *(_upstream(ref, apps) for ref in refs))

    if data.get("gzip"):
        builder.gzip()
    if data.get("security_headers"):
        builder.security_headers()
    if data.get("tls_internal"):
        builder.tls_internal()
    auth = data.get("basic_auth")
    if auth:
        _check_keys("proxy.basic_auth", auth, {"user", "hash"})
        builder.basic_auth(auth["user"], auth["hash"])
    for volume in data.get("volumes") or []:
        builder.volume(*_split_pair("proxy.volumes", volume))
    for directive in data.get("directives") or []:
        builder.directive(directive)
    for key in ("tls_email", "domain", "image"):
        if data.get(key):
            getattr(builder, key)(data[key])
    return builder.build()


def build_provisioner(data):
    data = dict(data)
    kind = data.pop("type", None)
    try:
        if kind == "digitalocean":
            return DigitalOcean(**data)
        if kind == "libvirt":
            network = data.pop("network", "nat")
            try:
                data["network"] = NetworkMode(network)
            except ValueError as e:
                raise ConfigError(f"provisioner.network: expected 'nat' or 'bridged', got {network!r}") from e
            return Libvirt(**data)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"provisioner ({kind}): {e}") from e
    raise ConfigError(f"provisioner.type: expected 'digitalocean' or 'libvirt', got {kind!r}")


def build_deployer(data, health=None):
    """``deployer:`` section -> Deployer; ``docker`` (the default) honours ``health``."""
    data = dict(data or {})
    kind = data.pop("type", "docker")
    try:
        if kind == "docker":
            if data:
                raise ConfigError(f"deployer (docker): unknown key(s) {', '.join(sorted(data))}")
            try:
                policy = HealthPolicy.from_dict(health)
            except ValueError as e:
                raise ConfigError(f"health: {e}") from e
            return DockerSaveLoad(health=policy)
        if kind == "cloudflare_pages":
            return CloudflarePages(**data)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"deployer ({kind}): {e}") from e
    raise ConfigError(f"deployer.type: expected 'docker' or 'cloudflare_pages', got {kind!r}")


def build_publisher(data):
    data = dict(data)
    provider = data.pop("provider", None)
    record = data.pop("record", None)
    if not record:
        raise ConfigError("dns[]: 'record' is required")
    try:
        if provider == "cloudflare":
            return Cloudflare(record, **data)
        if provider == "ovh":
            return Ovh(record, **data)
    except TypeError as e:
        raise ConfigError(f"dns ({provider}): {e}") from e
    raise ConfigError(f"dns[].provider: expected 'cloudflare' or 'ovh', got {provider!r}")


def build_pipeline(config, base_dir="."):
    """Build a Pipeline from a parsed deployment file dict."""
    _check_keys("config", config, TOP_LEVEL_KEYS)
    app_list = config.get("apps")
    if not app_list:
        raise ConfigError("config: at least one entry in 'apps' is required")

    apps = [_build_app(data, base_dir) for data in app_list]
    # Duplicates are reported by Pipeline; routes resolve against the first
    by_name = {}
    for app in apps:
        by_name.setdefault(app.name, app)
    proxy = _build_proxy(config.get("proxy"), by_name)

    pipeline = Pipeline(apps, proxy)

    if config.get("ssh_user"):
        pipeline.ssh_user(config["ssh_user"])
    if config.get("remote_dir"):
        pipeline.remote_dir(config["remote_dir"])
    server = config.get("server")
    if server:
        if isinstance(server, str):
            server = {"address": server}
        _check_keys("server", server, {"address", "ssh_key", "ssh_port"})
        pipeline.server(server["address"], server.get("ssh_key"), server.get("ssh_port", 22))
    if config.get("provisioner"):
        pipeline.provision(build_provisioner(config["provisioner"]))
    for entry in config.get("dns") or []:
        pipeline.dns(build_publisher(entry))

    health = config.get("health")
    if health is not None:
        _check_keys("health", health, {"interval", "timeout"})
    pipeline.deploy(build_deployer(config.get("deployer"), health))
    return pipeline


def load_pipeline(path=DEFAULT_CONFIG_FILE):
    """Load a deployment file and build its Pipeline.

    Raises:
        ConfigError: missing file, bad YAML or invalid structure.
        TopologyError: descriptors do not form a valid deployment.
    """
    if not os.path.isfile(path):
        raise ConfigError(f"Deployment file not found: {path}")
    with open(path) as f:
        try:
            config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"{path}: invalid YAML: {e}") from e
    if config is None:
        raise ConfigError(f"{path}: file is empty")
    return build_pipeline(config, base_dir=os.path.dirname(os.path.abspath(path)))
