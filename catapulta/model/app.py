"""Application descriptor and typed upstream references."""

from dataclasses import dataclass, field

from catapulta.errors import InvalidUpstream

DEFAULT_DOCKERFILE = "Dockerfile"
DEFAULT_PLATFORM = "linux/amd64"
DEFAULT_RESTART = "unless-stopped"


@dataclass(frozen=True)
class Upstream:
    """A specific application's internal port, usable as a proxy route target.

    Obtain one through ``App.upstream()`` so the port is checked against the
    ports the application actually declares.
    """

    app: str
    port: int

    def __str__(self):
        return f"{self.app}:{self.port}"


@dataclass(frozen=True)
class GitSource:
    """Build the image from a fresh clone instead of the local tree."""

    url: str
    branch: str = "main"


@dataclass(frozen=True)
class App:
    """One application container: how to build it and how to run it."""

    name: str
    image: str | None = None
    dockerfile: str = DEFAULT_DOCKERFILE
    context: str = "."
    platform: str = DEFAULT_PLATFORM
    build_args: tuple[tuple[str, str], ...] = ()
    environment: tuple[tuple[str, str], ...] = ()
    env_file: str | None = None
    volumes: tuple[tuple[str, str], ...] = ()
    expose: tuple[int, ...] = ()
    ports: tuple[tuple[int, int], ...] = ()
    healthcheck: str | None = None
    restart: str = DEFAULT_RESTART
    source: GitSource | None = None
    # Static sites published by a hosted deployer
    build_cmd: str | None = None
    build_dir: str | None = None

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("App name must not be empty")
        if self.image is None:
            object.__setattr__(self, "image", f"{self.name}:latest")
        keys = [k for k, _ in self.environment]
        if len(keys) != len(set(keys)):
            raise ValueError(f"App '{self.name}': duplicate environment keys")
        for port in self.expose:
            _check_port(self.name, port)
        for host, container in self.ports:
            _check_port(self.name, host)
            _check_port(self.name, container)

    @classmethod
    def builder(cls, name):
        return AppBuilder(name)

    @property
    def env(self) -> dict[str, str]:
        return dict(self.environment)

    @property
    def container_ports(self) -> tuple[int, ...]:
        """Every port reachable on the shared network: exposed first, then published."""
        seen = list(self.expose)
        for _, container in self.ports:
            if container not in seen:
                seen.append(container)
        return tuple(seen)

    def upstream(self, port=None) -> Upstream:
        """Return a typed reference to one of this app's ports.

        Args:
            port: container port; defaults to the first exposed port, then
                the first published container port.

        Raises:
            InvalidUpstream: the port is not exposed or published by the app.
        """
        declared = self.container_ports
        if port is None:
            if not declared:
                raise InvalidUpstream(self.name, None)
            return Upstream(self.name, declared[0])
        if port not in declared:
            raise InvalidUpstream(self.name, port, declared)
        return Upstream(self.name, port)


def _check_port(app, port):
    if not isinstance(port, int) or isinstance(port, bool) or not 1 <= port <= 65535:
        raise ValueError(f"App '{app}': invalid port {port!r}")


@dataclass
class AppBuilder:
    """Fluent construction of an ``App``; each setter returns the builder."""

    name: str
    _fields: dict = field(default_factory=dict)

    def _set(self, key, value):
        self._fields[key] = value
        return self

    def _append(self, key, item):
        self._fields[key] = self._fields.get(key, ()) + (item,)
        return self

    def image(self, ref):
        return self._set("image", ref)

    def dockerfile(self, path):
        return self._set("dockerfile", path)

    def context(self, path):
        return self._set("context", path)

    def platform(self, platform):
        return self._set("platform", platform)

    def build_arg(self, key, value):
        return self._append("build_args", (key, str(value)))

    def env(self, key, value):
        # Re-setting a key replaces its value in place
        pairs = [(k, v) for k, v in self._fields.get("environment", ())]
        for i, (k, _) in enumerate(pairs):
            if k == key:
                pairs[i] = (key, str(value))
                break
        else:
            pairs.append((key, str(value)))
        return self._set("environment", tuple(pairs))

    def env_file(self, path):
        return self._set("env_file", path)

    def volume(self, source, mount):
        return self._append("volumes", (source, mount))

    def expose(self, *ports):
        for port in ports:
            self._append("expose", port)
        return self

    def port(self, host, container=None):
        return self._append("ports", (host, host if container is None else container))

    def healthcheck(self, command):
        return self._set("healthcheck", command)

    def restart(self, policy):
        return self._set("restart", policy)

    def source(self, url, branch="main"):
        return self._set("source", GitSource(url, branch))

    def build_cmd(self, command):
        return self._set("build_cmd", command)

    def build_dir(self, path):
        return self._set("build_dir", path)

    def build(self) -> App:
        return App(self.name, **self._fields)

