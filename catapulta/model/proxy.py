"""Reverse-proxy (Caddy) descriptor."""

from dataclasses import dataclass, field

from catapulta.model.app import Upstream

DEFAULT_PROXY_IMAGE = "caddy:2-alpine"


def normalize_path(path):
    """Canonical route prefix: ``None`` for whole-domain, else ``/prefix/*``."""
    if path is None:
        return None
    path = path.strip()
    if path in ("", "/", "/*", "*"):
        return None
    if not path.startswith("/"):
        path = "/" + path
    if path.endswith("/*"):
        return path
    return path.rstrip("/") + "/*"


@dataclass(frozen=True)
class Route:
    """Forward requests (all, or under a path prefix) to one or more upstreams."""

    path: str | None
    upstreams: tuple[Upstream, ...]

    def __post_init__(self):
        if not self.upstreams:
            raise ValueError("Route needs at least one upstream")
        for upstream in self.upstreams:
            if not isinstance(upstream, Upstream):
                raise TypeError(f"Route upstream must be an Upstream (use App.upstream()), got {type(upstream).__name__}")
        object.__setattr__(self, "path", normalize_path(self.path))

    @property
    def whole_domain(self) -> bool:
        return self.path is None


@dataclass(frozen=True)
class Caddy:
    """Proxy configuration: ordered routes plus site-wide options."""

    routes: tuple[Route, ...] = ()
    gzip: bool = False
    security_headers: bool = False
    basic_auth: tuple[str, str] | None = None
    volumes: tuple[tuple[str, str], ...] = ()
    extra_directives: tuple[str, ...] = ()
    tls_email: str | None = None
    tls_internal: bool = False
    domain: str | None = None
    image: str = DEFAULT_PROXY_IMAGE

    @classmethod
    def builder(cls):
        return CaddyBuilder()

    @property
    def has_routes(self) -> bool:
        return bool(self.routes)

    @property
    def upstreams(self) -> list[Upstream]:
        """All route upstreams in route order (duplicates kept)."""
        return [u for route in self.routes for u in route.upstreams]


@dataclass
class CaddyBuilder:
    """Fluent construction of a ``Caddy`` descriptor."""

    _fields: dict = field(default_factory=dict)

    def _set(self, key, value):
        self._fields[key] = value
        return self

    def _append(self, key, item):
        self._fields[key] = self._fields.get(key, ()) + (item,)
        return self

    def reverse_proxy(self, *upstreams):
        return self._append("routes", Route(None, tuple(upstreams)))

    def route(self, path, *upstreams):
        return self._append("routes", Route(path, tuple(upstreams)))

    def gzip(self):
        return self._set("gzip", True)

    def security_headers(self):
        return self._set("security_headers", True)

    def basic_auth(self, user, password_hash):
        return self._set("basic_auth", (user, password_hash))

    def volume(self, source, mount):
        return self._append("volumes", (source, mount))

    def directive(self, raw):
        return self._append("extra_directives", raw)

    def tls_email(self, email):
        return self._set("tls_email", email)

    def tls_internal(self):
        return self._set("tls_internal", True)

    def domain(self, name):
        return self._set("domain", name)

    def image(self, ref):
        return self._set("image", ref)

    def build(self) -> Caddy:
        return Caddy(**self._fields)
