"""Descriptor model: application and reverse-proxy value objects."""

from catapulta.model.app import App, AppBuilder, GitSource, Upstream
from catapulta.model.proxy import Caddy, CaddyBuilder, Route

__all__ = ["App", "AppBuilder", "Caddy", "CaddyBuilder", "GitSource", "Route", "Upstream"]
