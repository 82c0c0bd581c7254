"""catapulta: declarative container deployment with Caddy, compose and registry-less image transfer."""
