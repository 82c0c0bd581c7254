"""DNS publisher interface and best-effort fan-out."""

import logging
from abc import ABC, abstractmethod

from catapulta.errors import DnsError

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300
RECORD_TYPES = ("A", "CNAME")


def split_domain(fqdn):
    """Split a record name into (zone, subdomain).

    ``app.example.com`` -> ``("example.com", "app")``; a bare zone gives an
    empty subdomain.
    """
    parts = fqdn.strip().rstrip(".").split(".")
    if len(parts) <= 2:
        return ".".join(parts), ""
    return ".".join(parts[-2:]), ".".join(parts[:-2])


class DnsPublisher(ABC):
    """Points one record at the server (A) or at a hosted site (CNAME)."""

    provider = "dns"

    def __init__(self, record_name, ttl=DEFAULT_TTL, transport=None, dry_run=False):
        self.record_name = record_name
        self.ttl = ttl
        self.transport = transport
        self.dry_run = dry_run

    def __repr__(self):
        return f"{type(self).__name__}({self.record_name!r})"

    @abstractmethod
    async def upsert(self, target, record_type="A"):
        """Create or update the record. Raises ``DnsError``."""

    @abstractmethod
    async def delete(self, record_type="A"):
        """Remove the record if present. Raises ``DnsError``."""

    def _check_type(self, record_type):
        if record_type not in RECORD_TYPES:
            raise DnsError(self.record_name, f"unsupported record type {record_type!r}")


async def _fan_out(publishers, action, label):
    errors = []
    for publisher in publishers:
        try:
            await action(publisher)
        except DnsError as e:
            logger.error(f"{publisher.provider} {label} failed for {publisher.record_name}: {e.message}")
            errors.append(e)
    return errors


async def publish_all(publishers, target, record_type="A"):
    """Upsert every record in order; a failure does not stop later publishers.

    *target* is the server IP for A records or a hostname for CNAME records.

    Returns:
        list of DnsError, in publisher order (empty on full success)
    """
    return await _fan_out(publishers, lambda p: p.upsert(target, record_type), f"{record_type} upsert")


async def delete_all(publishers, record_type="A"):
    """Delete every record in order, collecting failures like ``publish_all``."""
    return await _fan_out(publishers, lambda p: p.delete(record_type), f"{record_type} delete")
