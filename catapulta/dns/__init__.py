"""DNS publishers: point records at the provisioned server or a hosted site."""

from catapulta.dns.base import DnsPublisher, delete_all, publish_all, split_domain
from catapulta.dns.cloudflare import Cloudflare
from catapulta.dns.ovh import Ovh, OvhCredentials, read_credentials

__all__ = [
    "Cloudflare",
    "DnsPublisher",
    "Ovh",
    "OvhCredentials",
    "delete_all",
    "publish_all",
    "read_credentials",
    "split_domain",
]
