"""OVH DNS: A and CNAME records through the signed OVH API."""

import configparser
import hashlib
import json
import logging
import os
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx

from catapulta.dns.base import DnsPublisher, split_domain
from catapulta.errors import DnsError
from catapulta.redact import register_secret

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "~/.ovh.conf"

ENDPOINTS = {
    "ovh-eu": "https://eu.api.ovh.com/1.0",
    "ovh-us": "https://api.us.ovhcloud.com/1.0",
    "ovh-ca": "https://ca.api.ovh.com/1.0",
}


@dataclass
class OvhCredentials:
    endpoint: str
    application_key: str
    application_secret: str
    consumer_key: str

    @property
    def api_base(self):
        return ENDPOINTS.get(self.endpoint, f"https://{self.endpoint}.api.ovh.com/1.0")


def read_credentials(path=DEFAULT_CONFIG_PATH):
    """Load credentials from the INI file written by ``ovhcloud login``.

    ``[default] endpoint`` names the section holding the keys.

    Raises:
        DnsError: missing file, section or key.
    """
    path = os.path.expanduser(path)
    if not os.path.exists(path):
        raise DnsError("ovh", f"{path} not found. Run: ovhcloud login")
    parser = configparser.ConfigParser(interpolation=None)
    parser.read(path)

    endpoint = parser.get("default", "endpoint", fallback=None)
    if not endpoint:
        raise DnsError("ovh", f"missing endpoint in {path}")
    values = {}
    for key in ("application_key", "application_secret", "consumer_key"):
        value = parser.get(endpoint, key, fallback=None)
        if not value:
            raise DnsError("ovh", f"missing {key} in [{endpoint}] of {path}")
        values[key] = value
    register_secret(values["application_secret"])
    register_secret(values["consumer_key"])
    return OvhCredentials(endpoint=endpoint, **values)


def sign(creds, method, url, body, timestamp):
    """``$1$`` + SHA1 of ``AS+CK+METHOD+URL+BODY+TS``."""
    payload = "+".join([creds.application_secret, creds.consumer_key, method, url, body, str(timestamp)])
    return "$1$" + hashlib.sha1(payload.encode()).hexdigest()


class Ovh(DnsPublisher):
    """A or CNAME record in an OVH-hosted zone; the zone is refreshed after each change."""

    provider = "ovh"

    def __init__(self, record_name, config_path=DEFAULT_CONFIG_PATH, credentials=None, **kwargs):
        super().__init__(record_name, **kwargs)
        self.config_path = config_path
        self._credentials = credentials

    def credentials(self):
        if self._credentials is None:
            try:
                self._credentials = read_credentials(self.config_path)
            except DnsError as e:
                raise DnsError(self.record_name, e.message) from e
        return self._credentials

    async def _api_request(self, client, method, path, data=None, params=None):
        creds = self.credentials()
        url = f"{creds.api_base}{path}"
        if params:
            url += "?" + urlencode(params)
        body = json.dumps(data, separators=(",", ":")) if data is not None else ""

        if self.dry_run:
            logger.info(f"[dry-run] {method} {url} {body}".rstrip())
            return None

        try:
            time_resp = await client.get(f"{creds.api_base}/auth/time", timeout=30)
            time_resp.raise_for_status()
            timestamp = int(time_resp.text.strip())
            headers = {
                "X-Ovh-Application": creds.application_key,
                "X-Ovh-Consumer": creds.consumer_key,
                "X-Ovh-Timestamp": str(timestamp),
                "X-Ovh-Signature": sign(creds, method, url, body, timestamp),
                "Content-Type": "application/json",
            }
            resp = await client.request(method, url, content=body.encode() if body else None, headers=headers, timeout=30)
        except (httpx.HTTPError, ValueError) as e:
            raise DnsError(self.record_name, f"{method} {path}: {e}") from e
        if resp.is_error:
            raise DnsError(self.record_name, f"{method} {path}: HTTP {resp.status_code} {resp.text.strip()}")
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise DnsError(self.record_name, f"{method} {path}: invalid JSON response: {e}") from e

    async def _record_ids(self, client, zone, subdomain, record_type):
        params = {"fieldType": record_type, "subDomain": subdomain}
        result = await self._api_request(client, "GET", f"/domain/zone/{zone}/record", params=params)
        if result is None:
            return []
        if not isinstance(result, list):
            raise DnsError(self.record_name, f"unexpected record listing: {result!r:.200}")
        return result

    async def _refresh(self, client, zone):
        logger.info("  Refreshing DNS zone...")
        await self._api_request(client, "POST", f"/domain/zone/{zone}/refresh")

    async def upsert(self, target, record_type="A"):
        self._check_type(record_type)
        # OVH stores CNAME targets as absolute names
        if record_type == "CNAME" and not target.endswith("."):
            target += "."
        zone, subdomain = split_domain(self.record_name)
        logger.info(f"OVH DNS: {self.record_name} {record_type} -> {target} (zone {zone}, subdomain {subdomain or '@'})")
        async with httpx.AsyncClient(transport=self.transport) as client:
            record_ids = await self._record_ids(client, zone, subdomain, record_type)
            if record_ids:
                logger.info(f"  Updating existing {record_type} record (id: {record_ids[0]})...")
                await self._api_request(client, "PUT", f"/domain/zone/{zone}/record/{record_ids[0]}", data={"target": target, "ttl": self.ttl})
            else:
                logger.info(f"  Creating new {record_type} record...")
                await self._api_request(
                    client,
                    "POST",
                    f"/domain/zone/{zone}/record",
                    data={"fieldType": record_type, "subDomain": subdomain, "target": target, "ttl": self.ttl},
                )
            await self._refresh(client, zone)
        logger.info(f"DNS record set: {self.record_name} -> {target}")

    async def delete(self, record_type="A"):
        self._check_type(record_type)
        zone, subdomain = split_domain(self.record_name)
        async with httpx.AsyncClient(transport=self.transport) as client:
            for record_id in await self._record_ids(client, zone, subdomain, record_type):
                logger.info(f"  Deleting {record_type} record (id: {record_id})...")
                await self._api_request(client, "DELETE", f"/domain/zone/{zone}/record/{record_id}")
            await self._refresh(client, zone)
        logger.info(f"DNS record deleted: {self.record_name}")
