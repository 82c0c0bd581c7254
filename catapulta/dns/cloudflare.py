"""Cloudflare DNS: A and CNAME records through the v4 API."""

import json
import logging
import os

import httpx

from catapulta.dns.base import DnsPublisher, split_domain
from catapulta.errors import DnsError

logger = logging.getLogger(__name__)

CF_API = "https://api.cloudflare.com/client/v4"
TOKEN_ENV = "CF_API_TOKEN"


class Cloudflare(DnsPublisher):
    """A or CNAME record in a Cloudflare zone, authenticated with ``CF_API_TOKEN``.

    Records are created unproxied so Caddy can complete the ACME challenge.
    """

    provider = "cloudflare"

    def __init__(self, record_name, token=None, api_url=CF_API, proxied=False, **kwargs):
        super().__init__(record_name, **kwargs)
        self.token = token
        self.api_url = api_url
        self.proxied = proxied

    def _token(self):
        token = self.token or os.environ.get(TOKEN_ENV)
        if not token and not self.dry_run:
            raise DnsError(self.record_name, f"{TOKEN_ENV} not set. Create a token at https://dash.cloudflare.com/profile/api-tokens")
        return token

    async def _api_request(self, client, method, path, data=None, params=None):
        """Call the API and return ``result``; Cloudflare reports failures in ``errors``."""
        if self.dry_run:
            logger.info(f"[dry-run] {method} {self.api_url}{path} {json.dumps(data) if data else ''}".rstrip())
            return None
        try:
            resp = await client.request(method, f"{self.api_url}{path}", json=data, params=params, timeout=30)
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise DnsError(self.record_name, f"{method} {path}: {e}") from e
        if not isinstance(body, dict):
            raise DnsError(self.record_name, f"{method} {path}: unexpected response (HTTP {resp.status_code}): {resp.text[:200]}")
        if resp.is_error or not body.get("success", False):
            messages = "; ".join(err.get("message", "") if isinstance(err, dict) else str(err) for err in body.get("errors") or []) or f"HTTP {resp.status_code}"
            raise DnsError(self.record_name, f"{method} {path}: {messages}")
        return body.get("result")

    def _client(self):
        headers = {"Authorization": f"Bearer {self._token()}", "Content-Type": "application/json"}
        return httpx.AsyncClient(headers=headers, transport=self.transport)

    async def _zone_id(self, client):
        zone, _ = split_domain(self.record_name)
        result = await self._api_request(client, "GET", "/zones", params={"name": zone})
        if self.dry_run:
            return "dry-run-zone"
        if not result:
            raise DnsError(self.record_name, f"Zone '{zone}' not found in Cloudflare account")
        return self._ids(result, "zone")[0]

    async def _record_ids(self, client, zone_id, record_type):
        params = {"type": record_type, "name": self.record_name}
        result = await self._api_request(client, "GET", f"/zones/{zone_id}/dns_records", params=params)
        return self._ids(result or [], "record")

    def _ids(self, result, what):
        if not isinstance(result, list) or not all(isinstance(r, dict) and "id" in r for r in result):
            raise DnsError(self.record_name, f"unexpected {what} listing: {result!r:.200}")
        return [r["id"] for r in result]

    async def upsert(self, target, record_type="A"):
        self._check_type(record_type)
        logger.info(f"Cloudflare DNS: {self.record_name} {record_type} -> {target}")
        payload = {"type": record_type, "name": self.record_name, "content": target, "ttl": self.ttl, "proxied": self.proxied}
        async with self._client() as client:
            zone_id = await self._zone_id(client)
            record_ids = await self._record_ids(client, zone_id, record_type)
            if record_ids:
                logger.info(f"  Updating existing {record_type} record (id: {record_ids[0]})...")
                await self._api_request(client, "PUT", f"/zones/{zone_id}/dns_records/{record_ids[0]}", data=payload)
            else:
                logger.info(f"  Creating new {record_type} record...")
                await self._api_request(client, "POST", f"/zones/{zone_id}/dns_records", data=payload)
        logger.info(f"DNS record set: {self.record_name} -> {target}")

    async def delete(self, record_type="A"):
        self._check_type(record_type)
        async with self._client() as client:
            zone_id = await self._zone_id(client)
            for record_id in await self._record_ids(client, zone_id, record_type):
                logger.info(f"  Deleting {record_type} record (id: {record_id})...")
                await self._api_request(client, "DELETE", f"/zones/{zone_id}/dns_records/{record_id}")
        logger.info(f"DNS record deleted: {self.record_name}")
