"""DigitalOcean provider: create/delete droplets via the v2 REST API."""

import asyncio
import json
import logging
import os

import httpx

from catapulta.errors import DestroyError, ProvisionError
from catapulta.provisioning.base import Provisioner
from catapulta.provisioning.keys import local_public_keys, md5_fingerprint
from catapulta.provisioning.types import ServerHandle, ServerSpec

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.digitalocean.com/v2"
DEFAULT_SIZE = "s-1vcpu-1gb"
DEFAULT_REGION = "fra1"
DEFAULT_IMAGE = "ubuntu-24-04-x64"
TOKEN_ENV = "DIGITALOCEAN_TOKEN"


def droplet_public_ip(droplet):
    for net in droplet.get("networks", {}).get("v4", []):
        if net.get("type") == "public":
            return net.get("ip_address")
    return None


class DigitalOcean(Provisioner):
    """Droplets on DigitalOcean.

    The admin key is the local key whose MD5 fingerprint matches a key
    registered on the account, so new droplets accept it immediately.
    """

    kind = "droplet"

    def __init__(
        self,
        size=DEFAULT_SIZE,
        region=DEFAULT_REGION,
        image=DEFAULT_IMAGE,
        token=None,
        api_url=DEFAULT_API_URL,
        ssh_dir="~/.ssh",
        transport=None,
        poll_interval=5,
        create_timeout=300,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.size = size
        self.region = region
        self.image = image
        self.token = token
        self.api_url = api_url
        self.ssh_dir = ssh_dir
        self.transport = transport
        self.poll_interval = poll_interval
        self.create_timeout = create_timeout
        self._account_key = None  # (key_id, private_key_path)

    # ── API helpers ───────────────────────────────────────────────────

    def _token(self):
        token = self.token or os.environ.get(TOKEN_ENV)
        if not token and not self.dry_run:
            raise ProvisionError(f"{TOKEN_ENV} is not set")
        return token

    async def _api_request(self, method, path, data=None, params=None):
        """Make an authenticated DigitalOcean API request.

        Returns:
            Parsed JSON body (``{}`` for 204), or ``None`` in dry-run mode.

        Raises:
            ProvisionError: transport failure or non-2xx response.
        """
        url = f"{self.api_url}{path}"
        if self.dry_run:
            logger.info(f"[dry-run] {method} {url}")
            if data is not None:
                logger.info(f"[dry-run] payload: {json.dumps(data, indent=2)}")
            return None

        headers = {"Authorization": f"Bearer {self._token()}", "Content-Type": "application/json"}
        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                resp = await client.request(method, url, json=data, params=params, headers=headers, timeout=60)
        except httpx.HTTPError as e:
            raise ProvisionError(f"DigitalOcean API {method} {path}: {e}") from e
        if resp.is_error:
            raise ProvisionError(f"DigitalOcean API {method} {path}: HTTP {resp.status_code} {resp.text.strip()}")
        if resp.status_code == 204 or not resp.content:
            return {}
        return resp.json()

    async def _list_droplets(self, name=None):
        params = {"per_page": 200}
        if name:
            params["name"] = name
        result = await self._api_request("GET", "/droplets", params=params)
        if result is None:
            return []
        return result.get("droplets", [])

    async def _get_droplet(self, droplet_id):
        result = await self._api_request("GET", f"/droplets/{droplet_id}")
        return (result or {}).get("droplet")

    # ── Core logic ─────────────────────────────────────────────────────

    async def _match_account_key(self):
        """Find a local key registered on the account.

        Returns:
            (key_id, private_key_path)
        """
        if self._account_key is not None:
            return self._account_key
        result = await self._api_request("GET", "/account/keys", params={"per_page": 200})
        if result is None:
            self._account_key = ("dry-run-key-id", super().detect_admin_key())
            return self._account_key

        remote = {k.get("fingerprint"): k for k in result.get("ssh_keys", [])}
        if not remote:
            raise ProvisionError("No SSH keys registered in the DigitalOcean account")

        for private_path, public_key in local_public_keys(self.ssh_dir):
            try:
                fingerprint = md5_fingerprint(public_key)
            except ValueError:
                continue
            if fingerprint in remote:
                key = remote[fingerprint]
                logger.info(f"SSH key: {private_path} (ID: {key['id']})")
                self._account_key = (key["id"], private_path)
                return self._account_key

        raise ProvisionError(f"No local key in {self.ssh_dir} matches a DigitalOcean key ({', '.join(remote)})")

    def detect_admin_key(self) -> str:
        if self._account_key is not None:
            return self._account_key[1]
        return super().detect_admin_key()

    async def check_prerequisites(self):
        logger.info("Checking prerequisites...")
        await self._api_request("GET", "/account")
        await self._match_account_key()
        logger.info("Prerequisites OK")

    def _handle(self, droplet, ssh_key):
        return ServerHandle(
            name=droplet["name"],
            ip=droplet_public_ip(droplet) or "",
            ssh_user="root",
            ssh_key=ssh_key,
            region=droplet.get("region", {}).get("slug"),
            provider_ref=str(droplet["id"]),
        )

    async def get_server(self, name):
        for droplet in await self._list_droplets(name):
            if droplet.get("name") == name:
                key = self._account_key[1] if self._account_key else None
                return self._handle(droplet, key)
        return None

    async def provision(self, spec: ServerSpec) -> ServerHandle:
        await self._match_account_key()
        return await super().provision(spec)

    async def create_server(self, spec, ssh_key):
        key_id, _ = await self._match_account_key()
        region = spec.region or self.region
        payload = {
            "name": spec.name,
            "region": region,
            "size": spec.size or self.size,
            "image": spec.image or self.image,
            "ssh_keys": [key_id],
            "monitoring": True,
        }
        logger.info(f"Creating droplet '{spec.name}' in {region} ({payload['size']})...")
        result = await self._api_request("POST", "/droplets", data=payload)
        if result is None:
            return ServerHandle(spec.name, "203.0.113.10", ssh_key=ssh_key, region=region, provider_ref="dry-run")

        droplet_id = result["droplet"]["id"]
        return await self._wait_for_active(droplet_id, ssh_key)

    async def _wait_for_active(self, droplet_id, ssh_key):
        """Poll the droplet until it is active with a public IPv4."""
        elapsed = 0
        while elapsed < self.create_timeout:
            droplet = await self._get_droplet(droplet_id)
            if droplet and droplet.get("status") == "active" and droplet_public_ip(droplet):
                return self._handle(droplet, ssh_key)
            status = droplet.get("status") if droplet else "unknown"
            logger.info(f"Waiting for droplet {droplet_id} (status: {status})...")
            await asyncio.sleep(self.poll_interval)
            elapsed += self.poll_interval
        raise ProvisionError(f"Droplet {droplet_id} not active after {self.create_timeout}s")

    async def destroy_server(self, handle):
        droplet_id = handle.provider_ref
        if not droplet_id:
            existing = await self.get_server(handle.name)
            if existing is None:
                raise DestroyError(f"Droplet '{handle.name}' not found")
            droplet_id = existing.provider_ref
        try:
            await self._api_request("DELETE", f"/droplets/{droplet_id}")
        except ProvisionError as e:
            raise DestroyError(str(e)) from e
