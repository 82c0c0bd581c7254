"""Unit tests for the Cloudflare publisher (API mocked with httpx.MockTransport)."""

import json
import logging

import httpx
import pytest

from catapulta.dns import Cloudflare, DnsPublisher, publish_all
from catapulta.errors import DnsError

API = "https://api.test.cloudflare.com/client/v4"


def _ok(result):
    return httpx.Response(200, json={"success": True, "errors": [], "result": result})


class FakeCloudflare:
    def __init__(self, zones=None, records=None):
        self.zones = [{"id": "zone-1", "name": "example.com"}] if zones is None else zones
        self.records = records or []
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        path = request.url.path.split("/client/v4", 1)[1]
        if path == "/zones":
            return _ok(self.zones)
        if path == "/zones/zone-1/dns_records" and request.method == "GET":
            return _ok(self.records)
        return _ok({"id": "rec-new"})


def _publisher(api, **kwargs):
    return Cloudflare("app.example.com", token="cf-test-token", api_url=API, transport=httpx.MockTransport(api), **kwargs)


async def test_upsert_creates_record():
    api = FakeCloudflare()
    await _publisher(api).upsert("1.2.3.4")

    zones, lookup, create = api.requests
    assert zones.url.params["name"] == "example.com"
    assert zones.headers["Authorization"] == "Bearer cf-test-token"
    assert lookup.url.params["type"] == "A"
    assert lookup.url.params["name"] == "app.example.com"
    assert create.method == "POST"
    assert json.loads(create.content) == {
        "type": "A",
        "name": "app.example.com",
        "content": "1.2.3.4",
        "ttl": 300,
        "proxied": False,
    }


async def test_upsert_updates_existing_record():
    api = FakeCloudflare(records=[{"id": "rec-9"}])
    await _publisher(api, ttl=60).upsert("5.6.7.8")
    update = api.requests[-1]
    assert update.method == "PUT"
    assert update.url.path.endswith("/zones/zone-1/dns_records/rec-9")
    assert json.loads(update.content)["ttl"] == 60


async def test_unknown_zone():
    with pytest.raises(DnsError, match="Zone 'example.com' not found"):
        await _publisher(FakeCloudflare(zones=[])).upsert("1.2.3.4")


async def test_api_errors_reported():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(403, json={"success": False, "errors": [{"code": 9109, "message": "Invalid access token"}]})
    )
    publisher = Cloudflare("app.example.com", token="bad", api_url=API, transport=transport)
    with pytest.raises(DnsError) as exc_info:
        await publisher.upsert("1.2.3.4")
    assert exc_info.value.record == "app.example.com"
    assert "Invalid access token" in exc_info.value.message


async def test_delete_removes_every_record():
    api = FakeCloudflare(records=[{"id": "r1"}, {"id": "r2"}])
    await _publisher(api).delete()
    deletes = [r.url.path for r in api.requests if r.method == "DELETE"]
    assert deletes == ["/client/v4/zones/zone-1/dns_records/r1", "/client/v4/zones/zone-1/dns_records/r2"]


async def test_missing_token(monkeypatch):
    monkeypatch.delenv("CF_API_TOKEN", raising=False)
    with pytest.raises(DnsError, match="CF_API_TOKEN"):
        await Cloudflare("app.example.com").upsert("1.2.3.4")


async def test_dry_run_without_token(monkeypatch, caplog):
    monkeypatch.delenv("CF_API_TOKEN", raising=False)
    with caplog.at_level(logging.INFO):
        await Cloudflare("app.example.com", dry_run=True).upsert("1.2.3.4")
    assert "[dry-run] GET https://api.cloudflare.com/client/v4/zones" in caplog.text
    assert '"content": "1.2.3.4"' in caplog.text


async def test_upsert_cname():
    api = FakeCloudflare()
    await _publisher(api).upsert("site.pages.dev", "CNAME")
    lookup, create = api.requests[1:]
    assert lookup.url.params["type"] == "CNAME"
    assert json.loads(create.content)["type"] == "CNAME"
    assert json.loads(create.content)["content"] == "site.pages.dev"


async def test_unsupported_record_type():
    with pytest.raises(DnsError, match="unsupported record type 'MX'"):
        await _publisher(FakeCloudflare()).upsert("mail.example.com", "MX")


class Recorder(DnsPublisher):
    provider = "recorder"

    def __init__(self, record_name, seen):
        super().__init__(record_name)
        self.seen = seen

    async def upsert(self, target, record_type="A"):
        self.seen.append(self.record_name)

    async def delete(self, record_type="A"):
        self.seen.append(self.record_name)


@pytest.mark.parametrize(
    "body",
    [
        ["unexpected"],
        {"success": True, "errors": [], "result": {"id": "not-a-list"}},
        {"success": True, "errors": [], "result": [{"name": "missing id"}]},
    ],
)
async def test_malformed_response_is_a_dns_error(body):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json=body))
    publisher = Cloudflare("app.example.com", token="cf-test-token", api_url=API, transport=transport)
    seen = []

    errors = await publish_all([publisher, Recorder("b.example.com", seen)], "1.2.3.4")

    assert [e.record for e in errors] == ["app.example.com"]
    assert "unexpected" in errors[0].message
    assert seen == ["b.example.com"]


async def test_non_json_body():
    transport = httpx.MockTransport(lambda request: httpx.Response(502, text="<html>Bad gateway</html>"))
    publisher = Cloudflare("app.example.com", token="cf-test-token", api_url=API, transport=transport)
    with pytest.raises(DnsError):
        await publisher.upsert("1.2.3.4")
