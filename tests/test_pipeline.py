"""Unit tests for the pipeline orchestrator with fake collaborators."""

import logging

import pytest

from catapulta.deploy import CloudflarePages, Deployer, DockerSaveLoad
from catapulta.dns import DnsPublisher
from catapulta.errors import (
    ConfigError,
    DestroyError,
    DnsError,
    DuplicateApplicationName,
    HealthcheckTimeout,
    InvalidTopology,
    PipelineError,
    ProvisionError,
)
from catapulta.model import App, Caddy, Route, Upstream
from catapulta.pipeline import Pipeline, Stage
from catapulta.provisioning import Provisioner, ServerHandle


class FakeProvisioner(Provisioner):
    def __init__(self, events, existing=None, fail_create=False):
        super().__init__()
        self.events = events
        self.existing = existing
        self.fail_create = fail_create

    async def check_prerequisites(self):
        self.events.append("prerequisites")

    async def get_server(self, name):
        return self.existing

    async def provision(self, spec):
        self.events.append(("create", spec.name, spec.region))
        if self.fail_create:
            raise ProvisionError("quota exceeded")
        return ServerHandle(spec.name, "198.51.100.20", ssh_key="/k")

    async def create_server(self, spec, ssh_key):
        raise AssertionError("provision() is overridden")

    async def setup_server(self, handle, domain=None, remote_dir="/opt/app"):
        self.events.append(("setup", handle.ip, domain, remote_dir))

    async def destroy(self, target, domain=None):
        self.events.append(("destroy", target, domain))

    async def destroy_server(self, handle):
        raise AssertionError("destroy() is overridden")


class FakePublisher(DnsPublisher):
    provider = "fake"

    def __init__(self, record_name, events, fail=False):
        super().__init__(record_name)
        self.events = events
        self.fail = fail

    async def upsert(self, target, record_type="A"):
        self.events.append(("dns", self.record_name, target, record_type))
        if self.fail:
            raise DnsError(self.record_name, "boom")

    async def delete(self, record_type="A"):
        self.events.append(("dns-delete", self.record_name, record_type))


class FakeDeployer(Deployer):
    def __init__(self, events, error=None):
        self.events = events
        self.error = error
        self.dry_run = False

    async def deploy(self, server, apps, stack, remote_dir, skip_build=False):
        self.events.append(("deploy", server.address, stack.site, skip_build))
        if self.error:
            raise self.error

    def plan(self, server, apps, stack, remote_dir, skip_build=False):
        return [f"ship to {server.address}"]

    async def status(self, server, remote_dir):
        return f"ps on {server.address}:{remote_dir}"


@pytest.fixture
def events():
    return []


@pytest.fixture
def pipeline(api_app, web_app, two_route_proxy, events):
    return (
        Pipeline([api_app, web_app], two_route_proxy)
        .provision(FakeProvisioner(events))
        .dns(FakePublisher("app.example.com", events))
        .deploy(FakeDeployer(events))
    )


# ── Construction ────────────────────────────────────────────────────


def test_constructor_validates(api_app):
    with pytest.raises(DuplicateApplicationName):
        Pipeline([api_app, api_app])
    with pytest.raises(InvalidTopology):
        Pipeline([api_app], Caddy(routes=(Route(None, (Upstream("ghost", 80),)),)))


def test_single_app_accepted(web_app):
    assert Pipeline(web_app).apps == (web_app,)


def test_dns_publishers_accumulate_in_order(api_app, events):
    a, b = FakePublisher("a.example.com", events), FakePublisher("b.example.com", events)
    pipeline = Pipeline([api_app]).dns(a).dns(b)
    assert pipeline.publishers == [a, b]


def test_default_deployer(api_app):
    assert isinstance(Pipeline([api_app]).deployer, DockerSaveLoad)


def test_dry_run_switches_collaborators(pipeline):
    pipeline.dry_run()
    assert pipeline._provisioner.dry_run
    assert pipeline.deployer.dry_run
    assert all(p.dry_run for p in pipeline.publishers)


def test_ssh_user_applies_to_server(api_app):
    pipeline = Pipeline([api_app]).server("203.0.113.7").ssh_user("deploy")
    assert pipeline._server.address == "deploy@203.0.113.7"


# ── Provision ───────────────────────────────────────────────────────


async def test_provision_order(pipeline, events):
    report = await pipeline.run_provision("app-prod", domain="app.example.com", region="ams3")
    assert events == [
        "prerequisites",
        ("create", "app-prod", "ams3"),
        ("dns", "app.example.com", "198.51.100.20", "A"),
        ("setup", "198.51.100.20", "app.example.com", "/opt/app"),
    ]
    assert report.created
    assert report.dns_errors == []


async def test_provision_existing_server_short_circuits(api_app, events):
    existing = ServerHandle("app-prod", "198.51.100.99")
    pipeline = Pipeline([api_app]).provision(FakeProvisioner(events, existing=existing))
    report = await pipeline.run_provision("app-prod")
    assert report.server is existing
    assert not report.created
    assert events == ["prerequisites"]


async def test_provision_dns_failure_collected(api_app, events):
    pipeline = (
        Pipeline([api_app])
        .provision(FakeProvisioner(events))
        .dns(FakePublisher("a.example.com", events, fail=True))
        .dns(FakePublisher("b.example.com", events))
    )
    report = await pipeline.run_provision("app-prod")
    assert [e.record for e in report.dns_errors] == ["a.example.com"]
    assert ("dns", "b.example.com", "198.51.100.20", "A") in events
    assert events[-1][0] == "setup"


async def test_provision_failure_wrapped(api_app, events):
    pipeline = Pipeline([api_app]).provision(FakeProvisioner(events, fail_create=True))
    with pytest.raises(PipelineError) as exc_info:
        await pipeline.run_provision("app-prod")
    assert exc_info.value.stage is Stage.PROVISION
    assert isinstance(exc_info.value.cause, ProvisionError)
    assert str(exc_info.value) == "provision failed: quota exceeded"


async def test_provision_without_provisioner(api_app):
    with pytest.raises(PipelineError) as exc_info:
        await Pipeline([api_app]).run_provision("x")
    assert isinstance(exc_info.value.cause, ConfigError)


# ── Deploy ──────────────────────────────────────────────────────────


async def test_deploy_to_host(pipeline, events):
    stack = await pipeline.run_deploy("app.example.com", skip_build=True)
    assert events == [("deploy", "root@app.example.com", "app.example.com", True)]
    assert "app.example.com {" in stack.proxy_config


async def test_deploy_uses_configured_server(pipeline, events):
    pipeline.server("deploy@203.0.113.7", ssh_key="/k")
    await pipeline.run_deploy(domain="app.example.com")
    assert events == [("deploy", "deploy@203.0.113.7", "app.example.com", False)]


async def test_deploy_without_host(pipeline):
    with pytest.raises(PipelineError) as exc_info:
        await pipeline.run_deploy()
    assert exc_info.value.stage is Stage.DEPLOY


async def test_deploy_dry_run_only_logs(pipeline, events, caplog):
    with caplog.at_level(logging.INFO):
        await pipeline.run_deploy("203.0.113.7", dry_run=True)
    assert events == []
    assert "--- docker-compose.yml ---" in caplog.text
    assert "--- Caddyfile ---" in caplog.text
    assert "1. ship to root@203.0.113.7" in caplog.text


async def test_deploy_failure_wrapped(api_app, events):
    error = HealthcheckTimeout("api", 30, "unhealthy")
    pipeline = Pipeline([api_app]).deploy(FakeDeployer(events, error=error))
    with pytest.raises(PipelineError) as exc_info:
        await pipeline.run_deploy("203.0.113.7")
    assert exc_info.value.stage is Stage.DEPLOY
    assert exc_info.value.cause is error


# ── Status / destroy ────────────────────────────────────────────────


async def test_status(pipeline):
    assert await pipeline.remote_dir("/srv/app").run_status("203.0.113.7") == "ps on root@203.0.113.7:/srv/app"


async def test_destroy_requires_confirmation(pipeline, events):
    report = await pipeline.run_destroy("app-prod")
    assert not report.destroyed
    report = await pipeline.run_destroy("app-prod", confirm=lambda: False)
    assert not report.destroyed
    assert events == []


async def test_destroy_confirmed(pipeline, events):
    report = await pipeline.run_destroy("app-prod", domain="app.example.com", confirm=lambda: True)
    assert report.destroyed
    assert events == [("destroy", "app-prod", "app.example.com"), ("dns-delete", "app.example.com", "A")]


async def test_destroy_forced(pipeline, events):
    assert (await pipeline.run_destroy("app-prod", force=True)).destroyed


async def test_destroy_failure_wrapped(api_app, events):
    class Failing(FakeProvisioner):
        async def destroy(self, target, domain=None):
            raise DestroyError("Droplet 'x' not found")

    pipeline = Pipeline([api_app]).provision(Failing(events))
    with pytest.raises(PipelineError) as exc_info:
        await pipeline.run_destroy("x", force=True)
    assert exc_info.value.stage is Stage.DESTROY


# ── Launch ──────────────────────────────────────────────────────────


async def test_launch_full_chain(pipeline, events):
    report = await pipeline.launch("app-prod", domain="app.example.com")
    assert [e if isinstance(e, str) else e[0] for e in events] == ["prerequisites", "create", "dns", "setup", "deploy"]
    assert report.server.ip == "198.51.100.20"
    assert report.stack.site == "app.example.com"


async def test_launch_existing_server_skips_provisioning(pipeline, events):
    pipeline.server("203.0.113.7")
    report = await pipeline.launch(domain="app.example.com")
    assert events == [
        ("dns", "app.example.com", "203.0.113.7", "A"),
        ("deploy", "root@203.0.113.7", "app.example.com", False),
    ]
    assert report.dns_errors == []


async def test_launch_requires_name_without_server(pipeline):
    with pytest.raises(PipelineError) as exc_info:
        await pipeline.launch()
    assert exc_info.value.stage is Stage.PROVISION


# ── Hosted deployers ────────────────────────────────────────────────


class FakeHostedDeployer(FakeDeployer):
    is_remote = False

    def cname_target(self):
        return "site.pages.dev"

    async def deploy(self, server, apps, stack, remote_dir, skip_build=False):
        self.events.append(("hosted-deploy", server, stack, skip_build))

    def plan(self, server, apps, stack, remote_dir, skip_build=False):
        return ["publish site"]

    async def status(self, server, remote_dir):
        return f"deployments (server={server})"


@pytest.fixture
def site_app():
    return App.builder("site").build_cmd("npm run build").build()


@pytest.fixture
def hosted(site_app, events):
    return (
        Pipeline([site_app])
        .provision(FakeProvisioner(events))
        .dns(FakePublisher("www.example.com", events))
        .deploy(FakeHostedDeployer(events))
    )


async def test_hosted_launch_skips_provisioning(hosted, events):
    report = await hosted.launch("ignored", domain="www.example.com")
    assert events == [
        ("hosted-deploy", None, None, False),
        ("dns", "www.example.com", "site.pages.dev", "CNAME"),
    ]
    assert report.server is None
    assert report.stack is None


async def test_hosted_launch_with_cloudflare_pages(site_app, events, make_runner, monkeypatch):
    monkeypatch.setenv("CLOUDFLARE_API_TOKEN", "cf-pages-test-token")
    runner = make_runner()
    pipeline = Pipeline([site_app]).dns(FakePublisher("www.example.com", events)).deploy(CloudflarePages("docs", run_local=runner))
    await pipeline.launch()
    assert runner.commands[-1] == "wrangler pages deploy ./dist --project-name docs"
    assert events == [("dns", "www.example.com", "docs.pages.dev", "CNAME")]


async def test_hosted_provision_rejected(hosted, events):
    with pytest.raises(PipelineError) as exc_info:
        await hosted.run_provision("app-prod")
    assert exc_info.value.stage is Stage.PROVISION
    assert isinstance(exc_info.value.cause, ConfigError)
    assert events == []


async def test_hosted_deploy_needs_no_host(hosted, events):
    assert await hosted.run_deploy(skip_build=True) is None
    assert events == [("hosted-deploy", None, None, True)]


async def test_hosted_deploy_dry_run(hosted, events, caplog):
    with caplog.at_level(logging.INFO):
        await hosted.run_deploy(dry_run=True)
    assert events == []
    assert "1. publish site" in caplog.text
    assert "docker-compose.yml" not in caplog.text


async def test_hosted_status(hosted):
    assert await hosted.run_status() == "deployments (server=None)"


async def test_hosted_destroy_removes_cname_only(site_app, events):
    pipeline = Pipeline([site_app]).dns(FakePublisher("www.example.com", events)).deploy(FakeHostedDeployer(events))
    report = await pipeline.run_destroy("ignored", force=True)
    assert events == [("dns-delete", "www.example.com", "CNAME")]
    assert not report.destroyed
    assert report.dns_errors == []
