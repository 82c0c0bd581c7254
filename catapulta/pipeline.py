"""Pipeline orchestration: provision -> DNS -> render -> deploy.

A ``Pipeline`` is assembled fluently and then driven by one of the ``run_*``
operations (or ``launch`` for the whole chain)::

    pipeline = (
        Pipeline([api, web], caddy)
        .provision(DigitalOcean(size="s-1vcpu-2gb"))
        .dns(Cloudflare("app.example.com"))
        .deploy(DockerSaveLoad())
    )
    await pipeline.launch("app-prod", domain="app.example.com")

Stages run strictly in order; a fatal error stops the chain and escapes as
``PipelineError`` naming the stage. DNS failures are collected instead.

Hosted deployers such as ``CloudflarePages`` need no server: provisioning
and SSH are skipped and DNS publishers create a CNAME to the deployer's
``cname_target()`` instead of an A record.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from catapulta.deploy import DockerSaveLoad
from catapulta.dns import delete_all, publish_all
from catapulta.errors import CatapultaError, ConfigError, PipelineError, TopologyError
from catapulta.model import App, Caddy
from catapulta.provisioning import DEFAULT_REMOTE_DIR, ServerHandle, ServerSpec
from catapulta.topology import render, validate

logger = logging.getLogger(__name__)


class Stage(Enum):
    PROVISION = "provision"
    DNS = "dns"
    RENDER = "render"
    DEPLOY = "deploy"
    STATUS = "status"
    DESTROY = "destroy"


@dataclass
class ProvisionReport:
    server: ServerHandle
    created: bool
    dns_errors: list = field(default_factory=list)


@dataclass
class DestroyReport:
    destroyed: bool
    dns_errors: list = field(default_factory=list)


@dataclass
class LaunchReport:
    server: ServerHandle | None
    stack: object
    dns_errors: list = field(default_factory=list)


class Pipeline:
    """Applications, proxy and the collaborators that put them on a server."""

    def __init__(self, apps, proxy=None):
        if isinstance(apps, App):
            apps = [apps]
        self.apps = tuple(apps)
        self.proxy = proxy if proxy is not None else Caddy()
        # Descriptor errors surface here, before any side effect
        validate(self.apps, self.proxy)
        self._provisioner = None
        self._publishers = []
        self._deployer = None
        self._server = None
        self._remote_dir = DEFAULT_REMOTE_DIR
        self._ssh_user = "root"

    # ── Builder ───────────────────────────────────────────────────────

    def provision(self, provisioner):
        self._provisioner = provisioner
        return self

    def dns(self, publisher):
        """Add a DNS publisher; publishers accumulate and run in call order."""
        self._publishers.append(publisher)
        return self

    def deploy(self, deployer):
        self._deployer = deployer
        return self

    def server(self, address, ssh_key=None, ssh_port=22):
        """Deploy to an existing server instead of provisioning one."""
        self._server = ServerHandle.from_address(address, ssh_key, ssh_port, default_user=self._ssh_user)
        return self

    def remote_dir(self, path):
        self._remote_dir = path
        return self

    def ssh_user(self, user):
        self._ssh_user = user
        if self._server is not None:
            self._server.ssh_user = user
        return self

    def dry_run(self, enabled=True):
        """Switch the configured provisioner, publishers and deployer to dry-run."""
        for part in (self._provisioner, self.deployer, *self._publishers):
            if part is not None:
                part.dry_run = enabled
        return self

    @property
    def publishers(self):
        return list(self._publishers)

    @property
    def deployer(self):
        if self._deployer is None:
            self._deployer = DockerSaveLoad()
        return self._deployer

    # ── Helpers ───────────────────────────────────────────────────────

    def _require_provisioner(self, stage):
        if self._provisioner is None:
            raise PipelineError(stage, ConfigError("no provisioner configured"))
        return self._provisioner

    def _resolve_server(self, host, stage):
        if isinstance(host, ServerHandle):
            return host
        if host:
            ssh_key = self._server.ssh_key if self._server else None
            return ServerHandle.from_address(host, ssh_key, default_user=self._ssh_user)
        if self._server is not None:
            return self._server
        raise PipelineError(stage, ConfigError("no host given and no server configured"))

    def _require_server_deployer(self, stage):
        if not self.deployer.is_remote:
            raise PipelineError(stage, ConfigError(f"{type(self.deployer).__name__} publishes without a server"))

    async def _publish(self, target, record_type="A"):
        if not self._publishers:
            return []
        logger.info("Setting up DNS...")
        errors = await publish_all(self._publishers, target, record_type)
        if errors:
            logger.warning(f"{len(errors)} of {len(self._publishers)} DNS publisher(s) failed; continuing")
        return errors

    # ── Operations ────────────────────────────────────────────────────

    async def run_provision(self, name, domain=None, region=None, size=None) -> ProvisionReport:
        """Create and prepare a server, publishing DNS before setup.

        An existing server with the same name is returned as-is.
        """
        provisioner = self._require_provisioner(Stage.PROVISION)
        self._require_server_deployer(Stage.PROVISION)
        try:
            await provisioner.check_prerequisites()
            existing = await provisioner.get_server(name)
            if existing is not None:
                logger.info(f"Server '{name}' already exists (IP: {existing.ip or 'unknown'})")
                logger.info(f"Deploy with: catapulta deploy {domain or existing.ip}")
                return ProvisionReport(existing, created=False)
            server = await provisioner.provision(ServerSpec(name, region=region, size=size))
        except CatapultaError as e:
            raise PipelineError(Stage.PROVISION, e) from e

        # Before setup, so the name resolves by the time Caddy asks for a certificate
        dns_errors = await self._publish(server.ip)

        try:
            await provisioner.setup_server(server, domain, self._remote_dir)
        except CatapultaError as e:
            raise PipelineError(Stage.PROVISION, e) from e

        logger.info("")
        logger.info(f"Server '{server.name}' provisioned: {server.ip}")
        logger.info(f"Deploy with: catapulta deploy {domain or server.ip}")
        return ProvisionReport(server, created=True, dns_errors=dns_errors)

    def render(self, site=None):
        """Render the stack for *site*; raises ``PipelineError`` (render stage)."""
        try:
            return render(self.apps, self.proxy, site)
        except TopologyError as e:
            raise PipelineError(Stage.RENDER, e) from e

    def _log_plan(self, server, stack, skip_build):
        logger.info("\n--- Actions that would be performed ---")
        for i, action in enumerate(self.deployer.plan(server, self.apps, stack, self._remote_dir, skip_build), 1):
            logger.info(f"{i}. {action}")

    async def _deploy_hosted(self, skip_build, dry_run):
        if dry_run:
            logger.info("=== Dry run: no changes will be made ===")
            self._log_plan(None, None, skip_build)
            return None
        try:
            await self.deployer.deploy(None, self.apps, None, self._remote_dir, skip_build=skip_build)
        except CatapultaError as e:
            raise PipelineError(Stage.DEPLOY, e) from e
        return None

    async def run_deploy(self, host=None, skip_build=False, dry_run=False, domain=None):
        """Render and deploy the stack to *host* (or the configured server).

        With ``dry_run`` nothing is built or sent: the manifest, Caddyfile and
        planned actions are logged. Hosted deployers ignore *host* and
        *domain* and publish the apps directly.

        Returns:
            the RenderedStack that was (or would be) deployed, or None for a
            hosted deployer
        """
        if not self.deployer.is_remote:
            return await self._deploy_hosted(skip_build, dry_run)

        server = self._resolve_server(host, Stage.DEPLOY)
        stack = self.render(domain or self.proxy.domain or server.ip)

        if dry_run:
            logger.info("=== Dry run: no changes will be made ===")
            for name, content in stack.files().items():
                logger.info(f"\n--- {name} ---")
                logger.info(content.rstrip())
            self._log_plan(server, stack, skip_build)
            return stack

        try:
            await self.deployer.deploy(server, self.apps, stack, self._remote_dir, skip_build=skip_build)
        except CatapultaError as e:
            raise PipelineError(Stage.DEPLOY, e) from e
        return stack

    async def run_status(self, host=None) -> str:
        """``docker compose ps`` output from the server (or the hosted deployer's status)."""
        server = self._resolve_server(host, Stage.STATUS) if self.deployer.is_remote else None
        try:
            return await self.deployer.status(server, self._remote_dir)
        except CatapultaError as e:
            raise PipelineError(Stage.STATUS, e) from e

    async def run_destroy(self, name, domain=None, force=False, confirm=None) -> DestroyReport:
        """Destroy the server and delete DNS records.

        Needs ``force=True`` or a ``confirm()`` callable returning True;
        otherwise nothing happens. With a hosted deployer only the CNAME
        records are deleted; the hosted project is left in place.
        """
        hosted = not self.deployer.is_remote
        provisioner = None if hosted else self._require_provisioner(Stage.DESTROY)
        if not force and not (confirm is not None and confirm()):
            logger.info("Aborted.")
            return DestroyReport(destroyed=False)

        if hosted:
            logger.info(f"Nothing to destroy for {type(self.deployer).__name__}; the hosted project is left in place")
        else:
            try:
                await provisioner.destroy(name, domain)
            except CatapultaError as e:
                raise PipelineError(Stage.DESTROY, e) from e

        dns_errors = []
        if self._publishers:
            logger.info("Removing DNS records...")
            dns_errors = await delete_all(self._publishers, "CNAME" if hosted else "A")
        logger.info("Cleanup complete!")
        return DestroyReport(destroyed=not hosted, dns_errors=dns_errors)

    async def launch(self, name=None, domain=None, region=None, size=None, skip_build=False) -> LaunchReport:
        """Full chain: [provision] -> [DNS] -> render + deploy.

        Provisioning is skipped when a server was given with ``server()``.
        A hosted deployer publishes first, then DNS gets a CNAME to its
        ``cname_target()``.
        """
        if not self.deployer.is_remote:
            await self.run_deploy(skip_build=skip_build)
            target = self.deployer.cname_target()
            dns_errors = await self._publish(target, "CNAME") if target else []
            return LaunchReport(server=None, stack=None, dns_errors=dns_errors)

        if self._server is not None:
            server = self._server
            dns_errors = await self._publish(server.ip)
        else:
            if not name:
                raise PipelineError(Stage.PROVISION, ConfigError("server name required to provision"))
            report = await self.run_provision(name, domain=domain, region=region, size=size)
            server, dns_errors = report.server, report.dns_errors
            if not report.created:
                dns_errors = await self._publish(server.ip)

        stack = await self.run_deploy(server, skip_build=skip_build, domain=domain)
        return LaunchReport(server=server, stack=stack, dns_errors=dns_errors)
