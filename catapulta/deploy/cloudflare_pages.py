"""Cloudflare Pages: build static sites locally and publish them with wrangler."""

import logging
import os
import shlex

from catapulta.deploy.base import Deployer
from catapulta.errors import DeployError
from catapulta.provisioning.shell import command_exists, run_shell_cmd

logger = logging.getLogger(__name__)

TOKEN_ENV = "CLOUDFLARE_API_TOKEN"
DEFAULT_BUILD_DIR = "dist"


def site_dir(app):
    """Directory holding the app's built site, relative to its context."""
    return os.path.join(app.context, app.build_dir or DEFAULT_BUILD_DIR)


def pages_deploy_command(app, project):
    return ["wrangler", "pages", "deploy", site_dir(app), "--project-name", project]


class CloudflarePages(Deployer):
    """Publish each app's static build output to one Pages project.

    No server is involved. Requires ``wrangler`` on PATH and
    ``CLOUDFLARE_API_TOKEN`` set to a token with Pages permissions.
    """

    is_remote = False

    def __init__(self, project, run_local=run_shell_cmd, dry_run=False):
        if not project or not project.strip():
            raise ValueError("Cloudflare Pages project name must not be empty")
        self.project = project
        self.run_local = run_local
        self.dry_run = dry_run

    def cname_target(self):
        return f"{self.project}.pages.dev"

    async def check_prerequisites(self):
        if self.dry_run:
            return
        if not await command_exists("wrangler", run=self.run_local):
            raise DeployError("'wrangler' not found on PATH (npm install -g wrangler)")
        if not os.environ.get(TOKEN_ENV):
            raise DeployError(f"{TOKEN_ENV} not set (needs a token with Cloudflare Pages permissions)")

    async def _run(self, command, what, cwd=None):
        rc, stdout, stderr = await self.run_local(command, dry_run=self.dry_run, timeout=1800, cwd=cwd, log_output=True)
        if rc != 0:
            raise DeployError(f"{what} failed (exit {rc}): {stderr.strip()}")
        return stdout

    async def deploy(self, server, apps, stack, remote_dir, skip_build=False):
        await self.check_prerequisites()
        for app in apps:
            if app.build_cmd and not skip_build:
                logger.info(f"Building static site for {app.name}...")
                await self._run(app.build_cmd, f"build {app.name}", cwd=app.context)
            logger.info(f"Deploying {app.name} to Cloudflare Pages project '{self.project}'...")
            await self._run(pages_deploy_command(app, self.project), f"wrangler pages deploy ({app.name})")
        logger.info(f"Deployed to https://{self.cname_target()}")

    def plan(self, server, apps, stack, remote_dir, skip_build=False):
        actions = []
        for app in apps:
            if app.build_cmd and not skip_build:
                actions.append(f"Build {app.name} in {app.context}: {app.build_cmd}")
            actions.append(f"Publish {site_dir(app)}: {shlex.join(pages_deploy_command(app, self.project))}")
        return actions

    async def status(self, server, remote_dir):
        command = ["wrangler", "pages", "deployment", "list", "--project-name", self.project]
        rc, stdout, stderr = await self.run_local(command, dry_run=self.dry_run, timeout=120)
        if rc != 0:
            raise DeployError(f"wrangler pages deployment list failed (exit {rc}): {stderr.strip()}")
        return stdout
