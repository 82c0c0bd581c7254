"""Registry-less deployment: docker save locally, copy, docker load remotely."""

import asyncio
import logging
import os
import shlex
import tempfile

from catapulta.deploy.base import Deployer
from catapulta.deploy.health import HealthPolicy, wait_healthy
from catapulta.errors import DeployError, RemoteCommandError
from catapulta.provisioning.shell import command_exists, run_shell_cmd
from catapulta.provisioning.ssh_transport import SshSession

logger = logging.getLogger(__name__)


def human_size(num_bytes):
    for unit in ("B", "KB", "MB", "GB"):
        if num_bytes < 1024 or unit == "GB":
            return f"{num_bytes:.0f} {unit}" if unit == "B" else f"{num_bytes:.1f} {unit}"
        num_bytes /= 1024


def archive_name(app):
    return f"{app.name}.tar.gz"


def build_command(app):
    """``docker build`` argument list for *app*."""
    cmd = ["docker", "build", "--platform", app.platform, "-f", app.dockerfile]
    for key, value in app.build_args:
        cmd += ["--build-arg", f"{key}={value}"]
    cmd += ["-t", app.image, app.context]
    return cmd


def default_session_factory(server, dry_run=False):
    return SshSession(server.address, server.ssh_key, server.ssh_port, dry_run=dry_run)


class DockerSaveLoad(Deployer):
    """Ship images as gzipped ``docker save`` archives over the admin channel.

    No registry is involved: images are built locally, archived, copied with
    the manifest and proxy config, loaded on the server and started with
    ``docker compose up``.
    """

    def __init__(
        self,
        health=None,
        session_factory=default_session_factory,
        run_local=run_shell_cmd,
        dry_run=False,
        sleep=asyncio.sleep,
    ):
        self.health = health or HealthPolicy()
        self.sleep = sleep
        self.session_factory = session_factory
        self.run_local = run_local
        self.dry_run = dry_run

    # ── Local side ────────────────────────────────────────────────────

    def check_env_files(self, stack):
        for remote, local in stack.env_files.items():
            if not os.path.exists(local):
                raise DeployError(f"Env file {local} not found (needed as {remote}). Create it from .env.example")

    async def check_tools(self, apps, skip_build=False):
        """Fail early when docker (or git, for apps built from a clone) is missing."""
        if self.dry_run:
            return
        tools = ["docker"]
        if not skip_build and any(app.source for app in apps):
            tools.append("git")
        for tool in tools:
            if not await command_exists(tool, run=self.run_local):
                raise DeployError(f"'{tool}' not found on PATH")

    async def _run_local(self, command, what, cwd=None, timeout=3600, log_output=False):
        rc, stdout, stderr = await self.run_local(command, dry_run=self.dry_run, timeout=timeout, cwd=cwd, log_output=log_output)
        if rc != 0:
            raise DeployError(f"{what} failed (exit {rc}): {stderr.strip()}")
        return stdout

    async def build_image(self, app, workdir):
        """Build the app image locally; git sources are cloned into *workdir* first."""
        cwd = None
        if app.source:
            cwd = os.path.join(workdir, f"src-{app.name}")
            logger.info(f"Cloning {app.source.url} ({app.source.branch})...")
            await self._run_local(
                ["git", "clone", "--depth", "1", "--branch", app.source.branch, app.source.url, cwd],
                f"git clone {app.source.url}",
                timeout=600,
            )
        logger.info(f"Building {app.image} for {app.platform}...")
        await self._run_local(build_command(app), f"docker build {app.image}", cwd=cwd, log_output=True)

        size = await self._run_local(["docker", "image", "inspect", "--format", "{{.Size}}", app.image], f"docker image inspect {app.image}")
        if size.strip().isdigit():
            logger.info(f"Built {app.image} ({human_size(int(size.strip()))})")

    async def save_image(self, app, workdir):
        """``docker save | gzip`` into *workdir*; returns the archive path."""
        path = os.path.join(workdir, archive_name(app))
        logger.info(f"Saving {app.image} -> {path}")
        await self._run_local(f"docker save {shlex.quote(app.image)} | gzip > {shlex.quote(path)}", f"docker save {app.image}")
        return path

    # ── Remote side ───────────────────────────────────────────────────

    async def transfer(self, ssh, stack, archives, remote_dir):
        """Copy manifest, proxy config, env files and archives.

        Nothing on the server is changed besides creating *remote_dir* and
        writing these files; a ``TransferError`` leaves the running stack
        untouched.
        """
        await ssh.check(f"mkdir -p {shlex.quote(remote_dir)}")

        generated = stack.files()
        uploads = [(os.path.join(remote_dir, remote), local) for remote, local in stack.env_files.items()]
        uploads += [(os.path.join(remote_dir, os.path.basename(path)), path) for path in archives]
        total = len(generated) + len(uploads)

        step = 0
        for name, content in generated.items():
            step += 1
            logger.info(f"[{step}/{total}] {name} ({human_size(len(content.encode()))})")
            await ssh.write_file(os.path.join(remote_dir, name), content)
        for remote_path, local in uploads:
            step += 1
            size = os.path.getsize(local) if os.path.exists(local) else 0
            logger.info(f"[{step}/{total}] {os.path.basename(remote_path)} ({human_size(size)})")
            await ssh.copy_to(local, remote_path)

    async def start(self, ssh, stack, archives, remote_dir):
        """Load images and bring the stack up; failures carry remote output."""
        for remote in stack.env_files:
            await ssh.check(f"chmod 600 {shlex.quote(remote)}", cwd=remote_dir)
        for path in archives:
            name = os.path.basename(path)
            logger.info(f"Loading {name}...")
            await ssh.check(f"gunzip -c {shlex.quote(name)} | docker load", cwd=remote_dir, timeout=1800, log_output=True)
        logger.info("Starting containers...")
        await ssh.check("docker compose up -d --remove-orphans", cwd=remote_dir, timeout=900, log_output=True)
        if archives:
            names = " ".join(shlex.quote(os.path.basename(p)) for p in archives)
            await ssh.run(f"rm -f {names}", cwd=remote_dir)

    async def deploy(self, server, apps, stack, remote_dir, skip_build=False):
        self.check_env_files(stack)
        await self.check_tools(apps, skip_build)
        logger.info(f"Deploying {', '.join(app.name for app in apps)} to {server.address}:{remote_dir}")

        with tempfile.TemporaryDirectory(prefix="catapulta-") as workdir:
            archives = []
            for app in apps:
                if not skip_build:
                    await self.build_image(app, workdir)
                archives.append(await self.save_image(app, workdir))

            async with self.session_factory(server, dry_run=self.dry_run) as ssh:
                await self.transfer(ssh, stack, archives, remote_dir)
                await self.start(ssh, stack, archives, remote_dir)
                waited = await wait_healthy(ssh, apps, self.health, sleep=self.sleep)
                _, ps, _ = await ssh.run("docker compose ps", cwd=remote_dir, timeout=60)
                if ps.strip():
                    logger.info(ps.rstrip())

        logger.info(f"Deployment complete ({waited}s health wait). Application available at: https://{stack.site or server.ip}")

    def plan(self, server, apps, stack, remote_dir, skip_build=False):
        actions = []
        for app in apps:
            if not skip_build:
                actions.append(f"Build image {app.image}: {shlex.join(build_command(app))}")
            actions.append(f"Save {app.image} -> {archive_name(app)} (docker save | gzip)")
        actions.append(f"Copy {', '.join(stack.files())} to {server.address}:{remote_dir}/")
        for remote, local in stack.env_files.items():
            actions.append(f"Copy {local} -> {remote_dir}/{remote} (chmod 600)")
        actions.append(f"Copy and docker load {', '.join(archive_name(app) for app in apps)}")
        actions.append("docker compose up -d --remove-orphans")
        waited = [app.name for app in apps if app.healthcheck]
        if waited:
            actions.append(f"Wait up to {self.health.timeout}s for healthy: {', '.join(waited)}")
        return actions

    async def status(self, server, remote_dir):
        async with self.session_factory(server, dry_run=self.dry_run) as ssh:
            rc, stdout, stderr = await ssh.run("docker compose ps", cwd=remote_dir, timeout=60)
        if rc != 0:
            raise RemoteCommandError("docker compose ps", rc, stdout, stderr)
        return stdout
