"""Shared pytest fixtures for all test modules."""

import os
import subprocess
import sys

import pytest
import yaml

from catapulta.errors import RemoteCommandError, TransferError
from catapulta.model import App, Caddy

PROJECT_ROOT = os.path.normpath(os.path.join(os.path.dirname(__file__), ".."))

# Throwaway ed25519 public key; only its base64 blob is ever parsed
TEST_PUBLIC_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIGx0ZXN0LWtleS1mb3ItY2F0YXB1bHRhLXRlc3Rz user@test"


@pytest.fixture(scope="session")
def project_root():
    """Absolute path to the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def fake_home(tmp_path):
    """A HOME with ~/.ssh/id_ed25519{,.pub} so key discovery succeeds."""
    home = tmp_path / "home"
    ssh_dir = home / ".ssh"
    ssh_dir.mkdir(parents=True)
    (ssh_dir / "id_ed25519").write_text("PRIVATE KEY\n")
    (ssh_dir / "id_ed25519.pub").write_text(TEST_PUBLIC_KEY + "\n")
    return home


@pytest.fixture
def run_cli(project_root, fake_home):
    """Return a callable that invokes the catapulta CLI as a subprocess."""

    def _run(*args, cwd=None, input=None):
        env = {
            **os.environ,
            "HOME": str(fake_home),
            "PYTHONPATH": project_root,
        }
        for var in ("DIGITALOCEAN_TOKEN", "CF_API_TOKEN"):
            env.pop(var, None)
        result = subprocess.run(
            [sys.executable, "-m", "catapulta.catapulta", *args],
            capture_output=True,
            text=True,
            cwd=cwd or project_root,
            env=env,
            input=input,
        )
        return result.returncode, result.stdout, result.stderr

    return _run


@pytest.fixture
def make_deploy_config(tmp_path):
    """Return a factory that writes a temporary catapulta.yaml."""

    def _make(**overrides):
        (tmp_path / "api").mkdir(exist_ok=True)
        (tmp_path / "api" / "Dockerfile").write_text("FROM python:3.12-slim\n")
        (tmp_path / ".env").write_text("SECRET_KEY=test\n")
        config = {
            "apps": [
                {
                    "name": "api",
                    "context": "./api",
                    "expose": [8000],
                    "env_file": ".env",
                    "healthcheck": "curl -f http://localhost:8000/health",
                },
                {"name": "web", "image": "nginx:alpine", "expose": [80]},
            ],
            "proxy": {
                "gzip": True,
                "security_headers": True,
                "routes": [
                    {"path": "/api", "upstream": "api:8000"},
                    {"upstream": "web"},
                ],
            },
            "server": "root@203.0.113.7",
            "health": {"interval": 2, "timeout": 30},
        }
        config.update(overrides)
        path = tmp_path / "catapulta.yaml"
        with open(path, "w") as f:
            yaml.dump(config, f, sort_keys=False)
        return str(path)

    return _make


# ── Unit-test fixtures ──────────────────────────────────────────────


@pytest.fixture
def api_app():
    return App.builder("api").expose(8000).healthcheck("curl -f http://localhost:8000/health").build()


@pytest.fixture
def web_app():
    return App.builder("web").image("nginx:alpine").expose(80).build()


@pytest.fixture
def worker_app():
    return App.builder("worker").build()


@pytest.fixture
def two_route_proxy(api_app, web_app):
    return Caddy.builder().route("/api", api_app.upstream(8000)).reverse_proxy(web_app.upstream()).gzip().build()


class FakeSession:
    """Stands in for SshSession: records calls, answers from a script.

    ``responses`` maps a substring of a command to ``(rc, stdout, stderr)``
    or to a list of such tuples consumed in order.
    """

    def __init__(self, responses=None, dry_run=False, fail_copy=None):
        self.address = "root@203.0.113.7"
        self.dry_run = dry_run
        self.responses = dict(responses or {})
        self.fail_copy = fail_copy
        self.calls = []
        self.opened = False
        self.closed = False

    async def __aenter__(self):
        self.opened = True
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed = True

    def _answer(self, command):
        for fragment, answer in self.responses.items():
            if fragment in command:
                if isinstance(answer, list):
                    return answer.pop(0) if len(answer) > 1 else answer[0]
                return answer
        return 0, "", ""

    async def run(self, command, cwd=None, timeout=600, log_output=False, connect_timeout=None):
        self.calls.append(("run", command, cwd))
        return self._answer(command)

    async def check(self, command, cwd=None, timeout=600, log_output=False):
        rc, stdout, stderr = await self.run(command, cwd=cwd, timeout=timeout, log_output=log_output)
        if rc != 0:
            raise RemoteCommandError(command, rc, stdout, stderr)
        return stdout

    async def copy_to(self, local_path, remote_path, timeout=1800):
        self.calls.append(("copy_to", local_path, remote_path))
        if self.fail_copy and self.fail_copy in remote_path:
            raise TransferError(local_path, remote_path, "Connection reset")

    async def write_file(self, remote_path, content, mode=None):
        self.calls.append(("write_file", remote_path, content))

    @property
    def commands(self):
        return [call[1] for call in self.calls if call[0] == "run"]


class FakeRunner:
    """Stands in for run_shell_cmd: records local commands."""

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.commands = []
        self.cwds = []

    async def __call__(self, command, dry_run=False, timeout=600, cwd=None, log_output=False):
        text = command if isinstance(command, str) else " ".join(command)
        self.commands.append(text)
        self.cwds.append(cwd)
        for fragment, answer in self.responses.items():
            if fragment in text:
                return answer
        return 0, "", ""


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def make_session():
    """The FakeSession class, for tests that need scripted responses."""
    return FakeSession


@pytest.fixture
def make_runner():
    return FakeRunner


@pytest.fixture
def public_key_line():
    return TEST_PUBLIC_KEY
