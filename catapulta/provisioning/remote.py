"""Remote server preparation: Docker, firewall and a placeholder Caddy stack."""

import logging
import shlex

from catapulta.errors import ProvisionError

logger = logging.getLogger(__name__)

DEFAULT_REMOTE_DIR = "/opt/app"
SETUP_SCRIPT_PATH = "/tmp/catapulta-setup-server.sh"

SETUP_SCRIPT = r"""#!/usr/bin/env bash
# Usage: setup-server.sh <domain> <remote_dir>
set -euo pipefail

DOMAIN="${1:?Usage: setup-server.sh <domain> <remote_dir>}"
REMOTE_DIR="${2:?Usage: setup-server.sh <domain> <remote_dir>}"

echo "Stopping unattended-upgrades..."
systemctl stop unattended-upgrades 2>/dev/null || true
systemctl disable unattended-upgrades 2>/dev/null || true
systemctl mask unattended-upgrades 2>/dev/null || true
pkill -9 unattended-upgr 2>/dev/null || true
sleep 2

echo "Waiting for apt locks..."
while fuser /var/lib/dpkg/lock-frontend /var/lib/dpkg/lock \
    /var/lib/apt/lists/lock /var/cache/apt/archives/lock >/dev/null 2>&1; do
    echo "  Locks still held, waiting..."
    sleep 3
done

APT_OPTS="-o DPkg::Lock::Timeout=120"

if ! command -v docker &>/dev/null; then
    echo "Installing Docker..."
    apt-get $APT_OPTS update
    apt-get $APT_OPTS install -y ca-certificates curl
    install -m 0755 -d /etc/apt/keyrings
    curl -fsSL https://download.docker.com/linux/ubuntu/gpg -o /etc/apt/keyrings/docker.asc
    chmod a+r /etc/apt/keyrings/docker.asc
    . /etc/os-release
    echo "deb [arch=$(dpkg --print-architecture) signed-by=/etc/apt/keyrings/docker.asc] \
https://download.docker.com/linux/ubuntu $VERSION_CODENAME stable" > /etc/apt/sources.list.d/docker.list
    apt-get $APT_OPTS update
    apt-get $APT_OPTS install -y docker-ce docker-ce-cli containerd.io docker-compose-plugin
    systemctl enable docker
    systemctl start docker
else
    echo "Docker already installed: $(docker --version)"
fi

if command -v ufw &>/dev/null; then
    ufw allow OpenSSH
    ufw allow 80/tcp
    ufw allow 443/tcp
    ufw --force enable
fi

mkdir -p "$REMOTE_DIR"

cat > "$REMOTE_DIR/Caddyfile" << CADDY
$DOMAIN {
    respond "Service is being deployed..." 503
}
CADDY

cat > "$REMOTE_DIR/docker-compose.yml" << 'COMPOSE'
services:
  caddy:
    image: caddy:2-alpine
    restart: unless-stopped
    ports:
      - "80:80"
      - "443:443"
    volumes:
      - ./Caddyfile:/etc/caddy/Caddyfile:ro
      - caddy-data:/data
      - caddy-config:/config

volumes:
  caddy-data:
    driver: local
  caddy-config:
    driver: local
COMPOSE

cd "$REMOTE_DIR"
docker compose pull
docker compose up -d

echo "Setup complete!"
"""


async def setup_remote(session, domain, remote_dir=DEFAULT_REMOTE_DIR):
    """Prepare a fresh server for deployment.

    Installs Docker and the compose plugin, opens ports 22/80/443 and starts
    a placeholder Caddy answering 503 at *domain* until the first deploy.

    Raises:
        ProvisionError: the setup script failed.
    """
    logger.info(f"Setting up {session.address} (remote dir {remote_dir})...")
    await session.write_file(SETUP_SCRIPT_PATH, SETUP_SCRIPT)
    command = f"bash {SETUP_SCRIPT_PATH} {shlex.quote(domain)} {shlex.quote(remote_dir)}; rc=$?; rm -f {SETUP_SCRIPT_PATH}; exit $rc"
    rc, _, stderr = await session.run(command, timeout=1800, log_output=True)
    if rc != 0:
        raise ProvisionError(f"Server setup failed on {session.address} (exit {rc}): {stderr.strip()}")
