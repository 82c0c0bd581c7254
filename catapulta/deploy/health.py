"""Container health polling after ``docker compose up``."""

import asyncio
import logging
from dataclasses import dataclass

from catapulta.errors import HealthcheckTimeout

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 2
DEFAULT_TIMEOUT = 120


@dataclass(frozen=True)
class HealthPolicy:
    """How often and how long to wait for containers to report healthy."""

    interval: float = DEFAULT_INTERVAL
    timeout: float = DEFAULT_TIMEOUT

    def __post_init__(self):
        if self.interval <= 0 or self.timeout <= 0:
            raise ValueError(f"Health interval and timeout must be positive (got {self.interval}, {self.timeout})")

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        return cls(
            interval=data.get("interval", DEFAULT_INTERVAL),
            timeout=data.get("timeout", DEFAULT_TIMEOUT),
        )


async def container_health(session, container):
    """Docker health status of *container* (``starting``, ``healthy``, ...), or None."""
    rc, stdout, _ = await session.run(f"docker inspect --format '{{{{.State.Health.Status}}}}' {container}", timeout=30)
    if rc != 0:
        return None
    return stdout.strip() or None


async def wait_healthy(session, apps, policy=HealthPolicy(), sleep=asyncio.sleep):
    """Poll until every app with a healthcheck reports ``healthy``.

    Apps without a healthcheck are not waited for. Checks happen immediately
    and then every ``policy.interval`` seconds, so a service that turns
    healthy early ends the wait early.

    Returns:
        seconds spent waiting

    Raises:
        HealthcheckTimeout: an app was still not healthy after
            ``policy.timeout`` seconds. The stack is left running.
    """
    pending = [app.name for app in apps if app.healthcheck]
    skipped = [app.name for app in apps if not app.healthcheck]
    if skipped:
        logger.info(f"No healthcheck declared for: {', '.join(skipped)}")
    if not pending:
        return 0
    if session.dry_run:
        logger.info(f"[dry-run] wait for healthy: {', '.join(pending)}")
        return 0

    logger.info(f"Waiting for {', '.join(pending)} to be healthy (timeout {policy.timeout}s)...")
    statuses = {}
    elapsed = 0
    while True:
        for name in list(pending):
            status = await container_health(session, name)
            statuses[name] = status
            if status == "healthy":
                logger.info(f"  {name}: healthy ({elapsed}s)")
                pending.remove(name)
        if not pending:
            return elapsed
        if elapsed >= policy.timeout:
            name = pending[0]
            logger.error(f"Health check timed out after {policy.timeout}s: {', '.join(pending)}")
            raise HealthcheckTimeout(name, policy.timeout, statuses.get(name))
        logger.info(f"  Health check ({elapsed}s): " + ", ".join(f"{n}={statuses.get(n) or 'waiting for container'}" for n in pending))
        await sleep(policy.interval)
        elapsed += policy.interval
