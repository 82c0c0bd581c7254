"""Provider-agnostic SSH readiness polling."""

import asyncio
import logging

logger = logging.getLogger(__name__)


async def wait_for_ssh(session, attempts=30, interval=10, sleep=asyncio.sleep):
    """Poll ``true`` over *session* until it succeeds.

    Returns:
        True if SSH connected, False after *attempts* failures.
    """
    if session.dry_run:
        logger.info(f"[dry-run] wait for SSH on {session.address}")
        return True
    for attempt in range(1, attempts + 1):
        rc, _, _ = await session.run("true", timeout=30, connect_timeout=5)
        if rc == 0:
            logger.info(f"SSH ready on {session.address}")
            return True
        logger.info(f"Waiting for SSH on {session.address} ({attempt}/{attempts})...")
        if attempt < attempts:
            await sleep(interval)

    logger.error(f"Timeout after {attempts} attempts waiting for SSH connectivity to {session.address}")
    return False
