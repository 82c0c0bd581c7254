"""CLI sub-commands and the plumbing they share."""

import asyncio
import logging
import sys

from catapulta.config import DEFAULT_CONFIG_FILE, load_pipeline
from catapulta.errors import CatapultaError

logger = logging.getLogger(__name__)


def load_from_args(args, dry_run=None):
    """Load the pipeline named by ``--config``.

    ``dry_run`` defaults to the command's ``--dry-run`` flag and switches the
    provisioner, DNS publishers and deployer to logging only.
    """
    pipeline = load_pipeline(getattr(args, "config", DEFAULT_CONFIG_FILE))
    if dry_run is None:
        dry_run = getattr(args, "dry_run", False)
    if dry_run:
        pipeline.dry_run()
    return pipeline


def run_handler(handler, args):
    """Run an async handler; catapulta errors are reported and exit 1."""
    try:
        asyncio.run(handler(args))
    except CatapultaError as e:
        logger.error(f"Error: {e}")
        sys.exit(1)
