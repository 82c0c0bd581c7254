"""Status command: show running containers on a server."""

import logging

from catapulta.commands import load_from_args, run_handler

logger = logging.getLogger(__name__)


def handle_status(args):
    """CLI handler for 'status'."""
    run_handler(_handle_status, args)


async def _handle_status(args):
    pipeline = load_from_args(args)
    output = await pipeline.run_status(args.host)
    logger.info(output.rstrip() or "No containers running.")


def register_status_command(subparsers):
    """Register the status subcommand."""
    parser = subparsers.add_parser("status", help="Show 'docker compose ps' on the server")
    parser.add_argument("host", nargs="?", default=None, help="Domain, IP or user@host (default: 'server' from the deployment file)")
    parser.set_defaults(func=handle_status)
