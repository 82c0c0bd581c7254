"""Provision command: create and prepare a server."""

import logging

from catapulta.commands import load_from_args, run_handler

logger = logging.getLogger(__name__)


def handle_provision(args):
    """CLI handler for 'provision'."""
    run_handler(_handle_provision, args)


async def _handle_provision(args):
    pipeline = load_from_args(args)
    report = await pipeline.run_provision(args.name, domain=args.domain, region=args.region, size=args.size)
    for error in report.dns_errors:
        logger.warning(f"WARNING: {error}")


def register_provision_command(subparsers):
    """Register the provision subcommand."""
    parser = subparsers.add_parser("provision", help="Create a server and install Docker + Caddy")
    parser.add_argument("name", help="Server name")
    parser.add_argument("--domain", default=None, help="Domain pointed at the server (also its ~/.ssh/config alias)")
    parser.add_argument("--region", default=None, help="Provider region (default: provisioner's)")
    parser.add_argument("--size", default=None, help="Provider size / instance type (default: provisioner's)")
    parser.add_argument("--dry-run", action="store_true", help="Print provider calls and commands without executing")
    parser.set_defaults(func=handle_provision)
