"""Up command: provision (unless a server is configured), publish DNS, deploy."""

import logging

from catapulta.commands import load_from_args, run_handler

logger = logging.getLogger(__name__)


def handle_up(args):
    """CLI handler for 'up'."""
    run_handler(_handle_up, args)


async def _handle_up(args):
    pipeline = load_from_args(args)
    report = await pipeline.launch(
        args.name,
        domain=args.domain,
        region=args.region,
        size=args.size,
        skip_build=args.skip_build,
    )
    for error in report.dns_errors:
        logger.warning(f"WARNING: {error}")


def register_up_command(subparsers):
    """Register the up subcommand."""
    parser = subparsers.add_parser("up", help="Provision, publish DNS and deploy in one go")
    parser.add_argument("name", nargs="?", default=None, help="Server name (not needed when 'server' is configured)")
    parser.add_argument("--domain", default=None, help="Domain pointed at the server")
    parser.add_argument("--region", default=None, help="Provider region")
    parser.add_argument("--size", default=None, help="Provider size / instance type")
    parser.add_argument("--skip-build", action="store_true", help="Reuse local images instead of rebuilding")
    parser.add_argument("--dry-run", action="store_true", help="Print provider calls and commands without executing")
    parser.set_defaults(func=handle_up)
