"""Destroy command: delete the server and its DNS records."""

import logging
import sys

from catapulta.commands import load_from_args, run_handler

logger = logging.getLogger(__name__)


def confirm_destroy(name):
    """Ask on stdin; only a literal 'yes' confirms."""
    logger.info(f"This will permanently destroy server '{name}' and delete its DNS records.")
    try:
        answer = input("Type 'yes' to confirm: ")
    except EOFError:
        return False
    return answer.strip() == "yes"


def handle_destroy(args):
    """CLI handler for 'destroy'."""
    run_handler(_handle_destroy, args)


async def _handle_destroy(args):
    pipeline = load_from_args(args)
    report = await pipeline.run_destroy(
        args.name,
        domain=args.domain,
        force=args.force,
        confirm=lambda: confirm_destroy(args.name),
    )
    for error in report.dns_errors:
        logger.warning(f"WARNING: {error}")
    if report.dns_errors:
        sys.exit(1)


def register_destroy_command(subparsers):
    """Register the destroy subcommand."""
    parser = subparsers.add_parser("destroy", help="Destroy a server and delete its DNS records")
    parser.add_argument("name", help="Server name")
    parser.add_argument("--domain", default=None, help="Domain used at provision time (~/.ssh/config alias)")
    parser.add_argument("--force", action="store_true", help="Skip the confirmation prompt")
    parser.add_argument("--dry-run", action="store_true", help="Print provider calls without executing")
    parser.set_defaults(func=handle_destroy)
