"""Render command: write the compose manifest and Caddyfile locally."""

import logging
import os

from catapulta.commands import load_from_args, run_handler

logger = logging.getLogger(__name__)


def handle_render(args):
    """CLI handler for 'render'."""
    run_handler(_handle_render, args)


async def _handle_render(args):
    pipeline = load_from_args(args)
    stack = pipeline.render(args.domain)
    files = stack.files()

    if args.output is None:
        for name, content in files.items():
            logger.info(f"--- {name} ---")
            logger.info(content.rstrip())
        return

    os.makedirs(args.output, exist_ok=True)
    for name, content in files.items():
        path = os.path.join(args.output, name)
        with open(path, "w") as f:
            f.write(content)
        logger.info(f"Wrote {path}")
    for remote, local in stack.env_files.items():
        logger.info(f"Env file: {local} -> {remote}")


def register_render_command(subparsers):
    """Register the render subcommand."""
    parser = subparsers.add_parser("render", help="Generate docker-compose.yml and Caddyfile without deploying")
    parser.add_argument("--domain", default=None, help="Site address for the Caddyfile (default: proxy domain or :80)")
    parser.add_argument("--output", "-o", default=None, help="Directory to write files to (default: print them)")
    parser.set_defaults(func=handle_render)
