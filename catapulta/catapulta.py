#!/usr/bin/env python3
"""Declarative container deployment: CLI entrypoint."""

import argparse

from catapulta.commands.deploy import register_deploy_command
from catapulta.commands.destroy import register_destroy_command
from catapulta.commands.provision import register_provision_command
from catapulta.commands.render import register_render_command
from catapulta.commands.status import register_status_command
from catapulta.commands.up import register_up_command
from catapulta.config import DEFAULT_CONFIG_FILE
from catapulta.logging_setup import setup_cli_logging


def main():
    parser = argparse.ArgumentParser(description="Deploy containerized apps behind Caddy on a single server")
    parser.add_argument(
        "--config", "-c",
        default=DEFAULT_CONFIG_FILE,
        help=f"Deployment file (default: {DEFAULT_CONFIG_FILE})",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Show every command that is run")
    subparsers = parser.add_subparsers(dest="command", required=True)

    register_provision_command(subparsers)
    register_deploy_command(subparsers)
    register_render_command(subparsers)
    register_status_command(subparsers)
    register_destroy_command(subparsers)
    register_up_command(subparsers)

    args = parser.parse_args()
    setup_cli_logging(verbose=args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
