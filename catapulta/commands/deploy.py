"""Deploy command: build, ship and start the stack on a server."""

from catapulta.commands import load_from_args, run_handler


def handle_deploy(args):
    """CLI handler for 'deploy'."""
    run_handler(_handle_deploy, args)


async def _handle_deploy(args):
    # A deploy dry run only renders and plans; no collaborator is called
    pipeline = load_from_args(args, dry_run=False)
    await pipeline.run_deploy(args.host, skip_build=args.skip_build, dry_run=args.dry_run, domain=args.domain)


def register_deploy_command(subparsers):
    """Register the deploy subcommand."""
    parser = subparsers.add_parser("deploy", help="Build images and deploy the stack over SSH")
    parser.add_argument("host", nargs="?", default=None, help="Domain, IP or user@host (default: 'server' from the deployment file)")
    parser.add_argument("--domain", default=None, help="Site address for the Caddyfile (default: proxy domain or host)")
    parser.add_argument("--skip-build", action="store_true", help="Reuse local images instead of rebuilding")
    parser.add_argument("--dry-run", action="store_true", help="Print generated files and planned actions only")
    parser.set_defaults(func=handle_deploy)
