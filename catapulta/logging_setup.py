"""CLI logging setup: plain %(message)s output with secrets masked."""

import logging
import sys

from catapulta.redact import SecretRedactingFilter


def setup_cli_logging(verbose=False):
    """Configure the root logger for CLI commands.

    Messages go to stdout unprefixed; ``verbose`` lowers the level to DEBUG
    so every remote command line is shown.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    # Handler-level so records from every logger pass through it
    handler.addFilter(SecretRedactingFilter())
    root.addHandler(handler)
    # Keep httpx request lines out of INFO output
    logging.getLogger("httpx").setLevel(logging.WARNING)
