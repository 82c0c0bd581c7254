"""Secret redaction for log output."""

import logging
import os
import re

# Env vars whose values must never reach the log
_SECRET_ENV_VARS = [
    "DIGITALOCEAN_TOKEN",
    "CF_API_TOKEN",
    "CLOUDFLARE_API_TOKEN",
    "OVH_APPLICATION_SECRET",
    "OVH_CONSUMER_KEY",
]

_MIN_SECRET_LENGTH = 8  # shorter values produce false positives

# Values loaded from credential files at runtime (e.g. ~/.ovh.conf)
_registered: set[str] = set()

_patterns: list[re.Pattern] | None = None


def _collect_secret_values() -> set[str]:
    values = {v for v in _registered if len(v) >= _MIN_SECRET_LENGTH}
    for var in _SECRET_ENV_VARS:
        val = os.environ.get(var, "")
        if len(val) >= _MIN_SECRET_LENGTH:
            values.add(val)
    return values


def _get_patterns() -> list[re.Pattern]:
    global _patterns
    if _patterns is None:
        # Longest first so a secret containing another is masked whole
        values = sorted(_collect_secret_values(), key=len, reverse=True)
        _patterns = [re.compile(re.escape(v)) for v in values]
    return _patterns


def register_secret(value: str):
    """Mask *value* in all subsequent log output."""
    global _patterns
    if value and value not in _registered:
        _registered.add(value)
        _patterns = None


def redact_secrets(text: str) -> str:
    """Replace known secret values with '***'."""
    for pattern in _get_patterns():
        text = pattern.sub("***", text)
    return text


class SecretRedactingFilter(logging.Filter):
    """Root-logger filter masking secrets in the message and its args."""

    def filter(self, record: logging.LogRecord) -> bool:
        if _get_patterns():
            record.msg = redact_secrets(str(record.msg))
            if isinstance(record.args, dict):
                record.args = {k: redact_secrets(v) if isinstance(v, str) else v for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(redact_secrets(a) if isinstance(a, str) else a for a in record.args)
        return True
