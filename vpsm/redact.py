"""Keep provider API tokens out of CLI output."""

import logging
import os
import re

# Env vars holding provider credentials
SECRET_ENV_VARS = [
    "HCLOUD_TOKEN",
    "DIGITALOCEAN_ACCESS_TOKEN",
    "VULTR_API_KEY",
    "VPSM_TOKEN",
]

MASK = "***"
_MIN_SECRET_LENGTH = 8  # shorter values cause false positives


def secret_values() -> list[str]:
    """Configured secret values, longest first so overlapping tokens mask fully."""
    found = {os.environ.get(var, "") for var in SECRET_ENV_VARS}
    return sorted((v for v in found if len(v) >= _MIN_SECRET_LENGTH), key=len, reverse=True)


_pattern_cache: tuple[tuple[str, ...], re.Pattern | None] | None = None


def _pattern() -> re.Pattern | None:
    # Rebuilt when the environment changes (tests set tokens via monkeypatch).
    global _pattern_cache
    values = tuple(secret_values())
    if _pattern_cache is None or _pattern_cache[0] != values:
        compiled = re.compile("|".join(re.escape(v) for v in values)) if values else None
        _pattern_cache = (values, compiled)
    return _pattern_cache[1]


def redact_secrets(text: str) -> str:
    """Replace every known token value in *text* with ``***``."""
    pattern = _pattern()
    if pattern is None:
        return text
    return pattern.sub(MASK, text)


class SecretRedactingFilter(logging.Filter):
    """Mask provider tokens in log records before any handler formats them.

    Messages are f-strings in this codebase, but %-style args are masked too.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if _pattern() is None:
            return True
        record.msg = redact_secrets(str(record.msg))
        if isinstance(record.args, dict):
            record.args = {k: redact_secrets(v) if isinstance(v, str) else v for k, v in record.args.items()}
        elif isinstance(record.args, tuple):
            record.args = tuple(redact_secrets(a) if isinstance(a, str) else a for a in record.args)
        return True
