"""CLI logging setup: plain %(message)s output on stdout."""

import logging
import sys

from vpsm.redact import SecretRedactingFilter


class _CliFormatter(logging.Formatter):
    """Plain messages, with debug lines tagged by their module.

    - ``vpsm.actionstore.repository`` at DEBUG -> ``[repository] ...``
    - everything at INFO and above -> message only
    """

    def format(self, record):
        message = super().format(record)
        if record.levelno < logging.INFO:
            return f"[{record.name.rsplit('.', 1)[-1]}] {message}"
        return message


def setup_cli_logging(verbose: bool = False):
    """Configure the root logger so CLI output reads like print().

    ``verbose`` lowers the level to DEBUG (retry attempts, store paths).
    Provider tokens are masked on the handler, so records from any logger
    are covered.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(_CliFormatter("%(message)s"))
    console_handler.addFilter(SecretRedactingFilter())
    root.addHandler(console_handler)
