#!/usr/bin/env python3
"""vpsm: manage cloud servers from the command line."""

import argparse

from vpsm.commands.server import register_server_command
from vpsm.logging_setup import setup_cli_logging


def main():
    parser = argparse.ArgumentParser(prog="vpsm", description="Manage cloud servers")
    parser.add_argument("--config", default=None, help="Config file (default: $VPSM_CONFIG or <config dir>/config.yaml)")
    parser.add_argument("--verbose", action="store_true", help="Show debug output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    register_server_command(subparsers)

    args = parser.parse_args()
    setup_cli_logging(args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
