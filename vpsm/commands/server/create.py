"""server create: provision a server and wait until it is up."""

import asyncio
import contextlib
import logging
import sys

from vpsm.actions import ActionService
from vpsm.actionstore import COMMAND_CREATE
from vpsm.commands.server.common import (
    add_provider_args,
    build_provider,
    make_cancel_event,
    open_store,
    remove_cancel_handler,
    resolve_provider_name,
    retention,
    settings_from_args,
    wait_and_finalize,
)
from vpsm.domain.provider import supports_create
from vpsm.domain.types import CreateServerOpts

logger = logging.getLogger(__name__)


def parse_labels(pairs) -> dict[str, str]:
    """Turn ``["env=prod", "team=web"]`` into a dict; exits on malformed pairs."""
    labels = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            logger.error(f"Error: invalid label {pair!r}, expected key=value.")
            sys.exit(1)
        labels[key.strip()] = value.strip()
    return labels


def handle_create(args):
    """CLI handler for 'server create'."""
    asyncio.run(_handle_create(args))


async def _handle_create(args):
    settings = settings_from_args(args)
    name = resolve_provider_name(args, settings)
    cancel = make_cancel_event()
    provider = build_provider(name, settings, cancel)

    if not supports_create(provider):
        logger.error(f"Error: provider {name!r} does not support creating servers.")
        sys.exit(1)

    opts = CreateServerOpts(
        name=args.name,
        image=args.image,
        server_type=args.type,
        location=args.location or "",
        ssh_keys=list(args.ssh_key or []),
        labels=parse_labels(args.label),
    )

    with contextlib.ExitStack() as stack:
        repo = open_store(settings, name)
        if repo is not None:
            stack.callback(repo.close)
        svc = ActionService(provider, name, repo, settings.polling, cancel, retention(settings))

        logger.info(f"Creating server {opts.name!r} ({opts.server_type}, {opts.image})...")
        try:
            server, handle = await provider.create_server(opts)
        except Exception as e:
            logger.error(f"Error creating server: {e}")
            sys.exit(1)

        logger.info(f"  Server ID: {server.id}")
        if server.public_ipv4:
            logger.info(f"  IPv4: {server.public_ipv4}")

        target_status = "running" if opts.start_after_create else "off"
        record = svc.track_action(server.id, server.name, handle, COMMAND_CREATE, target_status)
        if args.no_wait:
            if record is not None:
                logger.info("Not waiting. Check progress with: vpsm server actions")
            return

        await wait_and_finalize(svc, record, handle, server.id, target_status)
        remove_cancel_handler()

    logger.info(f"Server {server.label!r} ({server.id}) is {target_status}.")


def register_create_command(subparsers):
    parser = subparsers.add_parser("create", help="Create a server and wait until it is running")
    parser.add_argument("--name", required=True, help="Server name")
    parser.add_argument("--image", required=True, help="Image name or ID (e.g. ubuntu-24.04)")
    parser.add_argument("--type", required=True, help="Server type (e.g. cx22)")
    parser.add_argument("--location", default=None, help="Location or region")
    parser.add_argument("--ssh-key", action="append", default=None, help="SSH key name or ID (repeatable)")
    parser.add_argument("--label", action="append", default=None, help="Label as key=value (repeatable)")
    parser.add_argument("--no-wait", action="store_true", help="Return once the provider accepted the request")
    add_provider_args(parser)
    parser.set_defaults(func=handle_create)
