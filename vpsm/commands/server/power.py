"""server start / server stop: power a server on or off and wait for it."""

import asyncio
import contextlib
import logging
import sys

from vpsm.actions import ActionService
from vpsm.actionstore import COMMAND_START, COMMAND_STOP
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

logger = logging.getLogger(__name__)


# ── CLI handlers ───────────────────────────────────────────────────


def handle_start(args):
    """CLI handler for 'server start'."""
    asyncio.run(_run_power_action(args, COMMAND_START, "running"))


def handle_stop(args):
    """CLI handler for 'server stop'."""
    asyncio.run(_run_power_action(args, COMMAND_STOP, "off"))


async def _run_power_action(args, command: str, target_status: str):
    settings = settings_from_args(args)
    name = resolve_provider_name(args, settings)
    cancel = make_cancel_event()
    provider = build_provider(name, settings, cancel)
    server_id = args.id
    verb = "Starting" if command == COMMAND_START else "Stopping"

    with contextlib.ExitStack() as stack:
        repo = open_store(settings, name)
        if repo is not None:
            stack.callback(repo.close)
        svc = ActionService(provider, name, repo, settings.polling, cancel, retention(settings))

        logger.info(f"{verb} server {server_id}...")
        try:
            if command == COMMAND_START:
                handle = await provider.start_server(server_id)
            else:
                handle = await provider.stop_server(server_id)
        except Exception as e:
            logger.error(f"Error {verb.lower()} server: {e}")
            sys.exit(1)

        record = svc.track_action(server_id, "", handle, command, target_status)
        await wait_and_finalize(svc, record, handle, server_id, target_status)
        remove_cancel_handler()

    past = "started" if command == COMMAND_START else "stopped"
    logger.info(f"Server {server_id} {past} successfully.")


# ── Registration ───────────────────────────────────────────────────


def register_start_command(subparsers):
    parser = subparsers.add_parser(
        "start",
        help="Start a server and wait until it is running",
        description=(
            "Power on a stopped server. The action is recorded locally, so an "
            "interrupted wait can be picked up with 'vpsm server actions --resume'."
        ),
    )
    parser.add_argument("--id", required=True, help="Server ID")
    add_provider_args(parser)
    parser.set_defaults(func=handle_start)


def register_stop_command(subparsers):
    parser = subparsers.add_parser(
        "stop",
        help="Stop a server and wait until it is off",
        description="Power off a running server and wait until the provider reports it off.",
    )
    parser.add_argument("--id", required=True, help="Server ID")
    add_provider_args(parser)
    parser.set_defaults(func=handle_stop)
