"""server toggle: start stopped servers and stop running ones, concurrently."""

import asyncio
import contextlib
import logging
import sys

from vpsm.commands.server.common import (
    EXIT_INTERRUPTED,
    add_provider_args,
    build_provider,
    make_cancel_event,
    open_store,
    remove_cancel_handler,
    resolve_provider_name,
    settings_from_args,
)
from vpsm.tracker import EVENT_COMPLETED, EVENT_DISMISSED, OperationTracker, render_operations, toggle_plan

logger = logging.getLogger(__name__)


def handle_toggle(args):
    """CLI handler for 'server toggle'."""
    asyncio.run(_handle_toggle(args))


async def _handle_toggle(args):
    settings = settings_from_args(args)
    name = resolve_provider_name(args, settings)
    cancel = make_cancel_event()
    provider = build_provider(name, settings, cancel)

    servers = []
    for server_id in dict.fromkeys(args.ids):
        try:
            server = await provider.get_server(server_id)
        except Exception as e:
            logger.error(f"Error looking up server {server_id}: {e}")
            sys.exit(1)
        if server is None:
            logger.error(f"Error: server {server_id} not found.")
            sys.exit(1)
        servers.append(server)

    with contextlib.ExitStack() as stack:
        repo = open_store(settings, name)
        if repo is not None:
            stack.callback(repo.close)

        tracker = OperationTracker(provider, name, repo, settings.tracker, settings.polling)
        reloaded = await tracker.start()
        for op in reloaded:
            logger.info(f"Resuming tracked {op.command} for {op.label}")
        failures, interrupted = await _run_toggles(tracker, servers, cancel, len(reloaded))
        await tracker.close()
        remove_cancel_handler()

    if interrupted:
        logger.info("Interrupted. Pending actions can be resumed with: vpsm server actions --resume")
        sys.exit(EXIT_INTERRUPTED)
    if failures:
        sys.exit(1)


async def _run_toggles(tracker: OperationTracker, servers, cancel: asyncio.Event, reloaded: int = 0) -> tuple[int, bool]:
    """Start every toggle and print events until all settle. Returns (failures, interrupted)."""
    expected = reloaded
    for server in servers:
        if tracker.start_toggle(server) is not None:
            expected += 1
        elif toggle_plan(server.status) is None:
            logger.info(f"Skipping {server.label}: status {server.status!r} cannot be toggled.")
        else:
            logger.info(f"Skipping {server.label}: an operation is already in progress.")

    failures = 0
    completed = 0
    cancelled = asyncio.create_task(cancel.wait())
    try:
        while completed < expected:
            getter = asyncio.create_task(tracker.events.get())
            done, _ = await asyncio.wait({getter, cancelled}, return_when=asyncio.FIRST_COMPLETED)
            if getter not in done:
                getter.cancel()
                return failures, True
            event = getter.result()
            if event.kind == EVENT_DISMISSED:
                continue
            for line in render_operations([event.operation]):
                logger.info(line)
            if event.kind == EVENT_COMPLETED:
                completed += 1
                if not event.success:
                    logger.error(f"Error: {event.message}")
                    failures += 1
    finally:
        cancelled.cancel()
    return failures, False


def register_toggle_command(subparsers):
    parser = subparsers.add_parser(
        "toggle",
        help="Start stopped servers and stop running ones",
        description="Toggle the power state of one or more servers; operations run concurrently.",
    )
    parser.add_argument("ids", nargs="+", metavar="ID", help="Server ID")
    add_provider_args(parser)
    parser.set_defaults(func=handle_toggle)
