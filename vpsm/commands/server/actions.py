"""server actions: list, resume and prune locally tracked actions."""

import asyncio
import logging
import sqlite3
import sys
from datetime import UTC, datetime, timedelta

from vpsm import providers
from vpsm.actions import ActionService
from vpsm.actionstore import open_repository
from vpsm.commands.server.common import (
    EXIT_INTERRUPTED,
    make_cancel_event,
    remove_cancel_handler,
    retention,
    settings_from_args,
)
from vpsm.domain.errors import ActionError, OperationCancelled
from vpsm.domain.types import ACTION_ERROR

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20


def format_age(delta: timedelta) -> str:
    seconds = max(int(delta.total_seconds()), 0)
    if seconds < 60:
        return f"{seconds}s"
    minutes, seconds = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m{seconds}s"
    hours, minutes = divmod(minutes, 60)
    if hours < 24:
        return f"{hours}h{minutes}m"
    days, hours = divmod(hours, 24)
    return f"{days}d{hours}h"


def _truncate(text: str, width: int) -> str:
    return text if len(text) <= width else text[: width - 3] + "..."


def format_actions_table(records, now: datetime | None = None) -> list[str]:
    """Render records as aligned text rows, header first."""
    now = now or datetime.now(UTC)
    rows = [("ID", "PROVIDER", "SERVER", "COMMAND", "STATUS", "PROGRESS", "AGE")]
    for r in records:
        status = r.status
        if r.status == ACTION_ERROR and r.error_message:
            status = f"error: {_truncate(r.error_message, 40)}"
        age = format_age(now - r.created_at) if r.created_at else "-"
        rows.append((str(r.id), r.provider, r.label, r.command, status, f"{r.progress}%", age))

    widths = [max(len(row[i]) for row in rows) for i in range(len(rows[0]))]
    return ["  ".join(cell.ljust(w) for cell, w in zip(row, widths)).rstrip() for row in rows]


# ── CLI handler ────────────────────────────────────────────────────


def handle_actions(args):
    """CLI handler for 'server actions'."""
    asyncio.run(_handle_actions(args))


async def _handle_actions(args):
    settings = settings_from_args(args)
    try:
        repo = open_repository(settings.db_path or None)
    except (OSError, sqlite3.Error) as e:
        logger.error(f"Error: failed to open action store: {e}")
        sys.exit(1)

    with repo:
        svc = ActionService(None, "", repo, settings.polling, retention=retention(settings))

        if args.prune is not None:
            removed = svc.cleanup(timedelta(hours=args.prune))
            logger.info(f"Removed {removed} completed action(s) older than {args.prune:g}h.")
            return

        if args.resume:
            failures = await _resume_pending(svc, settings)
            if failures:
                sys.exit(1)
            return

        if args.all:
            records = svc.list_recent(args.limit)
        else:
            records = svc.list_pending()

        if not records:
            logger.info("No recent actions." if args.all else "No pending actions.")
            return

        for line in format_actions_table(records):
            logger.info(line)
        if not args.all:
            logger.info("")
            logger.info("Use --resume to resume polling these actions.")


async def _resume_pending(svc: ActionService, settings) -> int:
    """Resume every running record in turn. Returns the number that failed."""
    pending = svc.list_pending()
    if not pending:
        logger.info("No pending actions to resume.")
        return 0

    logger.info(f"Resuming {len(pending)} pending action(s)...")
    logger.info("")

    cancel = make_cancel_event()
    built = {}
    failures = 0
    for record in pending:
        tag = f"[{record.label}]"
        if record.provider not in built:
            try:
                built[record.provider] = providers.with_retry(providers.get(record.provider), settings.retry, cancel)
            except KeyError as e:
                built[record.provider] = None
                logger.error(f"{tag} Error resolving provider: {e.args[0]}")
        provider = built[record.provider]
        if provider is None:
            failures += 1
            continue

        logger.info(f"{tag} Resuming {record.command} (action {record.action_id or '-'})...")
        record_svc = ActionService(provider, record.provider, svc.repo, settings.polling, cancel, svc.retention)
        try:
            await record_svc.resume_action(record)
        except OperationCancelled:
            logger.info("")
            logger.info("Interrupted. Remaining actions stay pending.")
            sys.exit(EXIT_INTERRUPTED)
        except ActionError as e:
            logger.error(f"{tag} Error: {e}")
            failures += 1
            continue
        logger.info(f"{tag} {record.command} completed.")

    remove_cancel_handler()
    return failures


def register_actions_command(subparsers):
    parser = subparsers.add_parser(
        "actions",
        help="List or resume tracked actions",
        description=(
            "Show actions started by previous invocations. Only pending actions are "
            "listed unless --all is given. An interrupted start/stop stays pending; "
            "--resume polls each one until it completes."
        ),
    )
    parser.add_argument("--all", action="store_true", help="Show recent actions of any status")
    parser.add_argument("--limit", type=int, default=DEFAULT_LIMIT, help=f"Rows shown with --all (default: {DEFAULT_LIMIT})")
    parser.add_argument("--resume", action="store_true", help="Resume polling all pending actions")
    parser.add_argument("--prune", type=float, default=None, metavar="HOURS", help="Delete completed actions older than HOURS")
    parser.set_defaults(func=handle_actions)
