"""Helpers shared by the server subcommands."""

import asyncio
import contextlib
import logging
import signal
import sqlite3
import sys
from datetime import timedelta

from vpsm import providers
from vpsm.actions import ActionService
from vpsm.actionstore import open_repository
from vpsm.config import Settings, load_settings
from vpsm.domain.errors import ActionError, OperationCancelled
from vpsm.domain.types import ACTION_ERROR, ACTION_SUCCESS

logger = logging.getLogger(__name__)

EXIT_INTERRUPTED = 130


def add_provider_args(parser):
    parser.add_argument("--provider", default=None, help="Provider name (default: default_provider from config)")
    parser.add_argument("--dry-run", action="store_true", help="Use the in-memory simulated provider")


def settings_from_args(args) -> Settings:
    return load_settings(getattr(args, "config", None))


def resolve_provider_name(args, settings: Settings) -> str:
    """Provider from --dry-run, --provider or config; exits if none is set."""
    if getattr(args, "dry_run", False):
        return providers.DRY_RUN
    name = getattr(args, "provider", None) or settings.default_provider
    if not name:
        logger.error("Error: no provider selected. Use --provider or set default_provider in config.")
        sys.exit(1)
    return providers.registry.normalize_name(name)


def build_provider(name: str, settings: Settings, cancel: asyncio.Event | None = None):
    """Instantiate a registered provider with retried reads; exits on unknown names."""
    try:
        provider = providers.get(name)
    except KeyError as e:
        logger.error(f"Error: {e.args[0]}")
        sys.exit(1)
    return providers.with_retry(provider, settings.retry, cancel)


def open_store(settings: Settings, provider_name: str = ""):
    """Open the action store, or return None so commands run without resume support.

    Dry runs never touch the store: simulated actions cannot be resumed.
    """
    if provider_name == providers.DRY_RUN:
        logger.debug("[dry-run] action store disabled")
        return None
    try:
        return open_repository(settings.db_path or None)
    except (OSError, sqlite3.Error) as e:
        logger.warning(f"Warning: action tracking unavailable: {e}")
        return None


def retention(settings: Settings) -> timedelta:
    return timedelta(hours=settings.retention_hours)


def make_cancel_event() -> asyncio.Event:
    """Event set by Ctrl+C, so waits end cleanly and records stay resumable."""
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    # add_signal_handler is unavailable on Windows event loops
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGINT, cancel.set)
    return cancel


def remove_cancel_handler():
    with contextlib.suppress(NotImplementedError, RuntimeError):
        asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)


async def wait_and_finalize(svc: ActionService, record, handle, server_id: str, target_status: str):
    """Block until the action settles and write its outcome; exits on failure."""
    try:
        await svc.wait_for_action(handle, server_id, target_status, record)
    except OperationCancelled:
        logger.info("")
        logger.info("Interrupted. The action is still tracked; resume with: vpsm server actions --resume")
        sys.exit(EXIT_INTERRUPTED)
    except ActionError as e:
        svc.finalize_action(record, ACTION_ERROR, str(e))
        logger.error(f"Error: {e}")
        sys.exit(1)
    svc.finalize_action(record, ACTION_SUCCESS)
