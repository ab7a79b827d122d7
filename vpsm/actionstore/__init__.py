"""Durable storage for in-flight provider actions."""

from vpsm.actionstore.record import COMMAND_CREATE, COMMAND_START, COMMAND_STOP, ActionRecord
from vpsm.actionstore.repository import ActionRepository, open_repository

__all__ = [
    "ActionRecord",
    "ActionRepository",
    "open_repository",
    "COMMAND_START",
    "COMMAND_STOP",
    "COMMAND_CREATE",
]
