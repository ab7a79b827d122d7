"""Persisted action record."""

from dataclasses import dataclass
from datetime import datetime

from vpsm.domain.types import ACTION_ERROR, ACTION_RUNNING, ACTION_SUCCESS

COMMAND_START = "start_server"
COMMAND_STOP = "stop_server"
COMMAND_CREATE = "create_server"


@dataclass
class ActionRecord:
    """A tracked provider action, with enough context to resume polling
    after the CLI is interrupted.

    ``id`` is the local primary key, assigned on first save. ``action_id`` is
    the provider's handle and may be empty for providers without actions.
    """

    provider: str
    server_id: str
    command: str = ""
    target_status: str = ""
    action_id: str = ""
    server_name: str = ""
    status: str = ACTION_RUNNING
    progress: int = 0
    error_message: str = ""
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (ACTION_SUCCESS, ACTION_ERROR)

    @property
    def label(self) -> str:
        return self.server_name or self.server_id
