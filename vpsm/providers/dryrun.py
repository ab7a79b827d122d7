"""In-memory provider behind ``--dry-run``.

Nothing leaves the machine. Servers are created on first reference, actions
advance one step per poll, and the server status trails the action's success
by ``status_lag`` reads, the way real providers report "action done" before
the server shows its new state.
"""

import itertools
import logging
from dataclasses import dataclass, replace
from datetime import UTC, datetime

from vpsm.actionstore import COMMAND_CREATE, COMMAND_START, COMMAND_STOP
from vpsm.domain.errors import ConflictError, NotFoundError
from vpsm.domain.types import ACTION_RUNNING, ACTION_SUCCESS, ActionStatus, CreateServerOpts, Server

logger = logging.getLogger(__name__)

PROVIDER_NAME = "dry-run"


@dataclass
class _SimAction:
    id: str
    server_id: str
    command: str
    target_status: str
    steps: int
    done_steps: int = 0

    @property
    def progress(self) -> int:
        return min(100, int(100 * self.done_steps / self.steps))


class SimulatedProvider:
    """A provider whose servers and actions exist only in this process.

    Args:
        servers: servers to seed, e.g. ``[Server("1", name="web", status="running")]``.
        action_steps: polls until an action reports success.
        status_lag: server reads after success that still show the old status.
    """

    display_name = "Dry run"

    def __init__(self, servers=None, action_steps: int = 2, status_lag: int = 1):
        self.action_steps = max(action_steps, 1)
        self.status_lag = max(status_lag, 0)
        self._servers: dict[str, Server] = {}
        self._actions: dict[str, _SimAction] = {}
        # server_id -> (target status, reads left before it shows)
        self._settling: dict[str, tuple[str, int]] = {}
        self._ids = itertools.count(1)
        for server in servers or []:
            self._servers[server.id] = replace(server, provider=PROVIDER_NAME)

    def _server(self, server_id: str, initial_status: str) -> Server:
        server = self._servers.get(server_id)
        if server is None:
            server = Server(
                id=server_id,
                name=f"dry-run-{server_id}",
                status=initial_status,
                provider=PROVIDER_NAME,
                created_at=datetime.now(UTC),
            )
            self._servers[server_id] = server
        return server

    def _begin(self, server: Server, command: str, transitional: str, target: str) -> ActionStatus:
        action_id = f"dry-{next(self._ids)}"
        server.status = transitional
        self._actions[action_id] = _SimAction(action_id, server.id, command, target, self.action_steps)
        logger.info(f"[dry-run] {command} {server.id} -> action {action_id}")
        return ActionStatus(id=action_id, status=ACTION_RUNNING, progress=0, command=command)

    async def get_server(self, server_id: str) -> Server | None:
        server = self._server(server_id, "off")
        settling = self._settling.get(server_id)
        if settling is not None:
            target, reads_left = settling
            if reads_left <= 0:
                server.status = target
                del self._settling[server_id]
            else:
                self._settling[server_id] = (target, reads_left - 1)
        return replace(server, metadata=dict(server.metadata))

    async def start_server(self, server_id: str) -> ActionStatus:
        server = self._server(server_id, "off")
        if server.status == "running":
            logger.info(f"[dry-run] {server_id} already running")
            return ActionStatus(status=ACTION_SUCCESS, progress=100, command=COMMAND_START)
        if server.status not in ("off", "stopped"):
            raise ConflictError(f"server {server_id!r} is {server.status!r}")
        return self._begin(server, COMMAND_START, "starting", "running")

    async def stop_server(self, server_id: str) -> ActionStatus:
        server = self._server(server_id, "running")
        if server.status in ("off", "stopped"):
            logger.info(f"[dry-run] {server_id} already off")
            return ActionStatus(status=ACTION_SUCCESS, progress=100, command=COMMAND_STOP)
        if server.status != "running":
            raise ConflictError(f"server {server_id!r} is {server.status!r}")
        return self._begin(server, COMMAND_STOP, "stopping", "off")

    async def poll_action(self, action_id: str) -> ActionStatus:
        action = self._actions.get(action_id)
        if action is None:
            raise NotFoundError(f"action {action_id!r} not found")
        if action.done_steps < action.steps:
            action.done_steps += 1
            if action.done_steps == action.steps:
                self._settling[action.server_id] = (action.target_status, self.status_lag)
        status = ACTION_SUCCESS if action.done_steps >= action.steps else ACTION_RUNNING
        return ActionStatus(id=action.id, status=status, progress=action.progress, command=action.command)

    async def create_server(self, opts: CreateServerOpts) -> tuple[Server, ActionStatus | None]:
        server_id = str(100000 + next(self._ids))
        server = Server(
            id=server_id,
            name=opts.name,
            status="initializing",
            provider=PROVIDER_NAME,
            created_at=datetime.now(UTC),
            region=opts.location,
            server_type=opts.server_type,
            image=opts.image,
            metadata={"labels": dict(opts.labels), "ssh_keys": list(opts.ssh_keys)},
        )
        self._servers[server_id] = server
        logger.info(f"[dry-run] create_server name={opts.name} image={opts.image} type={opts.server_type}")
        target = "running" if opts.start_after_create else "off"
        handle = self._begin(server, COMMAND_CREATE, "initializing", target)
        return replace(server), handle
