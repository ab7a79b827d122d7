"""Concurrent operation tracker for interactive front ends.

Many start/stop operations poll at once, each on its own schedule. Provider
calls run as independent tasks that only post messages to an inbox; a single
coordinator task owns all operation state and applies those messages in
order, so no lock is needed and a slow poll never blocks the others.

Every state change is mirrored to the action store on a worker thread. A
store failure is logged and otherwise ignored: the operation keeps going, it
just cannot be resumed after a restart.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta

from vpsm.actions.machine import ActionStateMachine, Phase, PollMode, Step
from vpsm.actionstore import COMMAND_CREATE, COMMAND_START, COMMAND_STOP, ActionRecord, ActionRepository
from vpsm.config import PollSettings, TrackerSettings
from vpsm.domain.errors import ActionFailedError, OperationCancelled, PollingStoppedError
from vpsm.domain.provider import supports_action_polling
from vpsm.domain.types import ACTION_ERROR, ACTION_RUNNING, ACTION_SUCCESS, ActionStatus, Server

logger = logging.getLogger(__name__)

OP_ACTIVE = "active"
OP_SUCCEEDED = "succeeded"
OP_FAILED = "failed"

EVENT_UPDATED = "updated"
EVENT_COMPLETED = "completed"
EVENT_DISMISSED = "dismissed"

_VERBS = {
    COMMAND_START: ("start", "Starting", "started"),
    COMMAND_STOP: ("stop", "Stopping", "stopped"),
    COMMAND_CREATE: ("create", "Creating", "created"),
}


@dataclass
class Operation:
    """Live poll-cycle state for one in-flight action (never persisted as such)."""

    id: int
    server_id: str
    server_name: str = ""
    command: str = ""
    target_status: str = ""
    record_id: int | None = None
    mode: PollMode | None = None
    action_id: str = ""
    consecutive_errors: int = 0
    status: str = OP_ACTIVE
    status_text: str = ""
    progress: int = 0

    @property
    def label(self) -> str:
        return self.server_name or self.server_id

    @property
    def done(self) -> bool:
        return self.status != OP_ACTIVE


@dataclass
class TrackerEvent:
    kind: str
    operation: Operation
    success: bool = False
    message: str = ""


@dataclass
class _Message:
    kind: str
    op_id: int
    handle: ActionStatus | None = None
    mode: PollMode | None = None
    result: ActionStatus | Server | None = None
    error: Exception | None = None


def _infinitive(command: str) -> str:
    return _VERBS.get(command, ("update", "Updating", "updated"))[0]


def _gerund(command: str) -> str:
    return _VERBS.get(command, ("update", "Updating", "updated"))[1]


def _past(command: str) -> str:
    return _VERBS.get(command, ("update", "Updating", "updated"))[2]


def toggle_plan(status: str) -> tuple[str, str] | None:
    """(command, target status) for toggling a server in *status*, or None."""
    if status == "running":
        return COMMAND_STOP, "off"
    if status in ("off", "stopped"):
        return COMMAND_START, "running"
    return None


class OperationTracker:
    """Runs N independent start/stop operations and reports them as events.

    Usage::

        tracker = OperationTracker(provider, "hetzner", repo)
        await tracker.start()
        tracker.start_toggle(server)
        while True:
            event = await tracker.events.get()
            ...
    """

    def __init__(
        self,
        provider,
        provider_name: str,
        repo: ActionRepository | None = None,
        settings: TrackerSettings | None = None,
        poll_settings: PollSettings | None = None,
    ):
        self.provider = provider
        self.provider_name = provider_name
        self.repo = repo
        self.settings = settings or TrackerSettings()
        self.poll_settings = poll_settings or PollSettings()
        self.events: asyncio.Queue[TrackerEvent] = asyncio.Queue()

        self._inbox: asyncio.Queue[_Message] = asyncio.Queue()
        self._ops: dict[int, Operation] = {}
        self._machines: dict[int, ActionStateMachine] = {}
        self._records: dict[int, ActionRecord] = {}
        self._tasks: set[asyncio.Task] = set()
        self._next_id = 1
        self._coordinator: asyncio.Task | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False

    # ── Public API ─────────────────────────────────────────────────

    @property
    def operations(self) -> list[Operation]:
        """Snapshots of the current operations, oldest first."""
        return [replace(op) for op in self._ops.values()]

    async def start(self) -> list[Operation]:
        """Start the coordinator and reload still-fresh pending records.

        Returns the reloaded operations.
        """
        self._ensure_running()
        if self.repo is None:
            return []
        try:
            records = await asyncio.to_thread(self.repo.list_pending)
        except Exception as e:
            logger.warning(f"Warning: could not load pending actions: {e}")
            return []

        cutoff = datetime.now(UTC) - timedelta(seconds=self.settings.stale_after)
        reloaded = []
        for record in records:
            if record.provider != self.provider_name:
                continue
            if record.updated_at is not None and record.updated_at < cutoff:
                continue
            if any(op.server_id == record.server_id and not op.done for op in self._ops.values()):
                continue
            op = self._new_operation(
                record.server_id,
                record.server_name,
                record.command,
                record.target_status,
                f"Resuming {record.label!r}...",
            )
            op.record_id = record.id
            op.action_id = record.action_id
            op.progress = record.progress
            self._records[op.id] = record

            machine = ActionStateMachine(record.server_id, record.target_status, self.poll_settings)
            step = machine.resume(record.action_id, supports_action_polling(self.provider))
            self._machines[op.id] = machine
            op.mode = machine.mode
            self._emit(EVENT_UPDATED, op)
            self._schedule(op, step)
            reloaded.append(replace(op))
            logger.debug(f"Reloaded action {record.id} for server {record.server_id}")
        return reloaded

    def start_toggle(self, server: Server) -> Operation | None:
        """Start or stop *server* depending on its status.

        Returns None when the status cannot be toggled or an operation for
        this server is already active.
        """
        plan = toggle_plan(server.status)
        if plan is None:
            return None
        if any(op.server_id == server.id and not op.done for op in self._ops.values()):
            logger.debug(f"Server {server.id} already has an active operation")
            return None
        self._ensure_running()

        command, target = plan
        op = self._new_operation(server.id, server.name, command, target, f"{_gerund(command)} {server.label!r}...")
        self._records[op.id] = ActionRecord(
            provider=self.provider_name,
            server_id=server.id,
            server_name=server.name,
            command=command,
            target_status=target,
        )
        # Queued ahead of the provider call so the insert lands before any update.
        self._inbox.put_nowait(_Message("persist", op.id))
        self._emit(EVENT_UPDATED, op)
        self._spawn(self._initiate(op.id, server.id, command))
        return replace(op)

    async def wait_idle(self):
        """Resolve once every operation has completed and been dismissed."""
        await self._idle.wait()

    async def close(self):
        """Stop polling. Records still in flight stay ``running`` for a later resume."""
        self._closed = True
        tasks = list(self._tasks)
        if self._coordinator is not None:
            tasks.append(self._coordinator)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._coordinator = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    # ── Tasks ──────────────────────────────────────────────────────

    def _ensure_running(self):
        if self._closed:
            raise RuntimeError("tracker is closed")
        if self._coordinator is None:
            self._coordinator = asyncio.create_task(self._run())

    def _spawn(self, coro):
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _initiate(self, op_id: int, server_id: str, command: str):
        try:
            if command == COMMAND_STOP:
                handle = await self.provider.stop_server(server_id)
            else:
                handle = await self.provider.start_server(server_id)
        except OperationCancelled:
            return
        except Exception as e:
            await self._inbox.put(_Message("initiate_failed", op_id, error=e))
            return
        await self._inbox.put(_Message("initiated", op_id, handle=handle))

    async def _poll(self, op_id: int, mode: PollMode, target: str, immediate: bool):
        if not immediate:
            await asyncio.sleep(self.poll_settings.interval)
        try:
            if mode == PollMode.ACTION:
                result = await self.provider.poll_action(target)
            else:
                result = await self.provider.get_server(target)
        except OperationCancelled:
            # Interrupted: no outcome, the record stays running.
            return
        except Exception as e:
            await self._inbox.put(_Message("poll_error", op_id, mode=mode, error=e))
            return
        await self._inbox.put(_Message("poll_result", op_id, mode=mode, result=result))

    async def _dismiss_later(self, op_id: int):
        await asyncio.sleep(self.settings.dismiss_delay)
        await self._inbox.put(_Message("dismiss", op_id))

    # ── Coordinator ────────────────────────────────────────────────

    async def _run(self):
        while True:
            msg = await self._inbox.get()
            op = self._ops.get(msg.op_id)
            if op is None:
                continue  # dismissed already
            try:
                await self._handle(op, msg)
            except Exception:
                logger.exception(f"Unexpected error handling {msg.kind} for operation {op.id}")

    async def _handle(self, op: Operation, msg: _Message):
        if msg.kind == "dismiss":
            self._dismiss(op)
            return
        if op.done:
            return

        if msg.kind == "persist":
            await self._persist(op, ACTION_RUNNING)
            return

        if msg.kind == "initiate_failed":
            message = f"Failed to {_infinitive(op.command)} server {op.label!r}: {msg.error}"
            await self._finish(op, False, message, f"Failed: {msg.error}")
            return

        if msg.kind == "initiated":
            await self._on_initiated(op, msg.handle)
            return

        machine = self._machines[op.id]
        if msg.kind == "poll_result":
            if msg.mode == PollMode.ACTION:
                step = machine.on_action_status(msg.result)
                if not step.done and machine.mode == PollMode.SERVER:
                    op.status_text = f"Verifying {op.label!r}..."
                elif not step.done and msg.result.progress > 0:
                    op.status_text = f"{_gerund(op.command)} {op.label!r} ({machine.progress}%)"
            else:
                step = machine.on_server(msg.result)
                if not step.done:
                    op.status_text = f"{_gerund(op.command)} {op.label!r}..."
        else:
            step = machine.on_error(msg.error)
            if not step.done:
                op.status_text = f"Retrying... ({machine.consecutive_errors}/{machine.max_transient_errors})"

        op.mode = machine.mode
        op.progress = machine.progress
        op.consecutive_errors = machine.consecutive_errors
        await self._advance(op, step)

    async def _on_initiated(self, op: Operation, handle: ActionStatus | None):
        machine = ActionStateMachine(op.server_id, op.target_status, self.poll_settings)
        self._machines[op.id] = machine
        step = machine.begin(handle, supports_action_polling(self.provider))
        op.action_id = machine.action_id
        op.mode = machine.mode
        op.progress = machine.progress
        if not step.done and machine.phase == Phase.CONFIRMING:
            op.status_text = f"Verifying {op.label!r}..."
        await self._advance(op, step)

    async def _advance(self, op: Operation, step: Step):
        if step.kind == "succeeded":
            message = f"Server {op.label!r} {_past(op.command)}"
            await self._finish(op, True, message, message)
            return
        if step.kind == "failed":
            await self._finish(op, False, self._failure_message(op, step.error), self._failure_text(step.error))
            return

        await self._persist(op, ACTION_RUNNING)
        self._emit(EVENT_UPDATED, op)
        self._schedule(op, step)

    async def _finish(self, op: Operation, success: bool, message: str, status_text: str):
        op.status = OP_SUCCEEDED if success else OP_FAILED
        op.status_text = status_text
        if success:
            op.progress = 100
        await self._persist(op, ACTION_SUCCESS if success else ACTION_ERROR, "" if success else message)
        self._emit(EVENT_COMPLETED, op, success, message)
        self._spawn(self._dismiss_later(op.id))

    def _dismiss(self, op: Operation):
        del self._ops[op.id]
        self._machines.pop(op.id, None)
        self._records.pop(op.id, None)
        self._emit(EVENT_DISMISSED, op)
        if not self._ops:
            self._idle.set()

    # ── Helpers ────────────────────────────────────────────────────

    def _new_operation(self, server_id, server_name, command, target_status, status_text) -> Operation:
        op = Operation(
            id=self._next_id,
            server_id=server_id,
            server_name=server_name,
            command=command,
            target_status=target_status,
            status_text=status_text,
        )
        self._next_id += 1
        self._ops[op.id] = op
        self._idle.clear()
        return op

    def _schedule(self, op: Operation, step: Step):
        target = op.action_id if step.mode == PollMode.ACTION else op.server_id
        self._spawn(self._poll(op.id, step.mode, target, step.immediate))

    def _emit(self, kind: str, op: Operation, success: bool = False, message: str = ""):
        self.events.put_nowait(TrackerEvent(kind, replace(op), success, message))

    def _failure_message(self, op: Operation, error) -> str:
        if isinstance(error, ActionFailedError):
            return f"Failed to {_infinitive(op.command)} server {op.label!r}: {error.detail or 'action failed'}"
        return f"Failed to {_infinitive(op.command)} server {op.label!r}: {error}"

    @staticmethod
    def _failure_text(error) -> str:
        if isinstance(error, PollingStoppedError):
            return "Rate limited"
        return f"Failed: {error}"

    async def _persist(self, op: Operation, status: str, error_message: str = ""):
        record = self._records.get(op.id)
        if self.repo is None or record is None:
            return
        record.status = status
        record.progress = op.progress
        record.action_id = op.action_id or record.action_id
        record.error_message = error_message
        try:
            await asyncio.to_thread(self.repo.save, record)
        except Exception as e:
            logger.warning(f"Warning: could not persist operation for {op.label}: {e}")
            return
        op.record_id = record.id


def render_operations(ops) -> list[str]:
    """One status line per operation, for a status panel or plain output."""
    lines = []
    for op in ops:
        if op.status == OP_SUCCEEDED:
            marker = "✓"
        elif op.status == OP_FAILED:
            marker = "✗"
        else:
            marker = "…"
        lines.append(f"{marker} {op.status_text}")
    return lines
