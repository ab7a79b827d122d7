"""Action tracking for the CLI: persistence plus a blocking poll loop.

One operation at a time, on the caller's task. Each poll waits for the
configured interval, or returns early with :class:`OperationCancelled` once the
cancellation event is set. A cancelled wait leaves the record ``running`` so
``vpsm server actions --resume`` can pick it up later.
"""

import asyncio
import logging
from datetime import timedelta

from vpsm.actions.machine import ActionStateMachine, PollMode, Step
from vpsm.actionstore import ActionRecord, ActionRepository
from vpsm.config import PollSettings
from vpsm.domain.errors import ActionError, OperationCancelled, VpsmError
from vpsm.domain.provider import supports_action_polling
from vpsm.domain.types import ACTION_ERROR, ACTION_RUNNING, ACTION_SUCCESS, ActionStatus

DEFAULT_RETENTION = timedelta(hours=24)


class ActionService:
    """Tracks provider actions to completion and mirrors progress to the store.

    Args:
        provider: provider implementation; may be None for list-only use.
        provider_name: registry name stored on new records.
        repo: action repository, or None to run without persistence.
        settings: poll interval and budgets.
        cancel: cooperative cancellation event.
        retention: age after which terminal records are pruned opportunistically.
        logger: where progress lines go (defaults to this module's logger).
    """

    def __init__(
        self,
        provider,
        provider_name: str,
        repo: ActionRepository | None,
        settings: PollSettings | None = None,
        cancel: asyncio.Event | None = None,
        retention: timedelta = DEFAULT_RETENTION,
        logger=None,
    ):
        self.provider = provider
        self.provider_name = provider_name
        self.repo = repo
        self.settings = settings or PollSettings()
        self.cancel = cancel
        self.retention = retention
        self.logger = logger or logging.getLogger(__name__)

    # ── Persistence ────────────────────────────────────────────────

    def save_record(self, record: ActionRecord):
        if self.repo is None:
            return
        self.repo.save(record)

    def _save_quietly(self, record: ActionRecord | None):
        # A storage outage only costs resumability, never the cloud operation.
        if self.repo is None or record is None:
            return
        try:
            self.repo.save(record)
        except Exception as e:
            self.logger.warning(f"Warning: could not persist action {record.id}: {e}")

    def track_action(
        self,
        server_id: str,
        server_name: str,
        handle: ActionStatus | None,
        command: str,
        target_status: str,
    ) -> ActionRecord | None:
        """Persist a new record for an action the provider just accepted.

        Returns None when there is nothing to track or the store is
        unavailable, so callers can carry on without persistence.
        """
        if self.repo is None or handle is None:
            return None

        # A success handle still has to be confirmed; it stays running until then.
        status = ACTION_ERROR if handle.status == ACTION_ERROR else ACTION_RUNNING
        record = ActionRecord(
            action_id=handle.id,
            provider=self.provider_name,
            server_id=server_id,
            server_name=server_name,
            command=command,
            target_status=target_status,
            status=status,
            progress=handle.progress,
            error_message=handle.error_message,
        )
        try:
            self.repo.save(record)
        except Exception as e:
            self.logger.warning(f"Warning: action tracking unavailable: {e}")
            return None

        try:
            self.repo.delete_older_than(self.retention)
        except Exception as e:
            self.logger.debug(f"Pruning old actions failed: {e}")

        return record

    def finalize_action(self, record: ActionRecord | None, status: str, error_message: str = ""):
        """Write the terminal status of a tracked action (best-effort)."""
        if record is None:
            return
        record.status = status
        record.error_message = error_message
        if status == ACTION_SUCCESS:
            record.progress = 100
        self._save_quietly(record)

    def list_pending(self) -> list[ActionRecord]:
        if self.repo is None:
            raise VpsmError("actions: repository unavailable")
        return self.repo.list_pending()

    def list_recent(self, n: int) -> list[ActionRecord]:
        if self.repo is None:
            raise VpsmError("actions: repository unavailable")
        return self.repo.list_recent(n)

    def cleanup(self, max_age: timedelta) -> int:
        if self.repo is None:
            raise VpsmError("actions: repository unavailable")
        return self.repo.delete_older_than(max_age)

    # ── Polling ────────────────────────────────────────────────────

    async def resume_action(self, record: ActionRecord):
        """Replay the state machine for a persisted, still-running record.

        No new provider call is made: the record's action ID (if any) is
        polled first, then the server status is confirmed.

        Raises:
            ActionError: the action failed, was rate-limited or timed out.
            OperationCancelled: the wait was interrupted; the record stays running.
        """
        if self.provider is None:
            raise VpsmError("actions: provider unavailable")

        machine = ActionStateMachine(record.server_id, record.target_status, self.settings)
        step = machine.resume(record.action_id, supports_action_polling(self.provider))
        try:
            await self._drive(machine, step, record)
        except ActionError as e:
            self.finalize_action(record, ACTION_ERROR, str(e))
            raise
        self.finalize_action(record, ACTION_SUCCESS)

    async def wait_for_action(
        self,
        handle: ActionStatus | None,
        server_id: str,
        target_status: str,
        record: ActionRecord | None = None,
    ):
        """Block until the action completes and the server reaches *target_status*.

        If *record* is given, its progress is saved after every poll. The
        terminal status is left to the caller (see :meth:`finalize_action`).

        Raises:
            ActionError: explicit failure, rate-limit abort, transient budget
                exhausted or attempt budget exhausted.
            OperationCancelled: the cancellation event was set.
        """
        if self.provider is None:
            raise VpsmError("actions: provider unavailable")
        if handle is None:
            return

        machine = ActionStateMachine(server_id, target_status, self.settings)
        step = machine.begin(handle, supports_action_polling(self.provider))
        await self._drive(machine, step, record)

    async def _drive(self, machine: ActionStateMachine, step: Step, record: ActionRecord | None):
        while not step.done:
            if step.transient_error is not None:
                self.logger.info(
                    f"  Transient error, retrying... ({machine.consecutive_errors}/{machine.max_transient_errors})"
                )
            if step.immediate:
                if self.cancel is not None and self.cancel.is_set():
                    raise OperationCancelled()
            else:
                await self._wait_interval()

            if step.mode == PollMode.ACTION:
                try:
                    status = await self.provider.poll_action(machine.action_id)
                except OperationCancelled:
                    raise
                except Exception as e:
                    step = machine.on_error(e)
                    continue
                step = machine.on_action_status(status)
                if status.status == ACTION_SUCCESS:
                    self.logger.info(f"  Action complete, waiting for server to reach {machine.target_status!r} status...")
                elif status.status == ACTION_RUNNING:
                    self.logger.info(f"  Progress: {machine.progress}%")
            else:
                try:
                    server = await self.provider.get_server(machine.server_id)
                except OperationCancelled:
                    raise
                except Exception as e:
                    step = machine.on_error(e)
                    continue
                step = machine.on_server(server)
                if not step.done:
                    self.logger.info(f"  Status: {server.status} (waiting for {machine.target_status!r})")

            if record is not None and not step.done:
                record.progress = machine.progress
                self._save_quietly(record)

        if step.kind == "failed":
            raise step.error

    async def _wait_interval(self):
        cancel = self.cancel
        if cancel is not None and cancel.is_set():
            raise OperationCancelled()
        interval = self.settings.interval
        if cancel is None:
            await asyncio.sleep(interval)
            return
        if interval <= 0:
            await asyncio.sleep(0)
            if cancel.is_set():
                raise OperationCancelled()
            return
        try:
            await asyncio.wait_for(cancel.wait(), timeout=interval)
        except TimeoutError:
            return
        raise OperationCancelled()

