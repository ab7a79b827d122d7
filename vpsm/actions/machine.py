"""Completion state machine for one asynchronous provider action.

The machine only decides; it never sleeps or calls the provider. A driver
(the blocking :class:`~vpsm.actions.service.ActionService` or the concurrent
:class:`~vpsm.tracker.OperationTracker`) executes each :class:`Step` and feeds
the outcome back through ``on_action_status``, ``on_server`` or ``on_error``.

Phases::

    initiated -> polling -> confirming -> succeeded
         \\           \\          \\
          `-----------`----------`----> failed

Strategy selection:
  * ``by-action-id`` when the provider can poll actions and the handle carries
    an ID. Yields progress percentages and precise error text.
  * ``by-server-status`` otherwise: fetch the server until its status equals
    the target.

A successful action is never taken at its word. Some operations (graceful
shutdown, notably) report success when the signal is accepted, so the machine
confirms against the server status before declaring success.
"""

from dataclasses import dataclass
from enum import Enum

from vpsm.config import PollSettings
from vpsm.domain.errors import (
    ActionError,
    ActionFailedError,
    ConsecutiveFailuresError,
    PollingStoppedError,
    PollTimeoutError,
    RateLimitedError,
    ServerGoneError,
)
from vpsm.domain.types import ACTION_ERROR, ACTION_SUCCESS, ActionStatus, Server


class PollMode(str, Enum):
    ACTION = "by-action-id"
    SERVER = "by-server-status"


class Phase(str, Enum):
    INITIATED = "initiated"
    POLLING = "polling"
    CONFIRMING = "confirming"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class Step:
    """What the driver must do next.

    ``kind`` is ``"poll"`` (issue one request in ``mode``, after the poll
    interval unless ``immediate``), ``"succeeded"`` or ``"failed"`` (with
    ``error`` set).
    """

    kind: str
    mode: PollMode | None = None
    immediate: bool = False
    error: ActionError | None = None
    transient_error: Exception | None = None

    @property
    def done(self) -> bool:
        return self.kind != "poll"


SUCCEEDED = Step("succeeded")


class ActionStateMachine:
    """State for one action, from initial handle to terminal outcome."""

    def __init__(self, server_id: str, target_status: str, settings: PollSettings | None = None):
        settings = settings or PollSettings()
        self.server_id = server_id
        self.target_status = target_status
        self.max_attempts = settings.max_attempts
        self.max_transient_errors = settings.max_transient_errors

        self.phase = Phase.INITIATED
        self.mode: PollMode | None = None
        self.action_id = ""
        self.attempts = 0
        self.consecutive_errors = 0
        self.progress = 0
        self.observed_status = ""
        self.error: ActionError | None = None

    @property
    def done(self) -> bool:
        return self.phase in (Phase.SUCCEEDED, Phase.FAILED)

    # ── Entry points ───────────────────────────────────────────────

    def begin(self, handle: ActionStatus | None, can_poll_actions: bool) -> Step:
        """Start from the handle returned by the initial provider call."""
        if handle is not None and handle.id:
            self.action_id = handle.id
        if handle is not None:
            self.progress = handle.progress

        if handle is not None and handle.status == ACTION_ERROR:
            return self._fail(ActionFailedError(handle.error_message))

        if handle is not None and handle.status == ACTION_SUCCESS:
            return self._confirm()

        self.phase = Phase.POLLING
        if can_poll_actions and self.action_id:
            self.mode = PollMode.ACTION
        else:
            self.mode = PollMode.SERVER
        return self._next_poll()

    def resume(self, action_id: str, can_poll_actions: bool) -> Step:
        """Restart polling for a persisted action: one poll right away, no wait."""
        self.action_id = action_id
        self.phase = Phase.POLLING
        self.mode = PollMode.ACTION if can_poll_actions and action_id else PollMode.SERVER
        return Step("poll", mode=self.mode, immediate=True)

    # ── Poll outcomes ──────────────────────────────────────────────

    def on_action_status(self, status: ActionStatus) -> Step:
        """Feed the result of a ``poll_action`` request."""
        self.consecutive_errors = 0
        if status.status == ACTION_SUCCESS:
            self.progress = 100
            return self._confirm()
        if status.status == ACTION_ERROR:
            return self._fail(ActionFailedError(status.error_message))
        if status.progress > 0:
            self.progress = status.progress
        return self._next_poll()

    def on_server(self, server: Server | None) -> Step:
        """Feed the result of a ``get_server`` request."""
        self.consecutive_errors = 0
        if server is None:
            return self._fail(ServerGoneError(self.server_id))
        self.observed_status = server.status
        if server.status == self.target_status:
            self.phase = Phase.SUCCEEDED
            self.progress = 100
            return SUCCEEDED
        return self._next_poll()

    def on_error(self, exc: Exception) -> Step:
        """Feed a failed poll request.

        Rate limiting aborts at once. Anything else is transient until
        ``max_transient_errors`` consecutive failures.
        """
        if isinstance(exc, RateLimitedError):
            return self._fail(PollingStoppedError(exc))
        self.consecutive_errors += 1
        if self.consecutive_errors >= self.max_transient_errors:
            what = "action" if self.mode == PollMode.ACTION else "server status"
            return self._fail(ConsecutiveFailuresError(what, self.consecutive_errors, exc))
        return self._next_poll(transient_error=exc)

    # ── Internals ──────────────────────────────────────────────────

    def _confirm(self) -> Step:
        # The first confirmation check is free: no interval, no attempt used.
        self.phase = Phase.CONFIRMING
        self.mode = PollMode.SERVER
        return Step("poll", mode=self.mode, immediate=True)

    def _next_poll(self, transient_error: Exception | None = None) -> Step:
        if self.attempts >= self.max_attempts:
            if self.mode == PollMode.ACTION:
                message = f"timed out waiting for action to complete ({self.max_attempts} polls)"
            else:
                message = f"timed out waiting for server to reach {self.target_status!r} status ({self.max_attempts} polls)"
            return self._fail(PollTimeoutError(message))
        self.attempts += 1
        return Step("poll", mode=self.mode, transient_error=transient_error)

    def _fail(self, error: ActionError) -> Step:
        self.phase = Phase.FAILED
        self.error = error
        return Step("failed", mode=self.mode, error=error)
