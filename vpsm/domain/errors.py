"""Error taxonomy shared by providers, the action store and the orchestrator.

Providers raise (or chain from) the sentinel categories so the core can react
to rate limiting and missing resources without knowing provider SDKs::

    raise RateLimitedError("rate limited while polling action") from exc
"""


class VpsmError(Exception):
    """Base class for all vpsm errors."""


# ── Provider sentinels ─────────────────────────────────────────────


class ProviderError(VpsmError):
    """A provider request failed in a recognised way."""


class NotFoundError(ProviderError):
    """The requested resource does not exist."""


class UnauthorizedError(ProviderError):
    """Credentials were invalid, expired or missing."""


class RateLimitedError(ProviderError):
    """The provider throttled the request."""


class ConflictError(ProviderError):
    """A state or uniqueness conflict, e.g. a server in a transitional state."""


# ── Action store ───────────────────────────────────────────────────


class InvalidTransitionError(VpsmError):
    """An update tried to move a terminal action record to another status."""


# ── Orchestration outcomes ─────────────────────────────────────────


class ActionError(VpsmError):
    """An action did not reach its target state."""


class ActionFailedError(ActionError):
    """The provider reported an explicit action failure."""

    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__(f"action failed: {detail}" if detail else "action failed")


class ServerGoneError(ActionError):
    """The server disappeared while its status was being polled."""

    def __init__(self, server_id: str):
        self.server_id = server_id
        super().__init__(f"server {server_id!r} disappeared while polling")


class PollingStoppedError(ActionError):
    """Polling was aborted because the provider rate-limited us."""

    def __init__(self, cause: Exception):
        super().__init__(f"polling stopped: {cause}")


class ConsecutiveFailuresError(ActionError):
    """Too many consecutive poll requests failed."""

    def __init__(self, what: str, count: int, cause: Exception):
        self.count = count
        super().__init__(f"error polling {what} (after {count} consecutive failures): {cause}")


class PollTimeoutError(ActionError):
    """The attempt budget ran out while the action was still running."""


class OperationCancelled(VpsmError):
    """A cooperative cancellation signal interrupted a wait.

    Not a failure: the tracked record stays ``running`` so it can be resumed.
    """

    def __init__(self, message: str = "operation cancelled"):
        super().__init__(message)
