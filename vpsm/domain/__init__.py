"""Domain types, provider capabilities and the error taxonomy."""

from vpsm.domain.errors import (
    ActionError,
    ActionFailedError,
    ConflictError,
    ConsecutiveFailuresError,
    InvalidTransitionError,
    NotFoundError,
    OperationCancelled,
    PollingStoppedError,
    PollTimeoutError,
    ProviderError,
    RateLimitedError,
    ServerGoneError,
    UnauthorizedError,
    VpsmError,
)
from vpsm.domain.provider import (
    ActionPoller,
    Provider,
    ServerCreator,
    supports_action_polling,
    supports_create,
)
from vpsm.domain.types import (
    ACTION_ERROR,
    ACTION_RUNNING,
    ACTION_STATUSES,
    ACTION_SUCCESS,
    ActionStatus,
    CreateServerOpts,
    Server,
)

__all__ = [
    "ACTION_ERROR",
    "ACTION_RUNNING",
    "ACTION_STATUSES",
    "ACTION_SUCCESS",
    "ActionStatus",
    "CreateServerOpts",
    "Server",
    "Provider",
    "ActionPoller",
    "ServerCreator",
    "supports_action_polling",
    "supports_create",
    "VpsmError",
    "ProviderError",
    "NotFoundError",
    "UnauthorizedError",
    "RateLimitedError",
    "ConflictError",
    "InvalidTransitionError",
    "ActionError",
    "ActionFailedError",
    "ServerGoneError",
    "PollingStoppedError",
    "ConsecutiveFailuresError",
    "PollTimeoutError",
    "OperationCancelled",
]
