"""Provider-agnostic server and action types."""

from dataclasses import dataclass, field
from datetime import datetime

ACTION_RUNNING = "running"
ACTION_SUCCESS = "success"
ACTION_ERROR = "error"

ACTION_STATUSES = (ACTION_RUNNING, ACTION_SUCCESS, ACTION_ERROR)


@dataclass
class ActionStatus:
    """State of an in-flight provider action such as starting a server.

    Providers return this from asynchronous operations so callers can poll
    for completion. ``id`` is empty when the provider has no action concept.
    """

    id: str = ""
    status: str = ACTION_RUNNING
    progress: int = 0
    command: str = ""
    error_message: str = ""

    @property
    def is_complete(self) -> bool:
        """True once the action finished, regardless of outcome."""
        return self.status in (ACTION_SUCCESS, ACTION_ERROR)


@dataclass
class Server:
    """A virtual server instance as observed through a provider."""

    id: str
    name: str = ""
    status: str = ""
    provider: str = ""
    created_at: datetime | None = None
    public_ipv4: str = ""
    region: str = ""
    server_type: str = ""
    image: str = ""
    metadata: dict = field(default_factory=dict)

    @property
    def label(self) -> str:
        """Name for messages, falling back to the ID."""
        return self.name or self.id


@dataclass
class CreateServerOpts:
    """Options accepted by providers that can create servers."""

    name: str
    image: str
    server_type: str
    location: str = ""
    ssh_keys: list[str] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)
    user_data: str = ""
    start_after_create: bool = True
