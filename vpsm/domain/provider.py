"""Provider capability surface consumed by the orchestrator.

Every provider implements :class:`Provider`. Action polling and server
creation are optional capabilities probed at runtime; a provider without
``poll_action`` is tracked through its server status instead.
"""

from typing import Protocol, runtime_checkable

from vpsm.domain.types import ActionStatus, CreateServerOpts, Server


@runtime_checkable
class Provider(Protocol):
    display_name: str

    async def get_server(self, server_id: str) -> Server | None:
        """Return the server, or None if it does not exist."""
        ...

    async def start_server(self, server_id: str) -> ActionStatus:
        ...

    async def stop_server(self, server_id: str) -> ActionStatus:
        ...


@runtime_checkable
class ActionPoller(Protocol):
    async def poll_action(self, action_id: str) -> ActionStatus:
        ...


@runtime_checkable
class ServerCreator(Protocol):
    async def create_server(self, opts: CreateServerOpts) -> tuple[Server, ActionStatus | None]:
        ...


def supports_action_polling(provider) -> bool:
    """True if the provider can report progress for an action ID."""
    return isinstance(provider, ActionPoller)


def supports_create(provider) -> bool:
    return isinstance(provider, ServerCreator)
