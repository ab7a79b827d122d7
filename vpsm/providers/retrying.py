"""Retry wrapper for the idempotent provider reads used while polling.

``start_server``, ``stop_server`` and ``create_server`` are passed through
untouched: retrying them could start a second action.
"""

import asyncio

from vpsm.domain.provider import supports_action_polling, supports_create
from vpsm.retry import RetryConfig, retry


class RetryingProvider:
    """Wraps ``get_server`` of *inner* in :func:`vpsm.retry.retry`."""

    def __init__(self, inner, config: RetryConfig | None = None, cancel: asyncio.Event | None = None):
        self.inner = inner
        self.config = config or RetryConfig()
        self.cancel = cancel

    @property
    def display_name(self) -> str:
        return self.inner.display_name

    async def _retry(self, fn):
        return await retry(fn, self.config, cancel=self.cancel)

    async def get_server(self, server_id):
        return await self._retry(lambda: self.inner.get_server(server_id))

    async def start_server(self, server_id):
        return await self.inner.start_server(server_id)

    async def stop_server(self, server_id):
        return await self.inner.stop_server(server_id)


class _PollActionMixin:
    async def poll_action(self, action_id):
        return await self._retry(lambda: self.inner.poll_action(action_id))


class _CreateMixin:
    async def create_server(self, opts):
        return await self.inner.create_server(opts)


class RetryingActionPoller(_PollActionMixin, RetryingProvider):
    pass


class RetryingCreator(_CreateMixin, RetryingProvider):
    pass


class RetryingPollerCreator(_PollActionMixin, _CreateMixin, RetryingProvider):
    pass


def with_retry(provider, config: RetryConfig | None = None, cancel: asyncio.Event | None = None):
    """Return *provider* with retried reads, exposing exactly its capabilities.

    A provider without ``poll_action`` stays without it, so callers keep
    falling back to server-status polling.
    """
    polls = supports_action_polling(provider)
    creates = supports_create(provider)
    if polls and creates:
        cls = RetryingPollerCreator
    elif polls:
        cls = RetryingActionPoller
    elif creates:
        cls = RetryingCreator
    else:
        cls = RetryingProvider
    return cls(provider, config, cancel)
